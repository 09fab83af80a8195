from datetime import date, time

import pytest

from clinic_core.core.errors import ValidationError
from clinic_core.models.contact import ContactData
from clinic_core.services.normalization import (
    is_valid_cpf,
    merge_contact_data,
    name_key,
    name_tokens,
    normalize_birth_date,
    normalize_contact,
    normalize_document,
    normalize_email,
    normalize_phone,
    parse_date,
    parse_time,
)


def test_phone_keeps_digits_only():
    assert normalize_phone("(11) 98765-4321") == "11987654321"
    assert normalize_phone("+55 11 98765-4321") == "5511987654321"
    assert normalize_phone("") is None
    assert normalize_phone(None) is None


def test_phone_length_is_checked():
    with pytest.raises(ValidationError):
        normalize_phone("12345")
    with pytest.raises(ValidationError):
        normalize_phone("1" * 14, field="whatsapp")


def test_email_is_lowercased_and_validated():
    assert normalize_email("  Ana.Silva@X.com ") == "ana.silva@x.com"
    assert normalize_email("   ") is None
    with pytest.raises(ValidationError):
        normalize_email("not-an-email")


def test_name_tokens_ignore_accents_and_case():
    assert name_tokens("João  da SILVA") == {"joao", "da", "silva"}
    assert name_tokens("Márcia O'Neil") == {"marcia", "o", "neil"}
    assert name_tokens(None) == set()


def test_cpf_check_digits():
    assert is_valid_cpf("52998224725")
    assert is_valid_cpf("11144477735")
    assert not is_valid_cpf("52998224724")
    assert not is_valid_cpf("11111111111")
    assert normalize_document("529.982.247-25") == "52998224725"
    with pytest.raises(ValidationError):
        normalize_document("123.456.789-00")
    with pytest.raises(ValidationError):
        normalize_document("")


def test_normalize_contact_requires_name():
    with pytest.raises(ValidationError, match="name is required"):
        normalize_contact("   ", whatsapp="11987654321")


def test_normalize_contact_cleans_fields():
    data = normalize_contact(
        "  Ana   Silva ",
        whatsapp="(11) 98765-4321",
        email="ANA@X.COM",
        birth_date=" 15/03/1990 ",
        source="public-scheduling",
    )
    assert data.name == "Ana Silva"
    assert data.whatsapp == "11987654321"
    assert data.phone is None
    assert data.email == "ana@x.com"
    assert data.birth_date == "1990-03-15"
    assert data.registration_sources == ["public-scheduling"]


def test_merge_non_empty_wins_and_sources_append():
    existing = ContactData(
        name="Ana Silva", whatsapp="11987654321", phone="1133334444", registration_sources=["newsletter"]
    )
    incoming = ContactData(
        name="Ana S. Silva", email="ana@x.com", phone=None, registration_sources=["public-scheduling", "newsletter"]
    )
    merged = merge_contact_data(existing, incoming)
    assert merged.name == "Ana S. Silva"
    assert merged.whatsapp == "11987654321"
    assert merged.phone == "1133334444"
    assert merged.email == "ana@x.com"
    assert merged.registration_sources == ["newsletter", "public-scheduling"]
    # inputs are left untouched
    assert existing.email is None


def test_parse_date_and_time():
    assert parse_date("2024-01-15") == date(2024, 1, 15)
    assert parse_date(date(2024, 1, 15)) == date(2024, 1, 15)
    assert parse_time("09:00") == time(9, 0)
    assert parse_time(time(9, 0, 30)) == time(9, 0)
    with pytest.raises(ValidationError):
        parse_date("15/01/2024")
    with pytest.raises(ValidationError):
        parse_time("9am")
    with pytest.raises(ValidationError):
        parse_time("25:00")


def test_birth_dates_are_stored_in_iso_form():
    assert normalize_birth_date("15/03/1990") == "1990-03-15"
    assert normalize_birth_date("15.03.1990") == "1990-03-15"
    assert normalize_birth_date(" 1990-03-15 ") == "1990-03-15"
    # unparseable input is kept as reported
    assert normalize_birth_date("March 1990") == "march 1990"
    assert normalize_birth_date("  ") is None


def test_name_key_is_accent_free_and_token_delimited():
    assert name_key("José  da Silva") == " da jose silva "
    assert name_key("Jose da SILVA") == name_key("José da Silva")
    assert " ana " not in name_key("Mariana Santana")
    assert name_key("") == ""
