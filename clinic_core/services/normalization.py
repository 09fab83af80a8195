import re
import unicodedata
from datetime import date, datetime, time

from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from clinic_core.core.config import settings
from clinic_core.core.errors import ValidationError
from clinic_core.models.contact import ContactData

_email_adapter = TypeAdapter(EmailStr)
_NON_DIGITS = re.compile(r"\D")
_WHITESPACE = re.compile(r"\s+")
_NON_LETTERS = re.compile(r"[^a-z\s]")
_BIRTH_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%d.%m.%Y")


def digits_only(value: str | None) -> str | None:
    if not value:
        return None
    digits = _NON_DIGITS.sub("", value)
    return digits or None


def normalize_phone(value: str | None, field: str = "phone") -> str | None:
    digits = digits_only(value)
    if digits is None:
        return None
    if not settings.phone_min_digits <= len(digits) <= settings.phone_max_digits:
        raise ValidationError(f"Invalid {field} number: {value!r}")
    return digits


def normalize_email(value: str | None) -> str | None:
    if value is None:
        return None
    email = value.strip().lower()
    if not email:
        return None
    try:
        _email_adapter.validate_python(email)
    except PydanticValidationError:
        raise ValidationError(f"Invalid email: {value!r}")
    return email


def collapse_whitespace(value: str | None) -> str:
    if not value:
        return ""
    return _WHITESPACE.sub(" ", value).strip()


def name_tokens(name: str | None) -> set[str]:
    """Accent-free lower-case tokens used for name comparison."""
    if not name:
        return set()
    decomposed = unicodedata.normalize("NFKD", name.lower())
    ascii_name = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return {t for t in _NON_LETTERS.sub(" ", ascii_name).split() if t}


def name_key(name: str | None) -> str:
    """Sorted name tokens, space-delimited on both ends so whole tokens can be matched with LIKE."""
    tokens = sorted(name_tokens(name))
    return f" {' '.join(tokens)} " if tokens else ""


def normalize_birth_date(value: str | None) -> str | None:
    """ISO date when the input parses in a known format, else the trimmed text."""
    text = collapse_whitespace(value).lower()
    if not text:
        return None
    for fmt in _BIRTH_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    return text


def is_valid_cpf(digits: str) -> bool:
    if len(digits) != 11 or digits == digits[0] * 11:
        return False
    for position in (9, 10):
        total = sum(int(digits[i]) * (position + 1 - i) for i in range(position))
        check = 11 - total % 11
        if check > 9:
            check = 0
        if check != int(digits[position]):
            return False
    return True


def normalize_document(value: str | None) -> str:
    digits = digits_only(value)
    if not digits:
        raise ValidationError("Document number is required")
    if settings.document_validation == "cpf" and not is_valid_cpf(digits):
        raise ValidationError(f"Invalid CPF: {value!r}")
    return digits


def normalize_contact(
    name: str | None,
    phone: str | None = None,
    whatsapp: str | None = None,
    email: str | None = None,
    birth_date: str | None = None,
    source: str | None = None,
) -> ContactData:
    """Normalize raw intake fields; a name is the only mandatory input."""
    clean_name = collapse_whitespace(name)
    if not clean_name:
        raise ValidationError("Contact name is required")
    return ContactData(
        name=clean_name,
        phone=normalize_phone(phone),
        whatsapp=normalize_phone(whatsapp, field="whatsapp"),
        email=normalize_email(email),
        birth_date=normalize_birth_date(birth_date),
        registration_sources=[source] if source else [],
    )


def merge_contact_data(existing: ContactData, incoming: ContactData) -> ContactData:
    """Non-empty-wins merge; registration sources are only ever appended."""
    merged = existing.model_copy()
    for field in ("name", "phone", "whatsapp", "email", "birth_date", "document_number"):
        value = getattr(incoming, field)
        if value:
            setattr(merged, field, value)
    sources = list(existing.registration_sources)
    for source in incoming.registration_sources:
        if source not in sources:
            sources.append(source)
    merged.registration_sources = sources
    return merged


def parse_date(value: str | date) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d").date()
    except (AttributeError, ValueError):
        raise ValidationError(f"Invalid date (expected YYYY-MM-DD): {value!r}")


def parse_time(value: str | time) -> time:
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    try:
        return datetime.strptime(value.strip(), "%H:%M").time()
    except (AttributeError, ValueError):
        raise ValidationError(f"Invalid time (expected HH:MM): {value!r}")


def parse_enum(enum_cls, value, label: str):
    """Case-insensitive lookup of a ``str`` enum member by value."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().upper())
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Invalid {label} {value!r} (allowed: {allowed})")
