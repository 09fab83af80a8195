import pytest

from clinic_core.core.errors import AppointmentOverlapError, DocumentConflictError, NotFoundError, ValidationError
from clinic_core.models.common import EntityStatus
from clinic_core.models.duplicate import CandidateStatus
from clinic_core.models.patient import PatientCreate
from clinic_core.services.appointment_service import create_appointment, list_by_contact, update_status
from clinic_core.services.duplicate_service import list_candidates
from clinic_core.services.identity_service import get_contact, resolve_contact
from clinic_core.services.merge_service import confirm_distinct, confirm_merge
from clinic_core.services.patient_service import register_patient


async def _pair(session):
    keep = await resolve_contact(
        session, "Ana Silva", whatsapp="11987654321", birth_date="1990-03-15", source="public-scheduling"
    )
    dupe = await resolve_contact(
        session, "Ana Silva", email="ana@x.com", birth_date="15/03/1990", source="newsletter"
    )
    assert len(dupe.duplicate_candidates) == 1
    return keep.contact, dupe.contact


@pytest.mark.asyncio
async def test_merge_moves_appointments_and_fills_gaps(session):
    keep, dupe = await _pair(session)
    patient = await register_patient(session, PatientCreate(contact_id=dupe.id, document_number="529.982.247-25"))
    await create_appointment(session, keep.id, "2024-01-15", "09:00", "CONSULTATION", "public")
    moved = await create_appointment(session, dupe.id, "2024-01-20", "09:00", "FOLLOW_UP", "secretary")

    merged = await confirm_merge(session, keep.id, dupe.id)
    assert merged.id == keep.id
    assert merged.email == "ana@x.com"
    assert merged.whatsapp == "11987654321"
    assert merged.birth_date == "1990-03-15"
    assert merged.registration_sources == ["public-scheduling", "newsletter"]

    appointments = await list_by_contact(session, keep.id)
    assert len(appointments) == 2
    assert moved.contact_id == keep.id
    assert all(a.patient_id == patient.id for a in appointments)
    assert patient.contact_id == keep.id
    assert (await get_contact(session, dupe.id)).status == EntityStatus.INACTIVE
    assert await list_candidates(session) == []
    assert len(await list_candidates(session, CandidateStatus.CONFIRMED_MERGE)) == 1


@pytest.mark.asyncio
async def test_merge_rejects_overlapping_schedules(session):
    keep, dupe = await _pair(session)
    await create_appointment(session, keep.id, "2024-01-15", "09:00", "CONSULTATION", "public")
    clash = await create_appointment(session, dupe.id, "2024-01-15", "09:15", "EXAM", "secretary")
    with pytest.raises(AppointmentOverlapError):
        await confirm_merge(session, keep.id, dupe.id)
    await update_status(session, clash.id, "CANCELLED")
    await confirm_merge(session, keep.id, dupe.id)


@pytest.mark.asyncio
async def test_merge_refuses_two_clinical_identities(session):
    keep, dupe = await _pair(session)
    await register_patient(session, PatientCreate(contact_id=keep.id, document_number="529.982.247-25"))
    await register_patient(session, PatientCreate(contact_id=dupe.id, document_number="111.444.777-35"))
    with pytest.raises(DocumentConflictError):
        await confirm_merge(session, keep.id, dupe.id)


@pytest.mark.asyncio
async def test_merge_guards(session):
    keep, dupe = await _pair(session)
    with pytest.raises(ValidationError):
        await confirm_merge(session, keep.id, keep.id)
    with pytest.raises(NotFoundError):
        await confirm_merge(session, keep.id, 999)
    await confirm_merge(session, keep.id, dupe.id)
    with pytest.raises(ValidationError):
        await confirm_merge(session, keep.id, dupe.id)


@pytest.mark.asyncio
async def test_confirm_distinct(session):
    await _pair(session)
    candidate = (await list_candidates(session))[0]
    resolved = await confirm_distinct(session, candidate.id)
    assert resolved.status == CandidateStatus.CONFIRMED_DISTINCT
    assert resolved.resolved_at is not None
    with pytest.raises(ValidationError):
        await confirm_distinct(session, candidate.id)
    with pytest.raises(NotFoundError):
        await confirm_distinct(session, 999)


@pytest.mark.asyncio
async def test_merged_contact_channels_resolve_to_the_kept_contact(session):
    keep = (await resolve_contact(session, "Ana Silva", whatsapp="11987654321", email="ana@keep.com")).contact
    dupe = (await resolve_contact(session, "Ana Silva", email="ana@old.com", phone="1133334444")).contact
    await confirm_merge(session, keep.id, dupe.id)
    retired = await get_contact(session, dupe.id)
    assert retired.merged_into_id == keep.id
    # the kept email wins, so the old one only lives on the merged row
    assert keep.email == "ana@keep.com"

    again = await resolve_contact(session, "Ana Silva", email="ana@old.com", source="newsletter")
    assert again.is_new is False
    assert again.contact.id == keep.id
    assert again.contact.email == "ana@keep.com"
    assert "newsletter" in again.contact.registration_sources
    assert (await get_contact(session, dupe.id)).status == EntityStatus.INACTIVE

    by_phone = await resolve_contact(session, "Ana Silva", phone="(11) 3333-4444")
    assert by_phone.contact.id == keep.id


@pytest.mark.asyncio
async def test_merged_contact_cannot_absorb_others(session):
    keep, dupe = await _pair(session)
    await confirm_merge(session, keep.id, dupe.id)
    third = (await resolve_contact(session, "Ana Silva", phone="1133334444")).contact
    with pytest.raises(ValidationError):
        await confirm_merge(session, dupe.id, third.id)
