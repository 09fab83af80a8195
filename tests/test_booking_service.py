from datetime import time

import pytest

from clinic_core.core.db import commit_and_dispatch
from clinic_core.core.errors import SlotUnavailableError, ValidationError
from clinic_core.models.appointment import AppointmentSource, AppointmentStatus
from clinic_core.services.booking_service import BookingRequest, book_appointment, get_agenda
from clinic_core.services.appointment_service import create_appointment, update_status
from clinic_core.services.identity_service import resolve_contact
from clinic_core.services.slot_service import create_slot


def _request(**overrides) -> BookingRequest:
    fields = dict(
        name="Ana Silva",
        whatsapp="11987654321",
        date="2024-01-15",
        time="09:00",
        source="public",
        provider_id="p1",
    )
    fields.update(overrides)
    return BookingRequest(**fields)


@pytest.mark.asyncio
async def test_public_booking_resolves_identity_and_takes_slot(session, notifier):
    slot = await create_slot(session, "p1", "2024-01-15", "09:00")
    result = await book_appointment(session, _request(email="ana@x.com"), notifier=notifier)
    assert result.is_new_contact is True
    assert result.contact.registration_sources == ["public-scheduling"]
    assert result.patient is None
    assert result.appointment.slot_id == slot.id
    assert result.appointment.source == AppointmentSource.PUBLIC
    assert result.appointment.status == AppointmentStatus.SCHEDULED
    await commit_and_dispatch(session)
    assert notifier.types == ["appointment.created"]


@pytest.mark.asyncio
async def test_public_booking_needs_an_open_slot(session):
    with pytest.raises(SlotUnavailableError):
        await book_appointment(session, _request())


@pytest.mark.asyncio
async def test_secretary_booking_without_slot(session):
    result = await book_appointment(session, _request(source="secretary", provider_id=None))
    assert result.appointment.slot_id is None
    assert result.contact.registration_sources == ["secretary-area"]


@pytest.mark.asyncio
async def test_returning_contact_with_document(session):
    await resolve_contact(session, "Ana Silva", whatsapp="11987654321", source="newsletter")
    result = await book_appointment(
        session,
        _request(source="whatsapp", provider_id=None, document_number="529.982.247-25", insurance_type="unimed"),
    )
    assert result.is_new_contact is False
    assert result.contact.registration_sources == ["newsletter", "whatsapp"]
    assert result.patient is not None
    assert result.patient.insurance_type == "UNIMED"
    assert result.appointment.patient_id == result.patient.id


@pytest.mark.asyncio
async def test_document_of_someone_else_is_not_linked(session):
    owner = await book_appointment(
        session, _request(source="secretary", provider_id=None, document_number="529.982.247-25")
    )
    other = await book_appointment(
        session,
        _request(
            name="Carla Mendes",
            whatsapp="11955556666",
            source="secretary",
            provider_id=None,
            date="2024-01-16",
            document_number="529.982.247-25",
        ),
    )
    assert other.patient is None
    assert other.appointment.patient_id is None
    assert other.contact.id != owner.contact.id


@pytest.mark.asyncio
async def test_bad_input_touches_nothing(session):
    with pytest.raises(ValidationError):
        await book_appointment(session, _request(time="9h"))
    with pytest.raises(ValidationError):
        await book_appointment(session, _request(source="carrier-pigeon"))
    with pytest.raises(ValidationError):
        await book_appointment(session, _request(name=""))
    assert (await resolve_contact(session, "Ana Silva", whatsapp="11987654321")).is_new is True


@pytest.mark.asyncio
async def test_agenda_merges_slots_and_free_appointments(session):
    ana = (await resolve_contact(session, "Ana Silva", whatsapp="11987654321")).contact
    bruno = (await resolve_contact(session, "Bruno Costa", whatsapp="11912345678")).contact
    nine = await create_slot(session, "p1", "2024-01-15", "09:00")
    half_past = await create_slot(session, "p1", "2024-01-15", "09:30")
    booked = await create_appointment(session, ana.id, "2024-01-15", "09:00", "CONSULTATION", "public", slot_id=nine.id)
    walk_in = await create_appointment(session, bruno.id, "2024-01-15", "09:00", "EMERGENCY", "doctor", provider_id="p2")
    cancelled = await create_appointment(session, bruno.id, "2024-01-15", "11:00", "EXAM", "doctor", provider_id="p1")
    await update_status(session, cancelled.id, "CANCELLED")

    entries = await get_agenda(session, "2024-01-15")
    assert [(e.start_time, e.slot.id if e.slot else None, e.appointment.id if e.appointment else None) for e in entries] == [
        (time(9, 0), nine.id, booked.id),
        (time(9, 0), None, walk_in.id),
        (time(9, 30), half_past.id, None),
        (time(11, 0), None, cancelled.id),
    ]

    p1 = await get_agenda(session, "2024-01-15", provider_id="p1")
    assert [e.start_time for e in p1] == [time(9, 0), time(9, 30), time(11, 0)]
