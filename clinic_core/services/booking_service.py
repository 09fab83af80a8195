"""Book-appointment use case: identity -> duplicates -> slot -> appointment."""
import logging
from dataclasses import dataclass, field
from datetime import date, time

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel

from clinic_core.models.appointment import ACTIVE_STATUSES, Appointment, AppointmentSource
from clinic_core.models.contact import Contact
from clinic_core.models.duplicate import DuplicateCandidate
from clinic_core.models.patient import Patient, PatientCreate
from clinic_core.models.slot import Slot
from clinic_core.services.appointment_service import create_appointment, list_by_date, parse_source, parse_type
from clinic_core.services.identity_service import resolve_contact
from clinic_core.services.normalization import parse_date, parse_time
from clinic_core.services.notification_service import Notifier
from clinic_core.services.patient_service import register_patient
from clinic_core.services.slot_service import list_slots

logger = logging.getLogger(__name__)

REGISTRATION_SOURCE_TAGS = {
    AppointmentSource.PUBLIC: "public-scheduling",
    AppointmentSource.SECRETARY: "secretary-area",
    AppointmentSource.DOCTOR: "doctor-area",
    AppointmentSource.PHONE: "phone",
    AppointmentSource.WHATSAPP: "whatsapp",
    AppointmentSource.MIGRATION: "migration",
}


class BookingRequest(SQLModel):
    name: str
    phone: str | None = None
    whatsapp: str | None = None
    email: str | None = None
    birth_date: str | None = None
    document_number: str | None = None
    insurance_type: str | None = None
    date: str
    time: str
    type: str = "CONSULTATION"
    source: str
    provider_id: str | None = None
    duration_minutes: int | None = None
    notes: str | None = None


@dataclass
class BookingResult:
    contact: Contact
    appointment: Appointment
    patient: Patient | None = None
    is_new_contact: bool = False
    duplicate_candidates: list[DuplicateCandidate] = field(default_factory=list)


async def book_appointment(
    session: AsyncSession, request: BookingRequest, notifier: Notifier | None = None
) -> BookingResult:
    source = parse_source(request.source)
    # reject malformed scheduling input before touching identity records
    parse_date(request.date)
    parse_time(request.time)
    parse_type(request.type)

    resolution = await resolve_contact(
        session,
        request.name,
        phone=request.phone,
        whatsapp=request.whatsapp,
        email=request.email,
        birth_date=request.birth_date,
        source=REGISTRATION_SOURCE_TAGS[source],
    )
    contact = resolution.contact

    patient: Patient | None = None
    if request.document_number:
        patient = await register_patient(
            session,
            PatientCreate(
                contact_id=contact.id,
                document_number=request.document_number,
                full_name=request.name,
                insurance_type=request.insurance_type,
            ),
        )
        if patient.contact_id != contact.id:
            # document already belongs to another contact; a candidate was flagged for staff
            logger.warning("Document on booking belongs to contact %s, not %s", patient.contact_id, contact.id)
            patient = None

    appointment = await create_appointment(
        session,
        contact.id,
        request.date,
        request.time,
        request.type,
        source,
        patient_id=patient.id if patient else None,
        provider_id=request.provider_id,
        duration_minutes=request.duration_minutes,
        notes=request.notes,
        require_slot=source == AppointmentSource.PUBLIC and bool(request.provider_id),
        notifier=notifier,
    )
    return BookingResult(
        contact=contact,
        appointment=appointment,
        patient=patient,
        is_new_contact=resolution.is_new,
        duplicate_candidates=resolution.duplicate_candidates,
    )


@dataclass
class AgendaEntry:
    start_time: time
    slot: Slot | None = None
    appointment: Appointment | None = None


async def get_agenda(
    session: AsyncSession, agenda_date: str | date, provider_id: str | None = None
) -> list[AgendaEntry]:
    """Slots of the day with their live appointment, plus appointments booked without a slot."""
    d = parse_date(agenda_date)
    slots = await list_slots(session, provider_id, d, d)
    appointments = await list_by_date(session, d, provider_id)

    by_slot: dict[int, Appointment] = {}
    for appointment in appointments:
        if appointment.slot_id is not None and appointment.status in ACTIVE_STATUSES:
            by_slot.setdefault(appointment.slot_id, appointment)

    entries = [AgendaEntry(start_time=s.slot_time, slot=s, appointment=by_slot.get(s.id)) for s in slots]
    placed = {a.id for a in by_slot.values()}
    entries.extend(
        AgendaEntry(start_time=a.appointment_time, appointment=a) for a in appointments if a.id not in placed
    )
    entries.sort(key=lambda e: (e.start_time, e.slot is None, e.slot.id if e.slot else e.appointment.id))
    return entries
