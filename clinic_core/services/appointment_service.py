import logging
from datetime import date, datetime, time, timedelta

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_core.core.config import settings
from clinic_core.core.db import lock_key
from clinic_core.core.errors import (
    AppointmentOverlapError,
    InvalidTransitionError,
    NotFoundError,
    SlotUnavailableError,
    TimeBlockedError,
    ValidationError,
)
from clinic_core.models.appointment import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentSource,
    AppointmentStatus,
    AppointmentType,
)
from clinic_core.models.common import EntityStatus, _utc_naive_now
from clinic_core.models.patient import Patient
from clinic_core.models.slot import Slot
from clinic_core.services.block_service import find_blocks
from clinic_core.services.identity_service import get_contact
from clinic_core.services.normalization import parse_date, parse_enum, parse_time
from clinic_core.services.notification_service import (
    APPOINTMENT_CANCELLED,
    APPOINTMENT_CONFIRMED,
    APPOINTMENT_CREATED,
    APPOINTMENT_RESCHEDULED,
    Notifier,
    appointment_event,
    queue_event,
)
from clinic_core.services.patient_service import get_active_patient_for_contact, get_patient
from clinic_core.services.slot_service import (
    find_active_slot,
    get_occupying_appointment,
    get_slot,
    slot_lock_key,
)

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset(
        {AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
    ),
    AppointmentStatus.CONFIRMED: frozenset(
        {AppointmentStatus.IN_PROGRESS, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
    ),
    AppointmentStatus.IN_PROGRESS: frozenset({AppointmentStatus.COMPLETED}),
}

RESCHEDULABLE_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED)

_STATUS_EVENTS = {
    AppointmentStatus.CONFIRMED: APPOINTMENT_CONFIRMED,
    AppointmentStatus.CANCELLED: APPOINTMENT_CANCELLED,
}


def parse_status(value: str | AppointmentStatus) -> AppointmentStatus:
    return parse_enum(AppointmentStatus, value, "status")


def parse_type(value: str | AppointmentType) -> AppointmentType:
    return parse_enum(AppointmentType, value, "appointment type")


def parse_source(value: str | AppointmentSource) -> AppointmentSource:
    return parse_enum(AppointmentSource, value, "source")


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def windows_overlap(start_a: datetime, minutes_a: int, start_b: datetime, minutes_b: int) -> bool:
    """Half-open [start, start+duration) intersection."""
    return start_a < start_b + timedelta(minutes=minutes_b) and start_b < start_a + timedelta(minutes=minutes_a)


def owner_lock_key(contact_id: int) -> str:
    # a contact owns at most one patient, so it keys both pre- and post-registration bookings
    return f"appointments:contact:{contact_id}"


def provider_lock_key(provider_id: str, d: date) -> str:
    return f"appointments:provider:{provider_id}:{d.isoformat()}"


async def _first_overlap(
    session: AsyncSession,
    owner,
    start: datetime,
    duration_minutes: int,
    exclude_appointment_id: int | None = None,
) -> Appointment | None:
    end = start + timedelta(minutes=duration_minutes)
    # windows never span more than a day either side of the requested one
    q = select(Appointment).where(
        owner,
        Appointment.status.in_(ACTIVE_STATUSES),
        Appointment.appointment_date >= start.date() - timedelta(days=1),
        Appointment.appointment_date <= end.date(),
    )
    if exclude_appointment_id is not None:
        q = q.where(Appointment.id != exclude_appointment_id)
    result = await session.execute(q.order_by(Appointment.appointment_date, Appointment.appointment_time))
    for other in result.scalars().all():
        if windows_overlap(start, duration_minutes, other.starts_at, other.duration_minutes):
            return other
    return None


async def find_overlapping(
    session: AsyncSession,
    contact_id: int,
    patient_id: int | None,
    start: datetime,
    duration_minutes: int,
    exclude_appointment_id: int | None = None,
) -> Appointment | None:
    owner = Appointment.contact_id == contact_id
    if patient_id is not None:
        owner = or_(owner, Appointment.patient_id == patient_id)
    return await _first_overlap(session, owner, start, duration_minutes, exclude_appointment_id)


async def find_provider_overlap(
    session: AsyncSession,
    provider_id: str,
    start: datetime,
    duration_minutes: int,
    exclude_appointment_id: int | None = None,
) -> Appointment | None:
    return await _first_overlap(
        session, Appointment.provider_id == provider_id, start, duration_minutes, exclude_appointment_id
    )


async def _check_windows(
    session: AsyncSession,
    contact_id: int,
    patient_id: int | None,
    provider_id: str | None,
    start: datetime,
    duration_minutes: int,
    exclude_appointment_id: int | None = None,
) -> None:
    """Raise unless the window is free for the owner and, when set, the provider."""
    clash = await find_overlapping(session, contact_id, patient_id, start, duration_minutes, exclude_appointment_id)
    if clash is not None:
        raise AppointmentOverlapError(
            f"You already have an appointment at this time (appointment {clash.id} on "
            f"{clash.appointment_date.isoformat()} {clash.appointment_time.strftime('%H:%M')})"
        )
    if not provider_id:
        return
    await lock_key(session, provider_lock_key(provider_id, start.date()))
    blocks = await find_blocks(session, provider_id, start, duration_minutes)
    if blocks:
        raise TimeBlockedError(f"{provider_id} is unavailable at this time ({blocks[0].title})")
    busy = await find_provider_overlap(session, provider_id, start, duration_minutes, exclude_appointment_id)
    if busy is not None:
        raise SlotUnavailableError(
            f"This time is already taken (provider {provider_id} is booked by appointment {busy.id})"
        )


async def _resolve_patient(session: AsyncSession, contact_id: int, patient_id: int | None) -> Patient | None:
    if patient_id is None:
        return await get_active_patient_for_contact(session, contact_id)
    patient = await get_patient(session, patient_id)
    if patient.contact_id != contact_id:
        raise ValidationError(f"Patient {patient_id} does not belong to contact {contact_id}")
    if patient.status != EntityStatus.ACTIVE:
        raise ValidationError(f"Patient {patient_id} is inactive")
    return patient


async def _claim_slot(session: AsyncSession, slot: Slot, appointment_id: int | None = None) -> Slot:
    await lock_key(session, slot_lock_key(slot.provider_id, slot.slot_date, slot.slot_time))
    if not slot.is_available:
        raise SlotUnavailableError(f"Slot {slot.id} is not open for booking")
    occupant = await get_occupying_appointment(session, slot.id, exclude_appointment_id=appointment_id)
    if occupant is not None:
        raise SlotUnavailableError(f"This time is already taken (slot {slot.id})")
    return slot


async def create_appointment(
    session: AsyncSession,
    contact_id: int,
    appointment_date: str | date,
    appointment_time: str | time,
    type: str | AppointmentType,
    source: str | AppointmentSource,
    patient_id: int | None = None,
    provider_id: str | None = None,
    slot_id: int | None = None,
    duration_minutes: int | None = None,
    notes: str | None = None,
    require_slot: bool = False,
    notifier: Notifier | None = None,
) -> Appointment:
    d = parse_date(appointment_date)
    t = parse_time(appointment_time)
    appointment_type = parse_type(type)
    appointment_source = parse_source(source)
    if duration_minutes is not None and duration_minutes <= 0:
        raise ValidationError("duration_minutes must be positive")

    contact = await get_contact(session, contact_id)
    if contact.status != EntityStatus.ACTIVE:
        raise ValidationError(f"Contact {contact_id} is inactive")
    patient = await _resolve_patient(session, contact.id, patient_id)

    # lock order everywhere: owner, then slot, then provider day
    await lock_key(session, owner_lock_key(contact.id))

    slot: Slot | None = None
    if slot_id is not None:
        slot = await get_slot(session, slot_id)
        if provider_id and provider_id != slot.provider_id:
            raise ValidationError(f"Slot {slot_id} belongs to provider {slot.provider_id}")
        if (slot.slot_date, slot.slot_time) != (d, t):
            raise ValidationError(f"Slot {slot_id} is not at {d.isoformat()} {t.strftime('%H:%M')}")
    elif provider_id:
        await lock_key(session, slot_lock_key(provider_id, d, t))
        slot = await find_active_slot(session, provider_id, d, t)
    if slot is None and require_slot:
        raise SlotUnavailableError(f"No bookable slot at {d.isoformat()} {t.strftime('%H:%M')}")
    if slot is not None:
        slot = await _claim_slot(session, slot)

    duration = duration_minutes or (slot.duration_minutes if slot else settings.default_appointment_duration_minutes)
    provider = slot.provider_id if slot else provider_id
    await _check_windows(
        session, contact.id, patient.id if patient else None, provider, datetime.combine(d, t), duration
    )

    appointment = Appointment(
        contact_id=contact.id,
        patient_id=patient.id if patient else None,
        provider_id=provider,
        slot_id=slot.id if slot else None,
        appointment_date=d,
        appointment_time=t,
        duration_minutes=duration,
        type=appointment_type,
        source=appointment_source,
        notes=notes,
    )
    session.add(appointment)
    await session.flush()
    await session.refresh(appointment)
    logger.info(
        "Created appointment %s for contact %s on %s %s (source=%s)",
        appointment.id,
        contact.id,
        d,
        t.strftime("%H:%M"),
        appointment_source.value,
    )
    queue_event(session, notifier, appointment_event(APPOINTMENT_CREATED, appointment))
    return appointment


async def get_appointment(session: AsyncSession, appointment_id: int, for_update: bool = False) -> Appointment:
    q = select(Appointment).where(Appointment.id == appointment_id)
    if for_update:
        q = q.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(q)
    appointment = result.scalar_one_or_none()
    if appointment is None:
        raise NotFoundError(f"Appointment {appointment_id} not found")
    return appointment


async def _lock_for_change(session: AsyncSession, appointment_id: int) -> Appointment:
    """Take the owner lock before the row lock, the order merges use too."""
    appointment = await get_appointment(session, appointment_id)
    await lock_key(session, owner_lock_key(appointment.contact_id))
    return await get_appointment(session, appointment_id, for_update=True)


async def update_status(
    session: AsyncSession,
    appointment_id: int,
    new_status: str | AppointmentStatus,
    notifier: Notifier | None = None,
) -> Appointment:
    target = parse_status(new_status)
    appointment = await _lock_for_change(session, appointment_id)
    current = appointment.status
    if not can_transition(current, target):
        raise InvalidTransitionError(f"Cannot move appointment {appointment_id} from {current.value} to {target.value}")
    appointment.status = target
    appointment.updated_at = _utc_naive_now()
    session.add(appointment)
    await session.flush()
    logger.info("Appointment %s: %s -> %s", appointment.id, current.value, target.value)
    event_type = _STATUS_EVENTS.get(target)
    if event_type:
        queue_event(session, notifier, appointment_event(event_type, appointment, previous_status=current.value))
    return appointment


async def reschedule(
    session: AsyncSession,
    appointment_id: int,
    new_date: str | date,
    new_time: str | time,
    notifier: Notifier | None = None,
) -> Appointment:
    """Move a live appointment, re-checking overlap against the new window."""
    d = parse_date(new_date)
    t = parse_time(new_time)
    appointment = await _lock_for_change(session, appointment_id)
    if appointment.status not in RESCHEDULABLE_STATUSES:
        raise InvalidTransitionError(
            f"Appointment {appointment_id} is {appointment.status.value} and can no longer be rescheduled"
        )

    slot: Slot | None = None
    if appointment.provider_id:
        await lock_key(session, slot_lock_key(appointment.provider_id, d, t))
        slot = await find_active_slot(session, appointment.provider_id, d, t)
        if slot is not None:
            slot = await _claim_slot(session, slot, appointment_id=appointment.id)

    await _check_windows(
        session,
        appointment.contact_id,
        appointment.patient_id,
        appointment.provider_id,
        datetime.combine(d, t),
        appointment.duration_minutes,
        exclude_appointment_id=appointment.id,
    )

    previous = (appointment.appointment_date.isoformat(), appointment.appointment_time.strftime("%H:%M"))
    appointment.appointment_date = d
    appointment.appointment_time = t
    appointment.slot_id = slot.id if slot else None
    appointment.updated_at = _utc_naive_now()
    session.add(appointment)
    await session.flush()
    logger.info("Rescheduled appointment %s from %s %s to %s %s", appointment.id, *previous, d, t.strftime("%H:%M"))
    queue_event(
        session,
        notifier,
        appointment_event(APPOINTMENT_RESCHEDULED, appointment, previous_date=previous[0], previous_time=previous[1]),
    )
    return appointment


def _ordered(q):
    # creation order breaks ties between providers booked at the same time
    return q.order_by(Appointment.appointment_date, Appointment.appointment_time, Appointment.id)


async def list_by_date(
    session: AsyncSession, appointment_date: str | date, provider_id: str | None = None
) -> list[Appointment]:
    q = select(Appointment).where(Appointment.appointment_date == parse_date(appointment_date))
    if provider_id:
        q = q.where(Appointment.provider_id == provider_id)
    result = await session.execute(_ordered(q))
    return list(result.scalars().all())


async def list_by_patient(session: AsyncSession, patient_id: int) -> list[Appointment]:
    """Appointments of the patient, including those booked on its contact before registration."""
    patient = await get_patient(session, patient_id)
    result = await session.execute(
        _ordered(
            select(Appointment).where(
                or_(Appointment.patient_id == patient.id, Appointment.contact_id == patient.contact_id)
            )
        )
    )
    return list(result.scalars().all())


async def list_by_contact(session: AsyncSession, contact_id: int) -> list[Appointment]:
    result = await session.execute(_ordered(select(Appointment).where(Appointment.contact_id == contact_id)))
    return list(result.scalars().all())
