import logging
from datetime import date, datetime, time, timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_core.core.config import settings
from clinic_core.core.db import lock_key
from clinic_core.core.errors import NotFoundError, SlotExistsError, SlotOccupiedError, ValidationError
from clinic_core.models.appointment import ACTIVE_STATUSES, Appointment
from clinic_core.models.common import EntityStatus, _utc_naive_now
from clinic_core.models.slot import Slot
from clinic_core.services.block_service import blocked_windows
from clinic_core.services.normalization import parse_date, parse_time

logger = logging.getLogger(__name__)


def slot_lock_key(provider_id: str, d: date, t: time) -> str:
    return f"slot:{provider_id}:{d.isoformat()}:{t.strftime('%H:%M')}"


def _require_provider(provider_id: str | None) -> str:
    provider = (provider_id or "").strip()
    if not provider:
        raise ValidationError("provider_id is required")
    return provider


def _slot_times_for_date(d: date) -> list[time]:
    """Slot start times for the given date over business hours."""
    times: list[time] = []
    current = datetime(d.year, d.month, d.day, settings.business_start_hour, 0, 0)
    end = datetime(d.year, d.month, d.day, settings.business_end_hour, 0, 0)
    delta = timedelta(minutes=settings.slot_duration_minutes)
    while current < end:
        times.append(current.time())
        current += delta
    return times


async def get_slot(session: AsyncSession, slot_id: int) -> Slot:
    slot = await session.get(Slot, slot_id)
    if slot is None or slot.status != EntityStatus.ACTIVE:
        raise NotFoundError(f"Slot {slot_id} not found")
    return slot


async def find_active_slot(session: AsyncSession, provider_id: str, d: date, t: time) -> Slot | None:
    result = await session.execute(
        select(Slot).where(
            Slot.provider_id == provider_id,
            Slot.slot_date == d,
            Slot.slot_time == t,
            Slot.status == EntityStatus.ACTIVE,
        )
    )
    return result.scalar_one_or_none()


async def get_occupying_appointment(
    session: AsyncSession, slot_id: int, exclude_appointment_id: int | None = None
) -> Appointment | None:
    q = select(Appointment).where(
        Appointment.slot_id == slot_id,
        Appointment.status.in_(ACTIVE_STATUSES),
    )
    if exclude_appointment_id is not None:
        q = q.where(Appointment.id != exclude_appointment_id)
    result = await session.execute(q.limit(1))
    return result.scalar_one_or_none()


async def create_slot(
    session: AsyncSession,
    provider_id: str,
    slot_date: str | date,
    slot_time: str | time,
    duration_minutes: int | None = None,
) -> Slot:
    provider = _require_provider(provider_id)
    d = parse_date(slot_date)
    t = parse_time(slot_time)
    await lock_key(session, slot_lock_key(provider, d, t))
    if await find_active_slot(session, provider, d, t) is not None:
        raise SlotExistsError(f"A slot already exists for {provider} on {d.isoformat()} at {t.strftime('%H:%M')}")
    slot = Slot(
        provider_id=provider,
        slot_date=d,
        slot_time=t,
        duration_minutes=duration_minutes or settings.slot_duration_minutes,
    )
    try:
        async with session.begin_nested():
            session.add(slot)
            await session.flush()
    except IntegrityError as e:
        # unique index caught a writer that bypassed the lock
        raise SlotExistsError(
            f"A slot already exists for {provider} on {d.isoformat()} at {t.strftime('%H:%M')}"
        ) from e
    await session.refresh(slot)
    logger.info("Created slot %s for %s at %s %s", slot.id, provider, d, t.strftime("%H:%M"))
    return slot


async def generate_slots_for_day(session: AsyncSession, provider_id: str, slot_date: str | date) -> list[Slot]:
    """Create every business-hours slot for the day that does not exist yet and is not blocked."""
    provider = _require_provider(provider_id)
    d = parse_date(slot_date)
    blocked = await blocked_windows(session, provider, d)
    created: list[Slot] = []
    skipped = 0
    for t in _slot_times_for_date(d):
        if not _window_clear(datetime.combine(d, t), settings.slot_duration_minutes, blocked):
            skipped += 1
            continue
        await lock_key(session, slot_lock_key(provider, d, t))
        if await find_active_slot(session, provider, d, t) is not None:
            continue
        slot = Slot(provider_id=provider, slot_date=d, slot_time=t, duration_minutes=settings.slot_duration_minutes)
        session.add(slot)
        created.append(slot)
    await session.flush()
    logger.info("Generated %d slot(s) for %s on %s (%d blocked)", len(created), provider, d, skipped)
    return created


async def toggle_slot(session: AsyncSession, slot_id: int) -> Slot:
    slot = await get_slot(session, slot_id)
    slot.is_available = not slot.is_available
    slot.updated_at = _utc_naive_now()
    session.add(slot)
    await session.flush()
    logger.info("Slot %s availability -> %s", slot.id, slot.is_available)
    return slot


async def delete_slot(session: AsyncSession, slot_id: int) -> None:
    """Remove an unbooked slot. The row is kept as INACTIVE so history stays intact."""
    slot = await get_slot(session, slot_id)
    await lock_key(session, slot_lock_key(slot.provider_id, slot.slot_date, slot.slot_time))
    occupant = await get_occupying_appointment(session, slot.id)
    if occupant is not None:
        raise SlotOccupiedError(f"Slot {slot_id} is booked by appointment {occupant.id}")
    slot.status = EntityStatus.INACTIVE
    slot.updated_at = _utc_naive_now()
    session.add(slot)
    await session.flush()
    logger.info("Removed slot %s", slot_id)


async def list_slots(
    session: AsyncSession,
    provider_id: str | None = None,
    date_from: str | date | None = None,
    date_to: str | date | None = None,
) -> list[Slot]:
    q = select(Slot).where(Slot.status == EntityStatus.ACTIVE)
    if provider_id:
        q = q.where(Slot.provider_id == provider_id)
    if date_from is not None:
        q = q.where(Slot.slot_date >= parse_date(date_from))
    if date_to is not None:
        q = q.where(Slot.slot_date <= parse_date(date_to))
    q = q.order_by(Slot.slot_date, Slot.slot_time, Slot.id)
    result = await session.execute(q)
    return list(result.scalars().all())


def _window_clear(start: datetime, minutes: int, busy: list[tuple[datetime, datetime]]) -> bool:
    end = start + timedelta(minutes=minutes)
    return all(not (b_start < end and start < b_end) for b_start, b_end in busy)


async def _provider_busy(session: AsyncSession, provider_id: str, d: date) -> list[tuple[datetime, datetime]]:
    """Blocked time plus windows of live appointments, for one provider and day."""
    busy = await blocked_windows(session, provider_id, d)
    result = await session.execute(
        select(Appointment).where(
            Appointment.provider_id == provider_id,
            Appointment.status.in_(ACTIVE_STATUSES),
            Appointment.appointment_date >= d - timedelta(days=1),
            Appointment.appointment_date <= d,
        )
    )
    for appointment in result.scalars().all():
        busy.append((appointment.starts_at, appointment.starts_at + timedelta(minutes=appointment.duration_minutes)))
    return busy


async def list_available_slots(session: AsyncSession, provider_id: str, slot_date: str | date) -> list[Slot]:
    """Active, staff-enabled slots on the date whose window is free of bookings and blocks."""
    d = parse_date(slot_date)
    booked = select(Appointment.slot_id).where(
        Appointment.slot_id.is_not(None), Appointment.status.in_(ACTIVE_STATUSES)
    )
    result = await session.execute(
        select(Slot)
        .where(
            Slot.provider_id == provider_id,
            Slot.slot_date == d,
            Slot.status == EntityStatus.ACTIVE,
            Slot.is_available == True,  # noqa: E712
            Slot.id.not_in(booked),
        )
        .order_by(Slot.slot_time)
    )
    busy = await _provider_busy(session, provider_id, d)
    return [
        s
        for s in result.scalars().all()
        if _window_clear(datetime.combine(s.slot_date, s.slot_time), s.duration_minutes, busy)
    ]
