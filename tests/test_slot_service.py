import asyncio
from datetime import date, time

import pytest

from clinic_core.core.errors import ConflictError, NotFoundError, SlotExistsError, SlotOccupiedError, ValidationError
from clinic_core.models.schedule_block import ScheduleBlockCreate
from clinic_core.services.appointment_service import create_appointment, update_status
from clinic_core.services.block_service import create_block
from clinic_core.services.identity_service import resolve_contact
from clinic_core.services.slot_service import (
    create_slot,
    delete_slot,
    generate_slots_for_day,
    get_slot,
    list_available_slots,
    list_slots,
    toggle_slot,
)


@pytest.mark.asyncio
async def test_create_slot_twice_conflicts(session):
    slot = await create_slot(session, "p1", "2024-01-15", "09:00")
    assert slot.slot_date == date(2024, 1, 15)
    assert slot.slot_time == time(9, 0)
    assert slot.is_available is True
    with pytest.raises(SlotExistsError) as exc:
        await create_slot(session, "p1", "2024-01-15", "09:00")
    assert isinstance(exc.value, ConflictError)
    # other providers and times are independent
    await create_slot(session, "p2", "2024-01-15", "09:00")
    await create_slot(session, "p1", "2024-01-15", "09:30")


@pytest.mark.asyncio
async def test_create_slot_validates_input(session):
    with pytest.raises(ValidationError):
        await create_slot(session, " ", "2024-01-15", "09:00")
    with pytest.raises(ValidationError):
        await create_slot(session, "p1", "2024-13-01", "09:00")


@pytest.mark.asyncio
async def test_generate_slots_skips_existing(session):
    await create_slot(session, "p1", "2024-01-15", "10:00")
    created = await generate_slots_for_day(session, "p1", "2024-01-15")
    # 08:00-18:00 in 30 minute steps, minus the one already there
    assert len(created) == 19
    assert time(10, 0) not in {s.slot_time for s in created}
    assert await generate_slots_for_day(session, "p1", "2024-01-15") == []
    assert len(await list_slots(session, "p1", "2024-01-15", "2024-01-15")) == 20


@pytest.mark.asyncio
async def test_toggle_hides_slot_from_availability(session):
    slot = await create_slot(session, "p1", "2024-01-15", "09:00")
    await create_slot(session, "p1", "2024-01-15", "09:30")
    toggled = await toggle_slot(session, slot.id)
    assert toggled.is_available is False
    available = await list_available_slots(session, "p1", "2024-01-15")
    assert [s.slot_time for s in available] == [time(9, 30)]
    await toggle_slot(session, slot.id)
    assert len(await list_available_slots(session, "p1", "2024-01-15")) == 2


@pytest.mark.asyncio
async def test_booked_slot_is_unavailable_until_cancelled(session):
    contact = (await resolve_contact(session, "Ana Silva", whatsapp="11987654321")).contact
    slot = await create_slot(session, "p1", "2024-01-15", "09:00")
    appointment = await create_appointment(
        session, contact.id, "2024-01-15", "09:00", "CONSULTATION", "secretary", provider_id="p1"
    )
    assert appointment.slot_id == slot.id
    assert await list_available_slots(session, "p1", "2024-01-15") == []

    with pytest.raises(SlotOccupiedError):
        await delete_slot(session, slot.id)

    await update_status(session, appointment.id, "CANCELLED")
    assert [s.id for s in await list_available_slots(session, "p1", "2024-01-15")] == [slot.id]


@pytest.mark.asyncio
async def test_delete_is_soft_and_frees_the_key(session):
    slot = await create_slot(session, "p1", "2024-01-15", "09:00")
    await delete_slot(session, slot.id)
    with pytest.raises(NotFoundError):
        await get_slot(session, slot.id)
    assert await list_slots(session, "p1") == []
    # a deleted slot's time can be opened again
    reopened = await create_slot(session, "p1", "2024-01-15", "09:00")
    assert reopened.id != slot.id


@pytest.mark.asyncio
async def test_concurrent_create_slot_conflicts_once(session_factory):
    async def open_slot():
        async with session_factory() as s:
            try:
                slot = await create_slot(s, "p1", "2024-01-15", "09:00")
                await s.commit()
                return slot
            except SlotExistsError as e:
                await s.rollback()
                return e

    results = await asyncio.gather(open_slot(), open_slot())
    assert sum(isinstance(r, SlotExistsError) for r in results) == 1
    assert sum(not isinstance(r, Exception) for r in results) == 1

    async with session_factory() as check:
        assert len(await list_slots(check, "p1")) == 1


@pytest.mark.asyncio
async def test_blocks_shape_generation_and_availability(session):
    await create_slot(session, "p1", "2024-01-16", "12:00")
    await create_block(
        session,
        ScheduleBlockCreate(provider_id="p1", title="Lunch", start_date="2024-01-15", start_time="12:00",
                            end_time="13:00", recurrence="daily", recurrence_end_date="2024-01-31"),
    )
    created = await generate_slots_for_day(session, "p1", "2024-01-15")
    times = {s.slot_time for s in created}
    assert len(created) == 18
    assert time(12, 0) not in times and time(12, 30) not in times
    assert time(13, 0) in times

    # slots opened before the block stay listed but are not offered
    available = await list_available_slots(session, "p1", "2024-01-16")
    assert available == []
    assert len(await list_slots(session, "p1", "2024-01-16", "2024-01-16")) == 1
