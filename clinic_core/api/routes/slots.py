from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_core.api.deps import get_session, provider_query
from clinic_core.api.schemas.slot import CreateSlotRequest, GenerateSlotsRequest
from clinic_core.models.slot import SlotPublic
from clinic_core.services.slot_service import (
    create_slot,
    delete_slot,
    generate_slots_for_day,
    list_available_slots,
    list_slots,
    toggle_slot,
)

router = APIRouter(prefix="/slots", tags=["slots"])


@router.post("", response_model=SlotPublic, status_code=status.HTTP_201_CREATED)
async def create(body: CreateSlotRequest, session: AsyncSession = Depends(get_session)):
    return await create_slot(session, body.provider_id, body.date, body.time, body.duration_minutes)


@router.post("/generate", response_model=list[SlotPublic], status_code=status.HTTP_201_CREATED)
async def generate(body: GenerateSlotsRequest, session: AsyncSession = Depends(get_session)):
    """Open every business-hours slot of the day that does not exist yet."""
    return await generate_slots_for_day(session, body.provider_id, body.date)


@router.get("", response_model=list[SlotPublic])
async def list_all(
    provider_id: str | None = Depends(provider_query),
    date_from: str | None = Query(None),
    date_to: str | None = Query(None),
    session: AsyncSession = Depends(get_session),
):
    return await list_slots(session, provider_id, date_from, date_to)


@router.get("/available", response_model=list[SlotPublic])
async def available(
    provider_id: str = Query(...),
    date_param: str = Query(..., alias="date"),
    session: AsyncSession = Depends(get_session),
):
    """Bookable slots for the public scheduling form."""
    return await list_available_slots(session, provider_id, date_param)


@router.patch("/{slot_id}/toggle", response_model=SlotPublic)
async def toggle(slot_id: int, session: AsyncSession = Depends(get_session)):
    return await toggle_slot(session, slot_id)


@router.delete("/{slot_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete(slot_id: int, session: AsyncSession = Depends(get_session)) -> None:
    await delete_slot(session, slot_id)
