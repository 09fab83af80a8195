from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_core.api.deps import get_session, provider_query
from clinic_core.api.schemas.schedule_block import BlockCheckResponse
from clinic_core.core.config import settings
from clinic_core.models.schedule_block import ScheduleBlockCreate, ScheduleBlockPublic
from clinic_core.services.block_service import create_block, find_blocks, list_blocks, remove_block
from clinic_core.services.normalization import parse_date, parse_time

router = APIRouter(prefix="/schedule-blocks", tags=["schedule-blocks"])


@router.post("", response_model=ScheduleBlockPublic, status_code=status.HTTP_201_CREATED)
async def create(body: ScheduleBlockCreate, session: AsyncSession = Depends(get_session)):
    return await create_block(session, body)


@router.get("", response_model=list[ScheduleBlockPublic])
async def list_all(
    provider_id: str | None = Depends(provider_query),
    date_from: str | None = Query(None),
    date_to: str | None = Query(None),
    session: AsyncSession = Depends(get_session),
):
    return await list_blocks(session, provider_id, date_from, date_to)


@router.get("/check", response_model=BlockCheckResponse)
async def check(
    provider_id: str = Query(...),
    date_param: str = Query(..., alias="date"),
    time_param: str = Query(..., alias="time"),
    duration_minutes: int | None = Query(None, gt=0),
    session: AsyncSession = Depends(get_session),
) -> BlockCheckResponse:
    """Whether the provider has blocked any part of the given window."""
    start = datetime.combine(parse_date(date_param), parse_time(time_param))
    blocks = await find_blocks(
        session, provider_id, start, duration_minutes or settings.default_appointment_duration_minutes
    )
    return BlockCheckResponse(
        blocked=bool(blocks),
        reasons=[f"{b.block_type.value}: {b.title}" for b in blocks],
        blocks=[ScheduleBlockPublic.model_validate(b) for b in blocks],
    )


@router.delete("/{block_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete(block_id: int, session: AsyncSession = Depends(get_session)) -> None:
    await remove_block(session, block_id)
