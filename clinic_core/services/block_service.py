"""Provider schedule blocks: vacations, conferences and other time off.

Blocks keep slots from being offered or booked. They never cancel
appointments that already exist in the blocked range.
"""
import calendar
import logging
from datetime import date, datetime, time, timedelta

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_core.core.db import lock_key
from clinic_core.core.errors import BlockConflictError, NotFoundError, ValidationError
from clinic_core.models.common import EntityStatus, _utc_naive_now
from clinic_core.models.schedule_block import (
    BlockRecurrence,
    BlockType,
    ScheduleBlock,
    ScheduleBlockCreate,
)
from clinic_core.services.normalization import collapse_whitespace, parse_date, parse_enum, parse_time

logger = logging.getLogger(__name__)

Window = tuple[datetime, datetime]


def _add_months(d: date, months: int) -> date:
    month_index = d.month - 1 + months
    year, month = d.year + month_index // 12, month_index % 12 + 1
    return date(year, month, min(d.day, calendar.monthrange(year, month)[1]))


def _latest_occurrence(block: ScheduleBlock, d: date) -> date | None:
    """Start of the last occurrence of ``block`` beginning on or before ``d``."""
    if block.recurrence is None:
        return block.start_date if block.start_date <= d else None
    limit = d
    if block.recurrence_end_date is not None and block.recurrence_end_date < limit:
        limit = block.recurrence_end_date
    if limit < block.start_date:
        return None
    if block.recurrence == BlockRecurrence.DAILY:
        return limit
    if block.recurrence == BlockRecurrence.WEEKLY:
        return block.start_date + timedelta(days=7 * ((limit - block.start_date).days // 7))
    step = 1 if block.recurrence == BlockRecurrence.MONTHLY else 12
    months = (limit.year - block.start_date.year) * 12 + limit.month - block.start_date.month
    k = months // step
    occurrence = _add_months(block.start_date, k * step)
    if occurrence > limit:
        occurrence = _add_months(block.start_date, (k - 1) * step)
    return occurrence


def covers_date(block: ScheduleBlock, d: date) -> bool:
    occurrence = _latest_occurrence(block, d)
    if occurrence is None:
        return False
    return d <= occurrence + (block.end_date - block.start_date)


def block_window(block: ScheduleBlock, d: date) -> Window | None:
    """The part of day ``d`` that ``block`` takes, if any."""
    if not covers_date(block, d):
        return None
    if block.is_all_day:
        start = datetime.combine(d, time.min)
        return start, start + timedelta(days=1)
    return datetime.combine(d, block.start_time), datetime.combine(d, block.end_time)


def _days(first: date, last: date):
    d = first
    while d <= last:
        yield d
        d += timedelta(days=1)


async def _active_blocks(session: AsyncSession, provider_id: str, first: date, last: date) -> list[ScheduleBlock]:
    result = await session.execute(
        select(ScheduleBlock)
        .where(
            ScheduleBlock.provider_id == provider_id,
            ScheduleBlock.status == EntityStatus.ACTIVE,
            ScheduleBlock.start_date <= last,
            or_(ScheduleBlock.end_date >= first, ScheduleBlock.recurrence.is_not(None)),
        )
        .order_by(ScheduleBlock.start_date, ScheduleBlock.id)
    )
    return list(result.scalars().all())


async def find_blocks(
    session: AsyncSession, provider_id: str, start: datetime, duration_minutes: int
) -> list[ScheduleBlock]:
    """Active blocks of the provider intersecting ``[start, start + duration)``."""
    end = start + timedelta(minutes=duration_minutes)
    last_day = (end - timedelta(microseconds=1)).date()
    blocks = await _active_blocks(session, provider_id, start.date(), last_day)
    found: list[ScheduleBlock] = []
    for block in blocks:
        for d in _days(start.date(), last_day):
            window = block_window(block, d)
            if window is not None and window[0] < end and start < window[1]:
                found.append(block)
                break
    return found


async def blocked_windows(session: AsyncSession, provider_id: str, d: date) -> list[Window]:
    windows = []
    for block in await _active_blocks(session, provider_id, d, d):
        window = block_window(block, d)
        if window is not None:
            windows.append(window)
    return windows


def _validated(data: ScheduleBlockCreate) -> ScheduleBlock:
    provider = (data.provider_id or "").strip()
    if not provider:
        raise ValidationError("provider_id is required")
    title = collapse_whitespace(data.title)
    if not title:
        raise ValidationError("Block title is required")
    start_date = parse_date(data.start_date)
    end_date = parse_date(data.end_date) if data.end_date else start_date
    if end_date < start_date:
        raise ValidationError("Block end_date is before start_date")

    start_time = end_time = None
    if data.start_time or data.end_time:
        if not (data.start_time and data.end_time):
            raise ValidationError("start_time and end_time go together; omit both for an all-day block")
        start_time, end_time = parse_time(data.start_time), parse_time(data.end_time)
        if start_time >= end_time:
            raise ValidationError("Block start_time must be before end_time")

    recurrence = parse_enum(BlockRecurrence, data.recurrence, "recurrence") if data.recurrence else None
    recurrence_end_date = None
    if recurrence is not None:
        if not data.recurrence_end_date:
            raise ValidationError("Recurring blocks need a recurrence_end_date")
        recurrence_end_date = parse_date(data.recurrence_end_date)
        if recurrence_end_date < start_date:
            raise ValidationError("recurrence_end_date is before start_date")

    return ScheduleBlock(
        provider_id=provider,
        title=title,
        description=data.description,
        block_type=parse_enum(BlockType, data.block_type, "block type"),
        start_date=start_date,
        end_date=end_date,
        start_time=start_time,
        end_time=end_time,
        recurrence=recurrence,
        recurrence_end_date=recurrence_end_date,
    )


async def create_block(session: AsyncSession, data: ScheduleBlockCreate) -> ScheduleBlock:
    """Block time for a provider.

    A block whose first occurrence overlaps an existing one is refused,
    except emergency blocks which may stack on anything.
    """
    block = _validated(data)
    await lock_key(session, f"blocks:{block.provider_id}")
    if block.block_type != BlockType.EMERGENCY:
        existing = await _active_blocks(session, block.provider_id, block.start_date, block.end_date)
        clashes = []
        for other in existing:
            for d in _days(block.start_date, block.end_date):
                mine, theirs = block_window(block, d), block_window(other, d)
                if mine and theirs and mine[0] < theirs[1] and theirs[0] < mine[1]:
                    clashes.append(other)
                    break
        if clashes:
            titles = ", ".join(b.title for b in clashes)
            raise BlockConflictError(f"Overlaps existing block(s): {titles}")
    session.add(block)
    await session.flush()
    await session.refresh(block)
    logger.info(
        "Blocked %s for %s from %s to %s (%s)",
        block.provider_id,
        block.title,
        block.start_date,
        block.end_date,
        block.recurrence.value if block.recurrence else "once",
    )
    return block


async def get_block(session: AsyncSession, block_id: int) -> ScheduleBlock:
    block = await session.get(ScheduleBlock, block_id)
    if block is None or block.status != EntityStatus.ACTIVE:
        raise NotFoundError(f"Schedule block {block_id} not found")
    return block


async def list_blocks(
    session: AsyncSession,
    provider_id: str | None = None,
    date_from: str | date | None = None,
    date_to: str | date | None = None,
) -> list[ScheduleBlock]:
    q = select(ScheduleBlock).where(ScheduleBlock.status == EntityStatus.ACTIVE)
    if provider_id:
        q = q.where(ScheduleBlock.provider_id == provider_id)
    if date_from is not None:
        first = parse_date(date_from)
        q = q.where(or_(ScheduleBlock.end_date >= first, ScheduleBlock.recurrence_end_date >= first))
    if date_to is not None:
        q = q.where(ScheduleBlock.start_date <= parse_date(date_to))
    result = await session.execute(q.order_by(ScheduleBlock.start_date, ScheduleBlock.id))
    return list(result.scalars().all())


async def remove_block(session: AsyncSession, block_id: int) -> None:
    block = await get_block(session, block_id)
    block.status = EntityStatus.INACTIVE
    block.updated_at = _utc_naive_now()
    session.add(block)
    await session.flush()
    logger.info("Removed schedule block %s", block_id)
