from datetime import date, datetime, time
from enum import Enum

from sqlmodel import Field, SQLModel

from clinic_core.models.common import EntityStatus, _utc_naive_now


class BlockType(str, Enum):
    VACATION = "VACATION"
    CONFERENCE = "CONFERENCE"
    EMERGENCY = "EMERGENCY"
    PERSONAL = "PERSONAL"
    MAINTENANCE = "MAINTENANCE"
    OTHER = "OTHER"


class BlockRecurrence(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class ScheduleBlock(SQLModel, table=True):
    """Time a provider is unavailable, independent of slots.

    ``start_date``..``end_date`` is inclusive. Without times the whole day is
    blocked, otherwise only ``start_time``..``end_time`` on each day. A
    recurring block repeats that span until ``recurrence_end_date``.
    """

    __tablename__ = "schedule_blocks"
    id: int | None = Field(default=None, primary_key=True)
    provider_id: str = Field(index=True)
    title: str
    description: str | None = None
    block_type: BlockType = BlockType.OTHER
    start_date: date = Field(index=True)
    end_date: date
    start_time: time | None = None
    end_time: time | None = None
    recurrence: BlockRecurrence | None = None
    recurrence_end_date: date | None = None
    status: EntityStatus = Field(default=EntityStatus.ACTIVE, index=True)
    created_at: datetime = Field(default_factory=_utc_naive_now)
    updated_at: datetime = Field(default_factory=_utc_naive_now)

    @property
    def is_all_day(self) -> bool:
        return self.start_time is None


class ScheduleBlockCreate(SQLModel):
    provider_id: str
    title: str
    description: str | None = None
    block_type: str = "OTHER"
    start_date: str  # YYYY-MM-DD
    end_date: str | None = None  # defaults to start_date
    start_time: str | None = None  # HH:MM, omitted for all-day blocks
    end_time: str | None = None
    recurrence: str | None = None
    recurrence_end_date: str | None = None


class ScheduleBlockPublic(SQLModel):
    id: int
    provider_id: str
    title: str
    description: str | None = None
    block_type: BlockType
    start_date: date
    end_date: date
    start_time: time | None = None
    end_time: time | None = None
    recurrence: BlockRecurrence | None = None
    recurrence_end_date: date | None = None
    status: EntityStatus
    created_at: datetime
