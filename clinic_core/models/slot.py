from datetime import date, datetime, time

from sqlalchemy import Index, text
from sqlmodel import Field, SQLModel

from clinic_core.models.common import EntityStatus, _utc_naive_now


class Slot(SQLModel, table=True):
    __tablename__ = "slots"
    __table_args__ = (
        Index(
            "uq_slots_active_key",
            "provider_id",
            "slot_date",
            "slot_time",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
    )
    id: int | None = Field(default=None, primary_key=True)
    provider_id: str = Field(index=True)
    slot_date: date = Field(index=True)
    slot_time: time
    duration_minutes: int = 30
    # staff toggle, independent of whether an appointment occupies the slot
    is_available: bool = True
    status: EntityStatus = Field(default=EntityStatus.ACTIVE, index=True)
    created_at: datetime = Field(default_factory=_utc_naive_now)
    updated_at: datetime = Field(default_factory=_utc_naive_now)


class SlotPublic(SQLModel):
    id: int
    provider_id: str
    slot_date: date
    slot_time: time
    duration_minutes: int
    is_available: bool
    status: EntityStatus
