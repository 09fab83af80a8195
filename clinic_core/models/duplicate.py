from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from clinic_core.models.common import _utc_naive_now


class DuplicateSeverity(str, Enum):
    LIKELY = "LIKELY"  # review required
    POSSIBLE = "POSSIBLE"  # informational


class CandidateStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED_MERGE = "CONFIRMED_MERGE"
    CONFIRMED_DISTINCT = "CONFIRMED_DISTINCT"


class DuplicateCandidate(SQLModel, table=True):
    __tablename__ = "duplicate_candidates"
    __table_args__ = (UniqueConstraint("contact_a_id", "contact_b_id", name="uq_duplicate_pair"),)
    id: int | None = Field(default=None, primary_key=True)
    # stored with contact_a_id < contact_b_id so a pair has one row
    contact_a_id: int = Field(foreign_key="contacts.id", index=True)
    contact_b_id: int = Field(foreign_key="contacts.id", index=True)
    score: float
    matched_fields: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    severity: DuplicateSeverity
    status: CandidateStatus = Field(default=CandidateStatus.PENDING, index=True)
    created_at: datetime = Field(default_factory=_utc_naive_now)
    resolved_at: datetime | None = None


class DuplicateCandidatePublic(SQLModel):
    id: int
    contact_a_id: int
    contact_b_id: int
    score: float
    matched_fields: list[str]
    severity: DuplicateSeverity
    status: CandidateStatus
    created_at: datetime
    resolved_at: datetime | None = None
