from datetime import datetime

from sqlalchemy import Index, text
from sqlmodel import Field, SQLModel

from clinic_core.models.common import EntityStatus, _utc_naive_now


class Patient(SQLModel, table=True):
    __tablename__ = "patients"
    __table_args__ = (
        # at most one active patient per document number
        Index(
            "uq_patients_active_document",
            "document_number",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
    )
    id: int | None = Field(default=None, primary_key=True)
    contact_id: int = Field(foreign_key="contacts.id", unique=True, index=True)
    document_number: str = Field(index=True)
    medical_record_number: int = Field(unique=True, index=True)
    full_name: str
    insurance_type: str = "PARTICULAR"
    status: EntityStatus = Field(default=EntityStatus.ACTIVE, index=True)
    created_at: datetime = Field(default_factory=_utc_naive_now)
    updated_at: datetime = Field(default_factory=_utc_naive_now)


class PatientCreate(SQLModel):
    contact_id: int
    document_number: str
    full_name: str | None = None
    insurance_type: str | None = None


class PatientPublic(SQLModel):
    id: int
    contact_id: int
    document_number: str
    medical_record_number: int
    full_name: str
    insurance_type: str
    status: EntityStatus
    created_at: datetime
