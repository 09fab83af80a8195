from datetime import datetime

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from clinic_core.models.common import EntityStatus, _utc_naive_now


class ContactBase(SQLModel):
    name: str
    phone: str | None = Field(default=None, index=True)
    whatsapp: str | None = Field(default=None, index=True)
    email: str | None = Field(default=None, index=True)
    birth_date: str | None = Field(default=None, index=True)  # ISO when parseable, else as reported


class Contact(ContactBase, table=True):
    __tablename__ = "contacts"
    id: int | None = Field(default=None, primary_key=True)
    # accent-free tokens of name, used to find duplicate candidates
    name_key: str = Field(default="", index=True)
    registration_sources: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    status: EntityStatus = Field(default=EntityStatus.ACTIVE, index=True)
    # set when staff folded this contact into another one
    merged_into_id: int | None = Field(default=None, foreign_key="contacts.id", index=True)
    created_at: datetime = Field(default_factory=_utc_naive_now)
    updated_at: datetime = Field(default_factory=_utc_naive_now)


class ContactData(SQLModel):
    """Normalized identity value used for merging and duplicate scoring.

    All channel fields are optional; ``document_number`` is only known once the
    contact has a patient record.
    """

    name: str = ""
    phone: str | None = None
    whatsapp: str | None = None
    email: str | None = None
    birth_date: str | None = None
    document_number: str | None = None
    registration_sources: list[str] = Field(default_factory=list)


class ContactPublic(ContactBase):
    id: int
    registration_sources: list[str]
    status: EntityStatus
    merged_into_id: int | None = None
    created_at: datetime
    updated_at: datetime
