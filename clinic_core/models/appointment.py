from datetime import date, datetime, time
from enum import Enum

from sqlmodel import Field, SQLModel

from clinic_core.models.common import _utc_naive_now


class AppointmentStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


TERMINAL_STATUSES = (AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW)
ACTIVE_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED, AppointmentStatus.IN_PROGRESS)


class AppointmentType(str, Enum):
    CONSULTATION = "CONSULTATION"
    FOLLOW_UP = "FOLLOW_UP"
    TELEMEDICINE = "TELEMEDICINE"
    PROCEDURE = "PROCEDURE"
    EXAM = "EXAM"
    EMERGENCY = "EMERGENCY"


class AppointmentSource(str, Enum):
    PUBLIC = "PUBLIC"
    SECRETARY = "SECRETARY"
    DOCTOR = "DOCTOR"
    PHONE = "PHONE"
    WHATSAPP = "WHATSAPP"
    MIGRATION = "MIGRATION"


class Appointment(SQLModel, table=True):
    __tablename__ = "appointments"
    id: int | None = Field(default=None, primary_key=True)
    contact_id: int = Field(foreign_key="contacts.id", index=True)
    patient_id: int | None = Field(default=None, foreign_key="patients.id", index=True)
    provider_id: str | None = Field(default=None, index=True)
    slot_id: int | None = Field(default=None, foreign_key="slots.id", index=True)
    appointment_date: date = Field(index=True)
    appointment_time: time
    duration_minutes: int = 30
    type: AppointmentType
    source: AppointmentSource
    status: AppointmentStatus = Field(default=AppointmentStatus.SCHEDULED, index=True)
    notes: str | None = None
    created_at: datetime = Field(default_factory=_utc_naive_now)
    updated_at: datetime = Field(default_factory=_utc_naive_now)

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.appointment_date, self.appointment_time)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class AppointmentCreate(SQLModel):
    contact_id: int
    patient_id: int | None = None
    provider_id: str | None = None
    slot_id: int | None = None
    date: str
    time: str
    type: str
    source: str
    duration_minutes: int | None = None
    notes: str | None = None


class AppointmentPublic(SQLModel):
    id: int
    contact_id: int
    patient_id: int | None = None
    provider_id: str | None = None
    slot_id: int | None = None
    appointment_date: date
    appointment_time: time
    duration_minutes: int
    type: AppointmentType
    source: AppointmentSource
    status: AppointmentStatus
    notes: str | None = None
    created_at: datetime
