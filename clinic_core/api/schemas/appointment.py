from datetime import time

from pydantic import BaseModel

from clinic_core.models.appointment import AppointmentPublic
from clinic_core.models.contact import ContactPublic
from clinic_core.models.duplicate import DuplicateCandidatePublic
from clinic_core.models.patient import PatientPublic
from clinic_core.models.slot import SlotPublic


class StatusUpdateRequest(BaseModel):
    status: str


class RescheduleRequest(BaseModel):
    date: str  # YYYY-MM-DD
    time: str  # HH:MM


class BookingResponse(BaseModel):
    contact: ContactPublic
    patient: PatientPublic | None = None
    appointment: AppointmentPublic
    is_new_contact: bool
    duplicate_candidates: list[DuplicateCandidatePublic]


class AgendaEntryPublic(BaseModel):
    start_time: time
    slot: SlotPublic | None = None
    appointment: AppointmentPublic | None = None
