from clinic_core.models.common import EntityStatus
from clinic_core.models.contact import Contact, ContactData, ContactPublic
from clinic_core.models.patient import Patient, PatientCreate, PatientPublic
from clinic_core.models.slot import Slot, SlotPublic
from clinic_core.models.schedule_block import (
    BlockRecurrence,
    BlockType,
    ScheduleBlock,
    ScheduleBlockCreate,
    ScheduleBlockPublic,
)
from clinic_core.models.appointment import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    Appointment,
    AppointmentCreate,
    AppointmentPublic,
    AppointmentSource,
    AppointmentStatus,
    AppointmentType,
)
from clinic_core.models.duplicate import (
    CandidateStatus,
    DuplicateCandidate,
    DuplicateCandidatePublic,
    DuplicateSeverity,
)

__all__ = [
    "EntityStatus",
    "Contact",
    "ContactData",
    "ContactPublic",
    "Patient",
    "PatientCreate",
    "PatientPublic",
    "Slot",
    "SlotPublic",
    "BlockRecurrence",
    "BlockType",
    "ScheduleBlock",
    "ScheduleBlockCreate",
    "ScheduleBlockPublic",
    "Appointment",
    "AppointmentCreate",
    "AppointmentPublic",
    "AppointmentSource",
    "AppointmentStatus",
    "AppointmentType",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "CandidateStatus",
    "DuplicateCandidate",
    "DuplicateCandidatePublic",
    "DuplicateSeverity",
]
