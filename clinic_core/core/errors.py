"""Error taxonomy surfaced by the scheduling core.

Every error carries a stable ``code`` so the HTTP layer can tell apart
conflicts that look alike to a user ("this time is taken" versus "you
already have an appointment at this time").
"""


class SchedulingError(Exception):
    code = "scheduling_error"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ValidationError(SchedulingError):
    code = "validation_error"


class NotFoundError(SchedulingError):
    code = "not_found"


class InvalidTransitionError(SchedulingError):
    code = "invalid_transition"


class ConflictError(SchedulingError):
    code = "conflict"


class SlotExistsError(ConflictError):
    code = "slot_exists"


class SlotUnavailableError(ConflictError):
    code = "slot_unavailable"


class SlotOccupiedError(ConflictError):
    code = "slot_occupied"


class AppointmentOverlapError(ConflictError):
    code = "appointment_overlap"


class DocumentConflictError(ConflictError):
    code = "document_conflict"


class TimeBlockedError(ConflictError):
    code = "time_blocked"


class BlockConflictError(ConflictError):
    code = "block_conflict"
