import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_core.api.deps import get_session, notifier_dep, provider_query
from clinic_core.api.schemas.appointment import (
    AgendaEntryPublic,
    BookingResponse,
    RescheduleRequest,
    StatusUpdateRequest,
)
from clinic_core.models.appointment import AppointmentCreate, AppointmentPublic
from clinic_core.models.contact import ContactPublic
from clinic_core.models.duplicate import DuplicateCandidatePublic
from clinic_core.models.patient import PatientPublic
from clinic_core.models.slot import SlotPublic
from clinic_core.services.appointment_service import (
    create_appointment,
    get_appointment,
    list_by_date,
    reschedule,
    update_status,
)
from clinic_core.services.booking_service import BookingRequest, book_appointment, get_agenda
from clinic_core.services.notification_service import Notifier

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/appointments", tags=["appointments"])


@router.post("", response_model=AppointmentPublic, status_code=status.HTTP_201_CREATED)
async def create(
    body: AppointmentCreate,
    session: AsyncSession = Depends(get_session),
    notifier: Notifier = Depends(notifier_dep),
):
    """Create an appointment for an already-resolved contact."""
    return await create_appointment(
        session,
        body.contact_id,
        body.date,
        body.time,
        body.type,
        body.source,
        patient_id=body.patient_id,
        provider_id=body.provider_id,
        slot_id=body.slot_id,
        duration_minutes=body.duration_minutes,
        notes=body.notes,
        notifier=notifier,
    )


@router.post("/book", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def book(
    body: BookingRequest,
    session: AsyncSession = Depends(get_session),
    notifier: Notifier = Depends(notifier_dep),
) -> BookingResponse:
    """Full intake: resolve identity, register patient if documented, take the slot, book."""
    result = await book_appointment(session, body, notifier=notifier)
    if result.duplicate_candidates:
        logger.info(
            "Booking %s created contact %s with %d duplicate candidate(s)",
            result.appointment.id,
            result.contact.id,
            len(result.duplicate_candidates),
        )
    return BookingResponse(
        contact=ContactPublic.model_validate(result.contact),
        patient=PatientPublic.model_validate(result.patient) if result.patient else None,
        appointment=AppointmentPublic.model_validate(result.appointment),
        is_new_contact=result.is_new_contact,
        duplicate_candidates=[DuplicateCandidatePublic.model_validate(c) for c in result.duplicate_candidates],
    )


@router.get("", response_model=list[AppointmentPublic])
async def by_date(
    date_param: str = Query(..., alias="date"),
    provider_id: str | None = Depends(provider_query),
    session: AsyncSession = Depends(get_session),
):
    return await list_by_date(session, date_param, provider_id)


@router.get("/agenda", response_model=list[AgendaEntryPublic])
async def agenda(
    date_param: str = Query(..., alias="date"),
    provider_id: str | None = Depends(provider_query),
    session: AsyncSession = Depends(get_session),
) -> list[AgendaEntryPublic]:
    entries = await get_agenda(session, date_param, provider_id)
    return [
        AgendaEntryPublic(
            start_time=e.start_time,
            slot=SlotPublic.model_validate(e.slot) if e.slot else None,
            appointment=AppointmentPublic.model_validate(e.appointment) if e.appointment else None,
        )
        for e in entries
    ]


@router.get("/{appointment_id}", response_model=AppointmentPublic)
async def read_appointment(appointment_id: int, session: AsyncSession = Depends(get_session)):
    return await get_appointment(session, appointment_id)


@router.patch("/{appointment_id}/status", response_model=AppointmentPublic)
async def change_status(
    appointment_id: int,
    body: StatusUpdateRequest,
    session: AsyncSession = Depends(get_session),
    notifier: Notifier = Depends(notifier_dep),
):
    return await update_status(session, appointment_id, body.status, notifier=notifier)


@router.patch("/{appointment_id}/reschedule", response_model=AppointmentPublic)
async def move(
    appointment_id: int,
    body: RescheduleRequest,
    session: AsyncSession = Depends(get_session),
    notifier: Notifier = Depends(notifier_dep),
):
    return await reschedule(session, appointment_id, body.date, body.time, notifier=notifier)
