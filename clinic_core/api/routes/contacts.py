from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_core.api.deps import get_session
from clinic_core.api.schemas.contact import ResolveContactRequest, ResolveContactResponse
from clinic_core.models.appointment import AppointmentPublic
from clinic_core.models.contact import ContactPublic
from clinic_core.models.duplicate import DuplicateCandidatePublic
from clinic_core.services.appointment_service import list_by_contact
from clinic_core.services.duplicate_service import find_candidates
from clinic_core.services.identity_service import deactivate_contact, get_contact, resolve_contact

router = APIRouter(prefix="/contacts", tags=["contacts"])


@router.post("/resolve", response_model=ResolveContactResponse)
async def resolve(
    body: ResolveContactRequest,
    session: AsyncSession = Depends(get_session),
) -> ResolveContactResponse:
    """Find or create the canonical contact for the given intake fields."""
    result = await resolve_contact(
        session,
        body.name,
        phone=body.phone,
        whatsapp=body.whatsapp,
        email=body.email,
        birth_date=body.birth_date,
        source=body.source,
    )
    return ResolveContactResponse(
        contact=ContactPublic.model_validate(result.contact),
        is_new=result.is_new,
        duplicate_candidates=[DuplicateCandidatePublic.model_validate(c) for c in result.duplicate_candidates],
    )


@router.get("/{contact_id}", response_model=ContactPublic)
async def read_contact(contact_id: int, session: AsyncSession = Depends(get_session)):
    return await get_contact(session, contact_id)


@router.post("/{contact_id}/deactivate", response_model=ContactPublic)
async def deactivate(contact_id: int, session: AsyncSession = Depends(get_session)):
    return await deactivate_contact(session, contact_id)


@router.get("/{contact_id}/candidates", response_model=list[DuplicateCandidatePublic])
async def candidates(contact_id: int, session: AsyncSession = Depends(get_session)):
    contact = await get_contact(session, contact_id)
    return await find_candidates(session, contact)


@router.get("/{contact_id}/appointments", response_model=list[AppointmentPublic])
async def contact_appointments(contact_id: int, session: AsyncSession = Depends(get_session)):
    await get_contact(session, contact_id)
    return await list_by_contact(session, contact_id)
