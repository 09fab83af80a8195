from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_core.api.deps import get_session
from clinic_core.api.schemas.contact import MergeRequest
from clinic_core.models.contact import ContactPublic
from clinic_core.models.duplicate import CandidateStatus, DuplicateCandidatePublic
from clinic_core.services.duplicate_service import list_candidates
from clinic_core.services.merge_service import confirm_distinct, confirm_merge

router = APIRouter(prefix="/duplicates", tags=["duplicates"])


@router.get("", response_model=list[DuplicateCandidatePublic])
async def list_all(
    status_param: CandidateStatus | None = Query(CandidateStatus.PENDING, alias="status"),
    session: AsyncSession = Depends(get_session),
):
    return await list_candidates(session, status_param)


@router.post("/merge", response_model=ContactPublic)
async def merge(body: MergeRequest, session: AsyncSession = Depends(get_session)):
    """Staff confirmation that two contacts are the same person."""
    return await confirm_merge(session, body.keep_contact_id, body.merge_contact_id)


@router.post("/{candidate_id}/distinct", response_model=DuplicateCandidatePublic)
async def distinct(candidate_id: int, session: AsyncSession = Depends(get_session)):
    return await confirm_distinct(session, candidate_id)
