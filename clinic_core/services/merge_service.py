"""Staff-confirmed resolution of duplicate candidates.

Nothing in the booking path calls into this module; it exists for the
review screen that consumes DuplicateCandidate rows.
"""
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_core.core.db import lock_key
from clinic_core.core.errors import (
    AppointmentOverlapError,
    DocumentConflictError,
    NotFoundError,
    ValidationError,
)
from clinic_core.models.appointment import ACTIVE_STATUSES, Appointment
from clinic_core.models.common import EntityStatus, _utc_naive_now
from clinic_core.models.contact import Contact
from clinic_core.models.duplicate import CandidateStatus, DuplicateCandidate
from clinic_core.models.patient import Patient
from clinic_core.services.appointment_service import owner_lock_key, windows_overlap
from clinic_core.services.duplicate_service import contact_data_for, get_candidate, mark_resolved
from clinic_core.services.identity_service import get_contact
from clinic_core.services.normalization import merge_contact_data

logger = logging.getLogger(__name__)


async def _appointments_of(session: AsyncSession, contact_id: int, live_only: bool = False) -> list[Appointment]:
    q = select(Appointment).where(Appointment.contact_id == contact_id)
    if live_only:
        q = q.where(Appointment.status.in_(ACTIVE_STATUSES))
    result = await session.execute(q)
    return list(result.scalars().all())


async def _patient_of(session: AsyncSession, contact_id: int) -> Patient | None:
    result = await session.execute(select(Patient).where(Patient.contact_id == contact_id))
    return result.scalar_one_or_none()


async def confirm_merge(session: AsyncSession, keep_contact_id: int, merge_contact_id: int) -> Contact:
    """Fold ``merge_contact_id`` into ``keep_contact_id``.

    Appointments move over (the no-overlap rule is re-checked first), the
    patient record follows if the kept contact has none, empty fields are
    filled in and the merged contact is deactivated.
    """
    if keep_contact_id == merge_contact_id:
        raise ValidationError("Cannot merge a contact into itself")
    for contact_id in sorted((keep_contact_id, merge_contact_id)):
        await lock_key(session, owner_lock_key(contact_id))
    keep = await get_contact(session, keep_contact_id)
    merged = await get_contact(session, merge_contact_id)
    if merged.status != EntityStatus.ACTIVE:
        raise ValidationError(f"Contact {merge_contact_id} is already inactive")
    if keep.merged_into_id is not None:
        raise ValidationError(f"Contact {keep_contact_id} was merged into {keep.merged_into_id}")

    keep_patient = await _patient_of(session, keep.id)
    merged_patient = await _patient_of(session, merged.id)
    if keep_patient is not None and merged_patient is not None:
        raise DocumentConflictError(
            f"Contacts {keep.id} and {merged.id} both have patient records; resolve the clinical identity first"
        )

    keep_live = await _appointments_of(session, keep.id, live_only=True)
    moving = await _appointments_of(session, merged.id)
    for appointment in moving:
        if appointment.is_terminal:
            continue
        for staying in keep_live:
            if windows_overlap(
                appointment.starts_at, appointment.duration_minutes, staying.starts_at, staying.duration_minutes
            ):
                raise AppointmentOverlapError(
                    f"Appointments {appointment.id} and {staying.id} overlap; cancel or reschedule one before merging"
                )

    patient = merged_patient or keep_patient
    if merged_patient is not None:
        merged_patient.contact_id = keep.id
        merged_patient.updated_at = _utc_naive_now()
        session.add(merged_patient)
    for appointment in moving + await _appointments_of(session, keep.id):
        appointment.contact_id = keep.id
        if patient is not None and appointment.patient_id is None:
            appointment.patient_id = patient.id
        session.add(appointment)

    # kept values win; the merged contact only fills gaps
    combined = merge_contact_data(contact_data_for(merged), contact_data_for(keep))
    keep.phone = combined.phone
    keep.whatsapp = combined.whatsapp
    keep.email = combined.email
    keep.birth_date = combined.birth_date
    sources = list(keep.registration_sources or [])
    sources.extend(s for s in merged.registration_sources or [] if s not in sources)
    keep.registration_sources = sources
    keep.updated_at = _utc_naive_now()
    merged.status = EntityStatus.INACTIVE
    merged.merged_into_id = keep.id
    merged.updated_at = _utc_naive_now()
    session.add(keep)
    session.add(merged)

    low, high = sorted((keep.id, merged.id))
    result = await session.execute(
        select(DuplicateCandidate).where(
            DuplicateCandidate.contact_a_id == low, DuplicateCandidate.contact_b_id == high
        )
    )
    candidate = result.scalar_one_or_none()
    if candidate is not None:
        mark_resolved(candidate, CandidateStatus.CONFIRMED_MERGE)
        session.add(candidate)
    await session.flush()
    logger.info("Merged contact %s into %s", merged.id, keep.id)
    return keep


async def confirm_distinct(session: AsyncSession, candidate_id: int) -> DuplicateCandidate:
    candidate = await get_candidate(session, candidate_id)
    if candidate is None:
        raise NotFoundError(f"Duplicate candidate {candidate_id} not found")
    if candidate.status != CandidateStatus.PENDING:
        raise ValidationError(f"Duplicate candidate {candidate_id} is already {candidate.status.value}")
    mark_resolved(candidate, CandidateStatus.CONFIRMED_DISTINCT)
    session.add(candidate)
    await session.flush()
    logger.info("Contacts %s/%s confirmed distinct", candidate.contact_a_id, candidate.contact_b_id)
    return candidate
