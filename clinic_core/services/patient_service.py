import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_core.core.db import lock_key
from clinic_core.core.errors import NotFoundError
from clinic_core.models.common import EntityStatus, _utc_naive_now
from clinic_core.models.patient import Patient, PatientCreate
from clinic_core.services.duplicate_service import DOCUMENT_SCORE, record_candidate
from clinic_core.services.identity_service import get_contact
from clinic_core.services.normalization import collapse_whitespace, normalize_document

logger = logging.getLogger(__name__)


async def get_patient(session: AsyncSession, patient_id: int) -> Patient:
    patient = await session.get(Patient, patient_id)
    if patient is None:
        raise NotFoundError(f"Patient {patient_id} not found")
    return patient


async def get_patient_by_document(
    session: AsyncSession, document_number: str, include_inactive: bool = False
) -> Patient | None:
    q = select(Patient).where(Patient.document_number == normalize_document(document_number))
    if not include_inactive:
        q = q.where(Patient.status == EntityStatus.ACTIVE)
    # active row first when both exist
    q = q.order_by(Patient.status, Patient.id.desc())
    result = await session.execute(q.limit(1))
    return result.scalar_one_or_none()


async def get_active_patient_for_contact(session: AsyncSession, contact_id: int) -> Patient | None:
    result = await session.execute(
        select(Patient).where(Patient.contact_id == contact_id, Patient.status == EntityStatus.ACTIVE)
    )
    return result.scalar_one_or_none()


async def _next_record_number(session: AsyncSession) -> int:
    await lock_key(session, "patients:mrn")
    result = await session.execute(select(func.max(Patient.medical_record_number)))
    return (result.scalar_one_or_none() or 0) + 1


async def register_patient(session: AsyncSession, data: PatientCreate) -> Patient:
    """Formally register a contact as a patient, keyed by document number.

    An active patient with the same document is updated in place; a
    soft-deleted one is reactivated. Reactivation restores the identity only,
    historical appointments are left in whatever state they were.
    """
    contact = await get_contact(session, data.contact_id)
    document = normalize_document(data.document_number)
    full_name = collapse_whitespace(data.full_name) or contact.name
    await lock_key(session, f"patients:document:{document}")

    result = await session.execute(
        select(Patient).where(Patient.document_number == document).order_by(Patient.status, Patient.id.desc())
    )
    existing = result.scalars().first()

    if existing is not None:
        if existing.contact_id != contact.id:
            # same national ID reported by a different contact: flag for review, keep the link
            await record_candidate(session, existing.contact_id, contact.id, DOCUMENT_SCORE, ["document_number"])
            return existing
        if existing.status != EntityStatus.ACTIVE:
            logger.info("Reactivating patient %s (document match)", existing.id)
            existing.status = EntityStatus.ACTIVE
        existing.full_name = full_name
        if data.insurance_type:
            existing.insurance_type = data.insurance_type.upper()
        existing.updated_at = _utc_naive_now()
        session.add(existing)
        await session.flush()
        return existing

    result = await session.execute(select(Patient).where(Patient.contact_id == contact.id))
    current = result.scalar_one_or_none()
    if current is not None:
        # a contact owns at most one clinical identity; re-document it
        logger.info("Updating document number of patient %s", current.id)
        current.document_number = document
        current.full_name = full_name
        current.status = EntityStatus.ACTIVE
        current.updated_at = _utc_naive_now()
        session.add(current)
        await session.flush()
        return current

    patient = Patient(
        contact_id=contact.id,
        document_number=document,
        medical_record_number=await _next_record_number(session),
        full_name=full_name,
        insurance_type=(data.insurance_type or "PARTICULAR").upper(),
    )
    session.add(patient)
    await session.flush()
    await session.refresh(patient)
    logger.info("Registered patient %s (record #%d) for contact %s", patient.id, patient.medical_record_number, contact.id)
    return patient


async def deactivate_patient(session: AsyncSession, patient_id: int) -> Patient:
    patient = await get_patient(session, patient_id)
    if patient.status != EntityStatus.INACTIVE:
        patient.status = EntityStatus.INACTIVE
        patient.updated_at = _utc_naive_now()
        session.add(patient)
        await session.flush()
        logger.info("Deactivated patient %s", patient_id)
    return patient
