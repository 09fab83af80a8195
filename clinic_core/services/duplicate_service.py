"""Duplicate detection for contacts/patients.

Scores are the maximum of independent signals, never a sum of them, so a
coincidental partial match on one field cannot stack up into a false
positive. The detector only annotates: merging is a separate staff action.
"""
import logging

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_core.core.config import settings
from clinic_core.models.common import EntityStatus, _utc_naive_now
from clinic_core.models.contact import Contact, ContactData
from clinic_core.models.duplicate import CandidateStatus, DuplicateCandidate, DuplicateSeverity
from clinic_core.models.patient import Patient
from clinic_core.services.normalization import name_tokens, normalize_birth_date

logger = logging.getLogger(__name__)

DOCUMENT_SCORE = 1.0
PHONE_SCORE = 0.85
NAME_WEIGHT = 0.5
BIRTH_DATE_BONUS = 0.3


def name_similarity(a: str | None, b: str | None) -> float:
    """Jaccard overlap of normalized name tokens."""
    tokens_a, tokens_b = name_tokens(a), name_tokens(b)
    if not tokens_a or not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / len(tokens_a | tokens_b)


def score_with_fields(a: ContactData, b: ContactData) -> tuple[float, list[str]]:
    signals: list[float] = []
    matched: list[str] = []

    if a.document_number and a.document_number == b.document_number:
        signals.append(DOCUMENT_SCORE)
        matched.append("document_number")

    phones_a = {p for p in (a.phone, a.whatsapp) if p}
    phones_b = {p for p in (b.phone, b.whatsapp) if p}
    if phones_a & phones_b:
        signals.append(PHONE_SCORE)
        matched.append("phone")

    similarity = name_similarity(a.name, b.name)
    personal = similarity * NAME_WEIGHT
    if similarity > 0:
        matched.append("name")
    birth_a = normalize_birth_date(a.birth_date)
    if birth_a and birth_a == normalize_birth_date(b.birth_date):
        personal += BIRTH_DATE_BONUS
        matched.append("birth_date")
    signals.append(personal)

    return min(max(signals), 1.0), matched


def score(a: ContactData, b: ContactData) -> float:
    return score_with_fields(a, b)[0]


def classify(value: float) -> DuplicateSeverity | None:
    if value >= settings.duplicate_likely_threshold:
        return DuplicateSeverity.LIKELY
    if value >= settings.duplicate_possible_threshold:
        return DuplicateSeverity.POSSIBLE
    return None


def contact_data_for(contact: Contact, patient: Patient | None = None) -> ContactData:
    return ContactData(
        name=contact.name,
        phone=contact.phone,
        whatsapp=contact.whatsapp,
        email=contact.email,
        birth_date=contact.birth_date,
        document_number=patient.document_number if patient else None,
        registration_sources=list(contact.registration_sources or []),
    )


async def record_candidate(
    session: AsyncSession,
    contact_id_a: int,
    contact_id_b: int,
    value: float,
    matched_fields: list[str],
) -> DuplicateCandidate | None:
    """Insert or refresh the advisory row for a pair; resolved pairs are left alone."""
    severity = classify(value)
    if severity is None or contact_id_a == contact_id_b:
        return None
    low, high = sorted((contact_id_a, contact_id_b))
    result = await session.execute(
        select(DuplicateCandidate).where(
            DuplicateCandidate.contact_a_id == low,
            DuplicateCandidate.contact_b_id == high,
        )
    )
    candidate = result.scalar_one_or_none()
    if candidate is None:
        candidate = DuplicateCandidate(
            contact_a_id=low,
            contact_b_id=high,
            score=value,
            matched_fields=matched_fields,
            severity=severity,
        )
    elif candidate.status == CandidateStatus.PENDING:
        candidate.score = value
        candidate.matched_fields = list(matched_fields)
        candidate.severity = severity
    else:
        return candidate
    session.add(candidate)
    await session.flush()
    if severity == DuplicateSeverity.LIKELY:
        logger.warning("Likely duplicate contacts %s/%s (score=%.2f, %s)", low, high, value, matched_fields)
    else:
        logger.info("Possible duplicate contacts %s/%s (score=%.2f)", low, high, value)
    return candidate


async def _candidate_pool(session: AsyncSession, contact: Contact, data: ContactData) -> list[Contact]:
    """Contacts worth scoring against ``contact``.

    Shared phones and documents are fetched in full since each alone flags a
    pair. Name and birth date matches are only a weak signal and are capped.
    """
    base = select(Contact).where(Contact.id != contact.id, Contact.status == EntityStatus.ACTIVE)

    strong = []
    phones = {p for p in (data.phone, data.whatsapp) if p}
    if phones:
        strong.append(Contact.phone.in_(phones))
        strong.append(Contact.whatsapp.in_(phones))
    if data.document_number:
        strong.append(
            Contact.id.in_(select(Patient.contact_id).where(Patient.document_number == data.document_number))
        )
    pool: list[Contact] = []
    if strong:
        result = await session.execute(base.where(or_(*strong)).order_by(Contact.id))
        pool.extend(result.scalars().all())

    weak = []
    birth_date = normalize_birth_date(data.birth_date)
    if birth_date:
        weak.append(Contact.birth_date == birth_date)
    for token in name_tokens(data.name):
        if len(token) >= 3:
            weak.append(Contact.name_key.contains(f" {token} "))
    if weak:
        q = base.where(or_(*weak))
        if pool:
            q = q.where(Contact.id.not_in([c.id for c in pool]))
        result = await session.execute(q.order_by(Contact.id).limit(settings.duplicate_candidate_pool_limit))
        pool.extend(result.scalars().all())
    return pool


async def _patients_by_contact(session: AsyncSession, contact_ids: list[int]) -> dict[int, Patient]:
    if not contact_ids:
        return {}
    result = await session.execute(select(Patient).where(Patient.contact_id.in_(contact_ids)))
    return {p.contact_id: p for p in result.scalars().all()}


async def find_candidates(session: AsyncSession, contact: Contact) -> list[DuplicateCandidate]:
    """Score ``contact`` against plausible matches and record flagged pairs.

    Errors degrade to "no candidates" inside a savepoint so the caller's
    transaction, and the intake that triggered detection, keep going.
    """
    try:
        async with session.begin_nested():
            patients = await _patients_by_contact(session, [contact.id])
            data = contact_data_for(contact, patients.get(contact.id))
            pool = await _candidate_pool(session, contact, data)
            pool_patients = await _patients_by_contact(session, [c.id for c in pool])
            found: list[DuplicateCandidate] = []
            for other in pool:
                value, fields = score_with_fields(data, contact_data_for(other, pool_patients.get(other.id)))
                candidate = await record_candidate(session, contact.id, other.id, value, fields)
                if candidate is not None and candidate.status == CandidateStatus.PENDING:
                    found.append(candidate)
    except Exception as e:
        logger.exception("Duplicate detection failed for contact %s: %s", contact.id, e)
        return []
    found.sort(key=lambda c: c.score, reverse=True)
    return found


async def list_candidates(
    session: AsyncSession, status: CandidateStatus | None = CandidateStatus.PENDING
) -> list[DuplicateCandidate]:
    q = select(DuplicateCandidate).order_by(DuplicateCandidate.score.desc(), DuplicateCandidate.id)
    if status is not None:
        q = q.where(DuplicateCandidate.status == status)
    result = await session.execute(q)
    return list(result.scalars().all())


async def get_candidate(session: AsyncSession, candidate_id: int) -> DuplicateCandidate | None:
    return await session.get(DuplicateCandidate, candidate_id)


def mark_resolved(candidate: DuplicateCandidate, status: CandidateStatus) -> None:
    candidate.status = status
    candidate.resolved_at = _utc_naive_now()
