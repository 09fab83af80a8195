import logging
from dataclasses import dataclass, field

from sqlalchemy import case, select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_core.core.db import lock_key
from clinic_core.core.errors import NotFoundError
from clinic_core.models.common import EntityStatus, _utc_naive_now
from clinic_core.models.contact import Contact, ContactData
from clinic_core.models.duplicate import DuplicateCandidate
from clinic_core.services.duplicate_service import contact_data_for, find_candidates
from clinic_core.services.normalization import merge_contact_data, name_key, normalize_contact

logger = logging.getLogger(__name__)

# WhatsApp first: it is the channel confirmations round-trip through.
_LOOKUP_ORDER = ("whatsapp", "email", "phone")
_KEPT_ON_MERGE = ("name", "phone", "whatsapp", "email", "birth_date")


@dataclass
class ResolutionResult:
    contact: Contact
    is_new: bool
    duplicate_candidates: list[DuplicateCandidate] = field(default_factory=list)


def _identity_lock_keys(data: ContactData) -> list[str]:
    keys = [f"contact:{name}:{getattr(data, name)}" for name in _LOOKUP_ORDER if getattr(data, name)]
    return sorted(keys)


async def _surviving(session: AsyncSession, contact: Contact) -> Contact:
    """Follow merge links to the contact that absorbed ``contact``."""
    seen = {contact.id}
    while contact.merged_into_id is not None and contact.merged_into_id not in seen:
        seen.add(contact.merged_into_id)
        contact = await get_contact(session, contact.merged_into_id)
    return contact


async def _find_exact(session: AsyncSession, data: ContactData) -> tuple[Contact | None, bool]:
    """Exact channel match, plus whether it was reached through a merge link."""
    for name in _LOOKUP_ORDER:
        value = getattr(data, name)
        if not value:
            continue
        column = getattr(Contact, name)
        result = await session.execute(
            select(Contact)
            .where(column == value)
            .order_by(case((Contact.status == EntityStatus.ACTIVE, 0), else_=1), Contact.id)
            .limit(1)
        )
        contact = result.scalar_one_or_none()
        if contact is not None:
            surviving = await _surviving(session, contact)
            return surviving, surviving.id != contact.id
    return None, False


def _apply(contact: Contact, data: ContactData) -> None:
    contact.name = data.name
    contact.name_key = name_key(data.name)
    contact.phone = data.phone
    contact.whatsapp = data.whatsapp
    contact.email = data.email
    contact.birth_date = data.birth_date
    contact.registration_sources = list(data.registration_sources)


async def resolve_contact(
    session: AsyncSession,
    name: str | None,
    phone: str | None = None,
    whatsapp: str | None = None,
    email: str | None = None,
    birth_date: str | None = None,
    source: str | None = None,
) -> ResolutionResult:
    """Map raw intake fields to a canonical contact, creating one if needed.

    Exact matches on WhatsApp, email, then phone are merged into the existing
    contact (non-empty fields win, sources are appended). Otherwise a new
    contact is created and fuzzy duplicates are only annotated, never merged.
    """
    data = normalize_contact(name, phone=phone, whatsapp=whatsapp, email=email, birth_date=birth_date, source=source)
    for key in _identity_lock_keys(data):
        await lock_key(session, key)

    existing, via_merge = await _find_exact(session, data)
    if existing is not None:
        merged = merge_contact_data(contact_data_for(existing), data)
        if via_merge:
            # a retired channel only fills gaps on the contact that absorbed it
            for field_name in _KEPT_ON_MERGE:
                if getattr(existing, field_name):
                    setattr(merged, field_name, getattr(existing, field_name))
        _apply(existing, merged)
        if existing.status != EntityStatus.ACTIVE:
            logger.info("Reactivating contact %s on exact-match intake", existing.id)
            existing.status = EntityStatus.ACTIVE
        existing.updated_at = _utc_naive_now()
        session.add(existing)
        await session.flush()
        logger.debug("Resolved intake to existing contact %s", existing.id)
        return ResolutionResult(contact=existing, is_new=False)

    contact = Contact(
        name=data.name,
        name_key=name_key(data.name),
        phone=data.phone,
        whatsapp=data.whatsapp,
        email=data.email,
        birth_date=data.birth_date,
        registration_sources=list(data.registration_sources),
    )
    session.add(contact)
    await session.flush()
    await session.refresh(contact)
    logger.info("Created contact %s (source=%s)", contact.id, source)
    candidates = await find_candidates(session, contact)
    return ResolutionResult(contact=contact, is_new=True, duplicate_candidates=candidates)


async def get_contact(session: AsyncSession, contact_id: int) -> Contact:
    contact = await session.get(Contact, contact_id)
    if contact is None:
        raise NotFoundError(f"Contact {contact_id} not found")
    return contact


async def deactivate_contact(session: AsyncSession, contact_id: int) -> Contact:
    """Soft-deactivate; contacts referenced by appointments are never deleted."""
    contact = await get_contact(session, contact_id)
    if contact.status != EntityStatus.INACTIVE:
        contact.status = EntityStatus.INACTIVE
        contact.updated_at = _utc_naive_now()
        session.add(contact)
        await session.flush()
        logger.info("Deactivated contact %s", contact_id)
    return contact
