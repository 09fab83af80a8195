from pydantic import BaseModel

from clinic_core.models.contact import ContactPublic
from clinic_core.models.duplicate import DuplicateCandidatePublic


class ResolveContactRequest(BaseModel):
    name: str
    phone: str | None = None
    whatsapp: str | None = None
    email: str | None = None
    birth_date: str | None = None
    source: str | None = None  # registration tag, e.g. "newsletter"


class ResolveContactResponse(BaseModel):
    contact: ContactPublic
    is_new: bool
    duplicate_candidates: list[DuplicateCandidatePublic]


class MergeRequest(BaseModel):
    keep_contact_id: int
    merge_contact_id: int
