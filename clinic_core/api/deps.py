from fastapi import Query

from clinic_core.core.db import get_session
from clinic_core.services.notification_service import Notifier, get_notifier

__all__ = ["get_session", "notifier_dep", "provider_query"]


def notifier_dep() -> Notifier:
    """Notification collaborator for the request; overridable in tests."""
    return get_notifier()


def provider_query(provider_id: str | None = Query(None, alias="provider_id")) -> str | None:
    return provider_id.strip() if provider_id and provider_id.strip() else None
