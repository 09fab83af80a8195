import logging
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, Field
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from clinic_core.core.config import settings
from clinic_core.models.appointment import Appointment

logger = logging.getLogger(__name__)

APPOINTMENT_CREATED = "appointment.created"
APPOINTMENT_CONFIRMED = "appointment.confirmed"
APPOINTMENT_CANCELLED = "appointment.cancelled"
APPOINTMENT_RESCHEDULED = "appointment.rescheduled"

_PENDING_KEY = "pending_notifications"


class NotificationEvent(BaseModel):
    type: str
    appointment_id: int
    contact_id: int
    payload: dict[str, Any] = Field(default_factory=dict)


class Notifier(Protocol):
    async def emit(self, event: NotificationEvent) -> None: ...


class LoggingNotifier:
    """Default notifier: records the event and leaves delivery to whoever tails the log."""

    async def emit(self, event: NotificationEvent) -> None:
        logger.info(
            "Notification event %s appointment=%s contact=%s",
            event.type,
            event.appointment_id,
            event.contact_id,
        )


class WebhookNotifier:
    """POSTs the event JSON to an external delivery service (WhatsApp/Telegram/email bridge)."""

    def __init__(self, url: str, timeout: float = 5.0) -> None:
        self.url = url
        self.timeout = timeout

    async def emit(self, event: NotificationEvent) -> None:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(self.url, json=event.model_dump(mode="json"))
            resp.raise_for_status()


def get_notifier() -> Notifier:
    if settings.webhook_enabled:
        return WebhookNotifier(settings.notification_webhook_url, settings.notification_timeout_seconds)
    return LoggingNotifier()


def appointment_event(event_type: str, appointment: Appointment, **extra: Any) -> NotificationEvent:
    payload = {
        "date": appointment.appointment_date.isoformat(),
        "time": appointment.appointment_time.strftime("%H:%M"),
        "type": appointment.type.value,
        "status": appointment.status.value,
        "source": appointment.source.value,
        "provider_id": appointment.provider_id,
    }
    payload.update(extra)
    return NotificationEvent(
        type=event_type,
        appointment_id=appointment.id,
        contact_id=appointment.contact_id,
        payload=payload,
    )


async def emit_event(notifier: Notifier | None, event: NotificationEvent) -> bool:
    """Fire-and-forget emission. Failures are logged and never propagate."""
    notifier = notifier or get_notifier()
    try:
        await notifier.emit(event)
        return True
    except Exception as e:
        logger.exception("Failed to emit %s for appointment %s: %s", event.type, event.appointment_id, e)
        return False


def queue_event(session: AsyncSession, notifier: Notifier | None, event: NotificationEvent) -> None:
    """Hold ``event`` until the session's transaction commits."""
    session.info.setdefault(_PENDING_KEY, []).append((notifier, event))


async def dispatch_pending(session: AsyncSession) -> int:
    """Emit events queued by work that has been committed; returns how many went out."""
    pending = session.info.pop(_PENDING_KEY, [])
    sent = 0
    for notifier, event in pending:
        if await emit_event(notifier, event):
            sent += 1
    return sent


@event.listens_for(Session, "after_soft_rollback")
def _drop_pending_on_rollback(session: Session, previous_transaction) -> None:
    # savepoint rollbacks leave the outer transaction's events alone
    if previous_transaction.parent is None:
        session.info.pop(_PENDING_KEY, None)
