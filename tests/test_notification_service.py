import json
from datetime import date, time

import httpx
import pytest
import respx

from clinic_core.models.appointment import Appointment, AppointmentSource, AppointmentType
from clinic_core.services import notification_service as ns

HOOK = "https://notify.clinic.com.br/events"


def _appointment() -> Appointment:
    return Appointment(
        id=7,
        contact_id=3,
        provider_id="p1",
        appointment_date=date(2024, 1, 15),
        appointment_time=time(9, 0),
        type=AppointmentType.CONSULTATION,
        source=AppointmentSource.PUBLIC,
    )


def test_event_payload():
    event = ns.appointment_event(ns.APPOINTMENT_RESCHEDULED, _appointment(), previous_time="08:00")
    assert event.appointment_id == 7
    assert event.contact_id == 3
    assert event.payload["date"] == "2024-01-15"
    assert event.payload["time"] == "09:00"
    assert event.payload["status"] == "SCHEDULED"
    assert event.payload["previous_time"] == "08:00"


@pytest.mark.asyncio
async def test_webhook_posts_event():
    event = ns.appointment_event(ns.APPOINTMENT_CREATED, _appointment())
    with respx.mock:
        route = respx.post(HOOK).respond(202)
        delivered = await ns.emit_event(ns.WebhookNotifier(HOOK), event)
    assert delivered is True
    assert route.called
    body = json.loads(route.calls.last.request.content)
    assert body["type"] == "appointment.created"
    assert body["payload"]["provider_id"] == "p1"


@pytest.mark.asyncio
async def test_webhook_failure_is_swallowed():
    event = ns.appointment_event(ns.APPOINTMENT_CANCELLED, _appointment())
    with respx.mock:
        respx.post(HOOK).respond(503)
        assert await ns.emit_event(ns.WebhookNotifier(HOOK), event) is False
    with respx.mock:
        respx.post(HOOK).mock(side_effect=httpx.ConnectTimeout("timed out"))
        assert await ns.emit_event(ns.WebhookNotifier(HOOK, timeout=0.1), event) is False


def test_notifier_follows_settings(monkeypatch):
    assert isinstance(ns.get_notifier(), ns.LoggingNotifier)
    monkeypatch.setattr(ns.settings, "notification_webhook_url", HOOK)
    notifier = ns.get_notifier()
    assert isinstance(notifier, ns.WebhookNotifier)
    assert notifier.url == HOOK


@pytest.mark.asyncio
async def test_logging_notifier(caplog):
    caplog.set_level("INFO", logger="clinic_core.services.notification_service")
    event = ns.appointment_event(ns.APPOINTMENT_CONFIRMED, _appointment())
    assert await ns.emit_event(ns.LoggingNotifier(), event) is True
    assert "appointment.confirmed" in caplog.text
