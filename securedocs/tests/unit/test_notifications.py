from __future__ import annotations

import json

import httpx
import pytest

from securedocs.core.config import get_settings
from securedocs.services.notifications import (
    LoggingNotifier,
    Notification,
    WebhookNotifier,
    get_notifier,
    notify_safely,
)
from securedocs.services.notifications.webhook import compute_signature
from securedocs.services.telemetry import external_success_rate


def _notification() -> Notification:
    return Notification(
        event_type="access_request.created",
        owner_id="owner-1",
        payload={"request_id": "r1", "review_link": "http://localhost/access-requests/r1"},
    )


@pytest.mark.asyncio
async def test_webhook_posts_signed_payload() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(204)

    notifier = WebhookNotifier(
        url="https://receiver.example.test/hooks",
        secret="hook-secret",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    try:
        await notifier.send(_notification())
    finally:
        await notifier.aclose()

    assert len(captured) == 1
    request = captured[0]
    body = request.content
    assert request.headers["X-Notification-Signature"] == compute_signature(body, "hook-secret")
    assert request.headers["X-Notification-Event-Type"] == "access_request.created"
    payload = json.loads(body)
    assert payload["id"] == request.headers["X-Notification-Id"]
    assert payload["owner_id"] == "owner-1"
    assert payload["payload"]["request_id"] == "r1"
    assert external_success_rate("notifications.webhook", 300) == 100.0


@pytest.mark.asyncio
async def test_webhook_rejection_is_swallowed_by_notify_safely() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": "boom"})

    notifier = WebhookNotifier(
        url="https://receiver.example.test/hooks",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    try:
        with pytest.raises(httpx.HTTPStatusError):
            await notifier.send(_notification())
        assert await notify_safely(notifier, _notification()) is False
    finally:
        await notifier.aclose()
    assert external_success_rate("notifications.webhook", 300) == 0.0


@pytest.mark.asyncio
async def test_unsigned_when_no_secret() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200)

    notifier = WebhookNotifier(
        url="https://receiver.example.test/hooks",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    try:
        assert await notify_safely(notifier, _notification()) is True
    finally:
        await notifier.aclose()
    assert "X-Notification-Signature" not in captured[0].headers


def test_get_notifier_defaults_to_logging() -> None:
    assert isinstance(get_notifier(), LoggingNotifier)


def test_get_notifier_uses_webhook_when_configured(monkeypatch) -> None:
    monkeypatch.setenv("NOTIFY_WEBHOOK_URL", "https://receiver.example.test/hooks")
    get_settings.cache_clear()
    assert isinstance(get_notifier(), WebhookNotifier)
