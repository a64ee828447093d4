from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from typing import Any
from uuid import uuid4

import httpx

from securedocs.services.notifications.base import Notification
from securedocs.services.telemetry import record_external_call


logger = logging.getLogger(__name__)


def serialize_payload(payload_json: dict[str, Any]) -> bytes:
    # Deterministic bytes so the receiver can recompute the signature.
    return json.dumps(payload_json, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def compute_signature(raw_body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


class WebhookNotifier:
    """POST each notification as signed JSON to a single configured receiver."""

    def __init__(
        self,
        *,
        url: str,
        secret: str | None = None,
        timeout_s: float = 2.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._secret = secret
        self._timeout_s = timeout_s
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout_s)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def send(self, notification: Notification) -> None:
        notification_id = uuid4().hex
        body = serialize_payload(
            {
                "id": notification_id,
                "event_type": notification.event_type,
                "owner_id": notification.owner_id,
                "payload": notification.payload,
            }
        )
        headers = {
            "Content-Type": "application/json",
            "X-Notification-Id": notification_id,
            "X-Notification-Event-Type": notification.event_type,
        }
        if self._secret:
            headers["X-Notification-Signature"] = compute_signature(body, self._secret)

        start = time.monotonic()
        try:
            response = await self._get_client().post(self._url, content=body, headers=headers)
            if response.status_code >= 400:
                raise httpx.HTTPStatusError(
                    f"Receiver rejected notification ({response.status_code})",
                    request=response.request,
                    response=response,
                )
        except httpx.HTTPError:
            record_external_call(
                integration="notifications.webhook",
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            raise
        record_external_call(
            integration="notifications.webhook",
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=True,
        )
        logger.info(
            "notification_delivered event_type=%s notification_id=%s",
            notification.event_type,
            notification_id,
        )
