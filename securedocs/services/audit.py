from __future__ import annotations

from datetime import datetime, timezone
import logging
import re
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from securedocs.domain.models import AuditEvent
from securedocs.persistence.db import SessionLocal


logger = logging.getLogger(__name__)

# Keys whose values are credentials, requester contact details, or capability URLs.
_SENSITIVE_KEY_FRAGMENTS = ("authorization", "token", "secret", "password", "pin", "mobile", "phone", "url", "code")
# Keys that merely contain a fragment above but carry no secret.
_SAFE_KEYS = {"error_code", "status_code"}
_REDACTED_VALUE = "[REDACTED]"
# Phone-number-like digit runs inside free-text values.
_DIGIT_RUN = re.compile(r"\d{7,}")
# Signed URLs carry their authorization in the query string.
_SIGNED_QUERY = re.compile(r"\?[^\s]*Authorization=[^\s]*", re.IGNORECASE)


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    if lowered in _SAFE_KEYS:
        return False
    return any(fragment in lowered for fragment in _SENSITIVE_KEY_FRAGMENTS)


def _scrub_text(value: str) -> str:
    return _DIGIT_RUN.sub(_REDACTED_VALUE, _SIGNED_QUERY.sub("?" + _REDACTED_VALUE, value))


def sanitize_metadata(value: Any) -> Any:
    """Recursively redact audit metadata before it is persisted.

    Sensitive keys lose their whole value; every other string is scrubbed of
    phone-like digit runs and signed-URL query strings so contact details and
    download capabilities never reach the audit table by accident.
    """
    if isinstance(value, dict):
        return {
            str(key): _REDACTED_VALUE if _is_sensitive_key(str(key)) else sanitize_metadata(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [sanitize_metadata(item) for item in value]
    if isinstance(value, str):
        return _scrub_text(value)
    return value


def get_request_context(request: Request | None) -> dict[str, str | None]:
    if request is None:
        return {"request_id": None, "ip_address": None, "user_agent": None}
    return {
        "request_id": getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id"),
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


async def _persist(session: AsyncSession, event: AuditEvent, *, commit: bool) -> None:
    try:
        session.add(event)
        if commit:
            await session.commit()
    except SQLAlchemyError as exc:
        if commit:
            await session.rollback()
        logger.warning(
            "audit_event_write_failed event_type=%s request_id=%s",
            event.event_type,
            event.request_id,
            exc_info=exc,
        )


async def record_event(
    *,
    session: AsyncSession | None = None,
    owner_id: str | None,
    actor_type: str,
    actor_id: str | None,
    event_type: str,
    outcome: str,
    resource_type: str | None = None,
    resource_id: str | None = None,
    request: Request | None = None,
    metadata: dict[str, Any] | None = None,
    error_code: str | None = None,
    commit: bool = False,
) -> None:
    # Best-effort: an audit failure is logged and never breaks the user flow.
    context = get_request_context(request)
    event = AuditEvent(
        occurred_at=datetime.now(timezone.utc),
        owner_id=owner_id,
        actor_type=actor_type,
        actor_id=actor_id,
        event_type=event_type,
        outcome=outcome,
        resource_type=resource_type,
        resource_id=resource_id,
        request_id=context["request_id"],
        ip_address=context["ip_address"],
        user_agent=context["user_agent"],
        metadata_json=sanitize_metadata(metadata or {}),
        error_code=error_code,
    )
    if session is not None:
        await _persist(session, event, commit=commit)
        return
    # Failure paths may have a session mid-rollback; write through a dedicated one.
    async with SessionLocal() as audit_session:
        await _persist(audit_session, event, commit=True)
