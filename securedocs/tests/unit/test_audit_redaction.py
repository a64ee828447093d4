from __future__ import annotations

import pytest
from sqlalchemy import select

from securedocs.domain.models import AuditEvent
from securedocs.persistence.db import SessionLocal
from securedocs.services.audit import record_event, sanitize_metadata


def test_sanitize_metadata_redacts_sensitive_keys() -> None:
    cleaned = sanitize_metadata(
        {
            "requester_mobile": "9800000001",
            "download_url": "https://f000.example/file/bucket/a.pdf",
            "qr_code": "abc",
            "nested": {"pin": "4321", "document_count": 2},
            "items": [{"token": "t"}, {"size": 10}],
            "error_code": "INVALID_CREDENTIALS",
        }
    )
    assert cleaned["requester_mobile"] == "[REDACTED]"
    assert cleaned["download_url"] == "[REDACTED]"
    assert cleaned["qr_code"] == "[REDACTED]"
    assert cleaned["nested"] == {"pin": "[REDACTED]", "document_count": 2}
    assert cleaned["items"] == [{"token": "[REDACTED]"}, {"size": 10}]
    assert cleaned["error_code"] == "INVALID_CREDENTIALS"


def test_sanitize_metadata_scrubs_free_text_values() -> None:
    cleaned = sanitize_metadata(
        {
            "note": "call 9812345678 back",
            "link": "see https://f000.example/file/b/a.pdf?Authorization=secret-token now",
        }
    )
    assert cleaned["note"] == "call [REDACTED] back"
    assert "secret-token" not in cleaned["link"]
    assert cleaned["link"].startswith("see https://f000.example/file/b/a.pdf?[REDACTED]")


@pytest.mark.asyncio
async def test_record_event_persists_sanitized_row() -> None:
    await record_event(
        owner_id="owner-1",
        actor_type="owner",
        actor_id="owner-1",
        event_type="document.uploaded",
        outcome="success",
        resource_type="document",
        resource_id="doc-1",
        metadata={"size": 5, "phone": "9812345678"},
    )
    async with SessionLocal() as session:
        row = (await session.execute(select(AuditEvent))).scalar_one()
    assert row.event_type == "document.uploaded"
    assert row.metadata_json == {"size": 5, "phone": "[REDACTED]"}
