from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Protocol


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    # Event addressed to one owner; payload must already be free of requester contact details.
    event_type: str
    owner_id: str
    payload: dict[str, Any] = field(default_factory=dict)


class Notifier(Protocol):
    async def send(self, notification: Notification) -> None:
        ...

    async def aclose(self) -> None:
        ...


class LoggingNotifier:
    """Fallback used when no webhook is configured: the event is only logged."""

    async def send(self, notification: Notification) -> None:
        logger.info(
            "notification_logged event_type=%s owner_id=%s",
            notification.event_type,
            notification.owner_id,
        )

    async def aclose(self) -> None:
        return None
