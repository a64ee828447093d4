from __future__ import annotations

import logging

from securedocs.core.config import get_settings
from securedocs.services.notifications.base import LoggingNotifier, Notification, Notifier
from securedocs.services.notifications.webhook import WebhookNotifier, compute_signature


logger = logging.getLogger(__name__)

_notifier: Notifier | None = None


def get_notifier() -> Notifier:
    # Fall back to log-only delivery when no receiver is configured.
    global _notifier
    if _notifier is None:
        settings = get_settings()
        if settings.notify_webhook_url:
            _notifier = WebhookNotifier(
                url=settings.notify_webhook_url,
                secret=settings.notify_webhook_secret,
                timeout_s=max(0.2, settings.notify_timeout_ms / 1000.0),
            )
        else:
            _notifier = LoggingNotifier()
    return _notifier


async def reset_notifier() -> None:
    global _notifier
    if _notifier is not None:
        await _notifier.aclose()
    _notifier = None


async def notify_safely(notifier: Notifier, notification: Notification) -> bool:
    """Deliver after the state change committed; failures are logged and swallowed."""
    try:
        await notifier.send(notification)
    except Exception as exc:  # noqa: BLE001 - delivery must never undo a committed transition
        logger.warning(
            "notification_failed event_type=%s owner_id=%s error=%s",
            notification.event_type,
            notification.owner_id,
            type(exc).__name__,
        )
        return False
    return True


__all__ = [
    "LoggingNotifier",
    "Notification",
    "Notifier",
    "WebhookNotifier",
    "compute_signature",
    "get_notifier",
    "notify_safely",
    "reset_notifier",
]
