from __future__ import annotations

from enum import Enum


class AccessRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"

    @property
    def is_terminal(self) -> bool:
        return self is not AccessRequestStatus.PENDING


class PermissionLevel(str, Enum):
    VIEW_ONLY = "view_only"
    VIEW_AND_DOWNLOAD = "view_and_download"

    @property
    def allows_download(self) -> bool:
        return self is PermissionLevel.VIEW_AND_DOWNLOAD

