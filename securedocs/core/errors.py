from __future__ import annotations

from typing import Any


class SecureDocsError(Exception):
    """Base error for securedocs.

    Every error carries a stable machine-readable ``code`` and the HTTP status
    the API layer renders it with, so clients can tell "retry later" from
    "this link is dead" from "ask the owner to re-share".
    """

    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    default_message: str = "Internal server error"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.default_message
        if code is not None:
            self.code = code
        self.details = details
        super().__init__(self.message)


class ValidationError(SecureDocsError):
    """Malformed or missing input."""

    status_code = 400
    code = "VALIDATION_ERROR"
    default_message = "Invalid request"


class NotFoundError(SecureDocsError):
    """Missing or expired resource."""

    status_code = 404
    code = "NOT_FOUND"
    default_message = "Resource not found"


class UnauthorizedError(SecureDocsError):
    status_code = 401
    code = "AUTH_UNAUTHORIZED"
    default_message = "Authentication required"


class ForbiddenError(SecureDocsError):
    status_code = 403
    code = "AUTH_FORBIDDEN"
    default_message = "Access denied"


class PermissionDeniedError(ForbiddenError):
    """Caller may view but not download, or has no grant at all."""

    code = "PERMISSION_DENIED"
    default_message = "You do not have permission to access this document"


class InvalidStateError(SecureDocsError):
    """Transition attempted on an access request that is already terminal."""

    status_code = 409
    code = "INVALID_STATE"
    default_message = "Access request is no longer pending"


class QuotaExceededError(SecureDocsError):
    status_code = 413
    code = "QUOTA_EXCEEDED"
    default_message = "Storage limit exceeded"


class StorageUnavailableError(SecureDocsError):
    """Blob store failure that survived the single re-authorize-and-retry."""

    status_code = 500
    code = "STORAGE_UNAVAILABLE"
    default_message = "Storage service unavailable"


class InvalidCapabilityError(NotFoundError):
    code = "INVALID_CAPABILITY"
    default_message = "QR code not found, inactive, or expired"


class SelfAccessError(ValidationError):
    code = "SELF_ACCESS"
    default_message = "You cannot request access to your own documents"


class OwnershipMismatchError(ValidationError):
    code = "OWNERSHIP_MISMATCH"
    default_message = "One or more requested documents do not belong to the QR code owner"


class InvalidCredentialsError(UnauthorizedError):
    code = "INVALID_CREDENTIALS"
    default_message = "Invalid mobile number or PIN"


class NoDocumentsError(NotFoundError):
    code = "NO_DOCUMENTS"
    default_message = "No documents found for this user"


class NotFoundOrUnauthorizedError(NotFoundError):
    code = "ACCESS_REQUEST_NOT_FOUND"
    default_message = "Access request not found or unauthorized"
