from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import re
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from securedocs.core.config import get_settings
from securedocs.core.errors import (
    InvalidStateError,
    NotFoundOrUnauthorizedError,
    OwnershipMismatchError,
    SelfAccessError,
    ValidationError,
)
from securedocs.domain.models import AccessRequest, Document
from securedocs.domain.types import AccessRequestStatus, PermissionLevel
from securedocs.persistence.repos import access_requests as access_repo
from securedocs.persistence.repos import documents as documents_repo
from securedocs.services.audit import record_event
from securedocs.services.auth.tokens import Caller
from securedocs.services.capabilities import CapabilityManager, get_capability_manager
from securedocs.services.notifications import Notification, Notifier, get_notifier, notify_safely
from securedocs.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

_DIGITS_ONLY = re.compile(r"^\d+$")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def review_url(request_id: str) -> str:
    return f"{get_settings().frontend_url.rstrip('/')}/access-requests/{request_id}"


@dataclass(frozen=True)
class ApprovalResult:
    request_id: str
    permission_level: PermissionLevel
    approved_documents: list[Document]
    removed_documents: list[str]


@dataclass(frozen=True)
class RequestStatusView:
    request: AccessRequest
    owner_id: str
    is_owner: bool
    documents: list[Document]

    @property
    def status(self) -> AccessRequestStatus:
        return AccessRequestStatus(self.request.status)


@dataclass(frozen=True)
class ApprovedDocuments:
    request_id: str
    permission_level: PermissionLevel
    documents: list[Document]


def _validate_requester(name: str | None, mobile: str | None, digits: int) -> tuple[str, str]:
    clean_name = (name or "").strip()
    clean_mobile = (mobile or "").strip()
    if not clean_name or not clean_mobile:
        raise ValidationError("Name and mobile number are required", code="MISSING_FIELDS")
    if len(clean_mobile) != digits or not _DIGITS_ONLY.match(clean_mobile):
        raise ValidationError(
            f"Mobile number must be exactly {digits} digits",
            code="INVALID_MOBILE",
        )
    return clean_name, clean_mobile


def _dedupe(ids: list[str] | None) -> list[str]:
    return list(dict.fromkeys(item for item in (ids or []) if item))


class AccessRequestService:
    """Pending to approved/denied lifecycle of requests made through a capability.

    Terminal states are final. Decisions lock the request row and flip the
    status with a conditional update, so two concurrent decisions cannot both
    succeed. Document pruning shares the transaction with the status change.
    Notifications go out only after commit and never undo a transition.
    """

    def __init__(
        self,
        *,
        capabilities: CapabilityManager | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self._capabilities = capabilities or get_capability_manager()
        self._notifier = notifier

    @property
    def notifier(self) -> Notifier:
        return self._notifier or get_notifier()

    async def create(
        self,
        *,
        session: AsyncSession,
        code: str,
        requester_name: str | None,
        requester_mobile: str | None,
        document_ids: list[str] | None,
        request: Request | None = None,
    ) -> AccessRequest:
        if not code:
            raise ValidationError("QR code is required", code="MISSING_FIELDS")
        name, mobile = _validate_requester(
            requester_name, requester_mobile, get_settings().requester_phone_digits
        )
        wanted = _dedupe(document_ids)
        if not wanted:
            raise ValidationError("Select at least one document", code="MISSING_DOCUMENTS")

        qr_code, owner = await self._capabilities.resolve(session=session, code=code)

        # Display-name equality only; anyone can type a different name. Not a security boundary.
        if name == (owner.full_name or "").strip():
            raise SelfAccessError()

        owned = await documents_repo.find_owned_documents(session, owner.id, wanted)
        if len(owned) != len(wanted):
            # Reject the whole request rather than silently trimming it.
            raise OwnershipMismatchError()

        request_id = uuid4().hex
        try:
            row = await access_repo.create_access_request(
                session,
                request_id=request_id,
                qr_code_id=qr_code.id,
                requester_name=name,
                requester_mobile=mobile,
                document_ids=wanted,
            )
            await session.commit()
        except SQLAlchemyError:
            await session.rollback()
            logger.exception("access_request_create_failed qr_code_id=%s", qr_code.id)
            raise

        increment_counter("access_requests_created_total")
        logger.info(
            "access_request_created request_id=%s owner_id=%s documents=%s",
            request_id,
            owner.id,
            len(wanted),
        )
        await record_event(
            session=session,
            owner_id=owner.id,
            actor_type="requester",
            actor_id=None,
            event_type="access_request.created",
            outcome="success",
            resource_type="access_request",
            resource_id=request_id,
            request=request,
            metadata={"document_count": len(wanted)},
            commit=True,
        )
        await notify_safely(
            self.notifier,
            Notification(
                event_type="access_request.created",
                owner_id=owner.id,
                payload={
                    "request_id": request_id,
                    "requester_name": name,
                    "documents": sorted(doc.name for doc in owned),
                    "review_link": review_url(request_id),
                },
            ),
        )
        return row

    async def _lock_pending(
        self, session: AsyncSession, request_id: str, owner_id: str
    ) -> AccessRequest:
        row = await access_repo.get_owned_for_update(session, request_id, owner_id)
        if row is None:
            raise NotFoundOrUnauthorizedError()
        if AccessRequestStatus(row.status).is_terminal:
            raise InvalidStateError(details={"status": row.status})
        return row

    async def approve(
        self,
        *,
        session: AsyncSession,
        request_id: str,
        owner_id: str,
        selected_document_ids: list[str] | None = None,
        permission_level: PermissionLevel | None = None,
        request: Request | None = None,
    ) -> ApprovalResult:
        """Approve with an optional document subset; ``None`` keeps everything requested."""
        level = permission_level or PermissionLevel.VIEW_AND_DOWNLOAD
        try:
            await self._lock_pending(session, request_id, owner_id)
            requested = await access_repo.list_requested_documents(session, request_id)
            requested_ids = {doc.id for doc in requested}

            if selected_document_ids is None:
                keep = set(requested_ids)
            else:
                keep = set(_dedupe(selected_document_ids))
                if not keep:
                    raise ValidationError(
                        "Select at least one document to approve",
                        code="MISSING_DOCUMENTS",
                    )
                unknown = keep - requested_ids
                if unknown:
                    raise ValidationError(
                        "Selected documents were not part of this request",
                        code="SELECTION_NOT_REQUESTED",
                        details={"document_ids": sorted(unknown)},
                    )

            await access_repo.prune_requested_documents(session, request_id, keep)
            decided = await access_repo.mark_decided(
                session,
                request_id,
                status=AccessRequestStatus.APPROVED,
                permission_level=level.value,
                decided_at=_utc_now(),
            )
            if not decided:
                raise InvalidStateError()
            await session.commit()
        except SQLAlchemyError:
            await session.rollback()
            logger.exception("access_request_approve_failed request_id=%s", request_id)
            raise
        except Exception:
            await session.rollback()
            raise

        approved = [doc for doc in requested if doc.id in keep]
        removed = [doc.name for doc in requested if doc.id not in keep]
        increment_counter("access_requests_approved_total")
        logger.info(
            "access_request_approved request_id=%s owner_id=%s kept=%s removed=%s level=%s",
            request_id,
            owner_id,
            len(approved),
            len(removed),
            level.value,
        )
        await record_event(
            session=session,
            owner_id=owner_id,
            actor_type="owner",
            actor_id=owner_id,
            event_type="access_request.approved",
            outcome="success",
            resource_type="access_request",
            resource_id=request_id,
            request=request,
            metadata={"permission_level": level.value, "removed_count": len(removed)},
            commit=True,
        )
        await notify_safely(
            self.notifier,
            Notification(
                event_type="access_request.approved",
                owner_id=owner_id,
                payload={
                    "request_id": request_id,
                    "permission_level": level.value,
                    "documents": [doc.name for doc in approved],
                },
            ),
        )
        return ApprovalResult(
            request_id=request_id,
            permission_level=level,
            approved_documents=approved,
            removed_documents=removed,
        )

    async def deny(
        self,
        *,
        session: AsyncSession,
        request_id: str,
        owner_id: str,
        request: Request | None = None,
    ) -> None:
        try:
            await self._lock_pending(session, request_id, owner_id)
            decided = await access_repo.mark_decided(
                session,
                request_id,
                status=AccessRequestStatus.DENIED,
                permission_level=None,
                decided_at=_utc_now(),
            )
            if not decided:
                raise InvalidStateError()
            await session.commit()
        except SQLAlchemyError:
            await session.rollback()
            logger.exception("access_request_deny_failed request_id=%s", request_id)
            raise
        except Exception:
            await session.rollback()
            raise

        increment_counter("access_requests_denied_total")
        logger.info("access_request_denied request_id=%s owner_id=%s", request_id, owner_id)
        await record_event(
            session=session,
            owner_id=owner_id,
            actor_type="owner",
            actor_id=owner_id,
            event_type="access_request.denied",
            outcome="success",
            resource_type="access_request",
            resource_id=request_id,
            request=request,
            commit=True,
        )
        await notify_safely(
            self.notifier,
            Notification(
                event_type="access_request.denied",
                owner_id=owner_id,
                payload={"request_id": request_id},
            ),
        )

    async def get_status(
        self,
        *,
        session: AsyncSession,
        request_id: str,
        caller: Caller,
    ) -> RequestStatusView:
        """Status is always visible; documents only to the owner or once approved."""
        found = await access_repo.get_with_owner_and_documents(session, request_id)
        if found is None:
            raise NotFoundOrUnauthorizedError()
        row, owner_id, requested = found
        is_owner = caller.is_owner_of(owner_id)
        documents: list[Document] = []
        if is_owner or row.status == AccessRequestStatus.APPROVED.value:
            documents = requested
        return RequestStatusView(request=row, owner_id=owner_id, is_owner=is_owner, documents=documents)

    async def approved_documents(
        self,
        *,
        session: AsyncSession,
        request_id: str,
    ) -> ApprovedDocuments:
        found = await access_repo.get_with_owner_and_documents(session, request_id)
        if found is None or found[0].status != AccessRequestStatus.APPROVED.value:
            raise NotFoundOrUnauthorizedError("Access request not found or not approved")
        row, _, documents = found
        return ApprovedDocuments(
            request_id=request_id,
            permission_level=PermissionLevel(row.permission_level or PermissionLevel.VIEW_AND_DOWNLOAD.value),
            documents=documents,
        )

    async def list_for_owner(
        self,
        *,
        session: AsyncSession,
        owner_id: str,
        status: AccessRequestStatus | None = None,
    ) -> list[AccessRequest]:
        return await access_repo.list_for_owner(session, owner_id, status=status)


_access_request_service: AccessRequestService | None = None


def get_access_request_service() -> AccessRequestService:
    global _access_request_service
    if _access_request_service is None:
        _access_request_service = AccessRequestService()
    return _access_request_service


def reset_access_request_service() -> None:
    global _access_request_service
    _access_request_service = None
