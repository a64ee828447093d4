from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
import secrets
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from securedocs.core.config import get_settings
from securedocs.core.errors import InvalidCapabilityError, NotFoundError
from securedocs.domain.models import Document, QrCode, User
from securedocs.persistence.repos import documents as documents_repo
from securedocs.persistence.repos import qr_codes as qr_codes_repo
from securedocs.persistence.repos import users as users_repo
from securedocs.services.audit import record_event
from securedocs.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_code() -> str:
    # 128 bits of URL-safe randomness; the code alone grants the right to ask.
    return secrets.token_urlsafe(16)


def capability_url(code: str) -> str:
    return f"{get_settings().frontend_url.rstrip('/')}/access?code={code}"


@dataclass(frozen=True)
class IssuedCapability:
    id: str
    code: str
    expires_at: datetime
    url: str


@dataclass(frozen=True)
class ValidatedCapability:
    qr_code_id: str
    owner_id: str
    owner_name: str
    documents: list[Document]


class CapabilityManager:
    """Issues and validates QR capabilities; at most one is active per owner."""

    def __init__(self, *, ttl: timedelta | None = None) -> None:
        self._ttl = ttl

    @property
    def ttl(self) -> timedelta:
        return self._ttl or timedelta(days=get_settings().qr_code_ttl_days)

    async def issue(
        self,
        *,
        session: AsyncSession,
        owner_id: str,
        access_code: str | None = None,
        request: Request | None = None,
    ) -> IssuedCapability:
        owner = await users_repo.get_user(session, owner_id)
        if owner is None:
            raise NotFoundError("User not found", code="USER_NOT_FOUND")

        capability_id = uuid4().hex
        code = generate_code()
        expires_at = _utc_now() + self.ttl
        try:
            await qr_codes_repo.create_qr_code(
                session,
                qr_code_id=capability_id,
                user_id=owner_id,
                code=code,
                access_code=access_code,
                expires_at=expires_at,
            )
            # Same transaction as the insert: no window with zero or two active codes.
            deactivated = await qr_codes_repo.deactivate_others(
                session, user_id=owner_id, keep_id=capability_id
            )
            await session.commit()
        except SQLAlchemyError:
            await session.rollback()
            logger.exception("capability_issue_failed owner_id=%s", owner_id)
            raise

        increment_counter("capabilities_issued_total")
        logger.info(
            "capability_issued owner_id=%s qr_code_id=%s deactivated=%s",
            owner_id,
            capability_id,
            deactivated,
        )
        await record_event(
            session=session,
            owner_id=owner_id,
            actor_type="owner",
            actor_id=owner_id,
            event_type="capability.issued",
            outcome="success",
            resource_type="qr_code",
            resource_id=capability_id,
            request=request,
            metadata={"deactivated": deactivated},
            commit=True,
        )
        return IssuedCapability(
            id=capability_id,
            code=code,
            expires_at=expires_at,
            url=capability_url(code),
        )

    async def resolve(self, *, session: AsyncSession, code: str) -> tuple[QrCode, User]:
        if not code:
            raise InvalidCapabilityError()
        row = await qr_codes_repo.get_active_by_code(session, code, now=_utc_now())
        if row is None:
            raise InvalidCapabilityError()
        return row

    async def validate(self, *, session: AsyncSession, code: str) -> ValidatedCapability:
        """Read-only: owner identity plus the owner's current documents."""
        qr_code, owner = await self.resolve(session=session, code=code)
        documents = await documents_repo.list_documents(session, owner.id)
        return ValidatedCapability(
            qr_code_id=qr_code.id,
            owner_id=owner.id,
            owner_name=owner.full_name,
            documents=documents,
        )


_capability_manager: CapabilityManager | None = None


def get_capability_manager() -> CapabilityManager:
    global _capability_manager
    if _capability_manager is None:
        _capability_manager = CapabilityManager()
    return _capability_manager


def reset_capability_manager() -> None:
    global _capability_manager
    _capability_manager = None
