from __future__ import annotations

from dataclasses import dataclass
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from securedocs.core.config import get_settings
from securedocs.core.errors import NotFoundError, ValidationError
from securedocs.domain.models import SubscriptionPlan
from securedocs.persistence.repos import users as users_repo


logger = logging.getLogger(__name__)

# Plans store zero for "no limit".
UNLIMITED = 0


@dataclass(frozen=True)
class StorageCheck:
    # Advisory answer to "would this upload fit?" for UI-friendly fail-fast messages.
    allowed: bool
    used: int
    limit: int
    would_be_used: int
    plan_name: str


@dataclass(frozen=True)
class StorageUsage:
    used: int
    limit: int
    has_available_storage: bool
    plan_name: str


def evaluate_quota(*, used: int, limit: int, incoming_bytes: int, plan_name: str) -> StorageCheck:
    would_be_used = used + incoming_bytes
    allowed = limit == UNLIMITED or would_be_used <= limit
    return StorageCheck(
        allowed=allowed,
        used=used,
        limit=limit,
        would_be_used=would_be_used,
        plan_name=plan_name,
    )


class QuotaService:
    """Per-owner storage ledger bounded by the owner's subscription plan.

    ``check_available`` is advisory and read-only. ``commit`` is the only writer
    and runs after the blob upload succeeded. The two are not one atomic step,
    so concurrent uploads from the same owner can overshoot the limit by at most
    the size of the uploads in flight; this race is accepted for a personal
    document product.
    """

    async def _resolve_plan(self, session: AsyncSession, owner_id: str) -> tuple[int, SubscriptionPlan]:
        row = await users_repo.get_user_with_plan(session, owner_id)
        if row is None:
            raise NotFoundError(
                "User not found. Please log in again.",
                code="USER_NOT_FOUND",
            )
        user, plan = row
        if plan is None:
            # Owners without a plan are treated as being on the default plan.
            plan = await users_repo.get_plan_by_name(session, get_settings().default_plan_name)
        if plan is None:
            raise NotFoundError(
                "User subscription information not found",
                code="SUBSCRIPTION_NOT_FOUND",
            )
        return int(user.storage_used or 0), plan

    async def check_available(
        self,
        *,
        session: AsyncSession,
        owner_id: str,
        incoming_bytes: int,
    ) -> StorageCheck:
        if incoming_bytes <= 0:
            raise ValidationError(
                "Invalid file size. Please provide a positive number.",
                code="INVALID_FILE_SIZE",
            )
        used, plan = await self._resolve_plan(session, owner_id)
        check = evaluate_quota(
            used=used,
            limit=int(plan.storage_limit),
            incoming_bytes=incoming_bytes,
            plan_name=plan.name,
        )
        logger.debug(
            "storage_check owner_id=%s allowed=%s used=%s limit=%s incoming=%s",
            owner_id,
            check.allowed,
            check.used,
            check.limit,
            incoming_bytes,
        )
        return check

    async def usage(self, *, session: AsyncSession, owner_id: str) -> StorageUsage:
        used, plan = await self._resolve_plan(session, owner_id)
        limit = int(plan.storage_limit)
        return StorageUsage(
            used=used,
            limit=limit,
            has_available_storage=limit == UNLIMITED or used < limit,
            plan_name=plan.name,
        )

    async def commit(self, *, session: AsyncSession, owner_id: str, bytes_delta: int) -> int:
        # Atomic increment (or decrement on delete); the caller owns the transaction.
        new_used = await users_repo.add_storage_used(session, owner_id, bytes_delta)
        if new_used is None:
            raise NotFoundError("User not found", code="USER_NOT_FOUND")
        logger.info("storage_committed owner_id=%s delta=%s used=%s", owner_id, bytes_delta, new_used)
        return new_used


_quota_service: QuotaService | None = None


def get_quota_service() -> QuotaService:
    # Cache the quota service for reuse across requests.
    global _quota_service
    if _quota_service is None:
        _quota_service = QuotaService()
    return _quota_service


def reset_quota_service() -> None:
    global _quota_service
    _quota_service = None
