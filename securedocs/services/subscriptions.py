from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from securedocs.core.config import get_settings
from securedocs.core.errors import NotFoundError, ValidationError
from securedocs.domain.models import SubscriptionPlan
from securedocs.persistence.repos import users as users_repo
from securedocs.services.audit import record_event
from securedocs.services.quota import UNLIMITED, QuotaService, StorageUsage, get_quota_service


logger = logging.getLogger(__name__)

# Seeded by the initial migration; limits in bytes, 0 means unlimited.
DEFAULT_PLANS: list[dict] = [
    {"name": "Free", "storage_limit": 5 * 1024 * 1024, "price": 0, "features_json": {"max_documents": None}},
    {"name": "Pro", "storage_limit": 15 * 1024 * 1024, "price": 9.99, "features_json": {"priority_support": True}},
    {"name": "Enterprise", "storage_limit": UNLIMITED, "price": 29.99, "features_json": {"priority_support": True}},
]


async def list_plans(*, session: AsyncSession) -> list[SubscriptionPlan]:
    return await users_repo.list_plans(session)


async def ensure_plan(*, session: AsyncSession, owner_id: str) -> SubscriptionPlan:
    """Return the owner's plan, assigning the default plan to owners that have none."""
    row = await users_repo.get_user_with_plan(session, owner_id)
    if row is None:
        raise NotFoundError("User not found. Please log in again.", code="USER_NOT_FOUND")
    _user, plan = row
    if plan is not None:
        return plan
    default_plan = await users_repo.get_plan_by_name(session, get_settings().default_plan_name)
    if default_plan is None:
        raise NotFoundError("User subscription information not found", code="SUBSCRIPTION_NOT_FOUND")
    await users_repo.assign_plan(session, owner_id, default_plan.id)
    await session.commit()
    logger.info("subscription_default_assigned owner_id=%s plan=%s", owner_id, default_plan.name)
    return default_plan


async def storage_usage(
    *,
    session: AsyncSession,
    owner_id: str,
    quota: QuotaService | None = None,
) -> StorageUsage:
    await ensure_plan(session=session, owner_id=owner_id)
    return await (quota or get_quota_service()).usage(session=session, owner_id=owner_id)


async def update_plan(
    *,
    session: AsyncSession,
    owner_id: str,
    plan_id: int,
    request: Request | None = None,
) -> SubscriptionPlan:
    plan = await users_repo.get_plan(session, plan_id)
    if plan is None:
        raise NotFoundError("Subscription plan not found", code="PLAN_NOT_FOUND")
    user = await users_repo.get_user(session, owner_id)
    if user is None:
        raise NotFoundError("User not found. Please log in again.", code="USER_NOT_FOUND")

    limit = int(plan.storage_limit)
    used = int(user.storage_used or 0)
    if limit != UNLIMITED and used > limit:
        raise ValidationError(
            "Current storage usage exceeds the selected plan's limit",
            code="PLAN_DOWNGRADE_BLOCKED",
            details={"used": used, "limit": limit},
        )

    previous_id = user.subscription_id
    await users_repo.assign_plan(session, owner_id, plan.id)
    await session.commit()
    logger.info("subscription_updated owner_id=%s plan=%s", owner_id, plan.name)
    await record_event(
        session=session,
        owner_id=owner_id,
        actor_type="owner",
        actor_id=owner_id,
        event_type="subscription.updated",
        outcome="success",
        resource_type="subscription_plan",
        resource_id=str(plan.id),
        request=request,
        metadata={"previous_plan_id": previous_id, "plan_name": plan.name},
        commit=True,
    )
    return plan
