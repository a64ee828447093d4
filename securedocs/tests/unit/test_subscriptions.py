from __future__ import annotations

import pytest

from securedocs.core.errors import NotFoundError, ValidationError
from securedocs.persistence.db import SessionLocal
from securedocs.persistence.repos import users as users_repo
from securedocs.services.quota import QuotaService
from securedocs.services.subscriptions import ensure_plan, list_plans, storage_usage, update_plan
from securedocs.tests.utils.factories import create_owner


MB = 1024 * 1024


async def _plan_id(name: str) -> int:
    async with SessionLocal() as session:
        plan = await users_repo.get_plan_by_name(session, name)
    assert plan is not None
    return plan.id


@pytest.mark.asyncio
async def test_list_plans_orders_by_price() -> None:
    async with SessionLocal() as session:
        plans = await list_plans(session=session)
    assert [plan.name for plan in plans] == ["Free", "Pro", "Enterprise"]


@pytest.mark.asyncio
async def test_ensure_plan_assigns_default() -> None:
    owner = await create_owner(phone=None, pin=None)
    async with SessionLocal() as session:
        await users_repo.assign_plan(session, owner.id, None)
        await session.commit()
        plan = await ensure_plan(session=session, owner_id=owner.id)
        user = await users_repo.get_user(session, owner.id)
    assert plan.name == "Free"
    assert user is not None and user.subscription_id == plan.id


@pytest.mark.asyncio
async def test_upgrade_then_usage_reflects_new_limit() -> None:
    owner = await create_owner(phone=None, pin=None)
    async with SessionLocal() as session:
        plan = await update_plan(session=session, owner_id=owner.id, plan_id=await _plan_id("Pro"))
        usage = await storage_usage(session=session, owner_id=owner.id)
    assert plan.name == "Pro"
    assert usage.limit == 15 * MB
    assert usage.plan_name == "Pro"


@pytest.mark.asyncio
async def test_downgrade_blocked_when_usage_exceeds_limit() -> None:
    owner = await create_owner(phone=None, pin=None, plan_name="Pro")
    async with SessionLocal() as session:
        await QuotaService().commit(session=session, owner_id=owner.id, bytes_delta=8 * MB)
        await session.commit()
        with pytest.raises(ValidationError) as excinfo:
            await update_plan(session=session, owner_id=owner.id, plan_id=await _plan_id("Free"))
    assert excinfo.value.code == "PLAN_DOWNGRADE_BLOCKED"
    assert excinfo.value.details == {"used": 8 * MB, "limit": 5 * MB}


@pytest.mark.asyncio
async def test_unlimited_plan_never_blocks() -> None:
    owner = await create_owner(phone=None, pin=None, plan_name="Pro")
    async with SessionLocal() as session:
        await QuotaService().commit(session=session, owner_id=owner.id, bytes_delta=14 * MB)
        await session.commit()
        plan = await update_plan(session=session, owner_id=owner.id, plan_id=await _plan_id("Enterprise"))
        usage = await storage_usage(session=session, owner_id=owner.id)
    assert plan.name == "Enterprise"
    assert usage.limit == 0
    assert usage.has_available_storage is True


@pytest.mark.asyncio
async def test_unknown_plan() -> None:
    owner = await create_owner(phone=None, pin=None)
    async with SessionLocal() as session:
        with pytest.raises(NotFoundError) as excinfo:
            await update_plan(session=session, owner_id=owner.id, plan_id=9999)
    assert excinfo.value.code == "PLAN_NOT_FOUND"
