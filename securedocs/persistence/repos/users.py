from __future__ import annotations

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from securedocs.domain.models import SubscriptionPlan, User


async def get_user(session: AsyncSession, user_id: str) -> User | None:
    result = await session.execute(
        select(User).where(User.id == user_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def create_user(
    session: AsyncSession,
    *,
    user_id: str,
    full_name: str,
    email: str | None,
    phone_number: str | None,
    pin_hash: str | None,
    subscription_id: int | None,
) -> User:
    user = User(
        id=user_id,
        full_name=full_name,
        email=email,
        phone_number=phone_number,
        pin_hash=pin_hash,
        subscription_id=subscription_id,
        storage_used=0,
    )
    session.add(user)
    return user


async def find_users_by_phone(session: AsyncSession, candidates: list[str]) -> list[User]:
    # Several spellings of the same number may be on file; callers check the PIN per match.
    if not candidates:
        return []
    result = await session.execute(
        select(User).where(User.phone_number.in_(candidates)).order_by(User.created_at, User.id)
    )
    return list(result.scalars().all())


async def get_user_with_plan(
    session: AsyncSession, user_id: str
) -> tuple[User, SubscriptionPlan | None] | None:
    result = await session.execute(
        select(User, SubscriptionPlan)
        .outerjoin(SubscriptionPlan, SubscriptionPlan.id == User.subscription_id)
        .where(User.id == user_id)
        # Ledger counters change through bulk UPDATEs; never serve a stale identity-map copy.
        .execution_options(populate_existing=True)
    )
    row = result.first()
    if row is None:
        return None
    return row[0], row[1]


async def add_storage_used(session: AsyncSession, user_id: str, delta: int) -> int | None:
    # Single UPDATE so concurrent commits never lose an increment; never drop below zero.
    new_value = User.storage_used + delta
    result = await session.execute(
        update(User)
        .where(User.id == user_id)
        .values(storage_used=case((new_value < 0, 0), else_=new_value))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return None
    refreshed = await session.execute(select(User.storage_used).where(User.id == user_id))
    return int(refreshed.scalar_one())


async def list_plans(session: AsyncSession) -> list[SubscriptionPlan]:
    result = await session.execute(
        select(SubscriptionPlan).order_by(SubscriptionPlan.price.asc().nulls_last(), SubscriptionPlan.id)
    )
    return list(result.scalars().all())


async def get_plan(session: AsyncSession, plan_id: int) -> SubscriptionPlan | None:
    result = await session.execute(select(SubscriptionPlan).where(SubscriptionPlan.id == plan_id))
    return result.scalar_one_or_none()


async def get_plan_by_name(session: AsyncSession, name: str) -> SubscriptionPlan | None:
    result = await session.execute(select(SubscriptionPlan).where(SubscriptionPlan.name == name))
    return result.scalar_one_or_none()


async def assign_plan(session: AsyncSession, user_id: str, plan_id: int | None) -> None:
    await session.execute(
        update(User)
        .where(User.id == user_id)
        .values(subscription_id=plan_id)
        .execution_options(synchronize_session=False)
    )
