from __future__ import annotations

import logging
import re
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from securedocs.core.config import get_settings
from securedocs.core.errors import NotFoundError, ValidationError
from securedocs.domain.models import User
from securedocs.persistence.repos import users as users_repo
from securedocs.services.audit import record_event
from securedocs.services.auth.owner_verification import hash_pin, normalize_phone


logger = logging.getLogger(__name__)

_PIN_PATTERN = re.compile(r"^\d{4,8}$")


async def provision_owner(
    *,
    session: AsyncSession,
    full_name: str,
    email: str | None = None,
    phone: str | None = None,
    pin: str | None = None,
    plan_name: str | None = None,
    actor_id: str = "system",
) -> User:
    """Create an owner account; phone and PIN together enable re-authentication."""
    name = full_name.strip()
    if not name:
        raise ValidationError("Full name is required", code="MISSING_FIELDS")
    if bool(phone) != bool(pin):
        raise ValidationError("Phone and PIN must be provided together", code="MISSING_FIELDS")
    if pin is not None and not _PIN_PATTERN.match(pin):
        raise ValidationError("PIN must be 4 to 8 digits", code="INVALID_PIN")

    plan = await users_repo.get_plan_by_name(session, plan_name or get_settings().default_plan_name)
    if plan is None:
        raise NotFoundError("Subscription plan not found", code="PLAN_NOT_FOUND")

    user = await users_repo.create_user(
        session,
        user_id=uuid4().hex,
        full_name=name,
        email=email,
        phone_number=normalize_phone(phone) if phone else None,
        pin_hash=hash_pin(pin) if pin else None,
        subscription_id=plan.id,
    )
    await session.commit()
    logger.info("owner_provisioned owner_id=%s plan=%s", user.id, plan.name)
    await record_event(
        session=session,
        owner_id=user.id,
        actor_type="system",
        actor_id=actor_id,
        event_type="owner.provisioned",
        outcome="success",
        resource_type="user",
        resource_id=user.id,
        metadata={"plan_name": plan.name, "reauth_enabled": pin is not None},
        commit=True,
    )
    return user
