from __future__ import annotations

import os
import tempfile

# Point the engine at a throwaway SQLite file before any securedocs module builds it.
_DB_DIR = tempfile.mkdtemp(prefix="securedocs-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/securedocs.db"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ.pop("NOTIFY_WEBHOOK_URL", None)

import pytest  # noqa: E402

from securedocs.core.config import get_settings  # noqa: E402
from securedocs.domain.models import Base, SubscriptionPlan  # noqa: E402
from securedocs.persistence.db import SessionLocal, engine  # noqa: E402
from securedocs.services.access_requests import reset_access_request_service  # noqa: E402
from securedocs.services.capabilities import reset_capability_manager  # noqa: E402
from securedocs.services.grants import reset_grant_evaluator  # noqa: E402
from securedocs.services.notifications import reset_notifier  # noqa: E402
from securedocs.services.quota import reset_quota_service  # noqa: E402
from securedocs.services.storage.factory import reset_storage_gateway  # noqa: E402
from securedocs.services.subscriptions import DEFAULT_PLANS  # noqa: E402
from securedocs.services.telemetry import reset_telemetry  # noqa: E402


@pytest.fixture(autouse=True)
async def reset_database() -> None:
    # Fresh schema and plan catalogue per test keeps cases independent.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    async with SessionLocal() as session:
        for plan in DEFAULT_PLANS:
            session.add(SubscriptionPlan(**plan))
        await session.commit()
    yield
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    await engine.dispose()


@pytest.fixture(autouse=True)
async def reset_service_state() -> None:
    yield
    get_settings.cache_clear()
    reset_quota_service()
    reset_capability_manager()
    reset_access_request_service()
    reset_grant_evaluator()
    reset_telemetry()
    await reset_notifier()
    await reset_storage_gateway()
