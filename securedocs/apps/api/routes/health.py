from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Request
from pydantic import BaseModel

from securedocs.apps.api.openapi import error_responses
from securedocs.apps.api.response import SuccessEnvelope, success_response
from securedocs.persistence.db import pool_stats
from securedocs.services.telemetry import availability, external_success_rate

router = APIRouter(tags=["health"], responses=error_responses(500))


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    db_pool: dict[str, int | None]
    availability_5m: float | None = None
    storage_success_rate_5m: float | None = None


@router.get("/health", response_model=SuccessEnvelope[HealthResponse])
async def health(request: Request) -> dict:
    payload = HealthResponse(
        status="ok",
        timestamp=datetime.now(timezone.utc),
        db_pool=pool_stats(),
        availability_5m=availability(300),
        storage_success_rate_5m=external_success_rate("storage.b2", 300),
    )
    return success_response(request=request, data=payload)
