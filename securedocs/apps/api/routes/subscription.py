from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from securedocs.apps.api.deps import get_current_caller, get_db, get_quota
from securedocs.apps.api.openapi import error_responses
from securedocs.apps.api.response import SuccessEnvelope, success_response
from securedocs.apps.api.schemas import (
    PlanResponse,
    StorageUsageResponse,
    UpdatePlanRequest,
    to_plan_response,
)
from securedocs.services import subscriptions
from securedocs.services.auth.tokens import Caller
from securedocs.services.quota import QuotaService


router = APIRouter(prefix="/subscription", tags=["subscription"], responses=error_responses(500))


@router.get("/plans", response_model=SuccessEnvelope[list[PlanResponse]])
async def list_plans(request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    plans = await subscriptions.list_plans(session=db)
    return success_response(request=request, data=[to_plan_response(plan) for plan in plans])


@router.get(
    "/storage",
    response_model=SuccessEnvelope[StorageUsageResponse],
    responses=error_responses(401, 404),
)
async def get_storage_usage(
    request: Request,
    caller: Caller = Depends(get_current_caller),
    quota: QuotaService = Depends(get_quota),
    db: AsyncSession = Depends(get_db),
) -> dict:
    usage = await subscriptions.storage_usage(session=db, owner_id=caller.user_id, quota=quota)
    payload = StorageUsageResponse(
        used=usage.used,
        limit=usage.limit,
        has_available_storage=usage.has_available_storage,
        plan_name=usage.plan_name,
    )
    return success_response(request=request, data=payload)


@router.post(
    "/update",
    response_model=SuccessEnvelope[PlanResponse],
    responses=error_responses(400, 401, 404),
)
async def update_subscription(
    body: UpdatePlanRequest,
    request: Request,
    caller: Caller = Depends(get_current_caller),
    db: AsyncSession = Depends(get_db),
) -> dict:
    plan = await subscriptions.update_plan(
        session=db,
        owner_id=caller.user_id,
        plan_id=body.plan_id,
        request=request,
    )
    return success_response(request=request, data=to_plan_response(plan))
