from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from securedocs.apps.api.deps import get_capabilities, get_current_caller, get_db
from securedocs.apps.api.openapi import error_responses
from securedocs.apps.api.response import SuccessEnvelope, success_response
from securedocs.apps.api.schemas import (
    CapabilityResponse,
    CapabilityValidationResponse,
    to_document_list,
)
from securedocs.services.auth.tokens import Caller
from securedocs.services.capabilities import CapabilityManager


router = APIRouter(prefix="/qrcode", tags=["qrcode"], responses=error_responses(500))


@router.post(
    "/generate",
    status_code=201,
    response_model=SuccessEnvelope[CapabilityResponse],
    responses=error_responses(401, 404),
)
async def generate_qr_code(
    request: Request,
    caller: Caller = Depends(get_current_caller),
    capabilities: CapabilityManager = Depends(get_capabilities),
    db: AsyncSession = Depends(get_db),
) -> dict:
    # Issuing replaces every earlier code the owner had.
    issued = await capabilities.issue(session=db, owner_id=caller.user_id, request=request)
    payload = CapabilityResponse(
        id=issued.id,
        code=issued.code,
        qr_code_url=issued.url,
        expires_at=issued.expires_at,
    )
    return success_response(request=request, data=payload)


@router.get(
    "/validate/{code}",
    response_model=SuccessEnvelope[CapabilityValidationResponse],
    responses=error_responses(404),
)
async def validate_qr_code(
    request: Request,
    code: str,
    capabilities: CapabilityManager = Depends(get_capabilities),
    db: AsyncSession = Depends(get_db),
) -> dict:
    validated = await capabilities.validate(session=db, code=code)
    payload = CapabilityValidationResponse(
        qr_code_id=validated.qr_code_id,
        owner_id=validated.owner_id,
        owner_name=validated.owner_name,
        documents=to_document_list(validated.documents),
    )
    return success_response(request=request, data=payload)
