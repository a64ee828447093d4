from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from securedocs.apps.api.deps import (
    get_access_requests,
    get_current_caller,
    get_db,
    get_optional_caller,
)
from securedocs.apps.api.openapi import error_responses
from securedocs.apps.api.response import SuccessEnvelope, success_response
from securedocs.apps.api.schemas import (
    AccessRequestCreate,
    AccessRequestCreated,
    AccessRequestResponse,
    ApprovalResponse,
    ApproveRequest,
    ApprovedDocumentsResponse,
    DenialResponse,
    OwnerProfile,
    OwnerVerifyRequest,
    OwnerVerifyResponse,
    to_access_request_response,
    to_document_list,
)
from securedocs.core.config import get_settings
from securedocs.domain.types import AccessRequestStatus
from securedocs.services.access_requests import AccessRequestService
from securedocs.services.auth import owner_verification
from securedocs.services.auth.tokens import Caller


router = APIRouter(prefix="/access", tags=["access"], responses=error_responses(500))


@router.post(
    "/request",
    status_code=201,
    response_model=SuccessEnvelope[AccessRequestCreated],
    responses=error_responses(400, 404),
)
async def create_access_request(
    body: AccessRequestCreate,
    request: Request,
    service: AccessRequestService = Depends(get_access_requests),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await service.create(
        session=db,
        code=body.qr_code or "",
        requester_name=body.requester_name,
        requester_mobile=body.requester_mobile,
        document_ids=body.document_ids,
        request=request,
    )
    payload = AccessRequestCreated(request_id=row.id, status=AccessRequestStatus(row.status))
    return success_response(request=request, data=payload)


@router.post(
    "/verify",
    response_model=SuccessEnvelope[OwnerVerifyResponse],
    responses=error_responses(400, 401, 404),
)
async def verify_owner(
    body: OwnerVerifyRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict:
    verified = await owner_verification.verify(
        session=db,
        phone=body.mobile or "",
        pin=body.pin or "",
        request=request,
    )
    payload = OwnerVerifyResponse(
        token=verified.token,
        expires_in=get_settings().owner_token_ttl_minutes * 60,
        user=OwnerProfile(
            id=verified.user.id,
            full_name=verified.user.full_name,
            email=verified.user.email,
        ),
        documents=to_document_list(verified.documents),
    )
    return success_response(request=request, data=payload)


@router.get(
    "/requests",
    response_model=SuccessEnvelope[list[AccessRequestResponse]],
    responses=error_responses(400, 401),
)
async def list_access_requests(
    request: Request,
    status: AccessRequestStatus | None = Query(default=None),
    caller: Caller = Depends(get_current_caller),
    service: AccessRequestService = Depends(get_access_requests),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rows = await service.list_for_owner(session=db, owner_id=caller.user_id, status=status)
    payload = [to_access_request_response(row, include_contact=True) for row in rows]
    return success_response(request=request, data=payload)


@router.get(
    "/requests/{request_id}",
    response_model=SuccessEnvelope[AccessRequestResponse],
    responses=error_responses(404),
)
async def get_access_request(
    request: Request,
    request_id: str,
    caller: Caller = Depends(get_optional_caller),
    service: AccessRequestService = Depends(get_access_requests),
    db: AsyncSession = Depends(get_db),
) -> dict:
    # Safe to poll: read-only, and documents stay hidden until approval.
    view = await service.get_status(session=db, request_id=request_id, caller=caller)
    payload = to_access_request_response(
        view.request,
        documents=view.documents,
        include_contact=view.is_owner,
    )
    return success_response(request=request, data=payload)


@router.post(
    "/requests/{request_id}/approve",
    response_model=SuccessEnvelope[ApprovalResponse],
    responses=error_responses(400, 401, 404, 409),
)
async def approve_access_request(
    request_id: str,
    request: Request,
    body: ApproveRequest | None = None,
    caller: Caller = Depends(get_current_caller),
    service: AccessRequestService = Depends(get_access_requests),
    db: AsyncSession = Depends(get_db),
) -> dict:
    selection = body or ApproveRequest()
    result = await service.approve(
        session=db,
        request_id=request_id,
        owner_id=caller.user_id,
        selected_document_ids=selection.document_ids,
        permission_level=selection.permission_level,
        request=request,
    )
    payload = ApprovalResponse(
        request_id=result.request_id,
        status=AccessRequestStatus.APPROVED,
        permission_level=result.permission_level,
        approved_documents=to_document_list(result.approved_documents),
        removed_documents=result.removed_documents,
    )
    return success_response(request=request, data=payload)


@router.post(
    "/requests/{request_id}/deny",
    response_model=SuccessEnvelope[DenialResponse],
    responses=error_responses(401, 404, 409),
)
async def deny_access_request(
    request_id: str,
    request: Request,
    caller: Caller = Depends(get_current_caller),
    service: AccessRequestService = Depends(get_access_requests),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await service.deny(session=db, request_id=request_id, owner_id=caller.user_id, request=request)
    payload = DenialResponse(request_id=request_id, status=AccessRequestStatus.DENIED)
    return success_response(request=request, data=payload)


@router.get(
    "/requests/{request_id}/documents",
    response_model=SuccessEnvelope[ApprovedDocumentsResponse],
    responses=error_responses(404),
)
async def get_approved_documents(
    request: Request,
    request_id: str,
    service: AccessRequestService = Depends(get_access_requests),
    db: AsyncSession = Depends(get_db),
) -> dict:
    approved = await service.approved_documents(session=db, request_id=request_id)
    payload = ApprovedDocumentsResponse(
        request_id=approved.request_id,
        permission_level=approved.permission_level,
        documents=to_document_list(approved.documents),
    )
    return success_response(request=request, data=payload)
