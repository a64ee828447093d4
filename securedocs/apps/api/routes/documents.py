from __future__ import annotations

import logging
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Query, Request, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.background import BackgroundTask
from starlette.responses import StreamingResponse

from securedocs.apps.api.deps import (
    get_current_caller,
    get_db,
    get_documents,
    get_grants,
    get_optional_caller,
    get_quota,
)
from securedocs.apps.api.openapi import error_responses
from securedocs.apps.api.response import SuccessEnvelope, success_response
from securedocs.apps.api.schemas import (
    DocumentDeleteResponse,
    DocumentMetadataResponse,
    DocumentResponse,
    RenameRequest,
    StorageCheckRequest,
    StorageCheckResponse,
    to_document_list,
    to_document_response,
)
from securedocs.core.config import get_settings
from securedocs.core.errors import ValidationError
from securedocs.domain.models import Document
from securedocs.domain.types import PermissionLevel
from securedocs.services.auth.tokens import Caller
from securedocs.services.documents import DocumentService
from securedocs.services.grants import GrantEvaluator
from securedocs.services.quota import QuotaService


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/documents", tags=["documents"], responses=error_responses(500))

_SUPPORTED_DOWNLOAD_FORMATS = {"original"}


def _content_disposition(disposition: str, filename: str) -> str:
    # RFC 6266: ASCII fallback plus the UTF-8 encoded name.
    fallback = filename.encode("ascii", "ignore").decode("ascii").replace('"', "") or "document"
    return f"{disposition}; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"


async def _proxy(
    documents: DocumentService,
    document: Document,
    level: PermissionLevel,
    disposition: str,
) -> StreamingResponse:
    # Bytes flow through the API; the signed URL never reaches the client.
    upstream = await documents.open_stream(document)
    return StreamingResponse(
        upstream.aiter_raw(),
        media_type=document.content_type,
        headers={
            "Content-Disposition": _content_disposition(disposition, document.name),
            "X-Permission-Level": level.value,
            "Cache-Control": "private, no-store",
        },
        background=BackgroundTask(upstream.aclose),
    )


@router.post(
    "/check-storage",
    response_model=SuccessEnvelope[StorageCheckResponse],
    responses=error_responses(400, 401, 404),
)
async def check_storage(
    request: Request,
    body: StorageCheckRequest,
    caller: Caller = Depends(get_current_caller),
    quota: QuotaService = Depends(get_quota),
    db: AsyncSession = Depends(get_db),
) -> dict:
    if body.file_size is None:
        raise ValidationError(
            "Invalid file size. Please provide a positive number.",
            code="INVALID_FILE_SIZE",
        )
    check = await quota.check_available(
        session=db,
        owner_id=caller.user_id,
        incoming_bytes=body.file_size,
    )
    payload = StorageCheckResponse(
        allowed=check.allowed,
        used=check.used,
        limit=check.limit,
        would_be_used=check.would_be_used,
        plan_name=check.plan_name,
    )
    return success_response(request=request, data=payload)


@router.post(
    "/upload",
    status_code=201,
    response_model=SuccessEnvelope[DocumentResponse],
    responses=error_responses(400, 401, 404, 413),
)
async def upload_document(
    request: Request,
    file: UploadFile = File(...),
    caller: Caller = Depends(get_current_caller),
    documents: DocumentService = Depends(get_documents),
    db: AsyncSession = Depends(get_db),
) -> dict:
    # Read one byte past the cap so oversize files are rejected without buffering them whole.
    data = await file.read(get_settings().max_upload_bytes + 1)
    document = await documents.upload(
        session=db,
        owner_id=caller.user_id,
        filename=file.filename,
        content_type=file.content_type,
        data=data,
        request=request,
    )
    return success_response(request=request, data=to_document_response(document))


@router.get(
    "",
    response_model=SuccessEnvelope[list[DocumentResponse]],
    responses=error_responses(401),
)
async def list_documents(
    request: Request,
    caller: Caller = Depends(get_current_caller),
    documents: DocumentService = Depends(get_documents),
    db: AsyncSession = Depends(get_db),
) -> dict:
    owned = await documents.list_for_owner(session=db, owner_id=caller.user_id)
    return success_response(request=request, data=to_document_list(owned))


@router.get(
    "/{document_id}",
    response_model=SuccessEnvelope[DocumentMetadataResponse],
    responses=error_responses(403, 404),
)
async def get_document(
    request: Request,
    document_id: str,
    request_id: str | None = Query(default=None),
    caller: Caller = Depends(get_optional_caller),
    grants: GrantEvaluator = Depends(get_grants),
    documents: DocumentService = Depends(get_documents),
    db: AsyncSession = Depends(get_db),
) -> dict:
    grant = await grants.authorize(
        session=db,
        document_id=document_id,
        caller=caller,
        request_id=request_id,
    )
    url = None
    if grant.level.allows_download:
        url = await documents.signed_url(grant.document)
    payload = DocumentMetadataResponse(
        document=to_document_response(grant.document),
        permission_level=grant.level,
        url=url,
    )
    return success_response(request=request, data=payload)


@router.get("/{document_id}/preview", responses=error_responses(403, 404))
async def preview_document(
    document_id: str,
    request_id: str | None = Query(default=None),
    caller: Caller = Depends(get_optional_caller),
    grants: GrantEvaluator = Depends(get_grants),
    documents: DocumentService = Depends(get_documents),
    db: AsyncSession = Depends(get_db),
) -> StreamingResponse:
    grant = await grants.authorize(
        session=db,
        document_id=document_id,
        caller=caller,
        request_id=request_id,
    )
    return await _proxy(documents, grant.document, grant.level, "inline")


@router.get("/{document_id}/download", responses=error_responses(400, 403, 404))
async def download_document(
    document_id: str,
    format: str = Query(default="original"),
    request_id: str | None = Query(default=None),
    caller: Caller = Depends(get_optional_caller),
    grants: GrantEvaluator = Depends(get_grants),
    documents: DocumentService = Depends(get_documents),
    db: AsyncSession = Depends(get_db),
) -> StreamingResponse:
    if format not in _SUPPORTED_DOWNLOAD_FORMATS:
        raise ValidationError(f"Unsupported download format: {format}", code="UNSUPPORTED_FORMAT")
    grant = await grants.authorize_download(
        session=db,
        document_id=document_id,
        caller=caller,
        request_id=request_id,
    )
    logger.info("document_download document_id=%s owner=%s", document_id, grant.via_ownership)
    return await _proxy(documents, grant.document, grant.level, "attachment")


@router.put(
    "/{document_id}/rename",
    response_model=SuccessEnvelope[DocumentResponse],
    responses=error_responses(400, 401, 404),
)
async def rename_document(
    request: Request,
    document_id: str,
    body: RenameRequest,
    caller: Caller = Depends(get_current_caller),
    documents: DocumentService = Depends(get_documents),
    db: AsyncSession = Depends(get_db),
) -> dict:
    document = await documents.rename(
        session=db,
        owner_id=caller.user_id,
        document_id=document_id,
        new_name=body.name,
    )
    return success_response(request=request, data=to_document_response(document))


@router.delete(
    "/{document_id}",
    response_model=SuccessEnvelope[DocumentDeleteResponse],
    responses=error_responses(401, 404),
)
async def delete_document(
    document_id: str,
    request: Request,
    caller: Caller = Depends(get_current_caller),
    documents: DocumentService = Depends(get_documents),
    db: AsyncSession = Depends(get_db),
) -> dict:
    blob_deleted = await documents.delete(
        session=db,
        owner_id=caller.user_id,
        document_id=document_id,
        request=request,
    )
    payload = DocumentDeleteResponse(id=document_id, blob_deleted=blob_deleted)
    return success_response(request=request, data=payload)
