from __future__ import annotations

import logging
from typing import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from securedocs.core.errors import UnauthorizedError
from securedocs.persistence.db import get_session
from securedocs.services.access_requests import AccessRequestService, get_access_request_service
from securedocs.services.auth.tokens import ANONYMOUS, Caller, decode_token
from securedocs.services.capabilities import CapabilityManager, get_capability_manager
from securedocs.services.documents import DocumentService
from securedocs.services.grants import GrantEvaluator, get_grant_evaluator
from securedocs.services.quota import QuotaService, get_quota_service
from securedocs.services.storage.base import BlobStorageGateway
from securedocs.services.storage.factory import get_storage_gateway


logger = logging.getLogger(__name__)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


def _parse_bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise UnauthorizedError("Missing or invalid bearer token")
    return parts[1]


async def get_current_caller(request: Request) -> Caller:
    token = _parse_bearer_token(request.headers.get("Authorization"))
    if token is None:
        raise UnauthorizedError("Missing or invalid bearer token")
    caller = decode_token(token)
    request.state.caller_id = caller.user_id
    return caller


async def get_optional_caller(request: Request) -> Caller:
    # Public endpoints treat a bad or expired token like no token at all.
    try:
        token = _parse_bearer_token(request.headers.get("Authorization"))
        if token is None:
            return ANONYMOUS
        caller = decode_token(token)
    except UnauthorizedError as exc:
        logger.debug("optional_auth_ignored code=%s", exc.code)
        return ANONYMOUS
    request.state.caller_id = caller.user_id
    return caller


def get_storage() -> BlobStorageGateway:
    return get_storage_gateway()


def get_quota() -> QuotaService:
    return get_quota_service()


def get_capabilities() -> CapabilityManager:
    return get_capability_manager()


def get_access_requests() -> AccessRequestService:
    return get_access_request_service()


def get_grants() -> GrantEvaluator:
    return get_grant_evaluator()


def get_documents(
    storage: BlobStorageGateway = Depends(get_storage),
    quota: QuotaService = Depends(get_quota),
) -> DocumentService:
    return DocumentService(storage=storage, quota=quota)
