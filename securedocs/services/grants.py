from __future__ import annotations

from dataclasses import dataclass
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from securedocs.core.errors import NotFoundError, PermissionDeniedError
from securedocs.domain.models import Document
from securedocs.domain.types import PermissionLevel
from securedocs.persistence.repos import access_requests as access_repo
from securedocs.persistence.repos import documents as documents_repo
from securedocs.services.auth.tokens import Caller
from securedocs.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

# Most permissive first when several approved requests cover one document.
_LEVEL_ORDER = [PermissionLevel.VIEW_AND_DOWNLOAD, PermissionLevel.VIEW_ONLY]


@dataclass(frozen=True)
class Grant:
    document: Document
    level: PermissionLevel
    via_ownership: bool


def _best_level(levels: list[str]) -> PermissionLevel | None:
    parsed = set()
    for raw in levels:
        try:
            parsed.add(PermissionLevel(raw or PermissionLevel.VIEW_AND_DOWNLOAD.value))
        except ValueError:
            # Unknown stored values never widen access.
            logger.warning("grant_unknown_permission_level value=%s", raw)
    for level in _LEVEL_ORDER:
        if level in parsed:
            return level
    return None


class GrantEvaluator:
    """Decides whether a caller may read a document, and at which level.

    Owners always get ``view_and_download``. Everyone else needs an approved
    access request whose document set still includes the document. Pending,
    denied and absent requests are indistinguishable to the caller.
    """

    async def authorize(
        self,
        *,
        session: AsyncSession,
        document_id: str,
        caller: Caller,
        request_id: str | None = None,
    ) -> Grant:
        document = await documents_repo.get_document_by_id(session, document_id)
        if document is None:
            raise NotFoundError("Document not found", code="DOCUMENT_NOT_FOUND")

        if caller.is_owner_of(document.user_id):
            return Grant(document=document, level=PermissionLevel.VIEW_AND_DOWNLOAD, via_ownership=True)

        levels = await access_repo.find_approved_levels(session, document_id, request_id=request_id)
        level = _best_level(levels)
        if level is None:
            increment_counter("grant_denied_total")
            logger.info("grant_denied document_id=%s", document_id)
            raise PermissionDeniedError()
        return Grant(document=document, level=level, via_ownership=False)

    async def authorize_download(
        self,
        *,
        session: AsyncSession,
        document_id: str,
        caller: Caller,
        request_id: str | None = None,
    ) -> Grant:
        grant = await self.authorize(
            session=session,
            document_id=document_id,
            caller=caller,
            request_id=request_id,
        )
        # Download is a stricter gate layered on top of view access.
        if not grant.level.allows_download:
            increment_counter("grant_download_denied_total")
            logger.info("grant_download_denied document_id=%s", document_id)
            raise PermissionDeniedError("This document is view-only; download is not permitted")
        return grant


_grant_evaluator: GrantEvaluator | None = None


def get_grant_evaluator() -> GrantEvaluator:
    global _grant_evaluator
    if _grant_evaluator is None:
        _grant_evaluator = GrantEvaluator()
    return _grant_evaluator


def reset_grant_evaluator() -> None:
    global _grant_evaluator
    _grant_evaluator = None
