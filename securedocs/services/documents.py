from __future__ import annotations

import logging
from uuid import uuid4

import httpx
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from securedocs.core.config import get_settings
from securedocs.core.errors import NotFoundError, QuotaExceededError, ValidationError
from securedocs.domain.models import Document
from securedocs.persistence.repos import documents as documents_repo
from securedocs.services.audit import record_event
from securedocs.services.quota import QuotaService, get_quota_service
from securedocs.services.storage.base import BlobStorageGateway
from securedocs.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

_MAX_NAME_LENGTH = 255


def _clean_name(name: str | None) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("Document name is required", code="INVALID_NAME")
    if len(cleaned) > _MAX_NAME_LENGTH:
        raise ValidationError("Document name is too long", code="INVALID_NAME")
    return cleaned


class DocumentService:
    """Owner-side document lifecycle wired through the quota ledger and blob store."""

    def __init__(self, *, storage: BlobStorageGateway, quota: QuotaService | None = None) -> None:
        self._storage = storage
        self._quota = quota or get_quota_service()

    async def upload(
        self,
        *,
        session: AsyncSession,
        owner_id: str,
        filename: str | None,
        content_type: str | None,
        data: bytes,
        request: Request | None = None,
    ) -> Document:
        settings = get_settings()
        name = _clean_name(filename)
        size = len(data)
        if size == 0:
            raise ValidationError("Uploaded file is empty", code="EMPTY_FILE")
        if size > settings.max_upload_bytes:
            raise ValidationError(
                "Uploaded file exceeds the maximum size",
                code="FILE_TOO_LARGE",
                details={"max_bytes": settings.max_upload_bytes},
            )
        mime = (content_type or "").split(";")[0].strip().lower()
        allowed_types = settings.allowed_upload_type_set()
        if allowed_types and mime not in allowed_types:
            raise ValidationError("Unsupported file type", code="UNSUPPORTED_FILE_TYPE")

        # Advisory fail-fast; the ledger commit below is the write of record.
        check = await self._quota.check_available(session=session, owner_id=owner_id, incoming_bytes=size)
        if not check.allowed:
            raise QuotaExceededError(
                "Storage limit exceeded. Please upgrade your plan.",
                details={
                    "used": check.used,
                    "limit": check.limit,
                    "would_be_used": check.would_be_used,
                    "plan_name": check.plan_name,
                },
            )

        document_id = uuid4().hex
        blob = await self._storage.put(
            owner_id=owner_id,
            document_id=document_id,
            filename=name,
            data=data,
            content_type=mime,
        )
        try:
            document = await documents_repo.create_document(
                session,
                document_id=document_id,
                user_id=owner_id,
                name=name,
                content_type=mime,
                size=size,
                file_path=blob.file_name,
                file_id=blob.file_id,
                content_sha1=blob.content_sha1,
                metadata_json=None,
            )
            await session.flush()
            await self._quota.commit(session=session, owner_id=owner_id, bytes_delta=size)
            await session.commit()
        except Exception:
            await session.rollback()
            logger.exception("document_upload_persist_failed owner_id=%s document_id=%s", owner_id, document_id)
            # Orphaned blob otherwise; cleanup is best-effort.
            await self._storage.delete(blob.file_id, file_name=blob.file_name)
            raise

        increment_counter("documents_uploaded_total")
        logger.info("document_uploaded owner_id=%s document_id=%s size=%s", owner_id, document_id, size)
        await record_event(
            session=session,
            owner_id=owner_id,
            actor_type="owner",
            actor_id=owner_id,
            event_type="document.uploaded",
            outcome="success",
            resource_type="document",
            resource_id=document_id,
            request=request,
            metadata={"size": size, "content_type": mime},
            commit=True,
        )
        return document

    async def list_for_owner(self, *, session: AsyncSession, owner_id: str) -> list[Document]:
        return await documents_repo.list_documents(session, owner_id)

    async def get_owned(self, *, session: AsyncSession, owner_id: str, document_id: str) -> Document:
        document = await documents_repo.get_owned_document(session, owner_id, document_id)
        if document is None:
            raise NotFoundError("Document not found", code="DOCUMENT_NOT_FOUND")
        return document

    async def rename(
        self,
        *,
        session: AsyncSession,
        owner_id: str,
        document_id: str,
        new_name: str | None,
    ) -> Document:
        name = _clean_name(new_name)
        document = await self.get_owned(session=session, owner_id=owner_id, document_id=document_id)
        await documents_repo.rename_document(session, document, name)
        await session.commit()
        logger.info("document_renamed owner_id=%s document_id=%s", owner_id, document_id)
        return document

    async def delete(
        self,
        *,
        session: AsyncSession,
        owner_id: str,
        document_id: str,
        request: Request | None = None,
    ) -> bool:
        """Delete the row and release its bytes; returns whether the blob was removed too."""
        document = await self.get_owned(session=session, owner_id=owner_id, document_id=document_id)
        file_id, file_name, size = document.file_id, document.file_path, int(document.size)
        try:
            await documents_repo.delete_document(session, document_id)
            await self._quota.commit(session=session, owner_id=owner_id, bytes_delta=-size)
            await session.commit()
        except Exception:
            await session.rollback()
            logger.exception("document_delete_failed owner_id=%s document_id=%s", owner_id, document_id)
            raise

        # Metadata deletion never waits on the blob store agreeing.
        blob_deleted = False
        if file_id:
            blob_deleted = await self._storage.delete(file_id, file_name=file_name)
        increment_counter("documents_deleted_total")
        logger.info(
            "document_deleted owner_id=%s document_id=%s blob_deleted=%s",
            owner_id,
            document_id,
            blob_deleted,
        )
        await record_event(
            session=session,
            owner_id=owner_id,
            actor_type="owner",
            actor_id=owner_id,
            event_type="document.deleted",
            outcome="success",
            resource_type="document",
            resource_id=document_id,
            request=request,
            metadata={"size": size, "blob_deleted": blob_deleted},
            commit=True,
        )
        return blob_deleted

    async def signed_url(self, document: Document) -> str:
        if not document.file_id:
            raise NotFoundError("Stored file not found", code="BLOB_NOT_FOUND")
        return await self._storage.signed_download_url(document.file_id)

    async def open_stream(self, document: Document) -> httpx.Response:
        if not document.file_id:
            raise NotFoundError("Stored file not found", code="BLOB_NOT_FOUND")
        return await self._storage.open_download(document.file_id)
