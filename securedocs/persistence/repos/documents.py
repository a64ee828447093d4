from __future__ import annotations

from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from securedocs.domain.models import Document, RequestedDocument


async def create_document(
    session: AsyncSession,
    *,
    document_id: str,
    user_id: str,
    name: str,
    content_type: str,
    size: int,
    file_path: str,
    file_id: str | None,
    content_sha1: str | None,
    metadata_json: dict[str, Any] | None,
) -> Document:
    doc = Document(
        id=document_id,
        user_id=user_id,
        name=name,
        content_type=content_type,
        size=size,
        file_path=file_path,
        file_id=file_id,
        content_sha1=content_sha1,
        metadata_json=metadata_json,
    )
    session.add(doc)
    return doc


async def list_documents(session: AsyncSession, user_id: str) -> list[Document]:
    # Owner scoping prevents cross-owner leakage.
    result = await session.execute(
        select(Document)
        .where(Document.user_id == user_id)
        .order_by(Document.created_at.desc(), Document.id)
    )
    return list(result.scalars().all())


async def get_document_by_id(session: AsyncSession, document_id: str) -> Document | None:
    # Use with care; ownership checks are enforced by callers.
    result = await session.execute(select(Document).where(Document.id == document_id))
    return result.scalar_one_or_none()


async def get_owned_document(session: AsyncSession, user_id: str, document_id: str) -> Document | None:
    # Return None for owner mismatch to keep 404 semantics.
    result = await session.execute(
        select(Document).where(Document.id == document_id, Document.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def find_owned_documents(
    session: AsyncSession, user_id: str, document_ids: list[str]
) -> list[Document]:
    if not document_ids:
        return []
    result = await session.execute(
        select(Document).where(Document.id.in_(document_ids), Document.user_id == user_id)
    )
    return list(result.scalars().all())


async def rename_document(session: AsyncSession, doc: Document, new_name: str) -> Document:
    doc.name = new_name
    await session.flush()
    return doc


async def delete_document(session: AsyncSession, document_id: str) -> None:
    # Drop grant rows explicitly so no dialect depends on FK cascades being enabled.
    await session.execute(delete(RequestedDocument).where(RequestedDocument.document_id == document_id))
    await session.execute(delete(Document).where(Document.id == document_id))
