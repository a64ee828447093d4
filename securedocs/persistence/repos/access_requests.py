from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from securedocs.domain.models import AccessRequest, Document, QrCode, RequestedDocument
from securedocs.domain.types import AccessRequestStatus


async def create_access_request(
    session: AsyncSession,
    *,
    request_id: str,
    qr_code_id: str,
    requester_name: str,
    requester_mobile: str,
    document_ids: list[str],
) -> AccessRequest:
    row = AccessRequest(
        id=request_id,
        qr_code_id=qr_code_id,
        requester_name=requester_name,
        requester_mobile=requester_mobile,
        status=AccessRequestStatus.PENDING.value,
        permission_level=None,
    )
    session.add(row)
    # Flush the request before its join rows to satisfy FK constraints.
    await session.flush()
    for document_id in document_ids:
        session.add(
            RequestedDocument(
                id=uuid4().hex,
                access_request_id=request_id,
                document_id=document_id,
            )
        )
    await session.flush()
    return row


async def get_with_owner_and_documents(
    session: AsyncSession, request_id: str
) -> tuple[AccessRequest, str, list[Document]] | None:
    # One statement, so status and the requested set come from the same snapshot.
    result = await session.execute(
        select(AccessRequest, QrCode.user_id, Document)
        .join(QrCode, QrCode.id == AccessRequest.qr_code_id)
        .outerjoin(RequestedDocument, RequestedDocument.access_request_id == AccessRequest.id)
        .outerjoin(Document, Document.id == RequestedDocument.document_id)
        .where(AccessRequest.id == request_id)
        .order_by(Document.name, Document.id)
        .execution_options(populate_existing=True)
    )
    rows = result.all()
    if not rows:
        return None
    documents = [row[2] for row in rows if row[2] is not None]
    return rows[0][0], rows[0][1], documents


async def get_owned_for_update(
    session: AsyncSession, request_id: str, owner_id: str
) -> AccessRequest | None:
    # Row lock (Postgres) serializes concurrent decisions on the same request.
    result = await session.execute(
        select(AccessRequest)
        .join(QrCode, QrCode.id == AccessRequest.qr_code_id)
        .where(AccessRequest.id == request_id, QrCode.user_id == owner_id)
        .with_for_update(of=AccessRequest)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_requested_documents(session: AsyncSession, request_id: str) -> list[Document]:
    result = await session.execute(
        select(Document)
        .join(RequestedDocument, RequestedDocument.document_id == Document.id)
        .where(RequestedDocument.access_request_id == request_id)
        .order_by(Document.name, Document.id)
    )
    return list(result.scalars().all())


async def prune_requested_documents(
    session: AsyncSession, request_id: str, keep_document_ids: set[str]
) -> None:
    stmt = delete(RequestedDocument).where(RequestedDocument.access_request_id == request_id)
    if keep_document_ids:
        stmt = stmt.where(RequestedDocument.document_id.not_in(keep_document_ids))
    await session.execute(stmt.execution_options(synchronize_session=False))


async def mark_decided(
    session: AsyncSession,
    request_id: str,
    *,
    status: AccessRequestStatus,
    permission_level: str | None,
    decided_at: datetime,
) -> bool:
    # Conditional on pending so a concurrent decision cannot overwrite a terminal state.
    result = await session.execute(
        update(AccessRequest)
        .where(
            AccessRequest.id == request_id,
            AccessRequest.status == AccessRequestStatus.PENDING.value,
        )
        .values(status=status.value, permission_level=permission_level, decided_at=decided_at)
        .execution_options(synchronize_session=False)
    )
    return bool(result.rowcount)


async def find_approved_levels(
    session: AsyncSession, document_id: str, *, request_id: str | None = None
) -> list[str]:
    stmt = (
        select(AccessRequest.permission_level)
        .join(RequestedDocument, RequestedDocument.access_request_id == AccessRequest.id)
        .where(
            RequestedDocument.document_id == document_id,
            AccessRequest.status == AccessRequestStatus.APPROVED.value,
        )
    )
    if request_id is not None:
        stmt = stmt.where(AccessRequest.id == request_id)
    result = await session.execute(stmt)
    return [row[0] for row in result.all()]


async def list_for_owner(
    session: AsyncSession, owner_id: str, *, status: AccessRequestStatus | None = None
) -> list[AccessRequest]:
    stmt = (
        select(AccessRequest)
        .join(QrCode, QrCode.id == AccessRequest.qr_code_id)
        .where(QrCode.user_id == owner_id)
    )
    if status is not None:
        stmt = stmt.where(AccessRequest.status == status.value)
    result = await session.execute(
        stmt.order_by(AccessRequest.created_at.desc(), AccessRequest.id).execution_options(populate_existing=True)
    )
    return list(result.scalars().all())
