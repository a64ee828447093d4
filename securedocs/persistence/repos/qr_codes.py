from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from securedocs.domain.models import QrCode, User


async def create_qr_code(
    session: AsyncSession,
    *,
    qr_code_id: str,
    user_id: str,
    code: str,
    access_code: str | None,
    expires_at: datetime,
) -> QrCode:
    row = QrCode(
        id=qr_code_id,
        user_id=user_id,
        code=code,
        access_code=access_code,
        is_active=True,
        expires_at=expires_at,
    )
    session.add(row)
    await session.flush()
    return row


async def deactivate_others(session: AsyncSession, *, user_id: str, keep_id: str) -> int:
    result = await session.execute(
        update(QrCode)
        .where(QrCode.user_id == user_id, QrCode.id != keep_id, QrCode.is_active.is_(True))
        .values(is_active=False)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


async def get_active_by_code(
    session: AsyncSession, code: str, *, now: datetime
) -> tuple[QrCode, User] | None:
    # Expiry is compared in SQL so every dialect applies the same clock semantics.
    result = await session.execute(
        select(QrCode, User)
        .join(User, User.id == QrCode.user_id)
        .where(QrCode.code == code, QrCode.is_active.is_(True), QrCode.expires_at > now)
    )
    row = result.first()
    if row is None:
        return None
    return row[0], row[1]


async def count_active(session: AsyncSession, user_id: str) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(QrCode)
        .where(QrCode.user_id == user_id, QrCode.is_active.is_(True))
    )
    return int(result.scalar() or 0)
