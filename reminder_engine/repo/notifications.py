# reminder_engine/repo/notifications.py
from __future__ import annotations

from typing import Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from reminder_engine.models.notification import Notification


async def add_notification(
    session: AsyncSession,
    *,
    recipient_id: int,
    sender_id: int | None,
    project_id: int | None,
    reminder_id: int | None,
    title: str,
    message: str,
    type: str = "REMINDER",
) -> Notification:
    n = Notification(
        recipient_id=recipient_id,
        sender_id=sender_id,
        project_id=project_id,
        reminder_id=reminder_id,
        type=type,
        title=title,
        message=message,
    )
    session.add(n)
    await session.flush()
    return n


async def feed_for_user(session: AsyncSession, user_id: int, unread_only: bool = True, limit: int = 50) -> Sequence[Notification]:
    stmt = select(Notification).where(Notification.recipient_id == user_id)
    if unread_only:
        stmt = stmt.where(Notification.is_read.is_(False))
    stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def mark_read(session: AsyncSession, reminder_id: int, user_id: int | None = None) -> int:
    """Гасим непрочитанные уведомления по напоминанию (всем получателям или одному)."""
    stmt = (
        update(Notification)
        .where(Notification.reminder_id == reminder_id)
        .where(Notification.is_read.is_(False))
    )
    if user_id is not None:
        stmt = stmt.where(Notification.recipient_id == user_id)
    stmt = (
        stmt
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return int(res.rowcount or 0)
