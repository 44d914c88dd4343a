# reminder_engine/repo/users.py
from __future__ import annotations

from typing import Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from reminder_engine.models.user import User, ROLE_ADMIN, ROLE_STAFF


async def get_users(session: AsyncSession, user_ids: Iterable[int]) -> Sequence[User]:
    ids = sorted(set(user_ids))
    if not ids:
        return []
    q = await session.execute(select(User).where(User.id.in_(ids)).order_by(User.id))
    return list(q.scalars().all())


async def existing_ids(session: AsyncSession, user_ids: Iterable[int]) -> set[int]:
    ids = set(user_ids)
    if not ids:
        return set()
    q = await session.execute(select(User.id).where(User.id.in_(ids)))
    return set(q.scalars().all())


async def get_by_telegram_id(session: AsyncSession, tg_id: int) -> User | None:
    q = await session.execute(select(User).where(User.telegram_id == tg_id))
    return q.scalar_one_or_none()


async def get_or_create_user(
    session: AsyncSession,
    tg_id: int,
    username: str | None = None,
    full_name: str | None = None,
    make_admin: bool = False,
) -> User:
    user = await get_by_telegram_id(session, tg_id)
    if user:
        if username and user.username != username:
            user.username = username
        if make_admin and user.role != ROLE_ADMIN:
            user.role = ROLE_ADMIN
        return user
    user = User(
        telegram_id=tg_id,
        username=username,
        full_name=full_name,
        role=ROLE_ADMIN if make_admin else ROLE_STAFF,
    )
    session.add(user)
    await session.flush()
    return user


async def set_email(session: AsyncSession, user_db_id: int, email: str | None) -> None:
    q = await session.execute(select(User).where(User.id == user_db_id))
    u = q.scalar_one_or_none()
    if u:
        u.email = (email or "").strip()[:254] or None
        await session.flush()
