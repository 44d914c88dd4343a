# reminder_engine/core/db.py
# Async SQLAlchemy + session factory + инициализация схемы

from __future__ import annotations

from contextlib import asynccontextmanager
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from reminder_engine.core.config import settings


def make_engine(url: str) -> AsyncEngine:
    return create_async_engine(
        url,
        echo=False,
        pool_pre_ping=True,
        future=True,
    )


def make_sessionmaker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
    )


# Один движок на приложение
engine = make_engine(settings.database_url)

# Фабрика сессий
Session: async_sessionmaker[AsyncSession] = make_sessionmaker(engine)


@asynccontextmanager
async def session_scope() -> AsyncSession:
    """
    Контекст для работы с БД:
    >>> async with session_scope() as s:
    ...     await s.execute(...)
    """
    session: AsyncSession = Session()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def init_db(bind: AsyncEngine | None = None) -> None:
    """
    Создание таблиц для старта без Alembic.
    Все модели используют общий Base из reminder_engine.models.user.
    """
    from reminder_engine.models import Base  # регистрирует все таблицы
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
