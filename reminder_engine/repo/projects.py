# reminder_engine/repo/projects.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from reminder_engine.models.project import Project


async def get_project(session: AsyncSession, project_id: int) -> Project | None:
    return await session.get(Project, project_id)


async def get_statuses(session: AsyncSession, project_ids: set[int]) -> dict[int, str]:
    """
    Текущие статусы пачкой: {project_id: status}. Отсутствующих проектов в ответе нет.
    """
    if not project_ids:
        return {}
    q = await session.execute(select(Project.id, Project.status).where(Project.id.in_(project_ids)))
    return {pid: status for pid, status in q.all()}


async def set_status(session: AsyncSession, project_id: int, status: str, now: datetime) -> bool:
    stmt = (
        update(Project)
        .where(Project.id == project_id)
        .values(status=status, updated_at=now)
    )
    res = await session.execute(stmt)
    return res.rowcount == 1
