# -*- coding: utf-8 -*-
"""
Наблюдатель стадий: слушает смены статуса проекта и взводит stage_based напоминания.

Совпадение: точное строковое равенство (с учётом регистра). Каждое напоминание
взводится само по себе: одна смена статуса может взвести сколько угодно напоминаний.
Уже взведённое (есть stage_matched_at) повторно не трогаем, держим самое раннее
совпадение, чтобы мигание статуса не двигало окно задержки.
"""
from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from reminder_engine.core.errors import NotFoundError
from reminder_engine.models.reminder import Reminder, MODE_STAGE
from reminder_engine.repo import reminders as repo
from reminder_engine.repo.projects import get_project, get_statuses, set_status
from reminder_engine.services.triggers import compute_next_trigger, ensure_naive_utc, utcnow

log = logging.getLogger(__name__)


async def _arm(session: AsyncSession, r: Reminder, matched_at: datetime) -> bool:
    nxt = compute_next_trigger(MODE_STAGE, matched_at, r.delay_minutes)
    ok = await repo.compare_and_set(
        session, r.id, r.version, utcnow(),
        stage_matched_at=matched_at,
        occurrence_at=nxt,
        next_trigger_at=nxt,
        delivered_for=None,
    )
    if ok:
        log.info('reminder_armed id=%s project=%s matched=%s next=%s', r.id, r.project_id, matched_at, nxt)
    else:
        # кто-то успел раньше (другой наблюдатель, cancel), его запись главнее
        log.debug('reminder_arm_skipped id=%s reason=version', r.id)
    return ok


async def on_project_status_changed(
    session: AsyncSession,
    project_id: int,
    new_status: str,
    occurred_at: datetime | None = None,
) -> list[int]:
    """
    Событие (project_id, new_status, occurred_at). Возвращает id взведённых напоминаний.
    Неизвестный проект тихо игнорируем: это побочный канал, а не запрос.
    """
    occurred_at = ensure_naive_utc(occurred_at) if occurred_at is not None else utcnow()

    project = await get_project(session, project_id)
    if project is None:
        log.debug('status_event_ignored project=%s reason=missing', project_id)
        return []

    candidates = await repo.awaiting_stage(session, project_id=project_id, watch_status=new_status)
    armed: list[int] = []
    for r in candidates:
        # collation БД может быть регистронезависимой, сверяем ещё раз в Python
        if r.watch_status != new_status:
            continue
        if await _arm(session, r, occurred_at):
            armed.append(r.id)
    return armed


async def bootstrap_stage_watch(
    session: AsyncSession,
    now: datetime | None = None,
    limit: int | None = None,
) -> list[int]:
    """
    Стартовая сверка: ожидающие напоминания, чей проект уже стоит в нужном статусе,
    взводятся на now. Напоминания, уже закрывшие цикл повтора, ждут живого события.
    """
    now = ensure_naive_utc(now) if now is not None else utcnow()
    candidates = [r for r in await repo.awaiting_stage(session, limit=limit) if r.completed_at is None]
    statuses = await get_statuses(session, {r.project_id for r in candidates if r.project_id is not None})

    armed: list[int] = []
    for r in candidates:
        status = statuses.get(r.project_id)
        if status is None or status != r.watch_status:
            continue
        if await _arm(session, r, now):
            armed.append(r.id)
    if armed:
        log.info('stage_bootstrap armed=%s', len(armed))
    return armed


async def change_project_status(
    session: AsyncSession,
    project_id: int,
    status: str,
    now: datetime | None = None,
) -> list[int]:
    """
    Мутация статуса в хранилище проектов + синхронная рассылка события наблюдателю.
    """
    now = ensure_naive_utc(now) if now is not None else utcnow()
    if not await set_status(session, project_id, status, now):
        raise NotFoundError("project", project_id)
    return await on_project_status_changed(session, project_id, status, now)
