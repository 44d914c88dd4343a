# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from reminder_engine.core.config import settings
from reminder_engine.core.db import session_scope
from reminder_engine.services.channels import build_sinks
from reminder_engine.services.dispatcher import DispatchReport, dispatch_due_reminders
from reminder_engine.services.stage_watcher import bootstrap_stage_watch
from reminder_engine.services.triggers import utcnow

if TYPE_CHECKING:
    from aiogram import Bot

log = logging.getLogger(__name__)

TICK_JOB_ID = "reminders_tick"

_scheduler: AsyncIOScheduler | None = None


async def run_dispatch_pass(bot: "Bot | None" = None) -> DispatchReport:
    # naive UTC
    now = utcnow()
    async with session_scope() as session:
        sinks = build_sinks(session, bot)
        return await dispatch_due_reminders(session, sinks, now, limit=settings.batch_size)


async def run_stage_bootstrap() -> None:
    async with session_scope() as session:
        await bootstrap_stage_watch(session, limit=settings.batch_size * 20)


def start_scheduler(bot: "Bot | None" = None) -> AsyncIOScheduler:
    global _scheduler
    scheduler = AsyncIOScheduler()

    @scheduler.scheduled_job(
        "interval",
        seconds=settings.scheduler_interval_seconds,
        id=TICK_JOB_ID,
        max_instances=1,
        coalesce=True,
    )
    async def tick_reminders() -> None:
        try:
            report = await run_dispatch_pass(bot)
        except Exception:
            # проход упал целиком (обычно БД), следующий тик попробует снова
            log.exception("reminders_tick_failed")
            return
        if report.empty:
            log.debug("reminders_tick idle")
        else:
            log.info(
                "reminders_tick delivered=%s failed=%s deactivated=%s postponed=%s",
                len(report.delivered), len(report.failures), len(report.deactivated), len(report.postponed),
            )

    # разовая сверка ожидающих стадий со статусами проектов
    scheduler.add_job(run_stage_bootstrap, "date", id="stage_bootstrap")

    scheduler.start()
    _scheduler = scheduler
    log.info("Scheduler started interval=%ss", settings.scheduler_interval_seconds)
    return scheduler


def request_dispatch() -> None:
    """Сдвинуть ближайший тик на «сейчас» после мутаций, которые могли создать срочное напоминание."""
    if _scheduler is None or not _scheduler.running:
        return
    job = _scheduler.get_job(TICK_JOB_ID)
    if job is not None:
        job.modify(next_run_time=datetime.now(timezone.utc))
