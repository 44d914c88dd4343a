# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Mapping, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from reminder_engine.core.config import settings
from reminder_engine.core.errors import TransientDispatchFailure
from reminder_engine.models.reminder import Reminder, MODE_ABSOLUTE
from reminder_engine.repo import reminders as repo
from reminder_engine.repo.projects import get_statuses
from reminder_engine.repo.users import get_users
from reminder_engine.services.channels import ChannelSink
from reminder_engine.services.triggers import ensure_naive_utc, utcnow

log = logging.getLogger(__name__)

MIN_CONDITION_RECHECK_MINUTES = 5


@dataclass
class DispatchReport:
    delivered: list[int] = field(default_factory=list)
    failures: list[TransientDispatchFailure] = field(default_factory=list)
    deactivated: list[int] = field(default_factory=list)
    postponed: list[int] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (self.delivered or self.failures or self.deactivated or self.postponed)


def _sink_name(sink: ChannelSink) -> str:
    return getattr(sink, "name", "") or type(sink).__name__


async def deliver(
    session: AsyncSession,
    reminder: Reminder,
    sinks: Mapping[str, Sequence[ChannelSink]],
    now: datetime | None = None,
) -> list[TransientDispatchFailure]:
    """
    Рассылка одного напоминания по всем включённым каналам всем получателям + автору.
    Сбой пары (получатель, канал) не мешает остальным парам.
    Пары, уже доставленные для текущего срока, повторно не шлются.
    """
    now = now or utcnow()
    occurrence = reminder.next_trigger_at
    done = await repo.delivered_pairs(session, reminder.id, occurrence)
    failures: list[TransientDispatchFailure] = []
    users = await get_users(session, reminder.audience_ids)
    for user in users:
        if not user.is_active:
            continue
        for channel, enabled in reminder.channels.items():
            if not enabled:
                continue
            for sink in sinks.get(channel, ()):
                name = _sink_name(sink)
                if (user.id, channel, name) in done:
                    continue
                try:
                    await sink.send(reminder, user, channel)
                except SQLAlchemyError:
                    # хранилище недоступно: это не сбой канала
                    raise
                except TransientDispatchFailure as e:
                    failures.append(e)
                except Exception as e:
                    failures.append(TransientDispatchFailure(reminder.id, user.id, channel, e))
                else:
                    await repo.record_delivery(session, reminder.id, occurrence, user.id, channel, name, now)
    for f in failures:
        log.warning(
            'dispatch_failed reminder=%s recipient=%s channel=%s error="%s"',
            f.reminder_id, f.recipient_id, f.channel, f.cause,
        )
    return failures


async def dispatch_due_reminders(
    session: AsyncSession,
    sinks: Mapping[str, Sequence[ChannelSink]],
    now: datetime | None = None,
    limit: int = 50,
    retry_backoff: int | None = None,
    condition_recheck: int | None = None,
) -> DispatchReport:
    """
    Один проход планировщика: все scheduled+active с next_trigger_at <= now,
    срок которых ещё не доставлен целиком. Статус не меняется, напоминание
    остаётся «due», пока его не подтвердят (snooze/complete/cancel).
    Отметка доставки ставится только если все пары прошли: иначе повтор
    не раньше чем через retry_backoff секунд, и только для недоставленных пар.
    """
    now = ensure_naive_utc(now) if now is not None else utcnow()
    backoff = timedelta(seconds=settings.retry_backoff_seconds if retry_backoff is None else retry_backoff)
    recheck = timedelta(minutes=max(
        MIN_CONDITION_RECHECK_MINUTES,
        settings.condition_recheck_minutes if condition_recheck is None else condition_recheck,
    ))
    report = DispatchReport()

    due = await repo.due_reminders(session, now, limit)
    if not due:
        return report

    known = await get_statuses(session, {r.project_id for r in due if r.project_id is not None})
    for r in due:
        if r.project_id is not None and r.project_id not in known:
            # проект удалён, напоминание становится инертным
            await repo.deactivate(session, r.id, now)
            report.deactivated.append(r.id)
            log.info('reminder_deactivated id=%s reason=project_missing project=%s', r.id, r.project_id)
            continue

        occurrence = r.next_trigger_at
        if (
            r.trigger_mode == MODE_ABSOLUTE
            and r.condition_status
            and r.project_id is not None
            and known[r.project_id] != r.condition_status
        ):
            # проект ещё не в нужном статусе: не шлём, проверим позже
            if await repo.postpone(session, r.id, occurrence, now + recheck, now):
                report.postponed.append(r.id)
                log.info(
                    'reminder_postponed id=%s want="%s" project_status="%s" next=%s',
                    r.id, r.condition_status, known[r.project_id], now + recheck,
                )
            continue

        failures = await deliver(session, r, sinks, now)
        if failures:
            report.failures.extend(failures)
            await repo.record_error(session, r.id, str(failures[-1]), now, retry_after=now + backoff)
            continue

        if await repo.mark_delivered(session, r.id, occurrence, now):
            report.delivered.append(r.id)
    return report
