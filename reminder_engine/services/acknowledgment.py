# -*- coding: utf-8 -*-
"""
Машина подтверждения: snooze / complete / cancel.

Состояния: scheduled (ждёт стадию, ждёт срока, сработало и ждёт реакции; различаются
только stage_matched_at/next_trigger_at), completed, cancelled. Терминальные не покидаются.

Каждое действие: читаем запись -> проверяем права -> считаем новые значения
от прочитанной версии -> пишем compare-and-set по (version, status='scheduled').
Опоздавший получает ConflictError с текущим состоянием, а не тихий успех.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from reminder_engine.core.config import settings
from reminder_engine.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from reminder_engine.models.reminder import (
    Reminder, MODE_ABSOLUTE, MODE_STAGE, REPEAT_NONE, STATUS_CANCELLED, STATUS_COMPLETED,
)
from reminder_engine.repo import reminders as repo
from reminder_engine.repo.notifications import mark_read
from reminder_engine.services.access import Actor, can_act, can_manage
from reminder_engine.services.triggers import compute_next_trigger, ensure_naive_utc, utcnow

log = logging.getLogger(__name__)

MAX_SNOOZE_MINUTES = 60 * 24 * 14


def normalize_snooze_minutes(minutes, default: int | None = None) -> int:
    if minutes is None or minutes == "":
        return default if default is not None else settings.default_snooze_minutes
    try:
        value = int(minutes)
    except (TypeError, ValueError):
        raise ValidationError("minutes", "snooze minutes must be a positive integer")
    if value <= 0:
        raise ValidationError("minutes", "snooze minutes must be a positive integer")
    return min(value, MAX_SNOOZE_MINUTES)


def _ensure_open(r: Reminder) -> None:
    if r.is_terminal:
        raise ConflictError(f"Reminder is already {r.status}.", r)


def snooze_values(r: Reminder, minutes: int, now: datetime) -> dict:
    _ensure_open(r)
    if r.next_trigger_at is None:
        raise ConflictError("This reminder is waiting for its target stage and cannot be snoozed yet.", r)
    # status и stage_matched_at не трогаем
    return {"next_trigger_at": now + timedelta(minutes=minutes)}


def complete_values(r: Reminder, now: datetime) -> dict:
    _ensure_open(r)
    terminal = {
        "status": STATUS_COMPLETED,
        "is_active": False,
        "next_trigger_at": None,
        "completed_at": now,
    }
    if r.trigger_mode == MODE_STAGE:
        # закрытый stage_based без срока не должен выглядеть «совпавшим»
        terminal["stage_matched_at"] = None
    if r.repeat == REPEAT_NONE:
        return terminal

    if r.trigger_mode == MODE_ABSOLUTE:
        previous = r.occurrence_at or r.next_trigger_at or r.remind_at
        nxt = compute_next_trigger(MODE_ABSOLUTE, r.remind_at, 0, r.repeat, previous_trigger_at=previous)
        if nxt is None:
            return terminal
        return {"occurrence_at": nxt, "next_trigger_at": nxt, "completed_at": now}

    # stage_based: обратно в ожидание, условие должно повториться по-настоящему
    return {
        "stage_matched_at": None,
        "occurrence_at": None,
        "next_trigger_at": None,
        "completed_at": now,
    }


def cancel_values(r: Reminder, now: datetime) -> dict:
    _ensure_open(r)
    return {"status": STATUS_CANCELLED, "is_active": False, "cancelled_at": now}


async def _transition(
    session: AsyncSession,
    reminder_id: int,
    actor: Actor,
    now: datetime,
    *,
    action: str,
    allowed: Callable[[Reminder, Actor], bool],
    compute: Callable[[Reminder], dict],
) -> Reminder:
    r = await repo.get_reminder(session, reminder_id, fresh=True)
    if r is None:
        raise NotFoundError("reminder", reminder_id)
    if not allowed(r, actor):
        raise AuthorizationError(f"Not authorized to {action} reminder.")

    values = compute(r)
    ok = await repo.compare_and_set(session, r.id, r.version, now, **values)
    current = await repo.get_reminder(session, r.id, fresh=True)
    if not ok:
        log.info('reminder_%s_conflict id=%s status=%s', action, reminder_id, current.status if current else "deleted")
        raise ConflictError("Reminder was changed by someone else.", current)

    log.info(
        'reminder_%s id=%s by=%s status=%s next=%s',
        action, r.id, actor.user_id, current.status, current.next_trigger_at,
    )
    return current


async def snooze(
    session: AsyncSession,
    reminder_id: int,
    actor: Actor,
    minutes: int | None = None,
    now: datetime | None = None,
) -> Reminder:
    now = ensure_naive_utc(now) if now is not None else utcnow()
    mins = normalize_snooze_minutes(minutes)
    return await _transition(
        session, reminder_id, actor, now,
        action="snooze",
        allowed=can_act,
        compute=lambda r: snooze_values(r, mins, now),
    )


async def complete(
    session: AsyncSession,
    reminder_id: int,
    actor: Actor,
    now: datetime | None = None,
) -> Reminder:
    now = ensure_naive_utc(now) if now is not None else utcnow()
    r = await _transition(
        session, reminder_id, actor, now,
        action="complete",
        allowed=can_act,
        compute=lambda r: complete_values(r, now),
    )
    # закрытый срок больше не висит в ленте
    await mark_read(session, r.id)
    return r


async def cancel(
    session: AsyncSession,
    reminder_id: int,
    actor: Actor,
    now: datetime | None = None,
) -> Reminder:
    now = ensure_naive_utc(now) if now is not None else utcnow()
    r = await _transition(
        session, reminder_id, actor, now,
        action="cancel",
        allowed=can_manage,
        compute=lambda r: cancel_values(r, now),
    )
    await mark_read(session, r.id)
    return r
