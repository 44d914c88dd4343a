# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from reminder_engine.core.errors import (
    AuthorizationError, ConflictError, NotFoundError, ValidationError,
)
from reminder_engine.models.reminder import Reminder, MODE_ABSOLUTE, MODE_STAGE, STATUS_SCHEDULED
from reminder_engine.repo import reminders as repo
from reminder_engine.repo.projects import get_project
from reminder_engine.repo.users import existing_ids
from reminder_engine.services.access import Actor, can_act, can_manage
from reminder_engine.services.schemas import ReminderConfig, ReminderUpdate, parse_config, parse_update
from reminder_engine.services.triggers import compute_next_trigger, ensure_naive_utc, is_due, utcnow

log = logging.getLogger(__name__)

# запас на рассинхрон часов клиента: «прямо сейчас» не считается прошлым
PAST_TOLERANCE = timedelta(seconds=5)


def _now(now: datetime | None) -> datetime:
    return ensure_naive_utc(now) if now is not None else utcnow()


async def _resolve_recipients(session: AsyncSession, requested: set[int], owner_id: int) -> set[int]:
    ids = set(requested) | {owner_id}
    known = await existing_ids(session, ids)
    unknown = ids - known
    if unknown:
        raise ValidationError("recipient_ids", f"unknown users: {sorted(unknown)}")
    return ids


async def _load(session: AsyncSession, reminder_id: int) -> Reminder:
    r = await repo.get_reminder(session, reminder_id, fresh=True)
    if r is None:
        raise NotFoundError("reminder", reminder_id)
    return r


async def create_reminder(
    session: AsyncSession,
    project_id: int | None,
    config: ReminderConfig | dict,
    actor: Actor,
    now: datetime | None = None,
) -> Reminder:
    """
    Валидирует конфиг и сохраняет напоминание.
    absolute_time сразу получает срок; stage_based ждёт стадию, но если проект
    уже в нужном статусе, совпадение засчитывается в момент создания.
    """
    now = _now(now)
    cfg = parse_config(config)

    project = None
    if project_id is not None:
        project = await get_project(session, project_id)
        if project is None:
            raise NotFoundError("project", project_id)
    elif cfg.trigger_mode == MODE_STAGE:
        raise ValidationError("project_id", "stage-based reminders must be linked to a project")

    stage_matched_at = None
    next_trigger_at = None
    if cfg.trigger_mode == MODE_ABSOLUTE:
        if cfg.remind_at < now - PAST_TOLERANCE:
            raise ValidationError("remind_at", "reminder date must be in the future")
        next_trigger_at = compute_next_trigger(MODE_ABSOLUTE, cfg.remind_at)
    elif project.status == cfg.watch_status:
        stage_matched_at = now
        next_trigger_at = compute_next_trigger(MODE_STAGE, stage_matched_at, cfg.delay_minutes)

    # не-админ всегда напоминает только себе
    requested = set(cfg.recipient_ids) if actor.is_admin else set()
    recipients = await _resolve_recipients(session, requested, actor.user_id)

    reminder = await repo.add_reminder(
        session,
        recipients,
        project_id=project_id,
        created_by=actor.user_id,
        title=cfg.title,
        message=cfg.message,
        template_key=cfg.template_key,
        timezone=cfg.timezone,
        trigger_mode=cfg.trigger_mode,
        repeat=cfg.repeat,
        remind_at=cfg.remind_at,
        condition_status=cfg.condition_status,
        watch_status=cfg.watch_status,
        delay_minutes=cfg.delay_minutes if cfg.trigger_mode == MODE_STAGE else 0,
        stage_matched_at=stage_matched_at,
        occurrence_at=next_trigger_at,
        next_trigger_at=next_trigger_at,
        channel_in_app=cfg.channels.in_app,
        channel_email=cfg.channels.email,
        status=STATUS_SCHEDULED,
        is_active=True,
        version=1,
        created_at=now,
        updated_at=now,
    )
    log.info(
        'reminder_created id=%s project=%s mode=%s repeat=%s next=%s',
        reminder.id, project_id, reminder.trigger_mode, reminder.repeat, reminder.next_trigger_at,
    )
    return reminder


async def get_reminder(session: AsyncSession, reminder_id: int, actor: Actor) -> Reminder:
    r = await _load(session, reminder_id)
    if not can_act(r, actor):
        raise AuthorizationError("Not authorized to view reminder.")
    return r


async def list_reminders(
    session: AsyncSession,
    project_id: int | None,
    include_completed: bool = False,
    actor: Actor | None = None,
) -> Sequence[Reminder]:
    """
    Напоминания проекта. Без include_completed только scheduled и активные.
    Не-админ видит только свои (автор или получатель).
    """
    visible_to = None if actor is None or actor.is_admin else actor.user_id
    return await repo.list_reminders(
        session,
        project_id=project_id,
        include_completed=include_completed,
        visible_to=visible_to,
    )


async def list_for_user(session: AsyncSession, user_id: int, include_completed: bool = False) -> Sequence[Reminder]:
    return await repo.list_reminders(session, include_completed=include_completed, visible_to=user_id)


async def update_reminder(
    session: AsyncSession,
    reminder_id: int,
    actor: Actor,
    changes: ReminderUpdate | dict,
    now: datetime | None = None,
) -> Reminder:
    """
    Редактирование до первого срабатывания. Режим срабатывания менять нельзя:
    для другого режима создаётся новое напоминание.
    """
    now = _now(now)
    r = await _load(session, reminder_id)
    if not can_manage(r, actor):
        raise AuthorizationError("Not authorized to edit reminder.")
    if r.status != STATUS_SCHEDULED or not r.is_active:
        raise ConflictError("Only scheduled reminders can be edited.", r)
    if is_due(r.next_trigger_at, now):
        raise ConflictError("Only reminders that have not triggered yet can be edited.", r)

    ch = parse_update(changes)
    if ch.trigger_mode is not None and ch.trigger_mode != r.trigger_mode:
        raise ValidationError("trigger_mode", "trigger mode cannot be changed; create a new reminder")

    values: dict = {}
    for name in ("title", "message", "template_key", "timezone", "repeat"):
        value = getattr(ch, name)
        if value is not None:
            values[name] = value

    if r.trigger_mode == MODE_ABSOLUTE:
        if ch.condition_status is not None:
            values["condition_status"] = ch.condition_status
        if ch.remind_at is not None:
            if ch.remind_at < now - PAST_TOLERANCE:
                raise ValidationError("remind_at", "reminder date must be in the future")
            values.update(
                remind_at=ch.remind_at,
                occurrence_at=ch.remind_at,
                next_trigger_at=ch.remind_at,
                delivered_for=None,
            )
    elif ch.watch_status is not None or ch.delay_minutes is not None:
        watch_status = ch.watch_status if ch.watch_status is not None else r.watch_status
        delay = ch.delay_minutes if ch.delay_minutes is not None else r.delay_minutes
        project = await get_project(session, r.project_id) if r.project_id is not None else None
        if project is None:
            raise NotFoundError("project", r.project_id)
        matched_at = now if project.status == watch_status else None
        nxt = compute_next_trigger(MODE_STAGE, matched_at, delay)
        values.update(
            watch_status=watch_status,
            delay_minutes=delay,
            stage_matched_at=matched_at,
            occurrence_at=nxt,
            next_trigger_at=nxt,
            delivered_for=None,
        )

    if ch.channels is not None:
        values.update(channel_in_app=ch.channels.in_app, channel_email=ch.channels.email)

    recipients = None
    if ch.recipient_ids is not None:
        recipients = await _resolve_recipients(session, set(ch.recipient_ids), r.created_by)

    if not await repo.compare_and_set(session, r.id, r.version, now, **values):
        current = await repo.get_reminder(session, r.id, fresh=True)
        raise ConflictError("Reminder was changed by someone else.", current)
    if recipients is not None:
        await repo.replace_recipients(session, r.id, recipients)

    log.info('reminder_updated id=%s fields=%s', r.id, ",".join(sorted(values)) or "-")
    return await repo.get_reminder(session, r.id, fresh=True)


async def delete_reminder(session: AsyncSession, reminder_id: int, actor: Actor) -> None:
    r = await _load(session, reminder_id)
    if not can_manage(r, actor):
        raise AuthorizationError("Not authorized to delete reminder.")
    await repo.delete_reminder(session, r)
    log.info('reminder_deleted id=%s by=%s', reminder_id, actor.user_id)
