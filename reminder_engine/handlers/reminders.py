# reminder_engine/handlers/reminders.py
from __future__ import annotations

import logging
import re
from contextlib import suppress
from datetime import datetime
from zoneinfo import ZoneInfo

from aiogram import Router, F
from aiogram.exceptions import TelegramBadRequest
from aiogram.filters import Command
from aiogram.types import Message, CallbackQuery

from reminder_engine.core.config import settings
from reminder_engine.core.db import session_scope
from reminder_engine.core.errors import (
    AuthorizationError, ConflictError, NotFoundError, ReminderError, ValidationError,
)
from reminder_engine.core.scheduler import request_dispatch
from reminder_engine.repo.notifications import feed_for_user, mark_read
from reminder_engine.repo.users import get_or_create_user
from reminder_engine.services import acknowledgment
from reminder_engine.services.access import Actor, can_manage
from reminder_engine.services.reminders import create_reminder, list_for_user
from reminder_engine.services.triggers import ensure_naive_utc
from reminder_engine.ui.keyboards import kb_reminder_actions
from reminder_engine.ui.ui import format_reminder

log = logging.getLogger(__name__)
router = Router(name=__name__)

_REMIND_RE = re.compile(r"^\s*(\d+|-)\s+(\d{4}-\d{2}-\d{2})\s+(\d{1,2}:\d{2})\s+(.+)$", re.S)
_WATCH_RE = re.compile(r"^\s*(\d+)\s+(\d+)\s+([^|]+?)\s*\|\s*(.+)$", re.S)


def parse_remind_args(arg: str, tz: str) -> tuple[int | None, datetime, str]:
    """
    "<project_id|-> YYYY-MM-DD HH:MM <title>" -> (project_id, when naive UTC, title).
    Время во входе локальное для tz.
    """
    m = _REMIND_RE.match(arg or "")
    if not m:
        raise ValueError("expected: <project_id|-> YYYY-MM-DD HH:MM <title>")
    pid_raw, d, t, title = m.groups()
    local = datetime.strptime(f"{d} {t}", "%Y-%m-%d %H:%M").replace(tzinfo=ZoneInfo(tz))
    project_id = None if pid_raw == "-" else int(pid_raw)
    return project_id, ensure_naive_utc(local), title.strip()


def parse_watch_args(arg: str) -> tuple[int, int, str, str]:
    """
    "<project_id> <delay_min> <Status> | <title>" -> (project_id, delay, status, title).
    Статус может содержать пробелы, поэтому отделяется от заголовка чертой.
    """
    m = _WATCH_RE.match(arg or "")
    if not m:
        raise ValueError("expected: <project_id> <delay_min> <Status> | <title>")
    pid, delay, status, title = m.groups()
    return int(pid), int(delay), status.strip(), title.strip()


def _error_text(e: ReminderError) -> str:
    if isinstance(e, ValidationError):
        return f"Invalid {e.field}: {e.message}"
    if isinstance(e, AuthorizationError):
        return "You are not allowed to do that."
    if isinstance(e, ConflictError):
        status = getattr(e.reminder, "status", None)
        return f"{e} (now: {status})" if status else str(e)
    if isinstance(e, NotFoundError):
        return f"{e.kind.capitalize()} not found."
    return str(e)


async def _actor_for(s, from_user) -> Actor:
    user = await get_or_create_user(
        s, from_user.id, from_user.username, from_user.full_name,
        make_admin=from_user.id in settings.admin_telegram_ids,
    )
    return Actor.of(user)


@router.message(Command("reminders"))
async def cmd_reminders_list(m: Message) -> None:
    async with session_scope() as s:
        actor = await _actor_for(s, m.from_user)
        items = await list_for_user(s, actor.user_id)

    if not items:
        await m.answer("No active reminders.")
        return

    for r in items:
        await m.answer(
            format_reminder(r, settings.tz),
            parse_mode="HTML",
            reply_markup=kb_reminder_actions(
                r.id,
                can_cancel=can_manage(r, actor),
                can_snooze=r.next_trigger_at is not None,
            ),
        )


@router.message(Command("remind"))
async def cmd_remind(m: Message) -> None:
    """
    /remind <project_id|-> <YYYY-MM-DD HH:MM> <title>
    """
    arg = (m.text or "").partition(" ")[2]
    try:
        project_id, when_utc, title = parse_remind_args(arg, settings.tz)
    except ValueError as e:
        await m.answer(f"Format: /remind <project_id|-> YYYY-MM-DD HH:MM <title>\n\nError: {e}")
        return

    try:
        async with session_scope() as s:
            actor = await _actor_for(s, m.from_user)
            r = await create_reminder(
                s, project_id,
                {"title": title, "trigger_mode": "absolute_time", "remind_at": when_utc, "timezone": settings.tz},
                actor,
            )
            text = format_reminder(r, settings.tz)
    except ReminderError as e:
        await m.answer(_error_text(e))
        return

    request_dispatch()
    await m.answer("⏰ OK, reminder set:\n" + text, parse_mode="HTML")


@router.message(Command("watch"))
async def cmd_watch(m: Message) -> None:
    """
    /watch <project_id> <delay_min> <Status> | <title>
    """
    arg = (m.text or "").partition(" ")[2]
    try:
        project_id, delay, status, title = parse_watch_args(arg)
    except ValueError as e:
        await m.answer(f"Format: /watch <project_id> <delay_min> <Status> | <title>\n\nError: {e}")
        return

    try:
        async with session_scope() as s:
            actor = await _actor_for(s, m.from_user)
            r = await create_reminder(
                s, project_id,
                {"title": title, "trigger_mode": "stage_based", "watch_status": status, "delay_minutes": delay},
                actor,
            )
            text = format_reminder(r, settings.tz)
    except ReminderError as e:
        await m.answer(_error_text(e))
        return

    request_dispatch()
    await m.answer("👀 OK, watching:\n" + text, parse_mode="HTML")


@router.message(Command("feed"))
async def cmd_feed(m: Message) -> None:
    async with session_scope() as s:
        actor = await _actor_for(s, m.from_user)
        items = await feed_for_user(s, actor.user_id)
        for n in items:
            if n.reminder_id is not None:
                await mark_read(s, n.reminder_id, actor.user_id)

    if not items:
        await m.answer("Nothing new.")
        return
    lines = ["🗓 <b>Notifications:</b>", ""]
    for i, n in enumerate(items, 1):
        lines.append(f"{i}. {n.created_at:%Y-%m-%d %H:%M} — {n.title}")
    await m.answer("\n".join(lines), parse_mode="HTML")


# ==== Callbacks ====

async def _safe_answer(c: CallbackQuery, text: str | None = None, alert: bool = False):
    try:
        await c.answer(text or "", show_alert=alert)
    except Exception as e:
        log.debug("callback answer suppressed: %s", e)


async def _ack(c: CallbackQuery, action: str) -> None:
    try:
        reminder_id = int((c.data or "").rsplit(":", 1)[1])
    except (IndexError, ValueError):
        await _safe_answer(c, "Bad reminder id")
        return

    try:
        async with session_scope() as s:
            actor = await _actor_for(s, c.from_user)
            if action == "snooze":
                r = await acknowledgment.snooze(s, reminder_id, actor)
            elif action == "done":
                r = await acknowledgment.complete(s, reminder_id, actor)
            else:
                r = await acknowledgment.cancel(s, reminder_id, actor)
            text = format_reminder(r, settings.tz)
            still_open = r.status == "scheduled"
    except ReminderError as e:
        await _safe_answer(c, _error_text(e), alert=True)
        return

    if still_open:
        request_dispatch()
    if c.message is not None:
        # "message is not modified" и подобное не мешает ответу
        with suppress(TelegramBadRequest):
            await c.message.edit_text(text, parse_mode="HTML", reply_markup=None)
    await _safe_answer(c, "OK")


@router.callback_query(F.data.startswith("rem:snooze:"))
async def cb_snooze(c: CallbackQuery):
    await _ack(c, "snooze")


@router.callback_query(F.data.startswith("rem:done:"))
async def cb_done(c: CallbackQuery):
    await _ack(c, "done")


@router.callback_query(F.data.startswith("rem:cancel:"))
async def cb_cancel(c: CallbackQuery):
    await _ack(c, "cancel")
