# reminder_engine/handlers/start.py
from __future__ import annotations

from aiogram import Router
from aiogram.filters import Command, CommandStart
from aiogram.types import Message

from reminder_engine.core.config import settings
from reminder_engine.core.db import session_scope
from reminder_engine.repo.users import get_or_create_user, set_email

router = Router(name=__name__)

HELP_TEXT = (
    "I keep project reminders for the print shop.\n\n"
    "/reminders — your active reminders\n"
    "/remind <project_id|-> <YYYY-MM-DD HH:MM> <title> — remind at a time\n"
    "/watch <project_id> <delay_min> <Status> | <title> — remind when a project reaches a status\n"
    "/feed — unread in-app notifications\n"
    "/email <address> — where to send email reminders"
)


@router.message(CommandStart())
async def cmd_start(m: Message) -> None:
    async with session_scope() as s:
        user = await get_or_create_user(
            s, m.from_user.id, m.from_user.username, m.from_user.full_name,
            make_admin=m.from_user.id in settings.admin_telegram_ids,
        )
        role = user.role
    await m.answer(f"Hi! You are registered as <b>{role}</b>.\n\n{HELP_TEXT}", parse_mode="HTML")


@router.message(Command("help"))
async def cmd_help(m: Message) -> None:
    await m.answer(HELP_TEXT)


@router.message(Command("email"))
async def cmd_email(m: Message) -> None:
    arg = (m.text or "").partition(" ")[2].strip()
    if not arg or "@" not in arg:
        await m.answer("Format: /email name@example.com")
        return
    async with session_scope() as s:
        user = await get_or_create_user(s, m.from_user.id, m.from_user.username)
        await set_email(s, user.id, arg)
    await m.answer(f"OK, email reminders go to {arg}")
