# -*- coding: utf-8 -*-
"""
Каналы доставки. Каждый sink получает (напоминание, получатель, канал) и либо
доставляет, либо бросает исключение, а диспетчер превратит его в TransientDispatchFailure.
Гарантий доставки от каналов не ждём.
"""
from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncSession

from reminder_engine.core.config import Settings, settings as default_settings
from reminder_engine.models.reminder import Reminder
from reminder_engine.models.user import User
from reminder_engine.repo.notifications import add_notification

if TYPE_CHECKING:
    from aiogram import Bot

log = logging.getLogger(__name__)

CHANNEL_IN_APP = "in_app"
CHANNEL_EMAIL = "email"

DEFAULT_TITLE = "Reminder"
DEFAULT_MESSAGE = "You have a scheduled reminder."


class ChannelSink:
    channel: str = ""
    # имя для учёта доставленных пар; у двух sink одного канала должно различаться
    name: str = ""

    async def send(self, reminder: Reminder, recipient: User, channel: str) -> None:
        raise NotImplementedError


class InAppSink(ChannelSink):
    """Запись в ленту уведомлений (таблица notifications)."""
    channel = CHANNEL_IN_APP
    name = "feed"

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def send(self, reminder: Reminder, recipient: User, channel: str) -> None:
        await add_notification(
            self.session,
            recipient_id=recipient.id,
            sender_id=reminder.created_by,
            project_id=reminder.project_id,
            reminder_id=reminder.id,
            title=reminder.title or DEFAULT_TITLE,
            message=reminder.message or DEFAULT_MESSAGE,
        )


class TelegramSink(ChannelSink):
    """Пуш в чат с кнопками подтверждения. Без telegram_id пропускаем."""
    channel = CHANNEL_IN_APP
    name = "telegram"

    def __init__(self, bot: "Bot", tz: str | None = None) -> None:
        self.bot = bot
        self.tz = tz or default_settings.tz

    async def send(self, reminder: Reminder, recipient: User, channel: str) -> None:
        if not recipient.telegram_id:
            return
        # ui тянет aiogram, импортируем лениво
        from reminder_engine.ui.keyboards import kb_reminder_actions
        from reminder_engine.ui.ui import format_reminder

        await self.bot.send_message(
            chat_id=recipient.telegram_id,
            text="🔔 " + format_reminder(reminder, self.tz),
            reply_markup=kb_reminder_actions(reminder.id, can_cancel=_can_cancel(reminder, recipient)),
            parse_mode="HTML",
        )


def _can_cancel(reminder: Reminder, recipient: User) -> bool:
    from reminder_engine.services.access import Actor, can_manage
    return can_manage(reminder, Actor.of(recipient))


def build_email(reminder: Reminder, recipient: User, sender: str) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = f"Reminder: {reminder.title or DEFAULT_TITLE}"
    msg["From"] = sender
    msg["To"] = recipient.email
    lines = [reminder.message or DEFAULT_MESSAGE, ""]
    if reminder.project_id is not None:
        lines.append(f"Project: #{reminder.project_id}")
    if reminder.next_trigger_at is not None:
        lines.append(f"Due: {reminder.next_trigger_at:%Y-%m-%d %H:%M} UTC")
    msg.set_content("\n".join(lines))
    return msg


class EmailSink(ChannelSink):
    channel = CHANNEL_EMAIL
    name = "email"

    def __init__(self, cfg: Settings | None = None) -> None:
        self.cfg = cfg or default_settings

    def _deliver(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.cfg.smtp_host, self.cfg.smtp_port, timeout=30) as smtp:
            if self.cfg.smtp_starttls:
                smtp.starttls()
            if self.cfg.smtp_user:
                smtp.login(self.cfg.smtp_user, self.cfg.smtp_password)
            smtp.send_message(msg)

    async def send(self, reminder: Reminder, recipient: User, channel: str) -> None:
        if not recipient.email:
            log.debug('email_skipped reminder=%s recipient=%s reason=no_address', reminder.id, recipient.id)
            return
        sender = self.cfg.smtp_from or self.cfg.smtp_user
        msg = build_email(reminder, recipient, sender)
        # smtplib блокирующий, уводим в поток
        await asyncio.to_thread(self._deliver, msg)


def build_sinks(
    session: AsyncSession,
    bot: "Bot | None" = None,
    cfg: Settings | None = None,
) -> dict[str, list[ChannelSink]]:
    cfg = cfg or default_settings
    sinks: dict[str, list[ChannelSink]] = {CHANNEL_IN_APP: [InAppSink(session)], CHANNEL_EMAIL: []}
    if bot is not None:
        sinks[CHANNEL_IN_APP].append(TelegramSink(bot, cfg.tz))
    if cfg.email_enabled:
        sinks[CHANNEL_EMAIL].append(EmailSink(cfg))
    return sinks
