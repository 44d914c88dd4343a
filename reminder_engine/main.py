# reminder_engine/main.py
from __future__ import annotations

import asyncio
import logging
from contextlib import suppress

from aiogram import Bot, Dispatcher
from aiogram.enums import ParseMode
from aiogram.types import BotCommand
from aiogram.client.default import DefaultBotProperties

from reminder_engine.core.config import settings
from reminder_engine.core.logging import setup_logging
from reminder_engine.core.db import init_db
from reminder_engine.core.scheduler import start_scheduler


async def _set_bot_commands(bot: Bot) -> None:
    commands = [
        BotCommand(command="start", description="Register and get started"),
        BotCommand(command="help", description="What I can do"),
        BotCommand(command="reminders", description="Your active reminders"),
        BotCommand(command="remind", description="Remind at a time"),
        BotCommand(command="watch", description="Remind on a project status"),
        BotCommand(command="feed", description="Unread notifications"),
        BotCommand(command="email", description="Set email for reminders"),
    ]
    await bot.set_my_commands(commands)


def _register_handlers(dp: Dispatcher) -> None:
    try:
        from reminder_engine.handlers import setup as setup_handlers
        setup_handlers(dp)
    except Exception as e:
        logging.warning("Handlers are not wired yet: %s", e)


async def main() -> None:
    setup_logging(settings.log_level)
    await init_db()

    bot = None
    if settings.bot_enabled:
        bot = Bot(
            token=settings.bot_token,
            default=DefaultBotProperties(parse_mode=ParseMode.HTML),
        )

    scheduler = start_scheduler(bot) if settings.scheduler_enabled else None

    if bot is None:
        # без токена работает только планировщик (in-app и email)
        logging.info("No BOT_TOKEN, running scheduler only")
        try:
            await asyncio.Event().wait()
        finally:
            if scheduler is not None:
                scheduler.shutdown(wait=False)
        return

    dp = Dispatcher()
    _register_handlers(dp)
    await _set_bot_commands(bot)

    logging.info("Bot starting polling…")
    try:
        await dp.start_polling(bot, allowed_updates=dp.resolve_used_update_types())
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)
        with suppress(Exception):
            await bot.session.close()
        logging.info("Bot stopped.")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
