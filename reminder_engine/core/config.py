# reminder_engine/core/config.py
# Конфиг без магии: читаем .env, валидируем минимально, отдаём типизированный объект.
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from dotenv import load_dotenv

# Пример .env:
# DATABASE_URL=sqlite+aiosqlite:///./reminders.db
# BOT_TOKEN=123:ABC
# ADMIN_TELEGRAM_IDS=5969047567,1000758079
# TZ=America/New_York
# REMINDER_SCHEDULER_INTERVAL_SECONDS=60
# SMTP_HOST=smtp.example.com
load_dotenv()

log = logging.getLogger(__name__)


def _parse_ids(raw: str | None) -> list[int]:
    if not raw:
        return []
    out: list[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        if part.isdigit():
            out.append(int(part))
        else:
            # допускаем случайные пробелы и мусор
            num = "".join(ch for ch in part if ch.isdigit())
            if num:
                out.append(int(num))
    return out


def _parse_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        log.warning('config_invalid_int name="%s" value="%s" fallback=%s', name, raw, default)
        return default


def _parse_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on", "y")


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite+aiosqlite:///./reminders.db"
    bot_token: str = ""
    admin_telegram_ids: list[int] = field(default_factory=list)
    tz: str = "UTC"
    log_level: str = "INFO"

    # планировщик
    scheduler_enabled: bool = True
    scheduler_interval_seconds: int = 60
    batch_size: int = 50
    default_snooze_minutes: int = 60
    # пауза перед повтором после сбоя доставки
    retry_backoff_seconds: int = 300
    # перепроверка condition_status, не чаще раза в 5 минут
    condition_recheck_minutes: int = 60

    # почта (канал email выключен, если smtp_host пустой)
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = ""
    smtp_starttls: bool = True

    @property
    def email_enabled(self) -> bool:
        return bool(self.smtp_host)

    @property
    def bot_enabled(self) -> bool:
        return bool(self.bot_token)

    @staticmethod
    def load() -> "Settings":
        return Settings(
            database_url=os.getenv("DATABASE_URL", "").strip() or "sqlite+aiosqlite:///./reminders.db",
            bot_token=os.getenv("BOT_TOKEN", "").strip(),
            admin_telegram_ids=_parse_ids(os.getenv("ADMIN_TELEGRAM_IDS")),
            tz=os.getenv("TZ", "UTC").strip() or "UTC",
            log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
            scheduler_enabled=_parse_bool("REMINDER_SCHEDULER_ENABLED", True),
            scheduler_interval_seconds=max(1, _parse_int("REMINDER_SCHEDULER_INTERVAL_SECONDS", 60)),
            batch_size=max(1, _parse_int("REMINDER_BATCH_SIZE", 50)),
            default_snooze_minutes=max(1, _parse_int("REMINDER_DEFAULT_SNOOZE_MINUTES", 60)),
            retry_backoff_seconds=max(0, _parse_int("REMINDER_RETRY_BACKOFF_SECONDS", 300)),
            condition_recheck_minutes=max(5, _parse_int("REMINDER_CONDITION_RECHECK_MINUTES", 60)),
            smtp_host=os.getenv("SMTP_HOST", "").strip(),
            smtp_port=_parse_int("SMTP_PORT", 587),
            smtp_user=os.getenv("SMTP_USER", "").strip(),
            smtp_password=os.getenv("SMTP_PASSWORD", ""),
            smtp_from=os.getenv("SMTP_FROM", "").strip(),
            smtp_starttls=_parse_bool("SMTP_STARTTLS", True),
        )


settings = Settings.load()
