# -*- coding: utf-8 -*-
"""
Расчёт момента срабатывания напоминания.

Чистые функции, без БД. Все времена naive UTC (tzinfo=None), как в колонках.

absolute_time: первый срок = remind_at; каждый следующий = предыдущий + день/неделя/календарный месяц.
Месяц считается от якоря remind_at: 31 января -> 29 февраля -> 31 марта -> 30 апреля.

stage_based: срок = момент совпадения стадии + delay_minutes. Повтор здесь не считается:
после complete напоминание снова ждёт стадию (см. services.acknowledgment).
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

from dateutil.relativedelta import relativedelta

from reminder_engine.models.reminder import MODE_ABSOLUTE, MODE_STAGE, REPEAT_NONE

MAX_DELAY_MINUTES = 60 * 24 * 90


def ensure_naive_utc(dt: datetime) -> datetime:
    """
    Всегда работаем с naive UTC (tzinfo=None), потому что в БД колонка
    TIMESTAMP WITHOUT TIME ZONE. Это убирает конфликт aware/naive.
    """
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_delay(value) -> int:
    """Отрицательная/пустая/мусорная задержка = 0, сверху 90 дней."""
    if value is None or value == "":
        return 0
    try:
        minutes = int(value)
    except (TypeError, ValueError):
        return 0
    if minutes < 0:
        return 0
    return min(minutes, MAX_DELAY_MINUTES)


def advance(previous: datetime, repeat: str, anchor: datetime | None = None) -> datetime | None:
    """
    Следующий срок повтора от previous. None для repeat='none' и неизвестных значений.
    anchor задаёт день месяца для monthly (по умолчанию день previous).
    """
    if repeat == "daily":
        return previous + timedelta(days=1)
    if repeat == "weekly":
        return previous + timedelta(days=7)
    if repeat == "monthly":
        day = (anchor or previous).day
        # relativedelta сам прижимает day к последнему дню целевого месяца
        return previous + relativedelta(months=+1, day=day)
    return None


def compute_next_trigger(
    mode: str,
    base: datetime | None,
    delay_minutes=0,
    repeat: str = REPEAT_NONE,
    previous_trigger_at: datetime | None = None,
) -> datetime | None:
    """
    mode=absolute_time: base = remind_at. Без previous первый срок (сам remind_at),
    с previous следующий по repeat (None, если повтора нет).

    mode=stage_based: base = stage_matched_at. Срок = base + delay. Пока base нет, None.
    """
    if mode == MODE_ABSOLUTE:
        if base is None:
            return None
        base = ensure_naive_utc(base)
        if previous_trigger_at is None:
            return base
        return advance(ensure_naive_utc(previous_trigger_at), repeat, anchor=base)

    if mode == MODE_STAGE:
        if base is None:
            return None
        return ensure_naive_utc(base) + timedelta(minutes=normalize_delay(delay_minutes))

    raise ValueError(f"unknown trigger mode: {mode!r}")


def is_due(next_trigger_at: datetime | None, now: datetime) -> bool:
    # <=, а не ==: планировщик опрашивает с шагом
    return next_trigger_at is not None and next_trigger_at <= now
