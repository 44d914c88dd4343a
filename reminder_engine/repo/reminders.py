# -*- coding: utf-8 -*-
from __future__ import annotations

from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import select, update, delete, or_, and_
from sqlalchemy.ext.asyncio import AsyncSession

from reminder_engine.models.reminder import (
    Reminder, ReminderDelivery, ReminderRecipient,
    STATUS_SCHEDULED, TERMINAL_STATUSES, MODE_STAGE,
)

LIST_LIMIT = 300


def _open():
    # старые/неизвестные статусы в БД считаются scheduled
    return Reminder.status.not_in(TERMINAL_STATUSES)


async def add_reminder(session: AsyncSession, recipient_ids: set[int], **fields: Any) -> Reminder:
    """
    Вставка новой записи. Получатели пишутся вместе с напоминанием в одном flush.
    """
    reminder = Reminder(**fields)
    reminder.recipients = [ReminderRecipient(user_id=uid) for uid in sorted(recipient_ids)]
    session.add(reminder)
    await session.flush()
    return reminder


async def get_reminder(session: AsyncSession, reminder_id: int, *, fresh: bool = False) -> Reminder | None:
    """
    fresh=True перечитывает строку из БД поверх того, что уже лежит в identity map
    (нужно после compare_and_set, который обновляет строку мимо ORM).
    """
    stmt = select(Reminder).where(Reminder.id == reminder_id)
    if fresh:
        stmt = stmt.execution_options(populate_existing=True)
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


def _visible_to(user_id: int):
    return or_(
        Reminder.created_by == user_id,
        Reminder.id.in_(select(ReminderRecipient.reminder_id).where(ReminderRecipient.user_id == user_id)),
    )


def _ordered(stmt):
    # nulls last: сначала ближайшие, ожидающие стадию в конце
    return stmt.order_by(
        Reminder.next_trigger_at.is_(None),
        Reminder.next_trigger_at.asc(),
        Reminder.created_at.desc(),
        Reminder.id.desc(),
    ).limit(LIST_LIMIT)


async def list_reminders(
    session: AsyncSession,
    *,
    project_id: int | None = None,
    include_completed: bool = False,
    visible_to: int | None = None,
) -> Sequence[Reminder]:
    stmt = select(Reminder)
    if project_id is not None:
        stmt = stmt.where(Reminder.project_id == project_id)
    if not include_completed:
        stmt = stmt.where(_open(), Reminder.is_active.is_(True))
    if visible_to is not None:
        stmt = stmt.where(_visible_to(visible_to))
    res = await session.execute(_ordered(stmt))
    return list(res.scalars().all())


async def due_reminders(session: AsyncSession, now: datetime, limit: int = 50) -> Sequence[Reminder]:
    """
    Все напоминания, у которых next_trigger_at <= now и текущий срок ещё не доставлен целиком.
    Упавшие недавно ждут retry_after.
    now в naive UTC, как и колонки.
    """
    stmt = (
        select(Reminder)
        .where(_open())
        .where(Reminder.is_active.is_(True))
        .where(Reminder.next_trigger_at.is_not(None))
        .where(Reminder.next_trigger_at <= now)
        .where(or_(
            Reminder.delivered_for.is_(None),
            Reminder.delivered_for != Reminder.next_trigger_at,
        ))
        .where(or_(Reminder.retry_after.is_(None), Reminder.retry_after <= now))
        # повторы после сбоя идут после свежих, чтобы не забить пачку
        .order_by(Reminder.retry_after.is_not(None), Reminder.next_trigger_at.asc(), Reminder.id.asc())
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def awaiting_stage(
    session: AsyncSession,
    *,
    project_id: int | None = None,
    watch_status: str | None = None,
    limit: int | None = None,
) -> Sequence[Reminder]:
    """
    Активные stage_based напоминания, которые ещё ждут совпадения статуса.
    """
    stmt = (
        select(Reminder)
        .where(_open())
        .where(Reminder.is_active.is_(True))
        .where(Reminder.trigger_mode == MODE_STAGE)
        .where(Reminder.stage_matched_at.is_(None))
    )
    if project_id is not None:
        stmt = stmt.where(Reminder.project_id == project_id)
    if watch_status is not None:
        stmt = stmt.where(Reminder.watch_status == watch_status)
    stmt = stmt.order_by(Reminder.created_at.asc(), Reminder.id.asc())
    # после compare_and_set в той же сессии объекты в identity map устаревают
    stmt = stmt.execution_options(populate_existing=True)
    if limit is not None:
        stmt = stmt.limit(limit)
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def compare_and_set(
    session: AsyncSession,
    reminder_id: int,
    expected_version: int,
    now: datetime,
    **values: Any,
) -> bool:
    """
    Атомарный переход: пишем только если строка не терминальная и её версия не менялась.
    Возвращает False, если кто-то успел раньше.
    Любой переход снимает back-off после сбоя и приводит старый статус к scheduled.
    """
    values = {"status": STATUS_SCHEDULED, "retry_after": None, **values}
    stmt = (
        update(Reminder)
        .where(Reminder.id == reminder_id)
        .where(Reminder.version == expected_version)
        .where(_open())
        .values(version=expected_version + 1, updated_at=now, **values)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return res.rowcount == 1


async def mark_delivered(session: AsyncSession, reminder_id: int, occurrence: datetime, now: datetime) -> bool:
    """
    Отметка «срок occurrence доставлен». Версию не трогаем: доставка не переход состояния.
    Если за время рассылки next_trigger_at сдвинули (snooze/complete), отметка не ляжет.
    """
    stmt = (
        update(Reminder)
        .where(Reminder.id == reminder_id)
        .where(_open())
        .where(Reminder.next_trigger_at == occurrence)
        .values(
            delivered_for=occurrence,
            retry_after=None,
            last_triggered_at=now,
            trigger_count=Reminder.trigger_count + 1,
            last_error="",
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    if res.rowcount != 1:
        return False
    # срок закрыт целиком, попарный учёт больше не нужен
    await session.execute(delete(ReminderDelivery).where(ReminderDelivery.reminder_id == reminder_id))
    return True


async def postpone(
    session: AsyncSession,
    reminder_id: int,
    occurrence: datetime,
    next_at: datetime,
    now: datetime,
) -> bool:
    """Перенос срока без отправки (условие по статусу проекта не выполнено)."""
    stmt = (
        update(Reminder)
        .where(Reminder.id == reminder_id)
        .where(_open())
        .where(Reminder.next_trigger_at == occurrence)
        .values(next_trigger_at=next_at, retry_after=None, last_error="", updated_at=now)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return res.rowcount == 1


async def record_error(
    session: AsyncSession,
    reminder_id: int,
    error: str,
    now: datetime,
    retry_after: datetime | None = None,
) -> None:
    stmt = (
        update(Reminder)
        .where(Reminder.id == reminder_id)
        .values(last_error=error[:500], retry_after=retry_after, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await session.execute(stmt)


async def delivered_pairs(session: AsyncSession, reminder_id: int, occurrence: datetime) -> set[tuple[int, str, str]]:
    """{(recipient_id, channel, sink)} уже доставленные для этого срока."""
    q = await session.execute(
        select(ReminderDelivery.recipient_id, ReminderDelivery.channel, ReminderDelivery.sink)
        .where(ReminderDelivery.reminder_id == reminder_id)
        .where(ReminderDelivery.occurrence == occurrence)
    )
    return {(uid, channel, sink) for uid, channel, sink in q.all()}


async def record_delivery(
    session: AsyncSession,
    reminder_id: int,
    occurrence: datetime,
    recipient_id: int,
    channel: str,
    sink: str,
    now: datetime,
) -> None:
    session.add(ReminderDelivery(
        reminder_id=reminder_id,
        occurrence=occurrence,
        recipient_id=recipient_id,
        channel=channel,
        sink=sink,
        delivered_at=now,
    ))
    await session.flush()


async def deactivate(session: AsyncSession, reminder_id: int, now: datetime) -> None:
    """Снять с планировщика, не трогая статус (проект пропал)."""
    stmt = (
        update(Reminder)
        .where(and_(Reminder.id == reminder_id, _open()))
        .values(is_active=False, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await session.execute(stmt)


async def replace_recipients(session: AsyncSession, reminder_id: int, recipient_ids: set[int]) -> None:
    await session.execute(delete(ReminderRecipient).where(ReminderRecipient.reminder_id == reminder_id))
    for uid in sorted(recipient_ids):
        session.add(ReminderRecipient(reminder_id=reminder_id, user_id=uid))
    await session.flush()


async def delete_reminder(session: AsyncSession, reminder: Reminder) -> None:
    await session.execute(delete(ReminderDelivery).where(ReminderDelivery.reminder_id == reminder.id))
    await session.delete(reminder)
    await session.flush()
