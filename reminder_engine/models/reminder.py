# reminder_engine/models/reminder.py
from __future__ import annotations

from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, ForeignKey, DateTime, Boolean, Text, Index, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.types import TypeDecorator

from reminder_engine.models.user import Base

STATUS_SCHEDULED = "scheduled"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"
STATUSES = (STATUS_SCHEDULED, STATUS_COMPLETED, STATUS_CANCELLED)
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_CANCELLED)

MODE_ABSOLUTE = "absolute_time"
MODE_STAGE = "stage_based"

REPEAT_NONE = "none"
REPEATS = ("none", "daily", "weekly", "monthly")


class ReminderStatus(TypeDecorator):
    """Старые/неизвестные значения статуса при чтении превращаются в 'scheduled'."""

    impl = String(20)
    cache_ok = True

    def process_result_value(self, value, dialect):
        if value not in STATUSES:
            return STATUS_SCHEDULED
        return value


class ReminderRecipient(Base):
    __tablename__ = "reminder_recipients"
    __table_args__ = (UniqueConstraint("reminder_id", "user_id", name="uq_reminder_recipient"),)

    id = Column(Integer, primary_key=True)
    reminder_id = Column(Integer, ForeignKey("reminders.id", ondelete="CASCADE"), index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)


class Reminder(Base):
    __tablename__ = "reminders"
    __table_args__ = (
        # выборка планировщика
        Index("ix_reminders_due", "status", "is_active", "next_trigger_at"),
        # выборка наблюдателя стадий
        Index("ix_reminders_watch", "project_id", "watch_status", "stage_matched_at"),
    )

    id = Column(Integer, primary_key=True)
    # проект внешний: без FK, удалённый проект просто делает напоминание инертным
    project_id = Column(Integer, index=True, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)

    title = Column(String(140), nullable=False)
    message = Column(Text, nullable=False, default="")
    template_key = Column(String(60), nullable=False, default="custom")
    timezone = Column(String(80), nullable=False, default="UTC")

    trigger_mode = Column(String(20), nullable=False, default=MODE_ABSOLUTE)
    repeat = Column(String(10), nullable=False, default=REPEAT_NONE)

    # absolute_time
    remind_at = Column(DateTime, nullable=True)
    # отправлять, только если проект в этом статусе
    condition_status = Column(String(80), nullable=False, default="")
    # stage_based
    watch_status = Column(String(80), nullable=False, default="")
    delay_minutes = Column(Integer, nullable=False, default=0)
    stage_matched_at = Column(DateTime, nullable=True)

    # расписание текущего цикла; snooze двигает только next_trigger_at
    occurrence_at = Column(DateTime, nullable=True)
    next_trigger_at = Column(DateTime, nullable=True)
    # значение next_trigger_at, которое уже полностью доставлено
    delivered_for = Column(DateTime, nullable=True)
    # после сбоя доставки не раньше этого момента
    retry_after = Column(DateTime, nullable=True)

    channel_in_app = Column(Boolean, nullable=False, default=True)
    channel_email = Column(Boolean, nullable=False, default=False)

    status = Column(ReminderStatus(), nullable=False, default=STATUS_SCHEDULED)
    is_active = Column(Boolean, nullable=False, default=True)

    last_triggered_at = Column(DateTime, nullable=True)
    trigger_count = Column(Integer, nullable=False, default=0)
    last_error = Column(String(500), nullable=False, default="")
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    recipients = relationship(
        "ReminderRecipient",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    @property
    def recipient_ids(self) -> set[int]:
        return {r.user_id for r in self.recipients}

    @property
    def audience_ids(self) -> set[int]:
        """Все, кого уведомляем: получатели и автор."""
        return self.recipient_ids | {self.created_by}

    @property
    def channels(self) -> dict[str, bool]:
        return {"in_app": bool(self.channel_in_app), "email": bool(self.channel_email)}

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def awaiting_match(self) -> bool:
        return self.trigger_mode == MODE_STAGE and self.stage_matched_at is None

    def __repr__(self) -> str:
        return (
            f"<Reminder id={self.id} mode={self.trigger_mode} status={self.status} "
            f"next={self.next_trigger_at} v={self.version}>"
        )


class ReminderDelivery(Base):
    """
    Успешно доставленная пара (получатель, канал, sink) для конкретного срока.
    Повтор после частичного сбоя шлёт только то, чего здесь нет.
    """
    __tablename__ = "reminder_deliveries"
    __table_args__ = (
        UniqueConstraint("reminder_id", "occurrence", "recipient_id", "channel", "sink", name="uq_reminder_delivery"),
    )

    id = Column(Integer, primary_key=True)
    reminder_id = Column(Integer, ForeignKey("reminders.id", ondelete="CASCADE"), index=True, nullable=False)
    occurrence = Column(DateTime, nullable=False)
    recipient_id = Column(Integer, nullable=False)
    channel = Column(String(20), nullable=False)
    sink = Column(String(40), nullable=False)
    delivered_at = Column(DateTime, default=datetime.utcnow, nullable=False)
