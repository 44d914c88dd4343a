# reminder_engine/models/notification.py
# Лента in-app уведомлений: сюда пишет канал inApp.
from __future__ import annotations

from datetime import datetime
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, Text

from reminder_engine.models.user import Base


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True)
    recipient_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    project_id = Column(Integer, nullable=True)
    reminder_id = Column(Integer, index=True, nullable=True)
    type = Column(String(30), nullable=False, default="REMINDER")
    title = Column(String(140), nullable=False)
    message = Column(Text, nullable=False, default="")
    is_read = Column(Boolean, default=False, index=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
