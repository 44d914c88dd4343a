# reminder_engine/models/__init__.py
# Единый Base: импорт всех моделей регистрирует таблицы в metadata.
from __future__ import annotations

from reminder_engine.models.user import Base, User, ROLE_ADMIN, ROLE_STAFF
from reminder_engine.models.project import Project
from reminder_engine.models.reminder import Reminder, ReminderRecipient, ReminderDelivery
from reminder_engine.models.notification import Notification

__all__ = [
    "Base", "User", "ROLE_ADMIN", "ROLE_STAFF",
    "Project", "Reminder", "ReminderRecipient", "ReminderDelivery", "Notification",
]
