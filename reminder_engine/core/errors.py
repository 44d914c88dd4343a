# reminder_engine/core/errors.py
from __future__ import annotations

from typing import Any


class ReminderError(Exception):
    """Базовая ошибка движка напоминаний. Всё, что ниже, отдаётся вызывающему как есть."""


class ValidationError(ReminderError):
    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class AuthorizationError(ReminderError):
    pass


class ConflictError(ReminderError):
    """
    Действие опоздало: запись уже ушла дальше, чем ожидал клиент.
    В .reminder лежит текущее состояние, чтобы клиент мог сверить своё представление.
    """

    def __init__(self, message: str, reminder: Any = None) -> None:
        super().__init__(message)
        self.reminder = reminder


class NotFoundError(ReminderError):
    def __init__(self, kind: str, ident: Any) -> None:
        super().__init__(f"{kind} not found: {ident}")
        self.kind = kind
        self.ident = ident


class TransientDispatchFailure(ReminderError):
    """Один канал не доставил одному получателю. Повторяется на следующем проходе."""

    def __init__(self, reminder_id: int, recipient_id: int, channel: str, cause: BaseException | str) -> None:
        super().__init__(f"reminder={reminder_id} recipient={recipient_id} channel={channel}: {cause}")
        self.reminder_id = reminder_id
        self.recipient_id = recipient_id
        self.channel = channel
        self.cause = cause
