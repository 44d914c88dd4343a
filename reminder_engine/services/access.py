# reminder_engine/services/access.py
# Права на напоминание: «может действовать» (snooze/complete) и «может управлять» (cancel/edit/delete).
from __future__ import annotations

from dataclasses import dataclass

from reminder_engine.models.user import ROLE_ADMIN, User


@dataclass(frozen=True)
class Actor:
    """Кто совершает действие: id пользователя и роль, как их отдал сервис идентичности."""
    user_id: int
    role: str = "staff"

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @staticmethod
    def of(user: User) -> "Actor":
        return Actor(user_id=user.id, role=user.role or "staff")


def can_manage(reminder, actor: Actor | None) -> bool:
    if actor is None or reminder is None:
        return False
    if actor.is_admin:
        return True
    return reminder.created_by == actor.user_id


def can_act(reminder, actor: Actor | None) -> bool:
    if can_manage(reminder, actor):
        return True
    if actor is None or reminder is None:
        return False
    return actor.user_id in reminder.recipient_ids
