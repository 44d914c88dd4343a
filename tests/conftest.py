from __future__ import annotations

from datetime import datetime

import pytest

from reminder_engine.core.db import init_db, make_engine, make_sessionmaker
from reminder_engine.models import Project, User, ROLE_ADMIN, ROLE_STAFF
from reminder_engine.services.access import Actor

T0 = datetime(2024, 3, 4, 9, 0)


@pytest.fixture
async def engine(tmp_path):
    eng = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'reminders.db'}")
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def sessionmaker(engine):
    return make_sessionmaker(engine)


@pytest.fixture
async def seed(sessionmaker):
    """Админ, автор, получатель, посторонний и один проект."""
    async with sessionmaker() as s:
        admin = User(telegram_id=1001, username="boss", role=ROLE_ADMIN, email="boss@example.com")
        creator = User(telegram_id=1002, username="anna", role=ROLE_STAFF, email="anna@example.com")
        recipient = User(telegram_id=1003, username="ivan", role=ROLE_STAFF)
        outsider = User(telegram_id=1004, username="olga", role=ROLE_STAFF)
        project = Project(name="Banners for Acme", status="Order Confirmed")
        s.add_all([admin, creator, recipient, outsider, project])
        await s.commit()
        return {
            "admin": Actor.of(admin),
            "creator": Actor.of(creator),
            "recipient": Actor.of(recipient),
            "outsider": Actor.of(outsider),
            "project_id": project.id,
        }


@pytest.fixture
async def session(sessionmaker, seed):
    async with sessionmaker() as s:
        yield s
        await s.rollback()


class RecordingSink:
    """Запоминает (reminder_id, user_id, channel); может падать для выбранных получателей."""

    def __init__(self, fail_for=(), name="recording"):
        self.name = name
        self.sent = []
        self.fail_for = set(fail_for)

    async def send(self, reminder, recipient, channel):
        if recipient.id in self.fail_for:
            raise ConnectionError(f"channel down for user {recipient.id}")
        self.sent.append((reminder.id, recipient.id, channel))


@pytest.fixture
def make_sink():
    return RecordingSink
