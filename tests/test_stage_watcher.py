from datetime import datetime, timedelta

import pytest

from reminder_engine.core.errors import NotFoundError
from reminder_engine.models import Project
from reminder_engine.services.reminders import create_reminder
from reminder_engine.services.stage_watcher import (
    bootstrap_stage_watch, change_project_status, on_project_status_changed,
)

NOW = datetime(2024, 3, 4, 9, 0)
T0 = NOW + timedelta(hours=1)
T1 = NOW + timedelta(hours=3)


def stage(**kw):
    cfg = {"title": "Check proofs", "trigger_mode": "stage_based", "watch_status": "Pending Production", "delay_minutes": 60}
    cfg.update(kw)
    return cfg


async def test_match_arms_with_delay_and_later_status_changes_nothing(session, seed):
    pid = seed["project_id"]
    r = await create_reminder(session, pid, stage(), seed["creator"], now=NOW)

    armed = await on_project_status_changed(session, pid, "Pending Production", T0)
    assert armed == [r.id]
    await session.refresh(r)
    assert r.stage_matched_at == T0
    assert r.next_trigger_at == T0 + timedelta(minutes=60)

    assert await on_project_status_changed(session, pid, "Production Completed", T1) == []
    await session.refresh(r)
    assert r.stage_matched_at == T0
    assert r.next_trigger_at == T0 + timedelta(minutes=60)


async def test_flapping_keeps_earliest_match(session, seed):
    pid = seed["project_id"]
    r = await create_reminder(session, pid, stage(), seed["creator"], now=NOW)

    await on_project_status_changed(session, pid, "Pending Production", T0)
    await on_project_status_changed(session, pid, "Order Confirmed", T0 + timedelta(minutes=5))
    assert await on_project_status_changed(session, pid, "Pending Production", T0 + timedelta(minutes=10)) == []

    await session.refresh(r)
    assert r.stage_matched_at == T0
    assert r.next_trigger_at == T0 + timedelta(minutes=60)


async def test_zero_delay_fires_at_match_instant(session, seed):
    r = await create_reminder(session, seed["project_id"], stage(delay_minutes=0), seed["creator"], now=NOW)
    await on_project_status_changed(session, seed["project_id"], "Pending Production", T0)
    await session.refresh(r)
    assert r.next_trigger_at == T0


async def test_match_is_exact_and_case_sensitive(session, seed):
    r = await create_reminder(session, seed["project_id"], stage(), seed["creator"], now=NOW)
    assert await on_project_status_changed(session, seed["project_id"], "pending production", T0) == []
    assert await on_project_status_changed(session, seed["project_id"], "Pending Production ", T0) == []
    await session.refresh(r)
    assert r.stage_matched_at is None
    assert r.next_trigger_at is None


async def test_every_watcher_is_armed_independently(session, seed):
    pid = seed["project_id"]
    a = await create_reminder(session, pid, stage(delay_minutes=10), seed["creator"], now=NOW)
    b = await create_reminder(session, pid, stage(delay_minutes=30), seed["admin"], now=NOW)
    other = await create_reminder(session, pid, stage(watch_status="Shipped"), seed["creator"], now=NOW)

    armed = await on_project_status_changed(session, pid, "Pending Production", T0)
    assert sorted(armed) == sorted([a.id, b.id])
    await session.refresh(a)
    await session.refresh(b)
    assert a.next_trigger_at == T0 + timedelta(minutes=10)
    assert b.next_trigger_at == T0 + timedelta(minutes=30)
    await session.refresh(other)
    assert other.next_trigger_at is None


async def test_missing_project_is_ignored(session, seed):
    assert await on_project_status_changed(session, 4242, "Pending Production", T0) == []


async def test_cancelled_reminder_is_not_armed(session, seed):
    from reminder_engine.services.acknowledgment import cancel

    r = await create_reminder(session, seed["project_id"], stage(), seed["creator"], now=NOW)
    await cancel(session, r.id, seed["creator"], now=NOW)
    assert await on_project_status_changed(session, seed["project_id"], "Pending Production", T0) == []


async def test_change_project_status_emits_event(session, seed):
    pid = seed["project_id"]
    r = await create_reminder(session, pid, stage(), seed["creator"], now=NOW)

    armed = await change_project_status(session, pid, "Pending Production", T0)
    assert armed == [r.id]
    project = await session.get(Project, pid)
    await session.refresh(project)
    assert project.status == "Pending Production"

    with pytest.raises(NotFoundError):
        await change_project_status(session, 4242, "Shipped", T0)


async def test_bootstrap_arms_reminders_already_in_status(session, seed):
    pid = seed["project_id"]
    r = await create_reminder(session, pid, stage(), seed["creator"], now=NOW)
    untouched = await create_reminder(session, pid, stage(watch_status="Shipped"), seed["creator"], now=NOW)

    project = await session.get(Project, pid)
    project.status = "Pending Production"
    await session.flush()

    armed = await bootstrap_stage_watch(session, now=T1)
    assert armed == [r.id]
    await session.refresh(r)
    assert r.stage_matched_at == T1
    assert r.next_trigger_at == T1 + timedelta(minutes=60)
    await session.refresh(untouched)
    assert untouched.stage_matched_at is None
