from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from reminder_engine.core.errors import (
    AuthorizationError, ConflictError, NotFoundError, ValidationError,
)
from reminder_engine.models import Reminder
from reminder_engine.services.acknowledgment import complete
from reminder_engine.services.dispatcher import dispatch_due_reminders
from reminder_engine.services.reminders import (
    create_reminder, delete_reminder, get_reminder, list_for_user, list_reminders, update_reminder,
)

NOW = datetime(2024, 3, 4, 9, 0)


def absolute(**kw):
    cfg = {"title": "Call the client", "trigger_mode": "absolute_time", "remind_at": NOW + timedelta(hours=2)}
    cfg.update(kw)
    return cfg


def stage(**kw):
    cfg = {"title": "Check proofs", "trigger_mode": "stage_based", "watch_status": "Pending Production", "delay_minutes": 60}
    cfg.update(kw)
    return cfg


async def _count(session) -> int:
    return (await session.execute(select(func.count(Reminder.id)))).scalar_one()


async def test_absolute_reminder_is_armed_at_once(session, seed):
    r = await create_reminder(session, seed["project_id"], absolute(), seed["creator"], now=NOW)
    assert r.status == "scheduled"
    assert r.is_active
    assert r.next_trigger_at == NOW + timedelta(hours=2)
    assert r.occurrence_at == r.next_trigger_at
    assert r.stage_matched_at is None
    assert r.delay_minutes == 0
    assert r.watch_status == ""


async def test_absolute_reminder_without_project(session, seed):
    r = await create_reminder(session, None, absolute(), seed["creator"], now=NOW)
    assert r.project_id is None


async def test_stage_reminder_waits_for_match(session, seed):
    r = await create_reminder(session, seed["project_id"], stage(), seed["creator"], now=NOW)
    assert r.stage_matched_at is None
    assert r.next_trigger_at is None
    assert r.remind_at is None
    assert r.awaiting_match


async def test_stage_reminder_matches_current_status_on_create(session, seed):
    r = await create_reminder(
        session, seed["project_id"], stage(watch_status="Order Confirmed", delay_minutes=15),
        seed["creator"], now=NOW,
    )
    assert r.stage_matched_at == NOW
    assert r.next_trigger_at == NOW + timedelta(minutes=15)


@pytest.mark.parametrize("cfg,field", [
    (absolute(title="   "), "title"),
    (absolute(title="x" * 141), "title"),
    (absolute(message="m" * 801), "message"),
    (absolute(remind_at=None), "remind_at"),
    (absolute(remind_at="not a date"), "remind_at"),
    (stage(watch_status=""), "watch_status"),
    (absolute(trigger_mode="sometime"), "trigger_mode"),
    (absolute(repeat="hourly"), "repeat"),
    (absolute(channels={"inApp": False, "email": False}), "channels"),
])
async def test_invalid_config_names_the_field(session, seed, cfg, field):
    with pytest.raises(ValidationError) as exc:
        await create_reminder(session, seed["project_id"], cfg, seed["creator"], now=NOW)
    assert exc.value.field == field
    assert await _count(session) == 0


async def test_no_channels_is_rejected(session, seed):
    cfg = absolute(channels={"in_app": False, "email": False})
    with pytest.raises(ValidationError) as exc:
        await create_reminder(session, seed["project_id"], cfg, seed["creator"], now=NOW)
    assert exc.value.field == "channels"
    assert "channel" in exc.value.message
    assert await _count(session) == 0


async def test_past_remind_at_is_rejected_with_small_tolerance(session, seed):
    with pytest.raises(ValidationError) as exc:
        await create_reminder(session, None, absolute(remind_at=NOW - timedelta(minutes=1)), seed["creator"], now=NOW)
    assert exc.value.field == "remind_at"

    r = await create_reminder(session, None, absolute(remind_at=NOW - timedelta(seconds=2)), seed["creator"], now=NOW)
    assert r.next_trigger_at == NOW - timedelta(seconds=2)


async def test_aware_remind_at_is_stored_as_utc(session, seed):
    r = await create_reminder(session, None, absolute(remind_at="2024-03-04T14:00:00+03:00"), seed["creator"], now=NOW)
    assert r.next_trigger_at == datetime(2024, 3, 4, 11, 0)


async def test_stage_reminder_requires_project(session, seed):
    with pytest.raises(ValidationError) as exc:
        await create_reminder(session, None, stage(), seed["creator"], now=NOW)
    assert exc.value.field == "project_id"


async def test_unknown_project(session, seed):
    with pytest.raises(NotFoundError) as exc:
        await create_reminder(session, 999, absolute(), seed["creator"], now=NOW)
    assert exc.value.kind == "project"


async def test_delay_is_clamped_and_mode_is_case_insensitive(session, seed):
    r = await create_reminder(
        session, seed["project_id"], stage(trigger_mode="STAGE_BASED", delay_minutes=-5), seed["creator"], now=NOW,
    )
    assert r.trigger_mode == "stage_based"
    assert r.delay_minutes == 0


async def test_staff_always_reminds_only_themselves(session, seed):
    r = await create_reminder(
        session, None, absolute(recipient_ids=[seed["recipient"].user_id]), seed["creator"], now=NOW,
    )
    assert r.recipient_ids == {seed["creator"].user_id}


async def test_admin_picks_recipients_and_is_included(session, seed):
    r = await create_reminder(
        session, None, absolute(recipient_ids=[seed["recipient"].user_id]), seed["admin"], now=NOW,
    )
    assert r.recipient_ids == {seed["recipient"].user_id, seed["admin"].user_id}
    assert r.channels == {"in_app": True, "email": False}


async def test_unknown_recipient_is_rejected(session, seed):
    with pytest.raises(ValidationError) as exc:
        await create_reminder(session, None, absolute(recipient_ids=[4242]), seed["admin"], now=NOW)
    assert exc.value.field == "recipient_ids"
    assert await _count(session) == 0


async def test_get_reminder_requires_can_act(session, seed):
    r = await create_reminder(session, None, absolute(), seed["creator"], now=NOW)
    assert (await get_reminder(session, r.id, seed["creator"])).id == r.id
    with pytest.raises(AuthorizationError):
        await get_reminder(session, r.id, seed["outsider"])
    with pytest.raises(NotFoundError):
        await get_reminder(session, r.id + 100, seed["admin"])


async def test_list_reminders_filters_and_orders(session, seed):
    pid = seed["project_id"]
    late = await create_reminder(session, pid, absolute(remind_at=NOW + timedelta(days=2)), seed["creator"], now=NOW)
    waiting = await create_reminder(session, pid, stage(), seed["creator"], now=NOW)
    soon = await create_reminder(session, pid, absolute(remind_at=NOW + timedelta(hours=1)), seed["creator"], now=NOW)
    other = await create_reminder(session, None, absolute(), seed["admin"], now=NOW)

    items = await list_reminders(session, pid)
    assert [r.id for r in items] == [soon.id, late.id, waiting.id]

    assert await list_reminders(session, pid, actor=seed["outsider"]) == []
    assert other.id in [r.id for r in await list_reminders(session, None, actor=seed["admin"])]

    mine = await list_for_user(session, seed["creator"].user_id)
    assert {r.id for r in mine} == {late.id, waiting.id, soon.id}


async def test_update_before_trigger(session, seed):
    r = await create_reminder(session, None, absolute(), seed["creator"], now=NOW)
    new_at = NOW + timedelta(days=1)
    updated = await update_reminder(
        session, r.id, seed["creator"], {"title": "Call Acme", "remind_at": new_at}, now=NOW,
    )
    assert updated.title == "Call Acme"
    assert updated.next_trigger_at == new_at
    assert updated.occurrence_at == new_at
    assert updated.version == 2


async def test_update_rules(session, seed):
    r = await create_reminder(session, None, absolute(), seed["creator"], now=NOW)
    with pytest.raises(AuthorizationError):
        await update_reminder(session, r.id, seed["recipient"], {"title": "x"}, now=NOW)
    with pytest.raises(ValidationError) as exc:
        await update_reminder(session, r.id, seed["creator"], {"trigger_mode": "stage_based"}, now=NOW)
    assert exc.value.field == "trigger_mode"
    with pytest.raises(ValidationError) as exc:
        await update_reminder(session, r.id, seed["creator"], {"channels": {"in_app": False}}, now=NOW)
    assert exc.value.field == "channels"
    with pytest.raises(ConflictError):
        await update_reminder(session, r.id, seed["creator"], {"title": "late"}, now=NOW + timedelta(hours=3))


async def test_update_stage_reevaluates_against_project_status(session, seed):
    r = await create_reminder(session, seed["project_id"], stage(), seed["creator"], now=NOW)
    updated = await update_reminder(
        session, r.id, seed["creator"], {"watch_status": "Order Confirmed", "delay_minutes": 30}, now=NOW,
    )
    assert updated.stage_matched_at == NOW
    assert updated.next_trigger_at == NOW + timedelta(minutes=30)


async def test_condition_status_is_kept_for_absolute_only(session, seed):
    pid = seed["project_id"]
    r = await create_reminder(session, pid, absolute(condition_status="  Pending Production "), seed["creator"], now=NOW)
    assert r.condition_status == "Pending Production"

    s = await create_reminder(session, pid, stage(condition_status="Shipped"), seed["creator"], now=NOW)
    assert s.condition_status == ""

    updated = await update_reminder(session, r.id, seed["creator"], {"condition_status": "Ready"}, now=NOW)
    assert updated.condition_status == "Ready"


async def test_delete_requires_can_manage(session, seed):
    r = await create_reminder(session, None, absolute(), seed["creator"], now=NOW)
    with pytest.raises(AuthorizationError):
        await delete_reminder(session, r.id, seed["outsider"])
    await delete_reminder(session, r.id, seed["admin"])
    assert await _count(session) == 0


async def test_legacy_status_reads_as_scheduled(session, seed, make_sink):
    from sqlalchemy import update

    r = await create_reminder(session, None, absolute(), seed["creator"], now=NOW)
    await session.execute(update(Reminder).where(Reminder.id == r.id).values(status="pending"))
    current = await get_reminder(session, r.id, seed["creator"])
    assert current.status == "scheduled"
    assert [x.id for x in await list_for_user(session, seed["creator"].user_id)] == [r.id]

    # старый статус не мешает ни планировщику, ни подтверждению
    sink = make_sink()
    report = await dispatch_due_reminders(session, {"in_app": [sink]}, now=NOW + timedelta(hours=2))
    assert report.delivered == [r.id]

    done = await complete(session, r.id, seed["creator"], now=NOW + timedelta(hours=2))
    assert done.status == "completed"
    raw = (await session.execute(select(Reminder.status).where(Reminder.id == r.id))).scalar_one()
    assert raw == "completed"
