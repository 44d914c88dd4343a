# -*- coding: utf-8 -*-
from __future__ import annotations
import html
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from reminder_engine.models.reminder import MODE_STAGE

_REPEAT_LABELS = {"daily": "every day", "weekly": "every week", "monthly": "every month"}


def fmt_local(dt: datetime | None, tz: str) -> str:
    if dt is None:
        return "—"
    return dt.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(tz)).strftime("%Y-%m-%d %H:%M")


def format_reminder(r, tz: str) -> str:
    lines = [f"<b>{html.escape(r.title or 'Reminder')}</b>"]
    if r.message:
        lines.append(html.escape(r.message))
    if r.project_id is not None:
        lines.append(f"Project #{r.project_id}")
    if r.trigger_mode == MODE_STAGE:
        when = f"when status is «{html.escape(r.watch_status)}»"
        if r.delay_minutes:
            when += f" + {r.delay_minutes} min"
        lines.append(when)
        if r.stage_matched_at is None:
            lines.append("⏳ waiting for stage")
        else:
            lines.append(f"🕒 {fmt_local(r.next_trigger_at, tz)}")
    else:
        lines.append(f"🕒 {fmt_local(r.next_trigger_at, tz)}")
        if getattr(r, "condition_status", ""):
            lines.append(f"only if status is «{html.escape(r.condition_status)}»")
    if r.repeat in _REPEAT_LABELS:
        lines.append(f"🔁 {_REPEAT_LABELS[r.repeat]}")
    if r.status != "scheduled":
        lines.append(f"<i>{r.status}</i>")
    return "\n".join(lines)
