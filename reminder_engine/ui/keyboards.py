# reminder_engine/ui/keyboards.py
from __future__ import annotations
from aiogram.types import InlineKeyboardMarkup, InlineKeyboardButton


def kb_reminder_actions(reminder_id: int, can_cancel: bool = False, can_snooze: bool = True) -> InlineKeyboardMarkup:
    """
    Snooze / Done в один ряд, Cancel отдельным рядом, только тем, кто управляет напоминанием.
    """
    row = []
    if can_snooze:
        row.append(InlineKeyboardButton(text="⏰ Snooze", callback_data=f"rem:snooze:{reminder_id}"))
    row.append(InlineKeyboardButton(text="✅ Done", callback_data=f"rem:done:{reminder_id}"))
    buttons = [row]
    if can_cancel:
        buttons.append([InlineKeyboardButton(text="✖ Cancel reminder", callback_data=f"rem:cancel:{reminder_id}")])
    return InlineKeyboardMarkup(inline_keyboard=buttons)
