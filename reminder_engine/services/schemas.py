# -*- coding: utf-8 -*-
"""
Типизированная конфигурация напоминания. Проверяется один раз на входе;
дальше по движку ходят только валидные комбинации.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

import pydantic
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from reminder_engine.core.errors import ValidationError
from reminder_engine.services.triggers import ensure_naive_utc, normalize_delay

TriggerMode = Literal["absolute_time", "stage_based"]
Repeat = Literal["none", "daily", "weekly", "monthly"]


def _lower(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


class Channels(BaseModel):
    model_config = ConfigDict(extra="ignore")

    in_app: bool = Field(default=True, validation_alias=AliasChoices("in_app", "inApp"))
    email: bool = False


class ReminderConfig(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    title: str = Field(min_length=1, max_length=140)
    message: str = Field(default="", max_length=800)
    template_key: str = Field(default="custom", max_length=60)
    timezone: str = Field(default="UTC", max_length=80)

    trigger_mode: TriggerMode = "absolute_time"
    repeat: Repeat = "none"

    # порядок важен: валидаторы ниже смотрят на trigger_mode через info.data
    remind_at: Optional[datetime] = Field(default=None, validate_default=True)
    condition_status: str = Field(default="", max_length=80, validate_default=True)
    watch_status: str = Field(default="", max_length=80, validate_default=True)
    delay_minutes: int = 0

    recipient_ids: list[int] = Field(default_factory=list)
    channels: Channels = Field(default_factory=Channels, validate_default=True)

    @field_validator("trigger_mode", "repeat", mode="before")
    @classmethod
    def _normalize_enum(cls, v: Any) -> Any:
        return _lower(v)

    @field_validator("template_key", "timezone", mode="before")
    @classmethod
    def _default_if_blank(cls, v: Any, info: ValidationInfo) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return "custom" if info.field_name == "template_key" else "UTC"
        return v

    @field_validator("message", mode="before")
    @classmethod
    def _message_none(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("remind_at")
    @classmethod
    def _remind_at_for_absolute(cls, v: Optional[datetime], info: ValidationInfo) -> Optional[datetime]:
        if info.data.get("trigger_mode") == "absolute_time":
            if v is None:
                raise ValueError("a valid reminder date is required")
            return ensure_naive_utc(v)
        # для stage_based remind_at не используется
        return None

    @field_validator("condition_status", mode="before")
    @classmethod
    def _condition_status_none(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("condition_status")
    @classmethod
    def _condition_only_for_absolute(cls, v: str, info: ValidationInfo) -> str:
        # у stage_based своё условие, watch_status
        if info.data.get("trigger_mode") == "stage_based":
            return ""
        return v

    @field_validator("watch_status", mode="before")
    @classmethod
    def _watch_status_none(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("watch_status")
    @classmethod
    def _watch_status_for_stage(cls, v: str, info: ValidationInfo) -> str:
        if info.data.get("trigger_mode") == "stage_based":
            if not v:
                raise ValueError("stage-based reminders require a target project status")
            return v
        return ""

    @field_validator("delay_minutes", mode="before")
    @classmethod
    def _clamp_delay(cls, v: Any) -> int:
        return normalize_delay(v)

    @field_validator("recipient_ids", mode="before")
    @classmethod
    def _recipients_none(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("channels")
    @classmethod
    def _at_least_one_channel(cls, v: Channels) -> Channels:
        if not (v.in_app or v.email):
            raise ValueError("at least one reminder delivery channel is required")
        return v


class ReminderUpdate(BaseModel):
    """Частичное редактирование: None = не трогать."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    title: Optional[str] = Field(default=None, min_length=1, max_length=140)
    message: Optional[str] = Field(default=None, max_length=800)
    template_key: Optional[str] = Field(default=None, max_length=60)
    timezone: Optional[str] = Field(default=None, max_length=80)
    trigger_mode: Optional[TriggerMode] = None
    repeat: Optional[Repeat] = None
    remind_at: Optional[datetime] = None
    condition_status: Optional[str] = Field(default=None, max_length=80)
    watch_status: Optional[str] = Field(default=None, min_length=1, max_length=80)
    delay_minutes: Optional[int] = None
    recipient_ids: Optional[list[int]] = None
    channels: Optional[Channels] = None

    @field_validator("trigger_mode", "repeat", mode="before")
    @classmethod
    def _normalize_enum(cls, v: Any) -> Any:
        return _lower(v)

    @field_validator("remind_at")
    @classmethod
    def _naive(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_naive_utc(v) if v is not None else None

    @field_validator("delay_minutes", mode="before")
    @classmethod
    def _clamp_delay(cls, v: Any) -> Any:
        return None if v is None else normalize_delay(v)

    @field_validator("channels")
    @classmethod
    def _at_least_one_channel(cls, v: Optional[Channels]) -> Optional[Channels]:
        if v is not None and not (v.in_app or v.email):
            raise ValueError("at least one reminder delivery channel is required")
        return v


def _translate(exc: pydantic.ValidationError) -> ValidationError:
    err = exc.errors()[0]
    loc = err.get("loc") or ("config",)
    field = str(loc[0])
    msg = str(err.get("msg") or "invalid value")
    # "Value error, ..." -> "..."
    if msg.startswith("Value error, "):
        msg = msg[len("Value error, "):]
    return ValidationError(field, msg)


def parse_config(raw: ReminderConfig | dict) -> ReminderConfig:
    if isinstance(raw, ReminderConfig):
        return raw
    try:
        return ReminderConfig.model_validate(raw)
    except pydantic.ValidationError as e:
        raise _translate(e) from e


def parse_update(raw: ReminderUpdate | dict) -> ReminderUpdate:
    if isinstance(raw, ReminderUpdate):
        return raw
    try:
        return ReminderUpdate.model_validate(raw)
    except pydantic.ValidationError as e:
        raise _translate(e) from e
