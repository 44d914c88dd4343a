# reminder_engine/models/project.py
# Проект принадлежит внешнему агрегату; движок читает только статус.
from __future__ import annotations

from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime

from reminder_engine.models.user import Base


class Project(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False, default="")
    status = Column(String(80), nullable=False, default="Order Confirmed")
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
