# reminder_engine/models/user.py
# Объявляем Base и модель User: справочник сотрудников (идентичность + роль).

from __future__ import annotations

from sqlalchemy import Column, Integer, BigInteger, String, Boolean
from sqlalchemy.orm import declarative_base

Base = declarative_base()

ROLE_ADMIN = "admin"
ROLE_STAFF = "staff"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    telegram_id = Column(BigInteger, unique=True, index=True, nullable=True)
    username = Column(String(100), nullable=True)
    full_name = Column(String(200), nullable=True)
    email = Column(String(254), nullable=True)
    role = Column(String(20), nullable=False, default=ROLE_STAFF)   # "admin" | "staff"
    is_active = Column(Boolean, nullable=False, default=True)
