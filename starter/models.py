from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Integer, String, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base

USERNAME_MAX_LENGTH = 100
DEFAULT_STRING_LENGTH = 255

ROLE_ADMIN = "admin"  # full access
ROLE_USER = "user"    # minimal access: own profile and password only
ROLES = (ROLE_ADMIN, ROLE_USER)


def _new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """Application account with role-based access."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    username: Mapped[str] = mapped_column(String(USERNAME_MAX_LENGTH), unique=True, index=True)
    password_hash: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(DEFAULT_STRING_LENGTH), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(DEFAULT_STRING_LENGTH), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(DEFAULT_STRING_LENGTH), nullable=True)
    time_zone_id: Mapped[Optional[str]] = mapped_column(String(DEFAULT_STRING_LENGTH), nullable=True)
    role: Mapped[str] = mapped_column(String(32), default=ROLE_USER, index=True)
    is_active: Mapped[bool] = mapped_column(default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(timezone.utc))
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    login_count: Mapped[int] = mapped_column(Integer, default=0)

    @property
    def display_name(self) -> str:
        first = self.first_name or ""
        last = self.last_name or ""
        return f"{first} {last} [{self.username}]".strip()

    def __repr__(self) -> str:
        return f"User(id={self.id!r}, username={self.username!r})"


class LoginHistory(Base):
    """Tracks every successful login per user."""

    __tablename__ = "login_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(36), index=True)
    username: Mapped[str] = mapped_column(String(USERNAME_MAX_LENGTH), index=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    method: Mapped[str] = mapped_column(String(16), default="jwt")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(timezone.utc), index=True)
