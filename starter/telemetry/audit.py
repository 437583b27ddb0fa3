"""
audit.py — Structured audit trail for security-relevant events
==============================================================
Every call writes one record to the dedicated ``starter.audit`` logger.
The message reads ``EVENT: key=value, ...`` for plain-text sinks, and the
same fields are attached as ``extra`` so the JSON formatter emits them as
top-level keys.

Auditing is best-effort: none of these functions raise. A failing sink is
reported at DEBUG level on ``starter.telemetry`` and otherwise ignored.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from ..auth.context import current_actor

AUDIT_LOGGER_NAME = "starter.audit"

audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)
logger = logging.getLogger("starter.telemetry")


def _emit(level: int, event: str, actor_key: Optional[str] = None,
          actor: Optional[str] = None, **fields: Any) -> None:
    try:
        if actor_key is not None:
            fields[actor_key] = actor or current_actor()
        message = event + ": " + ", ".join(f"{k}={v}" for k, v in fields.items())
        extra = {"event": event, **fields}
        if actor_key is not None:
            extra["actor"] = fields[actor_key]
        audit_logger.log(level, message, extra=extra)
    except Exception as exc:
        logger.debug("Audit event %s could not be written: %s", event, exc)


def log_user_created(user_id: Optional[str], username: Optional[str], actor: Optional[str] = None) -> None:
    _emit(logging.INFO, "USER_CREATED", "created_by", actor, user_id=user_id, username=username)


def log_user_updated(user_id: Optional[str], username: Optional[str], actor: Optional[str] = None) -> None:
    _emit(logging.INFO, "USER_UPDATED", "updated_by", actor, user_id=user_id, username=username)


def log_user_deleted(user_id: Optional[str], username: Optional[str], actor: Optional[str] = None) -> None:
    _emit(logging.INFO, "USER_DELETED", "deleted_by", actor, user_id=user_id, username=username)


def log_login(username: Optional[str]) -> None:
    _emit(logging.INFO, "LOGIN_SUCCESS", username=username)


def log_login_failed(username: Optional[str], reason: Optional[str]) -> None:
    """``reason`` is a short phrase such as "invalid credentials" or "account disabled"."""
    _emit(logging.WARNING, "LOGIN_FAILED", username=username, reason=reason)


def log_password_changed(user_id: Optional[str], username: Optional[str], actor: Optional[str] = None) -> None:
    _emit(logging.INFO, "PASSWORD_CHANGED", "changed_by", actor, user_id=user_id, username=username)
