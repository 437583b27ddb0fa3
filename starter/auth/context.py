"""
context.py — Request-scoped acting user
=======================================
Code that runs on behalf of an authenticated user binds that user with
``acting_as``; anything called inside the block (audit logging in
particular) can read it back with ``current_actor``. Outside any binding the
actor is the ``system`` sentinel.
"""
from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

SYSTEM_ACTOR = "system"

_current_actor: ContextVar[Optional[str]] = ContextVar("starter_current_actor", default=None)


@contextmanager
def acting_as(username: Optional[str]) -> Iterator[None]:
    token = _current_actor.set(username)
    try:
        yield
    finally:
        _current_actor.reset(token)


def current_actor() -> str:
    return _current_actor.get() or SYSTEM_ACTOR
