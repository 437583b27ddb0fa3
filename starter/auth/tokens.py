"""
tokens.py — Bearer tokens for authenticated sessions
====================================================
HS256 JWTs carrying the username (``sub``) and role. Tokens are stateless;
deactivating a user takes effect on the next request because every request
re-loads the user row.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from jose import JWTError, jwt

from ..config import settings

ALGORITHM = "HS256"


class InvalidTokenError(Exception):
    """Token is malformed, forged, or expired."""


def create_access_token(
    username: str,
    role: str,
    expires_minutes: Optional[int] = None,
) -> Tuple[str, datetime]:
    """Return ``(token, expires_at)`` for ``username``."""
    issued_at = datetime.now(timezone.utc)
    expires_at = issued_at + timedelta(minutes=expires_minutes or settings.jwt_expire_minutes)
    claims = {
        "sub": username,
        "role": role,
        "iat": issued_at,
        "exp": expires_at,
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=ALGORITHM), expires_at


def username_from_token(token: str) -> str:
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise InvalidTokenError(str(exc)) from exc
    username = claims.get("sub")
    if not username:
        raise InvalidTokenError("token has no subject")
    return username
