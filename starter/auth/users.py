"""
users.py — Password handling for User accounts
==============================================
Hashing, confirmation, strength checks, and the single entry point used
before a User row is saved with a (possibly new) password.
"""
from __future__ import annotations

import logging
from typing import Optional

import bcrypt

from .password_policy import (
    PasswordValidationError,
    is_not_null_or_empty,
    is_null_or_empty,
    validate_password,
)
from ..models import User

logger = logging.getLogger("starter.auth.users")


def encode_password(password: str) -> str:
    """Return the bcrypt hash of ``password``."""
    logger.debug("Encoding password for user")
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


def validate_password_confirmation(password: Optional[str], confirm_password: Optional[str]) -> bool:
    matches = password == confirm_password
    if not matches:
        logger.warning("Password confirmation validation failed")
    return matches


def validate_password_strength(password: Optional[str], username: Optional[str] = None) -> None:
    validate_password(password, username)


def prepare_user_for_save(user: User, password: Optional[str], is_new: bool) -> bool:
    """
    Validate and hash ``password`` onto ``user`` before it is persisted.

    New users must supply a password. Existing users keep their stored hash
    when ``password`` is None or empty.

    Returns True when the password hash was (re)set. Raises
    PasswordValidationError when the password is missing for a new user or
    fails the policy.
    """
    if is_new:
        if is_null_or_empty(password):
            raise PasswordValidationError("Password is required for new users")
        _encode_and_set(user, password)
        logger.info("Prepared new user for save: username=%s", user.username)
        return True

    if is_not_null_or_empty(password):
        _encode_and_set(user, password)
        logger.info("Prepared user password update: id=%s, username=%s", user.id, user.username)
        return True

    logger.debug("Prepared user for update (no password change): id=%s, username=%s",
                 user.id, user.username)
    return False


def _encode_and_set(user: User, password: str) -> None:
    validate_password_strength(password, user.username)
    user.password_hash = encode_password(password)
