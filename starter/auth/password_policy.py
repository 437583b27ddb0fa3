from __future__ import annotations

import logging
from typing import Optional

logger = logging.getLogger("starter.auth.password")

# Passwords shorter than this are rejected everywhere a password is set.
MIN_PASSWORD_LENGTH = 8
# bcrypt only accepts this many bytes of input.
MAX_PASSWORD_BYTES = 72


class PasswordValidationError(ValueError):
    """Raised when a candidate password does not satisfy the policy."""


def is_null_or_empty(value: Optional[str]) -> bool:
    return value is None or value == ""


def is_not_null_or_empty(value: Optional[str]) -> bool:
    return not is_null_or_empty(value)


def validate_password(password: Optional[str], username: Optional[str] = None) -> None:
    """
    Check ``password`` against the password policy.

    Raises PasswordValidationError when the password is missing or empty, shorter
    than MIN_PASSWORD_LENGTH, or longer than MAX_PASSWORD_BYTES once
    UTF-8 encoded. ``username`` is only used for tracing.
    """
    if is_null_or_empty(password):
        raise PasswordValidationError("Password cannot be empty")

    if len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )

    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise PasswordValidationError(
            f"Password must be at most {MAX_PASSWORD_BYTES} bytes long"
        )

    logger.debug("Password validation passed: username=%s", username or "new")
