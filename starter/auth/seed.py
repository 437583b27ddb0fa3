from __future__ import annotations

import logging

from sqlalchemy import select

from .password_policy import PasswordValidationError
from .users import prepare_user_for_save
from ..config import settings
from ..database import db_session
from ..models import User, ROLE_ADMIN
from ..telemetry import audit

logger = logging.getLogger("starter.seed")

_DEFAULT_PASSWORD = "changeme"


def seed_admin() -> None:
    """
    Create the initial admin account on first startup if no users exist.

    Credentials come from STARTER_ADMIN_USERNAME / STARTER_ADMIN_PASSWORD /
    STARTER_ADMIN_NAME. The default password is only accepted in the
    development environment.
    """
    with db_session() as session:
        existing = session.execute(select(User).limit(1)).scalar_one_or_none()
        if existing:
            return  # Users already seeded — don't overwrite

        if settings.admin_password == _DEFAULT_PASSWORD:
            logger.warning(
                "Seeding admin with the DEFAULT password. "
                "Set STARTER_ADMIN_PASSWORD before deploying to production."
            )
            if settings.environment != "development":
                logger.error(
                    "Refusing to seed default admin password in %s environment.",
                    settings.environment,
                )
                return

        admin = User(
            username=settings.admin_username,
            first_name=settings.admin_name,
            role=ROLE_ADMIN,
            is_active=True,
        )
        try:
            prepare_user_for_save(admin, settings.admin_password, is_new=True)
        except PasswordValidationError as exc:
            logger.error("Admin account not seeded: %s", exc)
            return
        session.add(admin)
        session.flush()
        audit.log_user_created(admin.id, admin.username)
        logger.info("Default admin created: %s", admin.username)
