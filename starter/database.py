from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import sessionmaker, DeclarativeBase, Session

from .config import settings

logger = logging.getLogger("starter.database")


class Base(DeclarativeBase):
    pass


_is_sqlite = settings.database_url.startswith("sqlite")

engine = create_engine(
    settings.database_url,
    echo=settings.log_sql,
    # SQLite connections are shared across FastAPI's worker threads
    connect_args={"check_same_thread": False} if _is_sqlite else {},
)

SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db() -> None:
    """Create any missing tables for the registered models."""
    from . import models  # noqa: F401 – registers ORM mappings with Base.metadata

    Base.metadata.create_all(bind=engine)
    logger.info("Database ready: tables=%s", sorted(inspect(engine).get_table_names()))


@contextmanager
def db_session() -> Iterator[Session]:
    """Unit of work: commit on success, roll back on any exception."""
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
