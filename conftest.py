"""
pytest configuration – initialise database tables before tests run.
Provides a shared session-scoped admin token and resets rate limiters
between tests so login attempts never leak from one test into another.
"""
import os

os.environ.setdefault("STARTER_DATABASE_URL", "sqlite:///./test_starter.db")
os.environ.setdefault("STARTER_LOG_FORMAT", "text")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from starter.database import Base, engine, init_db  # noqa: E402
from starter import models  # noqa: E402,F401 – registers ORM mappings with Base.metadata
from starter.main import app  # noqa: E402
from starter.rate_limit import limiter, login_limiter  # noqa: E402

ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "changeme"


@pytest.fixture(autouse=True, scope="session")
def create_tables():
    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_rate_limits():
    login_limiter.reset_all()
    limiter.reset()
    yield
    login_limiter.reset_all()


# Session-scoped admin token — login happens ONCE per test run
_session_token: str | None = None


@pytest.fixture(scope="session")
def admin_token() -> str:
    global _session_token
    if _session_token is None:
        client = TestClient(app)
        resp = client.post("/auth/login", json={"username": ADMIN_USERNAME, "password": ADMIN_PASSWORD})
        assert resp.status_code == 200, f"Login failed: {resp.text}"
        _session_token = resp.json()["access_token"]
    return _session_token
