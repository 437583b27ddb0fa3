from __future__ import annotations

import logging
import sys
from time import perf_counter

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from pythonjsonlogger.json import JsonFormatter
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .config import settings
from .database import init_db
from .rate_limit import limiter
from .auth.routes_auth import router as auth_router
from .auth.seed import seed_admin
from .telemetry.audit import AUDIT_LOGGER_NAME

VERSION = "0.1.0"

perf_logger = logging.getLogger("starter.performance")

# ---------------------------------------------------------------------------
# Structured logging
# ---------------------------------------------------------------------------

_LOG_FIELDS = "%(asctime)s %(name)s %(levelname)s %(message)s"


def _make_formatter() -> logging.Formatter:
    if settings.log_format == "json":
        return JsonFormatter(
            _LOG_FIELDS,
            rename_fields={"asctime": "timestamp", "levelname": "level"},
        )
    return logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s")


def _configure_logging() -> None:
    """Root handler on stdout; audit events optionally also go to their own file."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_make_formatter())
    root.addHandler(handler)

    audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)
    audit_logger.setLevel(logging.INFO)
    if settings.audit_log_path:
        file_handler = logging.FileHandler(settings.audit_log_path, encoding="utf-8")
        file_handler.setFormatter(_make_formatter())
        audit_logger.addHandler(file_handler)


_configure_logging()

# Initialise database tables on startup
init_db()

# Seed default admin if no users exist
seed_admin()

app = FastAPI(
    title="Starter Service",
    version=VERSION,
    description=(
        "Starter template for business web applications: login with per-IP "
        "brute-force protection, user management with a password policy, "
        "and a structured audit trail."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allow_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_slow_requests(request: Request, call_next):
    start = perf_counter()
    try:
        return await call_next(request)
    finally:
        duration_ms = (perf_counter() - start) * 1000
        if duration_ms > settings.slow_request_ms:
            perf_logger.warning(
                "Slow request: method=%s, path=%s, duration=%.1fms",
                request.method,
                request.url.path,
                duration_ms,
                extra={"method": request.method, "path": request.url.path, "duration_ms": round(duration_ms, 1)},
            )


app.include_router(auth_router)


@app.get("/", tags=["meta"])
def root() -> dict:
    return {"status": "ok", "service": "starter", "version": VERSION}


@app.get("/health", tags=["meta"])
def health() -> dict:
    return {"status": "healthy"}


@app.get("/healthz", tags=["meta"])
def healthz() -> dict:
    """Lightweight health check for load balancer probes."""
    return {"status": "ok"}
