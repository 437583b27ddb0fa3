from datetime import datetime, timezone
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import select

from .context import acting_as
from .dependencies import get_client_ip, get_current_user, require_admin
from .password_policy import PasswordValidationError
from .tokens import create_access_token
from .users import prepare_user_for_save, validate_password_confirmation, verify_password
from ..config import settings
from ..database import db_session
from ..models import User, LoginHistory, ROLE_USER, USERNAME_MAX_LENGTH, DEFAULT_STRING_LENGTH
from ..rate_limit import limiter, login_limiter
from ..telemetry import audit

router = APIRouter(prefix="/auth", tags=["auth"])

_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
_ROLE_PATTERN = "^(admin|user)$"


def _check_time_zone(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    try:
        ZoneInfo(v)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown time zone: {v}")
    return v


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class LoginRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    role: str
    username: str
    display_name: str


class LoginAttemptsResponse(BaseModel):
    ip_address: str
    remaining: int
    limit: int
    window_seconds: int


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    display_name: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    time_zone_id: Optional[str] = None
    role: str
    is_active: bool
    created_at: datetime
    last_login_at: Optional[datetime] = None
    login_count: int = 0


class LoginHistoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    username: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    method: str
    created_at: datetime


class _ProfileFields(BaseModel):
    first_name: Optional[str] = Field(default=None, max_length=DEFAULT_STRING_LENGTH)
    last_name: Optional[str] = Field(default=None, max_length=DEFAULT_STRING_LENGTH)
    email: Optional[str] = Field(default=None, max_length=DEFAULT_STRING_LENGTH, pattern=_EMAIL_PATTERN)
    time_zone_id: Optional[str] = Field(default=None, max_length=DEFAULT_STRING_LENGTH)

    @field_validator("time_zone_id")
    @classmethod
    def known_time_zone(cls, v: Optional[str]) -> Optional[str]:
        return _check_time_zone(v)


class SignupRequest(_ProfileFields):
    username: str = Field(..., min_length=1, max_length=USERNAME_MAX_LENGTH)
    # Strength is checked by the password policy, not by field constraints
    password: str
    confirm_password: str


class UserCreate(_ProfileFields):
    username: str = Field(..., min_length=1, max_length=USERNAME_MAX_LENGTH)
    password: str
    confirm_password: str
    role: str = Field(default=ROLE_USER, pattern=_ROLE_PATTERN)
    is_active: bool = True


class UserUpdate(_ProfileFields):
    role: Optional[str] = Field(default=None, pattern=_ROLE_PATTERN)
    is_active: Optional[bool] = None
    password: Optional[str] = None
    confirm_password: Optional[str] = None


class PasswordChangeRequest(BaseModel):
    current_password: str
    new_password: str
    confirm_password: str


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _prepare_password(user: User, password: Optional[str], confirm: Optional[str], is_new: bool) -> bool:
    """Apply a password to ``user``, translating policy failures into 422."""
    if password and not validate_password_confirmation(password, confirm):
        raise HTTPException(status_code=422,
                            detail="Passwords do not match.")
    try:
        return prepare_user_for_save(user, password, is_new)
    except PasswordValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))


def _ensure_username_free(session, username: str) -> None:
    existing = session.execute(
        select(User).where(User.username == username)
    ).scalar_one_or_none()
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT,
                            detail="Username already registered.")


def _issue_token(user: User) -> TokenResponse:
    token, expires_at = create_access_token(user.username, user.role)
    return TokenResponse(
        access_token=token,
        expires_at=expires_at,
        role=user.role,
        username=user.username,
        display_name=user.display_name,
    )


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------

@router.post("/login", response_model=TokenResponse)
def login(request: Request, body: LoginRequest) -> TokenResponse:
    ip = get_client_ip(request)
    if not login_limiter.is_login_allowed(ip):
        audit.log_login_failed(body.username, "rate limit exceeded")
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many login attempts. Please try again later.",
            headers={"Retry-After": str(int(login_limiter.window_seconds))},
        )

    with db_session() as session:
        user = session.execute(
            select(User).where(User.username == body.username)
        ).scalar_one_or_none()

    if not user or not verify_password(body.password, user.password_hash):
        audit.log_login_failed(body.username, "invalid credentials")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="Invalid credentials.")
    if not user.is_active:
        audit.log_login_failed(body.username, "account disabled")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="Invalid credentials.")

    # Track login history
    with db_session() as session:
        user_row = session.get(User, user.id)
        if user_row:
            user_row.last_login_at = datetime.now(timezone.utc)
            user_row.login_count = (user_row.login_count or 0) + 1

        session.add(LoginHistory(
            user_id=user.id,
            username=user.username,
            ip_address=ip,
            user_agent=request.headers.get("user-agent", "")[:512],
            method="jwt",
        ))

    audit.log_login(user.username)
    return _issue_token(user)


@router.get("/login-attempts", response_model=LoginAttemptsResponse)
def login_attempts(request: Request) -> LoginAttemptsResponse:
    """Remaining login attempts for the calling IP in the current window."""
    ip = get_client_ip(request)
    return LoginAttemptsResponse(
        ip_address=ip,
        remaining=login_limiter.get_remaining_login_attempts(ip),
        limit=login_limiter.max_attempts,
        window_seconds=int(login_limiter.window_seconds),
    )


# ---------------------------------------------------------------------------
# Public signup — creates a minimal-access account
# ---------------------------------------------------------------------------

@router.post("/signup", response_model=TokenResponse, status_code=201)
@limiter.limit(settings.signup_rate_limit)
def signup(request: Request, body: SignupRequest) -> TokenResponse:
    if not settings.registration_enabled:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Public registration is disabled. Contact an administrator.",
        )
    with db_session() as session:
        _ensure_username_free(session, body.username)
        user = User(
            username=body.username,
            first_name=body.first_name,
            last_name=body.last_name,
            email=body.email,
            time_zone_id=body.time_zone_id,
            role=ROLE_USER,
            is_active=True,
        )
        _prepare_password(user, body.password, body.confirm_password, is_new=True)
        session.add(user)
        session.flush()
        session.refresh(user)

    audit.log_user_created(user.id, user.username)
    return _issue_token(user)


# ---------------------------------------------------------------------------
# Current user
# ---------------------------------------------------------------------------

@router.get("/me", response_model=UserRead)
def me(current_user: User = Depends(get_current_user)) -> UserRead:
    return UserRead.model_validate(current_user)


@router.post("/me/password", status_code=204)
def change_own_password(
    body: PasswordChangeRequest,
    current_user: User = Depends(get_current_user),
) -> None:
    if not verify_password(body.current_password, current_user.password_hash):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Current password is incorrect.")
    with db_session() as session:
        user = session.get(User, current_user.id)
        if not user:
            raise HTTPException(status_code=404, detail="User not found.")
        if not _prepare_password(user, body.new_password, body.confirm_password, is_new=False):
            raise HTTPException(status_code=422, detail="Password cannot be empty")

    with acting_as(current_user.username):
        audit.log_password_changed(current_user.id, current_user.username)


# ---------------------------------------------------------------------------
# User management — admin only
# ---------------------------------------------------------------------------

@router.get("/users", response_model=List[UserRead])
def list_users(admin: User = Depends(require_admin)) -> List[UserRead]:
    with db_session() as session:
        users = session.execute(select(User).order_by(User.created_at)).scalars().all()
        return [UserRead.model_validate(u) for u in users]


@router.get("/users/{user_id}", response_model=UserRead)
def get_user(user_id: str, admin: User = Depends(require_admin)) -> UserRead:
    with db_session() as session:
        user = session.get(User, user_id)
        if not user:
            raise HTTPException(status_code=404, detail="User not found.")
        return UserRead.model_validate(user)


@router.post("/users", response_model=UserRead, status_code=201)
def create_user(body: UserCreate, admin: User = Depends(require_admin)) -> UserRead:
    with db_session() as session:
        _ensure_username_free(session, body.username)
        user = User(
            username=body.username,
            first_name=body.first_name,
            last_name=body.last_name,
            email=body.email,
            time_zone_id=body.time_zone_id,
            role=body.role,
            is_active=body.is_active,
        )
        _prepare_password(user, body.password, body.confirm_password, is_new=True)
        session.add(user)
        session.flush()
        session.refresh(user)
        created = UserRead.model_validate(user)

    with acting_as(admin.username):
        audit.log_user_created(created.id, created.username)
    return created


@router.patch("/users/{user_id}", response_model=UserRead)
def update_user(
    user_id: str,
    body: UserUpdate,
    admin: User = Depends(require_admin),
) -> UserRead:
    with db_session() as session:
        user = session.get(User, user_id)
        if not user:
            raise HTTPException(status_code=404, detail="User not found.")
        for field in ("first_name", "last_name", "email", "time_zone_id", "role", "is_active"):
            if field in body.model_fields_set:
                value = getattr(body, field)
                if value is None and field in ("role", "is_active"):
                    continue
                setattr(user, field, value)
        password_changed = _prepare_password(user, body.password, body.confirm_password, is_new=False)
        session.flush()
        session.refresh(user)
        updated = UserRead.model_validate(user)

    with acting_as(admin.username):
        audit.log_user_updated(updated.id, updated.username)
        if password_changed:
            audit.log_password_changed(updated.id, updated.username)
    return updated


@router.delete("/users/{user_id}", status_code=204)
def delete_user(user_id: str, admin: User = Depends(require_admin)) -> None:
    if user_id == admin.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="You cannot delete your own account.")
    with db_session() as session:
        user = session.get(User, user_id)
        if not user:
            raise HTTPException(status_code=404, detail="User not found.")
        username = user.username
        session.delete(user)

    with acting_as(admin.username):
        audit.log_user_deleted(user_id, username)


# ---------------------------------------------------------------------------
# Login history — admin only
# ---------------------------------------------------------------------------

@router.get("/login-history", response_model=List[LoginHistoryRead])
def all_login_history(
    limit: int = Query(100, ge=1, le=1000),
    admin: User = Depends(require_admin),
) -> List[LoginHistoryRead]:
    """Return recent login history across all users."""
    with db_session() as session:
        rows = (
            session.execute(
                select(LoginHistory)
                .order_by(LoginHistory.created_at.desc())
                .limit(limit)
            )
            .scalars()
            .all()
        )
        return [LoginHistoryRead.model_validate(r) for r in rows]


@router.get("/users/{user_id}/login-history", response_model=List[LoginHistoryRead])
def user_login_history(
    user_id: str,
    limit: int = Query(50, ge=1, le=1000),
    admin: User = Depends(require_admin),
) -> List[LoginHistoryRead]:
    """Return login history for a specific user."""
    with db_session() as session:
        user = session.get(User, user_id)
        if not user:
            raise HTTPException(status_code=404, detail="User not found.")
        rows = (
            session.execute(
                select(LoginHistory)
                .where(LoginHistory.user_id == user_id)
                .order_by(LoginHistory.created_at.desc())
                .limit(limit)
            )
            .scalars()
            .all()
        )
        return [LoginHistoryRead.model_validate(r) for r in rows]
