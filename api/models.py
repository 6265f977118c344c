"""
API request and response models for the auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

JSON keys are camelCase (accessToken, isActive, ...) because that is what the
mobile client speaks; Python attributes stay snake_case. Always serialize
with model_dump(by_alias=True).
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

USERNAME_PATTERN = r"^[a-zA-Z0-9_]+$"
EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"

# bcrypt ignores everything past 72 bytes.
PASSWORD_MIN_LEN = 6
PASSWORD_MAX_LEN = 72


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    traveller = "traveller"
    guide = "guide"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignUpRequest(BaseModel):
    """Request body for POST /signup.

    username and email are trimmed (email also lower-cased) before the
    pattern checks run. The password is taken exactly as sent.
    """

    username: str = Field(min_length=3, max_length=30, pattern=USERNAME_PATTERN)
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=PASSWORD_MIN_LEN, max_length=PASSWORD_MAX_LEN)
    role: RoleEnum

    @field_validator("username", mode="before")
    @classmethod
    def strip_username(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value


class LoginRequest(BaseModel):
    """Request body for POST /login. identifier is a username or an email."""

    identifier: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LEN)

    @field_validator("identifier", mode="before")
    @classmethod
    def strip_identifier(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class RefreshRequest(BaseModel):
    """Request body for POST /refresh."""

    model_config = ConfigDict(populate_by_name=True)

    refresh_token: str = Field(alias="refreshToken", min_length=1, max_length=4096)


class LogoutRequest(BaseModel):
    """Optional request body for POST /logout."""

    model_config = ConfigDict(populate_by_name=True)

    refresh_token: Optional[str] = Field(default=None, alias="refreshToken", max_length=4096)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserPublic(BaseModel):
    """Public view of a user.

    Never carries the password hash, refresh tokens, or the verification and
    reset tokens -- build it with from_user(), which copies an allow-list.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    id: str
    username: str
    email: str
    role: RoleEnum
    avatar: Optional[str] = None
    is_active: bool
    email_verified: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserPublic":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            role=user.role,
            avatar=user.avatar,
            is_active=user.is_active,
            email_verified=user.email_verified,
            created_at=user.created_at or "",
            updated_at=user.updated_at or "",
        )


class FieldError(BaseModel):
    """One field-level validation problem."""

    model_config = ConfigDict(frozen=True)

    field: str
    message: str


class ApiResponse(BaseModel):
    """The envelope every endpoint returns: {success, message, data?, error?}.

    Serialize with model_dump(by_alias=True, exclude_none=True) so absent
    optional members are omitted rather than sent as null.
    """

    model_config = ConfigDict(frozen=True)

    success: bool
    message: str
    data: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    details: Optional[list[FieldError]] = None


class HealthResponse(BaseModel):
    """Response for GET /health -- liveness only."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str
    timestamp: str
    service: str
    version: str
