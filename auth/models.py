"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, no I/O). Stores and the session
manager do the work; these classes only own the domain shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

ROLES: tuple[str, ...] = ("traveller", "guide")


@dataclass
class User:
    """A registered account.

    refresh_tokens holds the currently redeemable refresh tokens, oldest
    first. The list is owned by the store: mutate it through UserStore, never
    by editing this object and writing it back.

    email_verified / email_verification_token / password_reset_* are stub
    fields. Nothing in the service reads them yet.
    """

    username: str
    email: str
    role: str  # one of ROLES
    id: str | None = None
    hashed_password: str | None = None
    avatar: str | None = None
    is_active: bool = True
    email_verified: bool = False
    email_verification_token: str | None = None
    password_reset_token: str | None = None
    password_reset_expires: str | None = None
    refresh_tokens: list[str] = field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class TokenClaims:
    """Identity carried inside a signed token.

    Equality only looks at the identity fields: two claim sets describing the
    same user compare equal even if they came from tokens issued at different
    times.
    """

    user_id: str
    username: str
    email: str
    role: str
    token_id: str | None = field(default=None, compare=False)
    issued_at: datetime | None = field(default=None, compare=False)
    expires_at: datetime | None = field(default=None, compare=False)

    @classmethod
    def for_user(cls, user: User) -> TokenClaims:
        return cls(user_id=user.id, username=user.username, email=user.email, role=user.role)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class AuthResult:
    """What sign-up, login and refresh hand back to the route layer."""

    user: User
    tokens: TokenPair
