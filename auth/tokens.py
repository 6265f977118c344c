"""
auth/tokens.py -- JWT issue/verify for the two signing domains.

Security design decisions:
  Two domains: access tokens (short-lived, presented on every protected call)
       and refresh tokens (long-lived, only redeemable at /refresh). Each is
       signed with its own secret, so a refresh token replayed as an access
       token fails signature verification and vice versa. The "type" claim
       is checked as well, as a second line of defence.

  JWT: python-jose with HS256. Tokens carry sub (user id), username, email,
       role, jti, iat, exp, iss and aud. Every token gets a fresh jti, so two
       tokens issued to the same user in the same second are still distinct
       strings -- the refresh-token store relies on that.

  Verification is purely cryptographic. It never looks at the store;
       revocation (rotation, logout) is layered on top by the session manager.

Layer rule: no imports from api/. Settings are passed in, not read globally.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING

from jose import JWTError, jwt

from auth.models import TokenClaims, TokenPair

if TYPE_CHECKING:
    from core.config import Settings

_ALGORITHM = "HS256"
_BEARER_PREFIX = "Bearer "
_REQUIRED_CLAIMS = ("sub", "username", "email", "role")


class TokenDomain(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


class InvalidTokenError(Exception):
    """The token is malformed, wrongly signed, expired, or from the wrong domain."""


class TokenCodec:
    """Signs and verifies tokens for both domains.

    Usage:
        codec = TokenCodec.from_settings(get_settings())
        pair = codec.issue_pair(TokenClaims.for_user(user))
        claims = codec.verify(pair.access_token, TokenDomain.ACCESS)
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl: timedelta,
        refresh_ttl: timedelta,
        issuer: str,
        audience: str,
    ) -> None:
        if access_secret == refresh_secret:
            raise ValueError("access and refresh secrets must differ")
        self._secrets = {TokenDomain.ACCESS: access_secret, TokenDomain.REFRESH: refresh_secret}
        self._ttls = {TokenDomain.ACCESS: access_ttl, TokenDomain.REFRESH: refresh_ttl}
        self.issuer = issuer
        self.audience = audience

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenCodec:
        return cls(
            access_secret=settings.jwt_access_secret,
            refresh_secret=settings.jwt_refresh_secret,
            access_ttl=timedelta(seconds=settings.jwt_access_expire_seconds),
            refresh_ttl=timedelta(seconds=settings.jwt_refresh_expire_seconds),
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
        )

    def issue(self, claims: TokenClaims, domain: TokenDomain, now: datetime | None = None) -> str:
        """Return a signed token for claims in the given domain."""
        issued_at = now or datetime.now(timezone.utc)
        payload = {
            "sub": str(claims.user_id),
            "username": claims.username,
            "email": claims.email,
            "role": claims.role,
            "type": domain.value,
            "jti": uuid.uuid4().hex,
            "iat": issued_at,
            "exp": issued_at + self._ttls[domain],
            "iss": self.issuer,
            "aud": self.audience,
        }
        return jwt.encode(payload, self._secrets[domain], algorithm=_ALGORITHM)

    def issue_pair(self, claims: TokenClaims) -> TokenPair:
        now = datetime.now(timezone.utc)
        return TokenPair(
            access_token=self.issue(claims, TokenDomain.ACCESS, now),
            refresh_token=self.issue(claims, TokenDomain.REFRESH, now),
        )

    def verify(self, token: str, domain: TokenDomain) -> TokenClaims:
        """Decode and verify token. Raises InvalidTokenError on any failure."""
        try:
            payload = jwt.decode(
                token,
                self._secrets[domain],
                algorithms=[_ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
            )
        except JWTError as exc:
            raise InvalidTokenError(str(exc)) from exc
        except (AttributeError, TypeError, ValueError) as exc:
            # Non-string input or a payload that is not a JSON object.
            raise InvalidTokenError("malformed token") from exc

        if payload.get("type") != domain.value:
            raise InvalidTokenError("token type does not match")
        if any(not payload.get(name) for name in _REQUIRED_CLAIMS):
            raise InvalidTokenError("token is missing identity claims")

        return TokenClaims(
            user_id=payload["sub"],
            username=payload["username"],
            email=payload["email"],
            role=payload["role"],
            token_id=payload.get("jti"),
            issued_at=_from_timestamp(payload.get("iat")),
            expires_at=_from_timestamp(payload.get("exp")),
        )

    def is_expired(self, token: str, now: datetime | None = None) -> bool:
        """Return True if token's exp claim is in the past.

        The signature is NOT checked -- only use this on tokens that came out
        of the store, never on client input. Unreadable tokens count as expired.
        """
        try:
            payload = jwt.get_unverified_claims(token)
        except JWTError:
            return True
        expires_at = _from_timestamp(payload.get("exp"))
        if expires_at is None:
            return True
        return expires_at <= (now or datetime.now(timezone.utc))


def extract_bearer(header: str | None) -> str | None:
    """Return the token from an "Authorization: Bearer <token>" header value.

    Returns None (not an error) when the header is missing, uses another
    scheme, or carries an empty token. The caller decides whether that is fatal.
    """
    if not header or not header.startswith(_BEARER_PREFIX):
        return None
    token = header[len(_BEARER_PREFIX):].strip()
    return token or None


def _from_timestamp(value) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None
