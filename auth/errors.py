"""
auth/errors.py -- Exception taxonomy for the auth service.

Every failure the session manager or the request gate can report is one of
the AuthServiceError subclasses below. Each carries the HTTP status and the
stable machine-readable code the API returns, so api/main.py renders them
with a single exception handler.

Authentication failures are deliberately vague (INVALID_CREDENTIALS covers
both "no such user" and "wrong password") to prevent account enumeration.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

logger = logging.getLogger("wanderlanka.auth")


class AuthServiceError(Exception):
    """Base class for errors mapped to an HTTP response."""

    status_code: int = 400
    error_code: str = "BAD_REQUEST"
    message: str = "Request failed"

    def __init__(self, message: str | None = None, *, details: list[dict] | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)
        self.details = details or []


class ValidationFailed(AuthServiceError):
    status_code = 400
    error_code = "VALIDATION_ERROR"
    message = "Validation failed"


class UserAlreadyExists(AuthServiceError):
    status_code = 400
    error_code = "USER_ALREADY_EXISTS"
    message = "User already exists with this email or username"


class InvalidCredentials(AuthServiceError):
    status_code = 401
    error_code = "INVALID_CREDENTIALS"
    message = "Invalid credentials"


class AccountDeactivated(AuthServiceError):
    status_code = 401
    error_code = "ACCOUNT_DEACTIVATED"
    message = "Account is deactivated"


class InvalidRefreshToken(AuthServiceError):
    status_code = 401
    error_code = "INVALID_REFRESH_TOKEN"
    message = "Invalid refresh token"


class NoToken(AuthServiceError):
    status_code = 401
    error_code = "NO_TOKEN"
    message = "Access token required"


class InvalidToken(AuthServiceError):
    status_code = 401
    error_code = "INVALID_TOKEN"
    message = "Invalid or expired token"


class Forbidden(AuthServiceError):
    status_code = 403
    error_code = "INSUFFICIENT_PERMISSIONS"
    message = "Insufficient permissions"


class UserNotFound(AuthServiceError):
    status_code = 404
    error_code = "USER_NOT_FOUND"
    message = "User not found"


class StoreUnavailable(AuthServiceError):
    """The credential store failed. The client never sees the cause."""

    status_code = 500
    error_code = "INTERNAL_SERVER_ERROR"
    message = "Internal server error"


@contextmanager
def translate_store_errors() -> Iterator[None]:
    """Turn raw SQLAlchemy failures into StoreUnavailable.

    IntegrityError passes through untouched: it carries meaning (a unique
    constraint lost a race) that the caller maps to a domain error.
    """
    try:
        yield
    except IntegrityError:
        raise
    except SQLAlchemyError as exc:
        logger.exception("Credential store failure")
        raise StoreUnavailable() from exc
