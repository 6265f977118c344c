"""
auth/sessions.py -- Sign-up, login, refresh, logout and profile lookup.

SessionManager is the only place that combines the three leaves (UserStore,
password hashing, TokenCodec). There is no explicit session state: a user's
"sessions" are the refresh tokens in their stored list.

  sign_up  -> create record, issue pair, store refresh token
  login    -> existence -> active flag -> password, issue pair, store token
  refresh  -> verify signature/expiry, check store membership, rotate
  logout   -> identify via access token, drop the given refresh token
  profile  -> identify via access token, load record

Error policy:
  Every failure leaves here as an auth.errors.AuthServiceError. Codec errors
  become InvalidToken / InvalidRefreshToken; SQLAlchemy errors become
  StoreUnavailable (logged, never shown to the client). Nothing is retried
  here -- retry policy belongs to the caller.

Expired refresh tokens that are still stored are pruned lazily, whenever the
user's list grows (sign-up, login, refresh). Nothing sweeps the store in the
background.
"""

from __future__ import annotations

import logging
import secrets

from sqlalchemy.exc import IntegrityError

from auth.errors import (
    AccountDeactivated,
    InvalidCredentials,
    InvalidRefreshToken,
    InvalidToken,
    NoToken,
    UserAlreadyExists,
    UserNotFound,
    ValidationFailed,
    translate_store_errors,
)
from auth.models import ROLES, AuthResult, TokenClaims, User
from auth.passwords import BCRYPT_ROUNDS, dummy_hash, hash_password, verify_password
from auth.store import UserStore
from auth.tokens import InvalidTokenError, TokenCodec, TokenDomain

logger = logging.getLogger("wanderlanka.auth")


class SessionManager:
    """Orchestrates the token lifecycle on top of the credential store.

    Usage:
        manager = SessionManager(store, codec)
        result = manager.login("nimal", "secret123")
        result = manager.refresh(result.tokens.refresh_token)
    """

    def __init__(self, store: UserStore, codec: TokenCodec, bcrypt_rounds: int = BCRYPT_ROUNDS) -> None:
        self.store = store
        self.codec = codec
        self.bcrypt_rounds = bcrypt_rounds

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def sign_up(self, username: str, email: str, password: str, role: str) -> AuthResult:
        """Register a new account and log it in.

        Raises UserAlreadyExists if the username or the email (compared
        case-insensitively) is taken -- including when a concurrent sign-up
        claims it between the check and the insert.
        """
        if role not in ROLES:
            raise ValidationFailed(details=[{"field": "role", "message": f"must be one of {', '.join(ROLES)}"}])

        with translate_store_errors():
            if self.store.exists(username, email):
                logger.info("Sign-up rejected: username or email already registered")
                raise UserAlreadyExists()

            user = User(
                username=username,
                email=email,
                role=role,
                hashed_password=hash_password(password, rounds=self.bcrypt_rounds),
                email_verification_token=secrets.token_hex(32),
            )
            try:
                user_id = self.store.create_user(user)
            except IntegrityError as exc:
                logger.info("Sign-up rejected: lost a concurrent registration race")
                raise UserAlreadyExists() from exc

            user = self.store.get_by_id(user_id)
            result = self._issue(user)

        logger.info("User %s signed up as %s", user.id, user.role)
        return result

    def login(self, identifier: str, password: str) -> AuthResult:
        """Authenticate by username-or-email and password.

        Check order is existence -> active flag -> password. A missing user and
        a wrong password both raise InvalidCredentials, and both run bcrypt
        once so response time does not tell them apart. A deactivated account
        raises AccountDeactivated.
        """
        with translate_store_errors():
            user = self.store.get_by_identifier(identifier)
            if user is None:
                # Equalize timing -- do NOT return before running bcrypt.
                verify_password(password, dummy_hash(self.bcrypt_rounds))
                logger.info("Login failed: INVALID_CREDENTIALS")
                raise InvalidCredentials()
            if not user.is_active:
                logger.info("Login refused for deactivated user %s", user.id)
                raise AccountDeactivated()
            if not verify_password(password, user.hashed_password):
                logger.info("Login failed for user %s: INVALID_CREDENTIALS", user.id)
                raise InvalidCredentials()

            result = self._issue(user)

        logger.info("User %s logged in", user.id)
        return result

    def refresh(self, refresh_token: str) -> AuthResult:
        """Redeem a refresh token for a new pair, rotating it out of the store.

        The presented token must verify under the refresh secret AND still be
        in the owner's list. On success it is replaced by the new refresh token
        in a single store write, so it can never be redeemed again. Of two
        concurrent redemptions of the same token at most one succeeds.
        """
        try:
            claims = self.codec.verify(refresh_token, TokenDomain.REFRESH)
        except InvalidTokenError as exc:
            logger.info("Refresh rejected: %s", exc)
            raise InvalidRefreshToken() from exc

        with translate_store_errors():
            user = self.store.get_by_id(claims.user_id)
            if user is None or refresh_token not in user.refresh_tokens:
                logger.warning("Refresh rejected: token not in store for user %s", claims.user_id)
                raise InvalidRefreshToken()
            if not user.is_active:
                logger.info("Refresh refused for deactivated user %s", user.id)
                raise AccountDeactivated()

            tokens = self.codec.issue_pair(TokenClaims.for_user(user))
            rotated = self.store.rotate_refresh_token(
                user.id, refresh_token, tokens.refresh_token, is_stale=self.codec.is_expired
            )
            if not rotated:
                # Another request redeemed (or revoked) the same token first.
                logger.warning("Refresh rejected: token already rotated for user %s", user.id)
                raise InvalidRefreshToken()

        logger.info("Rotated refresh token for user %s", user.id)
        return AuthResult(user=user, tokens=tokens)

    def logout(self, access_token: str | None, refresh_token: str | None = None) -> None:
        """End a session. Idempotent once the caller is identified.

        The access token identifies the user; the refresh token, if given, is
        removed from that user's list. Removing a token that is not there (or
        belongs to someone else) is a silent no-op.
        """
        claims = self._identify(access_token)
        if refresh_token:
            with translate_store_errors():
                removed = self.store.remove_refresh_token(claims.user_id, refresh_token)
            logger.info("User %s logged out (refresh token removed=%s)", claims.user_id, removed)
        else:
            logger.info("User %s logged out", claims.user_id)

    def get_profile(self, access_token: str | None) -> User:
        """Return the user the access token belongs to.

        Raises UserNotFound if the token is valid but its user id no longer
        resolves, and InvalidToken if the account has been deactivated.
        """
        claims = self._identify(access_token)
        with translate_store_errors():
            user = self.store.get_by_id(claims.user_id)
        if user is None:
            raise UserNotFound()
        if not user.is_active:
            raise InvalidToken()
        return user

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _identify(self, access_token: str | None) -> TokenClaims:
        if not access_token:
            raise NoToken()
        try:
            return self.codec.verify(access_token, TokenDomain.ACCESS)
        except InvalidTokenError as exc:
            raise InvalidToken() from exc

    def _issue(self, user: User) -> AuthResult:
        """Mint a pair for user and append its refresh token to the store."""
        tokens = self.codec.issue_pair(TokenClaims.for_user(user))
        self.store.add_refresh_token(user.id, tokens.refresh_token, is_stale=self.codec.is_expired)
        return AuthResult(user=user, tokens=tokens)
