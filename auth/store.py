"""
auth/store.py -- SQLAlchemy Core persistence layer for user records.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. The session manager and the request gate never touch SQL.

Security:
  All queries use bound parameters. No f-strings in SQL.

Refresh-token list:
  Stored as a JSON array in users.refresh_tokens, oldest first. Every write
  to it is a compare-and-swap: the UPDATE only matches if the column still
  holds the exact value that was read. A writer that loses the race re-reads
  and re-applies its change (re-running any membership check), up to
  _CAS_ATTEMPTS times. Two concurrent rotations of the same token therefore
  have at most one winner: the loser re-reads, no longer finds the token,
  and reports failure.

Emails are stored lower-cased so the UNIQUE constraint is case-insensitive.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, or_, select
from sqlalchemy.engine import Engine

from auth.errors import StoreUnavailable
from auth.models import User
from auth.token_ring import DEFAULT_CAPACITY, RefreshTokenRing

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'wanderlanka_auth.db'}"
_DEFAULT_TIMEOUT = 5.0
_CAS_ATTEMPTS = 5

logger = logging.getLogger("wanderlanka.auth")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("username", String(30), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),  # lower-cased
    Column("hashed_password", Text, nullable=False),
    Column("role", String(20), nullable=False),
    Column("avatar", Text),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("email_verification_token", String(64)),
    Column("password_reset_token", String(64)),
    Column("password_reset_expires", String(32)),
    Column("refresh_tokens", Text, nullable=False, server_default="[]"),  # JSON array, oldest first
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind writers.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records and their refresh-token lists.

    Usage:
        store = UserStore("sqlite:///auth.db")
        user_id = store.create_user(User(username="nimal", email="n@example.com",
                                         role="traveller", hashed_password=hash_password("secret")))
        store.add_refresh_token(user_id, token)
        store.close()

    timeout bounds how long a call may wait for a connection or a database
    lock before failing instead of hanging.
    """

    def __init__(
        self,
        db_url: str = _DEFAULT_DB_URL,
        timeout: float = _DEFAULT_TIMEOUT,
        token_capacity: int = DEFAULT_CAPACITY,
    ) -> None:
        self.token_capacity = token_capacity
        connect_args: dict = {}
        engine_kwargs: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = timeout
        else:
            engine_kwargs["pool_timeout"] = timeout
            engine_kwargs["pool_pre_ping"] = True
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new user and return its generated ID.

        Raises sqlalchemy.exc.IntegrityError if the username or email is
        already taken. The session manager checks first, so this only fires
        when a concurrent sign-up wins the race.
        """
        user_id = uuid.uuid4().hex
        now = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                users.insert().values(
                    id=user_id,
                    username=user.username,
                    email=normalize_email(user.email),
                    hashed_password=user.hashed_password,
                    role=user.role,
                    avatar=user.avatar,
                    is_active=1 if user.is_active else 0,
                    email_verified=1 if user.email_verified else 0,
                    email_verification_token=user.email_verification_token,
                    refresh_tokens=json.dumps(user.refresh_tokens[-self.token_capacity :]),
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return user_id

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive)."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email (case-insensitive)."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_identifier(self, identifier: str) -> User | None:
        """Look up a user by username or email -- the login identifier.

        Usernames cannot contain "@", so at most one row can match.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                users.select().where(
                    or_(users.c.username == identifier, users.c.email == normalize_email(identifier))
                )
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def exists(self, username: str, email: str) -> bool:
        """Return True if either the username or the email is already registered."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(users.c.id).where(or_(users.c.username == username, users.c.email == normalize_email(email)))
            ).fetchone()
        return row is not None

    def set_active(self, user_id: str, active: bool) -> bool:
        """Flip the is_active gate. Returns False if user_id was not found."""
        with self.engine.connect() as conn:
            result = conn.execute(
                users.update()
                .where(users.c.id == user_id)
                .values(is_active=1 if active else 0, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def get_refresh_tokens(self, user_id: str) -> list[str] | None:
        """Return the stored tokens, oldest first, or None if the user is unknown."""
        with self.engine.connect() as conn:
            raw = conn.execute(
                select(users.c.refresh_tokens).where(users.c.id == user_id)
            ).scalar()
        return json.loads(raw) if raw is not None else None

    def add_refresh_token(
        self,
        user_id: str,
        token: str,
        is_stale: Callable[[str], bool] | None = None,
    ) -> bool:
        """Append token, evicting the oldest entries beyond the capacity.

        is_stale, if given, prunes matching tokens (e.g. expired ones) in the
        same write. Returns False if the user does not exist.
        """
        evicted: list[str] = []

        def mutate(ring: RefreshTokenRing) -> bool:
            # Re-run on every compare-and-swap attempt; only the last one counts.
            evicted.clear()
            if is_stale is not None:
                ring.prune(is_stale)
            oldest = ring.push(token)
            if oldest is not None:
                evicted.append(oldest)
            return True

        added = self._mutate_tokens(user_id, mutate)
        if added and evicted:
            logger.info("Session cap reached for user %s; oldest refresh token evicted", user_id)
        return added

    def remove_refresh_token(self, user_id: str, token: str) -> bool:
        """Remove token from the user's list. Returns False if it was not there."""
        return self._mutate_tokens(user_id, lambda ring: ring.remove(token))

    def rotate_refresh_token(
        self,
        user_id: str,
        old_token: str,
        new_token: str,
        is_stale: Callable[[str], bool] | None = None,
    ) -> bool:
        """Atomically replace old_token with new_token.

        Returns False -- and writes nothing -- if old_token is not in the list
        at the moment of the write. This is the revocation check: a rotated
        out, logged out or evicted token can never be redeemed.
        """

        def mutate(ring: RefreshTokenRing) -> bool:
            if old_token not in ring:
                return False
            if is_stale is not None:
                ring.prune(lambda t: t != old_token and is_stale(t))
            return ring.replace(old_token, new_token)

        return self._mutate_tokens(user_id, mutate)

    def clear_refresh_tokens(self, user_id: str) -> bool:
        """Revoke every refresh token of the user. Returns False if the user is unknown."""

        def mutate(ring: RefreshTokenRing) -> bool:
            ring.clear()
            return True

        return self._mutate_tokens(user_id, mutate)

    def _mutate_tokens(self, user_id: str, mutate: Callable[[RefreshTokenRing], bool]) -> bool:
        """Read-modify-write the token list with a compare-and-swap UPDATE.

        mutate() edits the ring in place and returns whether to write. It is
        re-run against a fresh read whenever another writer got in between.
        """
        for _ in range(_CAS_ATTEMPTS):
            with self.engine.connect() as conn:
                current = conn.execute(
                    select(users.c.refresh_tokens).where(users.c.id == user_id)
                ).scalar()
                if current is None:
                    return False
                ring = RefreshTokenRing(json.loads(current), capacity=self.token_capacity)
                if not mutate(ring):
                    return False
                result = conn.execute(
                    users.update()
                    .where((users.c.id == user_id) & (users.c.refresh_tokens == current))
                    .values(refresh_tokens=json.dumps(ring.to_list()), updated_at=_now_iso())
                )
                conn.commit()
            if result.rowcount > 0:
                return True
        raise StoreUnavailable("refresh token list kept changing under concurrent writes")

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        role=row.role,
        avatar=row.avatar,
        is_active=bool(row.is_active),
        email_verified=bool(row.email_verified),
        email_verification_token=row.email_verification_token,
        password_reset_token=row.password_reset_token,
        password_reset_expires=row.password_reset_expires,
        refresh_tokens=json.loads(row.refresh_tokens or "[]"),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
