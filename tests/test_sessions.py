"""Unit tests for auth/sessions.py -- the token lifecycle.

Covers:
- sign-up stores a bcrypt hash and an initial refresh token
- duplicate username/email -> USER_ALREADY_EXISTS, no new record
- wrong password and unknown identifier fail identically (INVALID_CREDENTIALS)
- only the 5 most recently issued refresh tokens stay redeemable
- a refresh token can be redeemed once; concurrent redemptions have one winner
- deactivation blocks login, refresh and profile lookups
- logout removes exactly the given refresh token
- expired stored tokens are pruned when a new token is added
- store failures surface as StoreUnavailable
"""

import threading
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from auth.errors import (
    AccountDeactivated,
    InvalidCredentials,
    InvalidRefreshToken,
    InvalidToken,
    NoToken,
    StoreUnavailable,
    UserAlreadyExists,
    UserNotFound,
    ValidationFailed,
)
from auth.models import TokenClaims
from auth.passwords import verify_password
from auth.sessions import SessionManager
from auth.store import UserStore, users
from auth.tokens import TokenDomain
from conftest import TEST_PASSWORD, TEST_ROUNDS, make_codec

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _signup(manager: SessionManager, username: str = "nimal", email: str = "nimal@example.com", role: str = "traveller"):
    return manager.sign_up(username, email, TEST_PASSWORD, role)


# ---------------------------------------------------------------------------
# Sign-up
# ---------------------------------------------------------------------------


class TestSignUp:
    def test_stores_hash_not_plaintext(self, manager: SessionManager, store: UserStore) -> None:
        result = _signup(manager)
        stored = store.get_by_id(result.user.id)
        assert stored.hashed_password != TEST_PASSWORD
        assert verify_password(TEST_PASSWORD, stored.hashed_password)

    def test_returns_pair_and_stores_refresh_token(self, manager: SessionManager, store: UserStore) -> None:
        result = _signup(manager)
        assert store.get_refresh_tokens(result.user.id) == [result.tokens.refresh_token]
        claims = manager.codec.verify(result.tokens.access_token, TokenDomain.ACCESS)
        assert claims == TokenClaims.for_user(result.user)

    def test_sets_verification_stub(self, manager: SessionManager) -> None:
        user = _signup(manager).user
        assert user.email_verified is False
        assert user.email_verification_token

    @pytest.mark.parametrize(
        "username, email",
        [("nimal", "other@example.com"), ("kasun", "nimal@example.com"), ("kasun", "NIMAL@Example.com")],
    )
    def test_duplicate_is_rejected_without_new_record(
        self, manager: SessionManager, store: UserStore, username: str, email: str
    ) -> None:
        _signup(manager)
        with pytest.raises(UserAlreadyExists):
            manager.sign_up(username, email, TEST_PASSWORD, "guide")
        with store.engine.connect() as conn:
            assert len(conn.execute(users.select()).fetchall()) == 1

    def test_unknown_role_is_rejected(self, manager: SessionManager) -> None:
        with pytest.raises(ValidationFailed) as exc_info:
            _signup(manager, role="admin")
        assert exc_info.value.details[0]["field"] == "role"


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


class TestLogin:
    def test_by_username_and_by_email(self, manager: SessionManager) -> None:
        user_id = _signup(manager).user.id
        assert manager.login("nimal", TEST_PASSWORD).user.id == user_id
        assert manager.login("NIMAL@example.com", TEST_PASSWORD).user.id == user_id

    def test_login_token_is_stored(self, manager: SessionManager, store: UserStore) -> None:
        _signup(manager)
        result = manager.login("nimal", TEST_PASSWORD)
        assert result.tokens.refresh_token in store.get_refresh_tokens(result.user.id)

    def test_wrong_password_and_unknown_user_are_indistinguishable(self, manager: SessionManager) -> None:
        _signup(manager)
        with pytest.raises(InvalidCredentials) as wrong:
            manager.login("nimal", "wrong-password")
        with pytest.raises(InvalidCredentials) as unknown:
            manager.login("nobody", "wrong-password")
        assert (wrong.value.status_code, wrong.value.error_code, wrong.value.message) == (
            unknown.value.status_code,
            unknown.value.error_code,
            unknown.value.message,
        )

    def test_deactivated_account(self, manager: SessionManager, store: UserStore) -> None:
        user_id = _signup(manager).user.id
        store.set_active(user_id, False)
        with pytest.raises(AccountDeactivated):
            manager.login("nimal", TEST_PASSWORD)


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------


class TestRefresh:
    def test_rotates_token(self, manager: SessionManager, store: UserStore) -> None:
        first = _signup(manager)
        second = manager.refresh(first.tokens.refresh_token)
        tokens = store.get_refresh_tokens(first.user.id)
        assert first.tokens.refresh_token not in tokens
        assert second.tokens.refresh_token in tokens
        assert second.tokens.access_token != first.tokens.access_token

    def test_double_redemption_fails(self, manager: SessionManager) -> None:
        token = _signup(manager).tokens.refresh_token
        manager.refresh(token)
        with pytest.raises(InvalidRefreshToken):
            manager.refresh(token)

    def test_only_five_most_recent_tokens_stay_valid(self, manager: SessionManager, store: UserStore) -> None:
        issued = [_signup(manager).tokens.refresh_token]
        for _ in range(5):
            issued.append(manager.login("nimal", TEST_PASSWORD).tokens.refresh_token)

        user_id = store.get_by_username("nimal").id
        assert store.get_refresh_tokens(user_id) == issued[1:]
        with pytest.raises(InvalidRefreshToken):
            manager.refresh(issued[0])
        manager.refresh(issued[1])

    def test_access_token_is_not_a_refresh_token(self, manager: SessionManager) -> None:
        access = _signup(manager).tokens.access_token
        with pytest.raises(InvalidRefreshToken):
            manager.refresh(access)

    def test_garbage_token(self, manager: SessionManager) -> None:
        with pytest.raises(InvalidRefreshToken):
            manager.refresh("garbage")

    def test_deactivated_account(self, manager: SessionManager, store: UserStore) -> None:
        result = _signup(manager)
        store.set_active(result.user.id, False)
        with pytest.raises(AccountDeactivated):
            manager.refresh(result.tokens.refresh_token)

    def test_revoked_token_of_deactivated_account_is_invalid(self, manager: SessionManager, store: UserStore) -> None:
        """Store membership is checked before the active flag."""
        result = _signup(manager)
        store.clear_refresh_tokens(result.user.id)
        store.set_active(result.user.id, False)
        with pytest.raises(InvalidRefreshToken):
            manager.refresh(result.tokens.refresh_token)

    def test_concurrent_redemptions_have_one_winner(self, tmp_path) -> None:
        store = UserStore(f"sqlite:///{tmp_path / 'race.db'}")
        manager = SessionManager(store, make_codec(), bcrypt_rounds=TEST_ROUNDS)
        token = _signup(manager).tokens.refresh_token

        barrier = threading.Barrier(4)
        outcomes: list[str] = []
        lock = threading.Lock()

        def redeem() -> None:
            barrier.wait()
            try:
                manager.refresh(token)
                outcome = "ok"
            except InvalidRefreshToken:
                outcome = "rejected"
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=redeem) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        store.close()

        assert sorted(outcomes) == ["ok", "rejected", "rejected", "rejected"]

    def test_expired_stored_tokens_are_pruned_on_add(self, store: UserStore) -> None:
        codec = make_codec()
        manager = SessionManager(store, codec, bcrypt_rounds=TEST_ROUNDS)
        user = _signup(manager).user
        past = datetime.now(timezone.utc) - timedelta(days=8)
        expired = codec.issue(TokenClaims.for_user(user), TokenDomain.REFRESH, now=past)
        store.add_refresh_token(user.id, expired)
        assert expired in store.get_refresh_tokens(user.id)

        manager.login("nimal", TEST_PASSWORD)
        tokens = store.get_refresh_tokens(user.id)
        assert expired not in tokens
        assert len(tokens) == 2


# ---------------------------------------------------------------------------
# Logout and profile
# ---------------------------------------------------------------------------


class TestLogout:
    def test_removes_exactly_that_token(self, manager: SessionManager, store: UserStore) -> None:
        first = _signup(manager)
        second = manager.login("nimal", TEST_PASSWORD)
        manager.logout(second.tokens.access_token, first.tokens.refresh_token)
        assert store.get_refresh_tokens(first.user.id) == [second.tokens.refresh_token]

    def test_without_refresh_token_is_a_noop(self, manager: SessionManager, store: UserStore) -> None:
        result = _signup(manager)
        manager.logout(result.tokens.access_token)
        assert store.get_refresh_tokens(result.user.id) == [result.tokens.refresh_token]

    def test_unknown_refresh_token_is_ignored(self, manager: SessionManager, store: UserStore) -> None:
        result = _signup(manager)
        manager.logout(result.tokens.access_token, "not-a-stored-token")
        assert store.get_refresh_tokens(result.user.id) == [result.tokens.refresh_token]

    def test_requires_access_token(self, manager: SessionManager) -> None:
        result = _signup(manager)
        with pytest.raises(NoToken):
            manager.logout(None, result.tokens.refresh_token)
        with pytest.raises(InvalidToken):
            manager.logout(result.tokens.refresh_token, result.tokens.refresh_token)


class TestProfile:
    def test_returns_user(self, manager: SessionManager) -> None:
        result = _signup(manager)
        assert manager.get_profile(result.tokens.access_token).username == "nimal"

    def test_deleted_user_is_not_found(self, manager: SessionManager, store: UserStore) -> None:
        result = _signup(manager)
        with store.engine.connect() as conn:
            conn.execute(users.delete().where(users.c.id == result.user.id))
            conn.commit()
        with pytest.raises(UserNotFound):
            manager.get_profile(result.tokens.access_token)

    def test_deactivated_user_token_is_invalid(self, manager: SessionManager, store: UserStore) -> None:
        result = _signup(manager)
        store.set_active(result.user.id, False)
        with pytest.raises(InvalidToken):
            manager.get_profile(result.tokens.access_token)

    def test_missing_token(self, manager: SessionManager) -> None:
        with pytest.raises(NoToken):
            manager.get_profile(None)


# ---------------------------------------------------------------------------
# Store failures
# ---------------------------------------------------------------------------


def test_store_failure_becomes_store_unavailable(manager: SessionManager, monkeypatch) -> None:
    def broken(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(manager.store, "get_by_identifier", broken)
    with pytest.raises(StoreUnavailable) as exc_info:
        manager.login("nimal", TEST_PASSWORD)
    assert exc_info.value.status_code == 500
    assert "locked" not in exc_info.value.message
