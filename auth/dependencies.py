"""
auth/dependencies.py -- FastAPI Depends() helpers for protected routes.

get_current_user() is the request gate:
  1. Authorization: Bearer <token> header -- missing/other scheme -> NO_TOKEN
  2. verify as an ACCESS token           -- any codec failure   -> INVALID_TOKEN
  3. load the user by the sub claim      -- missing or inactive -> INVALID_TOKEN
  4. attach user and token to request.state for downstream handlers

The gate is read-only: it never refreshes or touches the refresh-token list,
so it is cheap enough to run on every request. A deactivated user's access
token stops working on the very next call even though it still verifies.

require_role() wraps get_current_user() and raises 403 for other roles.

Layer rule: no imports from api/. This module may import from fastapi
because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.errors import Forbidden, InvalidToken, NoToken, translate_store_errors
from auth.models import User
from auth.store import UserStore
from auth.tokens import InvalidTokenError, TokenCodec, TokenDomain, extract_bearer


def get_current_user(request: Request) -> User:
    """Require a valid access token. Raises NoToken / InvalidToken otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    codec: TokenCodec = request.app.state.token_codec
    user_store: UserStore = request.app.state.user_store

    token = extract_bearer(request.headers.get("Authorization"))
    if token is None:
        raise NoToken()

    try:
        claims = codec.verify(token, TokenDomain.ACCESS)
    except InvalidTokenError as exc:
        raise InvalidToken() from exc

    with translate_store_errors():
        user = user_store.get_by_id(claims.user_id)
    if user is None or not user.is_active:
        raise InvalidToken()

    request.state.user = user
    request.state.access_token = token
    return user


def require_role(*roles: str) -> Callable[[Request], User]:
    """Build a dependency that admits only users whose role is in roles.

    Use as a FastAPI dependency:
        @router.post("/tours")
        def route(user: User = Depends(require_role("guide"))): ...
    """

    def dependency(request: Request) -> User:
        user = get_current_user(request)
        if user.role not in roles:
            raise Forbidden()
        return user

    return dependency
