"""
api/routes/auth.py -- Authentication REST endpoints.

Routes (mounted under settings.api_prefix, /api/auth by default):
  POST /signup   -- register; 201 + user + token pair
  POST /login    -- username-or-email + password; 200 + user + token pair
  POST /refresh  -- redeem a refresh token; 200 + user + rotated pair
  POST /logout   -- Bearer access token; drops the given refresh token
  GET  /profile  -- Bearer access token; 200 + user

Security:
  /signup, /login and /refresh share the tight per-address limit
  (api.limiter.auth_limit); /logout and /profile share the loose one
  (api.limiter.general_limit). @router must sit ABOVE the limiter decorator
  so FastAPI registers the rate-limited wrapper, not the bare function.
  Cache-Control: no-store on every response that carries tokens.
  Domain failures are raised as auth.errors exceptions and rendered by the
  handler in api/main.py -- routes never build error responses themselves.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import auth_limit, general_limit, limiter
from api.models import ApiResponse, LoginRequest, LogoutRequest, RefreshRequest, SignUpRequest, UserPublic
from auth.dependencies import get_current_user
from auth.models import AuthResult, User
from auth.sessions import SessionManager
from auth.tokens import extract_bearer

# Auth policy:
# - POST /signup:   public, tight rate limit
# - POST /login:    public, tight rate limit
# - POST /refresh:  public, tight rate limit (the refresh token is the credential)
# - POST /logout:   requires auth (get_current_user), loose rate limit
# - GET  /profile:  requires a Bearer token; SessionManager.get_profile does the checks,
#                   loose rate limit
router = APIRouter()


def _sessions(request: Request) -> SessionManager:
    return request.app.state.session_manager


def _envelope(message: str, status_code: int = 200, data: Optional[dict] = None) -> JSONResponse:
    body = ApiResponse(success=True, message=message, data=data)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json", exclude_none=True))


def _auth_response(result: AuthResult, message: str, status_code: int = 200) -> JSONResponse:
    resp = _envelope(
        message,
        status_code,
        data={
            "user": UserPublic.from_user(result.user).model_dump(mode="json", by_alias=True),
            "accessToken": result.tokens.access_token,
            "refreshToken": result.tokens.refresh_token,
        },
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/signup", status_code=201)
@limiter.shared_limit(auth_limit, scope="auth")
def signup(request: Request, body: SignUpRequest) -> JSONResponse:
    """Register a new account and return it with a fresh token pair."""
    result = _sessions(request).sign_up(body.username, body.email, body.password, body.role.value)
    return _auth_response(result, "Registration successful", status_code=201)


@router.post("/login")
@limiter.shared_limit(auth_limit, scope="auth")
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with a username or email and a password.

    Unknown identifier and wrong password return the same INVALID_CREDENTIALS
    body, so the response does not reveal which accounts exist.
    """
    result = _sessions(request).login(body.identifier, body.password)
    return _auth_response(result, "Login successful")


@router.post("/refresh")
@limiter.shared_limit(auth_limit, scope="auth")
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a stored refresh token for a new pair. The presented token is rotated out."""
    result = _sessions(request).refresh(body.refresh_token)
    return _auth_response(result, "Token refreshed successfully")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/logout")
@limiter.shared_limit(general_limit, scope="general")
def logout(
    request: Request,
    body: Optional[LogoutRequest] = None,
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    """Drop the supplied refresh token (if any). Always 200 once authenticated."""
    refresh_token = body.refresh_token if body is not None else None
    _sessions(request).logout(request.state.access_token, refresh_token)
    return _envelope("Logout successful")


@router.get("/profile")
@limiter.shared_limit(general_limit, scope="general")
def profile(request: Request) -> JSONResponse:
    """Return the public view of the caller's account.

    Does not use get_current_user: a valid token whose user has since
    disappeared must surface as 404 USER_NOT_FOUND, not as INVALID_TOKEN.
    """
    token = extract_bearer(request.headers.get("Authorization"))
    user = _sessions(request).get_profile(token)
    return _envelope(
        "Profile retrieved successfully",
        data={"user": UserPublic.from_user(user).model_dump(mode="json", by_alias=True)},
    )
