"""
api/main.py -- FastAPI application entry point for the WanderLanka auth service.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. log_requests          -- one log line per request with latency, 429s included
  2. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  3. CORSMiddleware        -- adds CORS headers for allowed browser origins

Rate limits are per-route decorators (see api/limiter.py); the handler below
renders their 429s.

Lifespan builds the credential store, the token codec and the session
manager from Settings and hangs them on app.state; shutdown disposes the
store's connection pool.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ApiResponse, FieldError, HealthResponse
from api.routes.auth import router as auth_router
from auth.errors import AuthServiceError
from auth.sessions import SessionManager
from auth.store import UserStore
from auth.tokens import TokenCodec
from core.config import get_settings

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("wanderlanka.api")

settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan -- startup / shutdown
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. The codec has no resources to release; the store owns a
    connection pool.
    """
    logger.info("%s %s starting up", settings.service_name, settings.service_version)
    app.state.user_store = UserStore(
        settings.database_url,
        timeout=settings.store_timeout_seconds,
        token_capacity=settings.refresh_token_cap,
    )
    app.state.token_codec = TokenCodec.from_settings(settings)
    app.state.session_manager = SessionManager(
        app.state.user_store,
        app.state.token_codec,
        bcrypt_rounds=settings.bcrypt_rounds,
    )
    logger.info("Credential store initialized")

    yield

    app.state.user_store.close()
    logger.info("%s shutdown complete", settings.service_name)


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="WanderLanka Auth Service",
    description="Sign-up, login and access/refresh token lifecycle for the WanderLanka mobile app.",
    version=settings.service_version,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette wraps each new middleware around the existing stack, so the last
# one registered sees the request first. Registered innermost first:
# CORS -> TrustedHost -> log_requests.
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

# The 429 handler reaches the limiter through app.state.
app.state.limiter = limiter


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix=settings.api_prefix, tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every handler returns the same {success, message, error} envelope so the
# mobile client parses failures uniformly.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, error: str, message: str, details: list[FieldError] | None = None) -> JSONResponse:
    body = ApiResponse(success=False, message=message, error=error, details=details or None)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json", exclude_none=True))


@app.exception_handler(AuthServiceError)
async def auth_error_handler(request: Request, exc: AuthServiceError) -> JSONResponse:
    """Render a domain failure with its stable code."""
    details = [FieldError(**d) for d in exc.details] if exc.details else None
    response = _error_response(exc.status_code, exc.error_code, exc.message, details)
    if exc.status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with RATE_LIMIT_EXCEEDED and the standard rate-limit headers."""
    logger.warning("Rate limit exceeded for %s on %s", request.client.host if request.client else "unknown", request.url.path)
    response = _error_response(429, "RATE_LIMIT_EXCEEDED", "Too many requests, please try again later")
    # _inject_headers is slowapi's own 429 path (_rate_limit_exceeded_handler);
    # it has no public equivalent in the 0.1.x line pinned in pyproject.toml.
    return request.app.state.limiter._inject_headers(response, request.state.view_rate_limit)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with one entry per offending field."""
    details = [
        FieldError(
            field=".".join(str(part) for part in err.get("loc", ()) if part != "body") or "body",
            message=err.get("msg", "invalid value"),
        )
        for err in exc.errors()
    ]
    return _error_response(400, "VALIDATION_ERROR", "Validation failed", details)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Envelope for routing-level errors (unknown path, wrong method)."""
    if exc.status_code == 404:
        return _error_response(404, "NOT_FOUND", "Route not found")
    if exc.status_code == 405:
        return _error_response(405, "METHOD_NOT_ALLOWED", "Method not allowed")
    return _error_response(exc.status_code, f"HTTP_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The exception is logged server-side only. Exposing internals to clients
    aids attackers; the client receives a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "INTERNAL_SERVER_ERROR", "Internal server error")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable.
# Carries no limiter decorator, so load balancer checks are never throttled.
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Report liveness only -- no store round-trip."""
    return HealthResponse(
        message="WanderLanka Auth Service is running",
        timestamp=datetime.now(timezone.utc).isoformat(),
        service=settings.service_name,
        version=settings.service_version,
    )
