"""
api/main.py -- FastAPI application entry point for the Batchmates auth service.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins;
                              credentials allowed so the console can send cookies
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds the store and every auth service once and hangs them on
app.state; routes reach them through auth.dependencies.get_gateway().

Every response body, success or failure, uses the same envelope:
    {"success": bool, "message": str, "data"?: ..., "errors"?: {field: [msg]}}
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import HealthResponse
from api.routes.v1.mobile_auth import router as mobile_auth_router
from api.routes.v1.password import router as password_router
from api.routes.v1.web_auth import router as web_auth_router
from auth.authenticators import SessionAuthenticator, TokenAuthenticator
from auth.credentials import CredentialStore
from auth.errors import AuthError
from auth.gateway import AuthGateway
from auth.notifications import BaseNotifier, build_notifier
from auth.password_reset import PasswordResetService
from auth.roles import RoleResolver
from auth.store import UserStore
from auth.tokens import CSRF_HEADER_NAME
from core.config import ResetLinkConfig, get_settings

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("batchmates.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def build_gateway(store: UserStore, notifier: BaseNotifier) -> AuthGateway:
    """Assemble the auth services around one store.

    Also used by the test suite so tests exercise exactly the production wiring.
    """
    credentials = CredentialStore(store)
    roles = RoleResolver(store)
    return AuthGateway(
        sessions=SessionAuthenticator(store, credentials, roles),
        tokens=TokenAuthenticator(store, credentials, roles),
        roles=roles,
        password_reset=PasswordResetService(
            store,
            credentials,
            notifier,
            ResetLinkConfig.from_settings(_settings),
        ),
    )


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. The store is created first because every service holds it.
    """
    logger.info("Batchmates auth API starting up")
    app.state.user_store = UserStore()
    app.state.notifier = build_notifier(_settings)
    app.state.gateway = build_gateway(app.state.user_store, app.state.notifier)
    expired = app.state.user_store.delete_expired_sessions()
    logger.info(
        "Auth initialized (notifier=%s, expired sessions removed=%d)",
        app.state.notifier.channel_type,
        expired,
    )

    yield

    app.state.user_store.close()
    logger.info("Batchmates auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Batchmates Auth API",
    description="Session and bearer-token authentication for the Batchmates web console and mobile apps.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.trusted_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "Authorization", CSRF_HEADER_NAME],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


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

app.include_router(mobile_auth_router, prefix="/api/v1", tags=["Mobile Auth"])
app.include_router(web_auth_router, prefix="/api/v1", tags=["Web Auth"])
app.include_router(password_router, prefix="/api/v1", tags=["Password Reset"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same envelope as the gateway so clients parse one
# shape regardless of where the failure was raised.
# ---------------------------------------------------------------------------


def _failure(status_code: int, message: str, errors: dict[str, list[str]] | None = None) -> JSONResponse:
    body: dict = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    return JSONResponse(status_code=status_code, content=body, headers={"Cache-Control": "no-store"})


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Errors raised by dependencies (Unauthenticated, CsrfMismatch) before a gateway call."""
    return _failure(exc.status_code, exc.message, exc.errors)


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 when a rate limit is exceeded.

    Synchronous because SlowAPIMiddleware calls it directly, outside the
    event-loop exception machinery.

    Retry-After tells clients exactly how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    logger.warning(
        "Rate limit exceeded on %s from %s",
        request.url.path,
        request.client.host if request.client else "unknown",
    )
    response = _failure(429, "Too many requests.")
    response.headers["Retry-After"] = str(retry_after)
    return response


def validation_errors(exc: RequestValidationError) -> dict[str, list[str]]:
    """Flatten pydantic errors to {field: [messages]}.

    loc is ("body", "email") for body fields; the leading source segment is
    dropped. A body that is missing or not an object is reported under "body".
    """
    errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        field = ".".join(loc) or "body"
        errors.setdefault(field, []).append(err.get("msg", "Invalid value."))
    return errors


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = validation_errors(exc)
    first = next(iter(errors.values()))[0] if errors else "The given data was invalid."
    return _failure(422, first, errors)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """404 for unknown paths, 405 for wrong methods, and any explicit HTTPException."""
    return _failure(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _failure(500, "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and database reachability."""
    database = "ok" if request.app.state.user_store.ping() else "error"
    return HealthResponse(version=API_VERSION, components={"app": "ok", "database": database})
