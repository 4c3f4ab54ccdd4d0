"""
api/routes/v1/web_auth.py -- Cookie session authentication for the browser console.

Routes:
  GET  /api/v1/web/auth/csrf-cookie  -- set XSRF-TOKEN; 204
  POST /api/v1/web/auth/register     -- create account and sign in; 201
  POST /api/v1/web/auth/login        -- sign in (rate limited)
  GET  /api/v1/web/auth/me           -- current user (session cookie)
  POST /api/v1/web/auth/logout       -- sign out (session cookie + CSRF)

Security:
  Login and register always issue a new session id and CSRF token and
  destroy whatever session the browser presented, so a planted id is useless.
  Logout is state-changing and requires X-XSRF-TOKEN to match both the
  XSRF-TOKEN cookie and the token bound to the session.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter, login_rate_limit
from api.models import WebLogin, WebRegister
from api.responses import session_envelope_response
from auth.dependencies import SessionIdentity, get_gateway, get_session_identity, require_csrf, session_cookie
from auth.errors import Unauthenticated
from auth.gateway import AuthGateway
from auth.tokens import generate_secret, set_csrf_cookie

# Auth policy:
# - GET  /csrf-cookie, POST /register, POST /login:  public
# - GET  /me:                                        session cookie
# - POST /logout:                                    session cookie + CSRF (require_csrf)
router = APIRouter(prefix="/web/auth")


def _client_host(request: Request) -> str | None:
    return request.client.host if request.client else None


@router.get("/csrf-cookie", status_code=204)
def csrf_cookie(request: Request, gateway: AuthGateway = Depends(get_gateway)) -> Response:
    """Prime the XSRF-TOKEN cookie.

    A signed-in browser gets its session's token back; an anonymous one gets
    a fresh random token.
    """
    try:
        _, record = gateway.sessions.current_user(session_cookie(request))
        token = record.csrf_token
    except Unauthenticated:
        token = generate_secret()
    resp = Response(status_code=204)
    set_csrf_cookie(resp, token)
    return resp


@router.post("/register", status_code=201)
def register(request: Request, body: WebRegister, gateway: AuthGateway = Depends(get_gateway)) -> Response:
    return session_envelope_response(
        gateway.web_register(
            body.name,
            body.email,
            body.password,
            body.password_confirmation,
            role=body.role,
            previous_session_id=session_cookie(request),
            ip_address=_client_host(request),
            user_agent=request.headers.get("User-Agent"),
        )
    )


@limiter.limit(login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/login")
def login(request: Request, body: WebLogin) -> Response:
    """Sign the browser in. Gated accounts get 403 and no session."""
    gateway = get_gateway(request)
    return session_envelope_response(
        gateway.web_login(
            body.email,
            body.password,
            previous_session_id=session_cookie(request),
            ip_address=_client_host(request),
            user_agent=request.headers.get("User-Agent"),
        )
    )


@router.get("/me")
def me(
    identity: SessionIdentity = Depends(get_session_identity),
    gateway: AuthGateway = Depends(get_gateway),
) -> Response:
    return session_envelope_response(gateway.me(identity.user))


@router.post("/logout")
def logout(
    identity: SessionIdentity = Depends(require_csrf),
    gateway: AuthGateway = Depends(get_gateway),
) -> Response:
    """Destroy the session, clear its cookie, and rotate the CSRF token."""
    return session_envelope_response(gateway.web_logout(identity.session_id, identity.record))
