"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Mobile routes (get_mobile_identity) check two credentials in priority order:
  1. Authorization: Bearer <id>|<secret> -- a stored device token -> Persisted.
  2. The web session cookie -- the console calling a mobile route -> Ephemeral.
     State-changing methods on this path also need the CSRF header.
A bearer header that is present but invalid never falls through to the cookie.

Web routes (get_session_identity) only accept the session cookie.
require_csrf() layers the double-submit check on top of it and is applied
to state-changing web routes.

Failures raise AuthError subclasses; api/main.py renders them in the
standard envelope.

Layer rule: may import from fastapi because this module is part of the
dependency injection system. No imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, Request

from auth.errors import Unauthenticated
from auth.gateway import AuthGateway
from auth.models import AuthArtifact, Ephemeral, SessionRecord, User
from auth.tokens import CSRF_COOKIE_NAME, CSRF_HEADER_NAME
from core.config import get_settings

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


@dataclass
class MobileIdentity:
    user: User
    artifact: AuthArtifact


@dataclass
class SessionIdentity:
    user: User
    record: SessionRecord
    session_id: str


def get_gateway(request: Request) -> AuthGateway:
    return request.app.state.gateway


def session_cookie(request: Request) -> str | None:
    return request.cookies.get(get_settings().session_cookie_name)


def bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header[:7].lower() == "bearer ":
        return auth_header[7:].strip()
    return None


def get_mobile_identity(request: Request) -> MobileIdentity:
    """Require a device token (or, failing that header, a web session).

    Raises Unauthenticated (401), or CsrfMismatch (419) for an unsafe method
    authenticated by the session cookie.

    Use as a FastAPI dependency:
        @router.get("/me")
        def me(identity: MobileIdentity = Depends(get_mobile_identity)): ...
    """
    gateway = get_gateway(request)
    token = bearer_token(request)
    if token is not None:
        user, artifact = gateway.tokens.authenticate(token)
        return MobileIdentity(user=user, artifact=artifact)

    session_id = session_cookie(request)
    if session_id:
        user, record = gateway.sessions.current_user(session_id)
        if request.method not in SAFE_METHODS:
            gateway.sessions.verify_csrf(
                request.headers.get(CSRF_HEADER_NAME),
                request.cookies.get(CSRF_COOKIE_NAME),
                record,
            )
        return MobileIdentity(user=user, artifact=Ephemeral())

    raise Unauthenticated()


def get_session_identity(request: Request) -> SessionIdentity:
    """Require an authenticated browser session. Raises Unauthenticated (401)."""
    session_id = session_cookie(request)
    user, record = get_gateway(request).sessions.current_user(session_id)
    return SessionIdentity(user=user, record=record, session_id=session_id or "")


def require_csrf(request: Request, identity: SessionIdentity = Depends(get_session_identity)) -> SessionIdentity:
    """Session auth plus the anti-forgery check. Raises CsrfMismatch (419)."""
    get_gateway(request).sessions.verify_csrf(
        request.headers.get(CSRF_HEADER_NAME),
        request.cookies.get(CSRF_COOKIE_NAME),
        identity.record,
    )
    return identity
