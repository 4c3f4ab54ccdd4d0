"""
auth/gateway.py -- The facade both client channels call.

Each operation dispatches to the channel's Authenticator, catches AuthError,
and returns an Envelope. Routes never build success/failure bodies
themselves; they only turn an Envelope into an HTTP response and, on the web
channel, write the cookies carried in Envelope.session.

Envelope wire shape:
    {"success": bool, "message": str, "data": ..., "errors": {field: [msg]}}
data and errors are omitted when empty.

Every user payload carries the user's roles and permissions so clients can
make authorization decisions without a second call. Password hashes and the
push device_token are never serialized.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from auth.authenticators import SessionAuthenticator, TokenAuthenticator
from auth.errors import AuthError, InvalidResetToken
from auth.models import AccessToken, AuthArtifact, SessionRecord, User, WebSession
from auth.password_reset import PASSWORD_RESET, RESET_LINK_SENT, PasswordResetService
from auth.roles import RoleResolver

logger = logging.getLogger("batchmates.auth")


@dataclass
class Envelope:
    status_code: int
    success: bool
    message: str = ""
    data: Any = None
    errors: dict[str, list[str]] | None = None
    # Web channel only: cookies the route must write. Never serialized.
    session: WebSession | None = None

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.data is not None:
            body["data"] = self.data
        if self.errors:
            body["errors"] = self.errors
        return body

    @classmethod
    def ok(cls, message: str = "", data: Any = None, status_code: int = 200, **extra: Any) -> "Envelope":
        return cls(status_code=status_code, success=True, message=message, data=data, **extra)

    @classmethod
    def from_error(cls, exc: AuthError) -> "Envelope":
        return cls(status_code=exc.status_code, success=False, message=exc.message, errors=exc.errors)


def serialize_device(token: AccessToken) -> dict[str, Any]:
    return {
        "id": token.id,
        "name": token.name,
        "last_used_at": token.last_used_at,
        "created_at": token.created_at,
    }


class AuthGateway:
    """Uniform dispatch and response shaping for the web and mobile channels."""

    def __init__(
        self,
        sessions: SessionAuthenticator,
        tokens: TokenAuthenticator,
        roles: RoleResolver,
        password_reset: PasswordResetService,
    ) -> None:
        self.sessions = sessions
        self.tokens = tokens
        self.roles = roles
        self.password_reset = password_reset

    def serialize_user(self, user: User) -> dict[str, Any]:
        context = self.roles.load_auth_context(user)
        return {
            "id": user.id,
            "name": user.name,
            "email": user.email,
            "status": user.status,
            "phone": user.phone,
            "last_login_at": user.last_login_at,
            "created_at": user.created_at,
            "updated_at": user.updated_at,
            "roles": [{"id": r.id, "name": r.name, "guard_name": r.guard_name} for r in context.roles],
            "permissions": [{"id": p.id, "name": p.name, "guard_name": p.guard_name} for p in context.permissions],
        }

    # ------------------------------------------------------------------
    # Mobile channel
    # ------------------------------------------------------------------

    def mobile_register(
        self,
        name: str,
        email: str,
        password: str,
        password_confirmation: str | None,
        device_name: str,
        role: str | None = None,
        device_token: str | None = None,
    ) -> Envelope:
        try:
            user, issued = self.tokens.register(
                name, email, password, password_confirmation, device_name, role=role, device_token=device_token
            )
        except AuthError as exc:
            return Envelope.from_error(exc)
        return Envelope.ok(
            "Registration successful",
            {"user": self.serialize_user(user), "token": issued.plain_text},
            status_code=201,
        )

    def mobile_login(self, email: str, password: str, device_name: str, device_token: str | None = None) -> Envelope:
        try:
            user, issued = self.tokens.login(email, password, device_name, device_token=device_token)
        except AuthError as exc:
            return Envelope.from_error(exc)
        return Envelope.ok("Login successful", {"user": self.serialize_user(user), "token": issued.plain_text})

    def mobile_logout(self, artifact: AuthArtifact) -> Envelope:
        self.tokens.logout(artifact)
        return Envelope.ok("Logged out successfully")

    def mobile_logout_all(self, user: User) -> Envelope:
        self.tokens.logout_all(user)
        return Envelope.ok("Logged out from all devices")

    def list_devices(self, user: User) -> Envelope:
        return Envelope.ok(data=[serialize_device(t) for t in self.tokens.list_devices(user)])

    def revoke_device(self, user: User, token_id: int) -> Envelope:
        try:
            self.tokens.revoke_device(user, token_id)
        except AuthError as exc:
            return Envelope.from_error(exc)
        return Envelope.ok("Device logged out successfully")

    # ------------------------------------------------------------------
    # Web channel
    # ------------------------------------------------------------------

    def web_register(
        self,
        name: str,
        email: str,
        password: str,
        password_confirmation: str | None,
        role: str | None = None,
        previous_session_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Envelope:
        try:
            user, session = self.sessions.register(
                name,
                email,
                password,
                password_confirmation,
                role=role,
                previous_session_id=previous_session_id,
                ip_address=ip_address,
                user_agent=user_agent,
            )
        except AuthError as exc:
            return Envelope.from_error(exc)
        return Envelope.ok(
            "Registration successful", {"user": self.serialize_user(user)}, status_code=201, session=session
        )

    def web_login(
        self,
        email: str,
        password: str,
        previous_session_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Envelope:
        try:
            user, session = self.sessions.login(
                email,
                password,
                previous_session_id=previous_session_id,
                ip_address=ip_address,
                user_agent=user_agent,
            )
        except AuthError as exc:
            return Envelope.from_error(exc)
        return Envelope.ok("Login successful", {"user": self.serialize_user(user)}, session=session)

    def web_logout(self, session_id: str | None, record: SessionRecord | None = None) -> Envelope:
        fresh = self.sessions.logout(session_id)
        if record is not None:
            logger.info("Web logout for user %d", record.user_id)
        return Envelope.ok("Logged out successfully", session=fresh)

    # ------------------------------------------------------------------
    # Both channels
    # ------------------------------------------------------------------

    def me(self, user: User) -> Envelope:
        return Envelope.ok(data={"user": self.serialize_user(user)})

    def forgot_password(self, email: str) -> Envelope:
        self.password_reset.request_reset(email)
        return Envelope.ok(RESET_LINK_SENT)

    def verify_reset_token(self, email: str, token: str) -> Envelope:
        if self.password_reset.verify_token(email, token):
            return Envelope.ok("Token is valid", {"valid": True})
        exc = InvalidResetToken()
        return Envelope(status_code=exc.status_code, success=False, message=exc.message, data={"valid": False})

    def reset_password(self, email: str, token: str, password: str, password_confirmation: str | None) -> Envelope:
        try:
            self.password_reset.reset_password(email, token, password, password_confirmation)
        except AuthError as exc:
            return Envelope.from_error(exc)
        return Envelope.ok(PASSWORD_RESET)
