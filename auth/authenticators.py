"""
auth/authenticators.py -- The two channel authenticators.

Both variants share one contract (Authenticator): log a user in, log them
out, and resolve the current user from whatever credential the channel
carries. They differ only in the artifact they issue:

  SessionAuthenticator (web)    -- server-side session row + httpOnly cookie,
                                   guarded by a rotating anti-forgery token.
  TokenAuthenticator  (mobile)  -- one opaque bearer token per named device.

State machine (both channels):
  Anonymous --[valid credentials, status active]--> Authenticated
  Anonymous --[valid credentials, status gated]---> Anonymous (AccountGated)
  Authenticated --[logout]--> Anonymous

Neither authenticator knows about HTTP. Cookie writing and header parsing
live in api/ and auth/dependencies.py.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any

from auth.credentials import CredentialStore
from auth.errors import CsrfMismatch, NotFound, Unauthenticated
from auth.models import (
    AccessToken,
    AuthArtifact,
    Channel,
    Ephemeral,
    IssuedToken,
    Persisted,
    SessionRecord,
    User,
    WebSession,
)
from auth.roles import RoleResolver
from auth.store import UserStore
from auth.tokens import (
    format_plain_token,
    generate_secret,
    hash_secret,
    is_valid_token_id,
    secrets_match,
    split_plain_token,
)
from core.config import get_settings

logger = logging.getLogger("batchmates.auth")


class Authenticator(ABC):
    """Common interface for the web and mobile channels."""

    channel: Channel

    def __init__(self, store: UserStore, credentials: CredentialStore, roles: RoleResolver) -> None:
        self.store = store
        self.credentials = credentials
        self.roles = roles

    def _create_account(
        self,
        name: str,
        email: str,
        password: str,
        password_confirmation: str | None,
        role: str | None,
    ) -> User:
        role_row = self.roles.resolve_role(role)
        user = self.credentials.create(name, email, password, password_confirmation, role_id=role_row.id)
        logger.info("Role %s assigned to user %d", role_row.name, user.id)
        return user

    @abstractmethod
    def login(self, email: str, password: str, **context: Any) -> tuple[User, Any]:
        """Verify credentials, apply the status gate, and issue the channel artifact."""

    @abstractmethod
    def logout(self, artifact: Any) -> Any:
        """Destroy the artifact that authenticated the current request."""

    @abstractmethod
    def current_user(self, credential: str | None) -> tuple[User, Any]:
        """Resolve the raw credential to (user, artifact) or raise Unauthenticated."""


# ---------------------------------------------------------------------------
# Web channel
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionAuthenticator(Authenticator):
    """Cookie-backed sessions for the browser console."""

    channel = Channel.web

    def __init__(
        self,
        store: UserStore,
        credentials: CredentialStore,
        roles: RoleResolver,
        lifetime_minutes: int | None = None,
    ) -> None:
        super().__init__(store, credentials, roles)
        self.lifetime = timedelta(minutes=lifetime_minutes or get_settings().session_lifetime_minutes)

    def register(
        self,
        name: str,
        email: str,
        password: str,
        password_confirmation: str | None,
        role: str | None = None,
        previous_session_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> tuple[User, WebSession]:
        """Create the account and sign the browser in immediately."""
        user = self._create_account(name, email, password, password_confirmation, role)
        session = self._start_session(user, previous_session_id, ip_address, user_agent)
        return user, session

    def login(
        self,
        email: str,
        password: str,
        previous_session_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> tuple[User, WebSession]:
        user = self.credentials.authenticate(email, password)
        self.store.record_login(user.id)
        session = self._start_session(user, previous_session_id, ip_address, user_agent)
        logger.info("Web login for user %d", user.id)
        return self.store.get_by_id(user.id) or user, session

    def logout(self, session_id: str | None) -> WebSession:
        """Destroy the server-side session and hand back a fresh anonymous CSRF token."""
        if session_id:
            self.store.delete_session(hash_secret(session_id))
        return WebSession(csrf_token=generate_secret())

    def current_user(self, session_id: str | None) -> tuple[User, SessionRecord]:
        if not session_id:
            raise Unauthenticated()
        id_hash = hash_secret(session_id)
        record = self.store.get_session(id_hash)
        if record is None:
            raise Unauthenticated()
        now = _utcnow()
        if datetime.fromisoformat(record.expires_at) <= now:
            self.store.delete_session(id_hash)
            raise Unauthenticated()
        user = self.store.get_by_id(record.user_id)
        if user is None or not user.is_active:
            self.store.delete_session(id_hash)
            raise Unauthenticated()
        self.store.touch_session(id_hash, (now + self.lifetime).isoformat())
        return user, record

    def _start_session(
        self,
        user: User,
        previous_session_id: str | None,
        ip_address: str | None,
        user_agent: str | None,
    ) -> WebSession:
        """Issue a brand-new session id and CSRF token.

        Any session the browser held before authenticating is destroyed, so an
        id planted by an attacker before login is worthless afterwards.
        """
        if previous_session_id:
            self.store.delete_session(hash_secret(previous_session_id))
        session_id = generate_secret()
        csrf_token = generate_secret()
        self.store.create_session(
            SessionRecord(
                id_hash=hash_secret(session_id),
                user_id=user.id,
                csrf_token=csrf_token,
                expires_at=(_utcnow() + self.lifetime).isoformat(),
                ip_address=ip_address,
                user_agent=(user_agent or "")[:512] or None,
            )
        )
        return WebSession(
            csrf_token=csrf_token,
            session_id=session_id,
            max_age=int(self.lifetime.total_seconds()),
        )

    @staticmethod
    def verify_csrf(header_token: str | None, cookie_token: str | None, session: SessionRecord | None = None) -> None:
        """Double-submit check for state-changing requests.

        The header must match the cookie, and for an authenticated session it
        must also match the token bound to the session server-side.
        """
        if not secrets_match(header_token, cookie_token):
            raise CsrfMismatch()
        if session is not None and not secrets_match(header_token, session.csrf_token):
            raise CsrfMismatch()


# ---------------------------------------------------------------------------
# Mobile channel
# ---------------------------------------------------------------------------


class TokenAuthenticator(Authenticator):
    """Per-device bearer tokens for the mobile apps."""

    channel = Channel.mobile

    def __init__(
        self,
        store: UserStore,
        credentials: CredentialStore,
        roles: RoleResolver,
        max_devices: int | None = None,
    ) -> None:
        super().__init__(store, credentials, roles)
        self.max_devices = max_devices or get_settings().max_devices_per_user

    def register(
        self,
        name: str,
        email: str,
        password: str,
        password_confirmation: str | None,
        device_name: str,
        role: str | None = None,
        device_token: str | None = None,
    ) -> tuple[User, IssuedToken]:
        user = self._create_account(name, email, password, password_confirmation, role)
        if device_token:
            self.store.update_user(user.id, device_token=device_token)
        issued = self.issue_token(user, device_name)
        return user, issued

    def login(
        self,
        email: str,
        password: str,
        device_name: str = "",
        device_token: str | None = None,
    ) -> tuple[User, IssuedToken]:
        """Authenticate and mint a token for this device. Other devices stay signed in."""
        user = self.credentials.authenticate(email, password)
        self.store.record_login(user.id, device_token=device_token)
        issued = self.issue_token(user, device_name)
        logger.info("Mobile login for user %d on device token %d", user.id, issued.token.id)
        return self.store.get_by_id(user.id) or user, issued

    def issue_token(self, user: User, device_name: str) -> IssuedToken:
        """Mint a token. The plaintext is returned here and nowhere else."""
        secret = generate_secret()
        token = AccessToken(user_id=user.id, name=device_name, token_hash=hash_secret(secret))
        token.id = self.store.create_access_token(token)
        pruned = self.store.prune_access_tokens(user.id, keep=self.max_devices)
        if pruned:
            logger.info("Pruned %d stale device token(s) for user %d", pruned, user.id)
        return IssuedToken(token=token, plain_text=format_plain_token(token.id, secret))

    def current_user(self, credential: str | None) -> tuple[User, Persisted]:
        """Resolve a bearer token. Missing rows (revoked, logged out) are unauthenticated."""
        parsed = split_plain_token(credential or "")
        if parsed is None:
            raise Unauthenticated()
        token_id, secret = parsed
        token = self.store.get_access_token(token_id)
        if token is None or not secrets_match(hash_secret(secret), token.token_hash):
            raise Unauthenticated()
        user = self.store.get_by_id(token.user_id)
        if user is None or not user.is_active:
            raise Unauthenticated()
        self.store.touch_access_token(token_id)
        return user, Persisted(token_id)

    authenticate = current_user

    def logout(self, artifact: AuthArtifact) -> bool:
        """Delete the token behind the current request. Ephemeral artifacts are a no-op."""
        if isinstance(artifact, Ephemeral):
            return False
        return self.store.delete_access_token(artifact.token_id)

    def logout_all(self, user: User) -> int:
        count = self.store.delete_access_tokens_for_user(user.id)
        logger.info("Revoked all %d device token(s) for user %d", count, user.id)
        return count

    def list_devices(self, user: User) -> list[AccessToken]:
        return self.store.list_access_tokens(user.id)

    def revoke_device(self, user: User, token_id: int) -> None:
        """Delete one of the caller's own tokens.

        A token owned by someone else is reported exactly like a missing one,
        so the response never confirms that the id exists.
        """
        if not is_valid_token_id(token_id) or not self.store.delete_access_token(token_id, user_id=user.id):
            raise NotFound("Device not found")
        logger.info("User %d revoked device token %d", user.id, token_id)
