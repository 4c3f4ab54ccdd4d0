"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores, authenticators, and routes do the work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------

DEFAULT_GUARD = "web"
DEFAULT_ROLE = "donor"

# The complete set of roles the platform recognizes. Anything outside this
# set is rejected by the resolver, not just by request validation.
ROLE_NAMES: tuple[str, ...] = ("donor", "institution", "student", "admin", "system_admin")


class Channel(str, Enum):
    """Client channel -- selects which Authenticator handles a request."""

    web = "web"
    mobile = "mobile"


class UserStatus(str, Enum):
    active = "active"
    suspended = "suspended"
    pending = "pending"


class AccessStatus(str, Enum):
    """Outcome of the status gate applied before any login path."""

    ACTIVE = "active"
    GATED = "gated"


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


@dataclass
class User:
    """Represents a registered account.

    hashed_password is a bcrypt hash; the plaintext never leaves the request
    that supplied it. device_token is the legacy single-device push token --
    stored for notification delivery, never serialized back to clients.
    """

    name: str
    email: str
    id: int | None = None
    hashed_password: str | None = None
    status: str = UserStatus.active.value
    phone: str | None = None
    device_token: str | None = None
    last_login_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.active.value


@dataclass(frozen=True)
class Role:
    id: int
    name: str
    guard_name: str = DEFAULT_GUARD


@dataclass(frozen=True)
class Permission:
    id: int
    name: str
    guard_name: str = DEFAULT_GUARD


@dataclass
class AuthContext:
    """Authorization snapshot attached to every authenticated response."""

    roles: list[Role] = field(default_factory=list)
    permissions: list[Permission] = field(default_factory=list)

    @property
    def role_names(self) -> list[str]:
        return [r.name for r in self.roles]

    @property
    def permission_names(self) -> list[str]:
        return [p.name for p in self.permissions]


@dataclass
class AccessToken:
    """One authenticated mobile device.

    Security design:
    - token_hash is HMAC-SHA256(SECRET_KEY, secret). The plaintext token
      ("<id>|<secret>") is returned ONCE at creation and never persisted.
    - name is the human-readable device label supplied at login.
    """

    user_id: int
    name: str
    token_hash: str
    id: int | None = None
    created_at: str | None = None
    last_used_at: str | None = None


@dataclass
class SessionRecord:
    """Server-side state for one authenticated browser.

    id_hash is HMAC-SHA256(SECRET_KEY, session_id); the raw session id only
    lives in the client's cookie. csrf_token is the anti-forgery value bound
    to this session and rotated whenever the session is created or destroyed.
    """

    id_hash: str
    user_id: int
    csrf_token: str
    expires_at: str
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: str | None = None
    last_activity: str | None = None


@dataclass
class PasswordResetRecord:
    email: str
    token_hash: str
    created_at: str


# ---------------------------------------------------------------------------
# Auth artifacts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Persisted:
    """The request authenticated with a stored access token."""

    token_id: int


@dataclass(frozen=True)
class Ephemeral:
    """The request authenticated without a stored token (e.g. a session cookie
    presented to a mobile route). There is nothing to delete on logout."""


AuthArtifact = Union[Persisted, Ephemeral]


@dataclass
class IssuedToken:
    """Result of minting a device token. plain_text is shown exactly once."""

    token: AccessToken
    plain_text: str


@dataclass
class WebSession:
    """Result of starting or ending a browser session.

    session_id is None when the browser is now anonymous (after logout); the
    csrf_token is always fresh.
    """

    csrf_token: str
    session_id: str | None = None
    max_age: int = 0
