"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore is the repository; the _row_to_* functions are the mappers.
Authenticator and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Email uniqueness is a UNIQUE index, not a read-then-write check. Two
  concurrent registrations for the same address race on the INSERT and the
  loser gets IntegrityError, which create_user() translates to DuplicateEmail.

  Revoking every device for a user is one DELETE scoped by user_id. Token
  validation reads the row by primary key, so a token deleted by a concurrent
  logout-all is simply not found and the request is unauthenticated.

Relations are explicit tables with foreign keys (user_roles, role_permissions,
user_permissions, access_tokens, sessions). SQLite only enforces the ON DELETE
CASCADE clauses when PRAGMA foreign_keys is on, so it is set per-connection.

DB path: auth/batchmates_auth.db unless DATABASE_URL says otherwise.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    UniqueConstraint,
    and_,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.catalogue import PERMISSION_NAMES, ROLE_PERMISSIONS
from auth.errors import DuplicateEmail
from auth.models import (
    DEFAULT_GUARD,
    AccessToken,
    PasswordResetRecord,
    Permission,
    Role,
    SessionRecord,
    User,
)
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("status", String(20), nullable=False, server_default="active", index=True),
    Column("phone", String(30)),
    Column("device_token", Text),  # legacy single push token, never serialized
    Column("last_login_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False),
    Column("guard_name", String(30), nullable=False, server_default=DEFAULT_GUARD),
    UniqueConstraint("name", "guard_name", name="uq_roles_name_guard"),
)

_permissions = Table(
    "permissions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("guard_name", String(30), nullable=False, server_default=DEFAULT_GUARD),
    UniqueConstraint("name", "guard_name", name="uq_permissions_name_guard"),
)

_role_permissions = Table(
    "role_permissions",
    _metadata,
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False),
    Column("permission_id", Integer, ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False),
    PrimaryKeyConstraint("role_id", "permission_id"),
)

_user_roles = Table(
    "user_roles",
    _metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False),
    PrimaryKeyConstraint("user_id", "role_id"),
)

_user_permissions = Table(
    "user_permissions",
    _metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("permission_id", Integer, ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False),
    PrimaryKeyConstraint("user_id", "permission_id"),
)

_access_tokens = Table(
    "access_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("name", String(255), nullable=False),  # device name
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("created_at", String(32), nullable=False),
    Column("last_used_at", String(32)),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id_hash", String(64), primary_key=True),  # HMAC-SHA256 of the cookie value
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("csrf_token", String(64), nullable=False),
    Column("ip_address", String(45)),
    Column("user_agent", Text),
    Column("created_at", String(32), nullable=False),
    Column("last_activity", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False, index=True),
)

_password_reset_tokens = Table(
    "password_reset_tokens",
    _metadata,
    Column("email", String(255), primary_key=True),
    Column("token_hash", String(64), nullable=False),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Per-connection PRAGMAs
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for users, the role/permission catalogue, access tokens,
    browser sessions, and password-reset tokens.

    Usage:
        store = UserStore()
        user_id = store.create_user(User(name="Ana", email="ana@x.com", hashed_password=hash_password("secret123")))
        user = store.get_by_email("ana@x.com")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # Writers wait on the file lock instead of failing immediately.
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = 15
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        _metadata.create_all(self.engine)
        self._ensure_catalogue()

    def _ensure_catalogue(self) -> None:
        """Insert any missing roles, permissions, and role grants.

        Idempotent -- safe to call on every startup. Existing rows are left
        untouched, so grants added by an operator survive restarts.
        """
        with self.engine.begin() as conn:
            existing_roles = {r.name: r.id for r in conn.execute(select(_roles.c.id, _roles.c.name))}
            for name in ROLE_PERMISSIONS:
                if name not in existing_roles:
                    result = conn.execute(_roles.insert().values(name=name, guard_name=DEFAULT_GUARD))
                    existing_roles[name] = result.inserted_primary_key[0]

            existing_perms = {p.name: p.id for p in conn.execute(select(_permissions.c.id, _permissions.c.name))}
            for name in PERMISSION_NAMES:
                if name not in existing_perms:
                    result = conn.execute(_permissions.insert().values(name=name, guard_name=DEFAULT_GUARD))
                    existing_perms[name] = result.inserted_primary_key[0]

            granted = {(g.role_id, g.permission_id) for g in conn.execute(select(_role_permissions))}
            for role_name, perm_names in ROLE_PERMISSIONS.items():
                role_id = existing_roles[role_name]
                for perm_name in perm_names:
                    pair = (role_id, existing_perms[perm_name])
                    if pair not in granted:
                        conn.execute(_role_permissions.insert().values(role_id=pair[0], permission_id=pair[1]))
                        granted.add(pair)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User, role_id: int | None = None) -> int:
        """Insert a new user and return its assigned database ID.

        When role_id is given the role link is written in the same
        transaction, so the user never exists without it.

        Raises DuplicateEmail when the UNIQUE(email) index rejects the row.
        This is the only duplicate check -- callers must not pre-read.
        """
        now = _now_iso()
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _users.insert().values(
                        name=user.name,
                        email=user.email,
                        hashed_password=user.hashed_password,
                        status=user.status,
                        phone=user.phone,
                        device_token=user.device_token,
                        created_at=now,
                        updated_at=now,
                    )
                )
                user_id = result.inserted_primary_key[0]
                if role_id is not None:
                    conn.execute(_user_roles.insert().values(user_id=user_id, role_id=role_id))
                return user_id
        except IntegrityError as exc:
            raise DuplicateEmail() from exc

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by normalized email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: name, status, phone, device_token, hashed_password,
        last_login_at. updated_at is always stamped.

        Returns True if a row was updated, False if user_id was not found.
        """
        fields["updated_at"] = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
        return result.rowcount > 0

    def record_login(self, user_id: int, device_token: str | None = None) -> None:
        """Stamp last_login_at, and the push token when the client sent one."""
        fields: dict = {"last_login_at": _now_iso()}
        if device_token is not None:
            fields["device_token"] = device_token
        self.update_user(user_id, **fields)

    # ------------------------------------------------------------------
    # Role / permission queries
    # ------------------------------------------------------------------

    def get_role(self, name: str, guard_name: str = DEFAULT_GUARD) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _roles.select().where((_roles.c.name == name) & (_roles.c.guard_name == guard_name))
            ).fetchone()
        return _row_to_role(row) if row is not None else None

    def get_permission(self, name: str, guard_name: str = DEFAULT_GUARD) -> Permission | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _permissions.select().where((_permissions.c.name == name) & (_permissions.c.guard_name == guard_name))
            ).fetchone()
        return _row_to_permission(row) if row is not None else None

    def attach_role(self, user_id: int, role_id: int) -> bool:
        """Link a role to a user. Returns False if the link already existed."""
        try:
            with self.engine.begin() as conn:
                conn.execute(_user_roles.insert().values(user_id=user_id, role_id=role_id))
        except IntegrityError:
            return False
        return True

    def detach_role(self, user_id: int, role_id: int) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                _user_roles.delete().where((_user_roles.c.user_id == user_id) & (_user_roles.c.role_id == role_id))
            )
        return result.rowcount > 0

    def attach_permission(self, user_id: int, permission_id: int) -> bool:
        """Grant a permission directly to a user. Returns False if already granted."""
        try:
            with self.engine.begin() as conn:
                conn.execute(_user_permissions.insert().values(user_id=user_id, permission_id=permission_id))
        except IntegrityError:
            return False
        return True

    def get_user_roles(self, user_id: int) -> list[Role]:
        """Return the roles explicitly assigned to a user, ordered by name."""
        query = (
            select(_roles)
            .select_from(_roles.join(_user_roles, _user_roles.c.role_id == _roles.c.id))
            .where(_user_roles.c.user_id == user_id)
            .order_by(_roles.c.name)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_role(r) for r in rows]

    def get_user_permissions(self, user_id: int) -> list[Permission]:
        """Return the union of role-derived and directly granted permissions.

        Two explicit joins, no lazy relation loading:
          users -> user_roles -> role_permissions -> permissions
          users -> user_permissions -> permissions
        """
        via_roles = (
            select(_permissions)
            .select_from(
                _permissions.join(_role_permissions, _role_permissions.c.permission_id == _permissions.c.id).join(
                    _user_roles, _user_roles.c.role_id == _role_permissions.c.role_id
                )
            )
            .where(_user_roles.c.user_id == user_id)
        )
        direct = (
            select(_permissions)
            .select_from(_permissions.join(_user_permissions, _user_permissions.c.permission_id == _permissions.c.id))
            .where(_user_permissions.c.user_id == user_id)
        )
        union = via_roles.union(direct).subquery()
        with self.engine.connect() as conn:
            rows = conn.execute(select(union).order_by(union.c.name)).fetchall()
        return [_row_to_permission(r) for r in rows]

    # ------------------------------------------------------------------
    # Access token queries
    # ------------------------------------------------------------------

    def create_access_token(self, token: AccessToken) -> int:
        """Insert a new device token record and return its ID."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _access_tokens.insert().values(
                    user_id=token.user_id,
                    name=token.name,
                    token_hash=token.token_hash,
                    created_at=_now_iso(),
                )
            )
            return result.inserted_primary_key[0]

    def get_access_token(self, token_id: int) -> AccessToken | None:
        """Look up a device token by primary key."""
        with self.engine.connect() as conn:
            row = conn.execute(_access_tokens.select().where(_access_tokens.c.id == token_id)).fetchone()
        return _row_to_access_token(row) if row is not None else None

    def list_access_tokens(self, user_id: int) -> list[AccessToken]:
        """Return all device tokens for a user (newest first)."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _access_tokens.select()
                .where(_access_tokens.c.user_id == user_id)
                .order_by(_access_tokens.c.created_at.desc(), _access_tokens.c.id.desc())
            ).fetchall()
        return [_row_to_access_token(r) for r in rows]

    def touch_access_token(self, token_id: int) -> None:
        """Stamp last_used_at on a token after each successful authentication."""
        with self.engine.begin() as conn:
            conn.execute(_access_tokens.update().where(_access_tokens.c.id == token_id).values(last_used_at=_now_iso()))

    def delete_access_token(self, token_id: int, user_id: int | None = None) -> bool:
        """Delete one token. When user_id is given it must own the token.

        Returns True if a row was deleted, False if not found or wrong owner.
        """
        condition = _access_tokens.c.id == token_id
        if user_id is not None:
            condition = and_(condition, _access_tokens.c.user_id == user_id)
        with self.engine.begin() as conn:
            result = conn.execute(_access_tokens.delete().where(condition))
        return result.rowcount > 0

    def delete_access_tokens_for_user(self, user_id: int) -> int:
        """Delete every token the user owns in one statement. Returns the count."""
        with self.engine.begin() as conn:
            result = conn.execute(_access_tokens.delete().where(_access_tokens.c.user_id == user_id))
        return result.rowcount

    def prune_access_tokens(self, user_id: int, keep: int) -> int:
        """Delete the least recently used tokens beyond the newest `keep`.

        Recency is last_used_at, falling back to created_at for tokens that
        were never used.
        """
        recency = func.coalesce(_access_tokens.c.last_used_at, _access_tokens.c.created_at)
        keep_ids = (
            select(_access_tokens.c.id)
            .where(_access_tokens.c.user_id == user_id)
            .order_by(recency.desc(), _access_tokens.c.id.desc())
            .limit(keep)
        )
        with self.engine.begin() as conn:
            result = conn.execute(
                _access_tokens.delete().where(
                    (_access_tokens.c.user_id == user_id) & (_access_tokens.c.id.not_in(keep_ids))
                )
            )
        return result.rowcount

    # ------------------------------------------------------------------
    # Session queries
    # ------------------------------------------------------------------

    def create_session(self, record: SessionRecord) -> None:
        now = _now_iso()
        with self.engine.begin() as conn:
            conn.execute(
                _sessions.insert().values(
                    id_hash=record.id_hash,
                    user_id=record.user_id,
                    csrf_token=record.csrf_token,
                    ip_address=record.ip_address,
                    user_agent=record.user_agent,
                    created_at=now,
                    last_activity=now,
                    expires_at=record.expires_at,
                )
            )

    def get_session(self, id_hash: str) -> SessionRecord | None:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id_hash == id_hash)).fetchone()
        return _row_to_session(row) if row is not None else None

    def touch_session(self, id_hash: str, expires_at: str) -> None:
        """Record activity and slide the idle expiry forward."""
        with self.engine.begin() as conn:
            conn.execute(
                _sessions.update()
                .where(_sessions.c.id_hash == id_hash)
                .values(last_activity=_now_iso(), expires_at=expires_at)
            )

    def delete_session(self, id_hash: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.id_hash == id_hash))
        return result.rowcount > 0

    def delete_sessions_for_user(self, user_id: int) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
        return result.rowcount

    def count_sessions_for_user(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_sessions).where(_sessions.c.user_id == user_id))
        return result.scalar() or 0

    def delete_expired_sessions(self, now_iso: str | None = None) -> int:
        """Delete sessions whose expires_at is in the past. Returns the count."""
        cutoff = now_iso or _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at < cutoff))
        return result.rowcount

    # ------------------------------------------------------------------
    # Password reset queries
    # ------------------------------------------------------------------

    def put_reset_token(self, email: str, token_hash: str) -> None:
        """Store the reset token for an email, replacing any earlier one."""
        with self.engine.begin() as conn:
            conn.execute(_password_reset_tokens.delete().where(_password_reset_tokens.c.email == email))
            conn.execute(_password_reset_tokens.insert().values(email=email, token_hash=token_hash, created_at=_now_iso()))

    def get_reset_token(self, email: str) -> PasswordResetRecord | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _password_reset_tokens.select().where(_password_reset_tokens.c.email == email)
            ).fetchone()
        if row is None:
            return None
        return PasswordResetRecord(email=row.email, token_hash=row.token_hash, created_at=row.created_at)

    def delete_reset_token(self, email: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(_password_reset_tokens.delete().where(_password_reset_tokens.c.email == email))
        return result.rowcount > 0

    def delete_reset_tokens_before(self, cutoff_iso: str) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(_password_reset_tokens.delete().where(_password_reset_tokens.c.created_at < cutoff_iso))
        return result.rowcount

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Run a trivial query to verify the database is reachable."""
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
            return True
        except Exception:
            return False

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        hashed_password=row.hashed_password,
        status=row.status,
        phone=row.phone,
        device_token=row.device_token,
        last_login_at=row.last_login_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_role(row) -> Role:
    return Role(id=row.id, name=row.name, guard_name=row.guard_name)


def _row_to_permission(row) -> Permission:
    return Permission(id=row.id, name=row.name, guard_name=row.guard_name)


def _row_to_access_token(row) -> AccessToken:
    return AccessToken(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        token_hash=row.token_hash,
        created_at=row.created_at,
        last_used_at=row.last_used_at,
    )


def _row_to_session(row) -> SessionRecord:
    return SessionRecord(
        id_hash=row.id_hash,
        user_id=row.user_id,
        csrf_token=row.csrf_token,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=row.created_at,
        last_activity=row.last_activity,
        expires_at=row.expires_at,
    )
