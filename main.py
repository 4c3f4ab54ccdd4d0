#!/usr/bin/env python3
"""
Batchmates auth -- operator command line.

Account administration that has no HTTP surface: approving or suspending
accounts, granting roles, revoking every device for a user, and sweeping
expired sessions and reset tokens.

Usage:
  python main.py create-user "Ana Cruz" ana@example.com --role admin
  python main.py set-status ana@example.com suspended
  python main.py assign-role ana@example.com institution
  python main.py revoke-tokens ana@example.com
  python main.py prune-sessions

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the auth database (default: auth/batchmates_auth.db).
  SECRET_KEY    Required unless DEBUG=true.
"""

from __future__ import annotations

import argparse
import getpass
import logging
import sys
from typing import Optional

from auth.credentials import CredentialStore, normalize_email
from auth.errors import AuthError
from auth.models import DEFAULT_ROLE, ROLE_NAMES, User, UserStatus
from auth.notifications import LoggingNotifier
from auth.password_reset import PasswordResetService
from auth.roles import RoleResolver
from auth.store import UserStore
from core.config import ResetLinkConfig, get_settings

logger = logging.getLogger("batchmates.cli")

_STATUSES = [s.value for s in UserStatus]


def _require_user(store: UserStore, email: str) -> User:
    user = store.get_by_email(normalize_email(email))
    if user is None:
        raise LookupError(f"No user with email '{email}'.")
    return user


def _read_password(args: argparse.Namespace) -> tuple[str, str]:
    if args.password:
        return args.password, args.password
    password = getpass.getpass("  Password: ")
    confirmation = getpass.getpass("  Confirm password: ")
    return password, confirmation


# ---------------------------------------------------------------------------
# Sub-commands
# ---------------------------------------------------------------------------


def cmd_create_user(store: UserStore, args: argparse.Namespace) -> None:
    roles = RoleResolver(store)
    role = roles.resolve_role(args.role)
    password, confirmation = _read_password(args)
    user = CredentialStore(store).create(args.name, args.email, password, confirmation, status=args.status, role_id=role.id)
    print(f"  Created user {user.id} <{user.email}> role={role.name} status={user.status}")


def cmd_set_status(store: UserStore, args: argparse.Namespace) -> None:
    user = _require_user(store, args.email)
    store.update_user(user.id, status=args.status)
    if args.status != UserStatus.active.value:
        # A gated account must not keep using credentials issued while active.
        tokens = store.delete_access_tokens_for_user(user.id)
        sessions = store.delete_sessions_for_user(user.id)
        print(f"  {user.email}: {user.status} -> {args.status} ({tokens} token(s), {sessions} session(s) revoked)")
    else:
        print(f"  {user.email}: {user.status} -> {args.status}")
    logger.info("Status of user %d set to %s", user.id, args.status)


def cmd_assign_role(store: UserStore, args: argparse.Namespace) -> None:
    user = _require_user(store, args.email)
    name = RoleResolver(store).assign_role(user, args.role)
    print(f"  {user.email}: role {name} assigned")


def cmd_revoke_tokens(store: UserStore, args: argparse.Namespace) -> None:
    user = _require_user(store, args.email)
    tokens = store.delete_access_tokens_for_user(user.id)
    sessions = store.delete_sessions_for_user(user.id)
    print(f"  {user.email}: {tokens} device token(s) and {sessions} session(s) revoked")
    logger.info("All credentials revoked for user %d", user.id)


def cmd_prune_sessions(store: UserStore, args: argparse.Namespace) -> None:
    settings = get_settings()
    sessions = store.delete_expired_sessions()
    reset = PasswordResetService(
        store,
        CredentialStore(store),
        LoggingNotifier(),
        ResetLinkConfig.from_settings(settings),
    ).prune_expired()
    print(f"  Removed {sessions} expired session(s) and {reset} expired reset token(s)")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="batchmates-auth",
        description="Operator tools for the Batchmates auth database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user "Ana Cruz" ana@example.com --role admin
  python main.py create-user "Lee" lee@example.com --status pending --password secret123
  python main.py set-status lee@example.com active
  python main.py revoke-tokens lee@example.com
  DATABASE_URL=sqlite:////srv/auth.db python main.py prune-sessions
        """,
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL or auth/batchmates_auth.db)",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-user", help="Create an account")
    create.add_argument("name")
    create.add_argument("email")
    create.add_argument("--password", help="Password (prompted for when omitted)")
    create.add_argument("--role", choices=ROLE_NAMES, default=DEFAULT_ROLE, help=f"Role (default: {DEFAULT_ROLE})")
    create.add_argument("--status", choices=_STATUSES, default=UserStatus.active.value, help="Initial status")
    create.set_defaults(handler=cmd_create_user)

    status = sub.add_parser("set-status", help="Approve, suspend, or re-activate an account")
    status.add_argument("email")
    status.add_argument("status", choices=_STATUSES)
    status.set_defaults(handler=cmd_set_status)

    role = sub.add_parser("assign-role", help="Grant a role to an account")
    role.add_argument("email")
    role.add_argument("role", choices=ROLE_NAMES)
    role.set_defaults(handler=cmd_assign_role)

    revoke = sub.add_parser("revoke-tokens", help="Sign an account out of every device and browser")
    revoke.add_argument("email")
    revoke.set_defaults(handler=cmd_revoke_tokens)

    prune = sub.add_parser("prune-sessions", help="Delete expired sessions and password-reset tokens")
    prune.set_defaults(handler=cmd_prune_sessions)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "handler", None):
        parser.print_help()
        return 1

    store = UserStore(db_url=args.database_url)
    try:
        args.handler(store, args)
    except AuthError as exc:
        detail = "; ".join(m for msgs in (exc.errors or {}).values() for m in msgs)
        print(f"  [!] {exc.message}" + (f" ({detail})" if detail and detail != exc.message else ""))
        return 1
    except LookupError as exc:
        print(f"  [!] {exc}")
        return 1
    finally:
        store.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
