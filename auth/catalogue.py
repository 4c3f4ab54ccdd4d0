"""
auth/catalogue.py -- The fixed role and permission catalogue.

UserStore seeds these rows idempotently on startup so every deployment (and
every test database) starts with the same authorization vocabulary.
"""

from __future__ import annotations

PERMISSION_NAMES: tuple[str, ...] = (
    # User management
    "view users",
    "create users",
    "edit users",
    "delete users",
    "suspend users",
    # Institution management
    "view institutions",
    "create institutions",
    "edit institutions",
    "delete institutions",
    "verify institutions",
    # Student management
    "view students",
    "create students",
    "edit students",
    "delete students",
    "approve students",
    # Donation management
    "view donations",
    "create donations",
    "refund donations",
    "view all donations",
)

ROLE_PERMISSIONS: dict[str, tuple[str, ...]] = {
    "admin": PERMISSION_NAMES,
    "system_admin": PERMISSION_NAMES,
    "donor": ("view institutions", "view students", "create donations"),
    "institution": ("view students", "create students", "edit students", "view donations"),
    "student": ("view donations",),
}
