"""
auth/roles.py -- Role/Permission Resolver.

Roles are coarse capability groups drawn from a fixed set; permissions are
derived through the roles a user holds, plus any granted directly. There is
no hierarchy: admin does not imply donor.

The recognized role set is enforced here, at the authorization boundary.
Request models narrow it further per channel, but a role name that slips
past them still cannot be assigned.
"""

from __future__ import annotations

import logging

from auth.errors import UnknownPermission, UnknownRole
from auth.models import DEFAULT_ROLE, ROLE_NAMES, AuthContext, Role, User
from auth.store import UserStore

logger = logging.getLogger("batchmates.auth")


class RoleResolver:
    def __init__(self, store: UserStore) -> None:
        self.store = store

    @staticmethod
    def ensure_known(role_name: str | None) -> str:
        """Return the effective role name (default donor) or raise UnknownRole."""
        name = role_name or DEFAULT_ROLE
        if name not in ROLE_NAMES:
            raise UnknownRole(name)
        return name

    def resolve_role(self, role_name: str | None = None) -> Role:
        """Return the catalogue row for a recognized role name, else raise UnknownRole."""
        name = self.ensure_known(role_name)
        role = self.store.get_role(name)
        if role is None:
            # Catalogue rows are seeded at startup; a missing row means someone deleted it.
            raise UnknownRole(name)
        return role

    def assign_role(self, user: User, role_name: str | None = None) -> str:
        """Attach a role to the user. Idempotent. Returns the role name applied."""
        role = self.resolve_role(role_name)
        name = role.name
        if self.store.attach_role(user.id, role.id):
            logger.info("Role %s assigned to user %d", name, user.id)
        return name

    def remove_role(self, user: User, role_name: str) -> bool:
        role = self.store.get_role(self.ensure_known(role_name))
        return role is not None and self.store.detach_role(user.id, role.id)

    def has_role(self, user: User, role_name: str) -> bool:
        return any(r.name == role_name for r in self.store.get_user_roles(user.id))

    def give_permission(self, user: User, permission_name: str) -> None:
        permission = self.store.get_permission(permission_name)
        if permission is None:
            raise UnknownPermission(permission_name)
        self.store.attach_permission(user.id, permission.id)

    def has_permission(self, user: User, permission_name: str) -> bool:
        return permission_name in self.load_auth_context(user).permission_names

    def load_auth_context(self, user: User) -> AuthContext:
        return AuthContext(
            roles=self.store.get_user_roles(user.id),
            permissions=self.store.get_user_permissions(user.id),
        )
