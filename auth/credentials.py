"""
auth/credentials.py -- Credential Store: account creation, password
verification, and the account status gate.

Every login path in both channels goes through verify() then check_status(),
in that order. verify() never reveals whether it failed on the email or the
password; check_status() is only consulted once the credentials are
proven, so a gated response confirms nothing to someone without the password.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from auth.errors import AccountGated, InvalidCredentials, ValidationError
from auth.models import AccessStatus, User, UserStatus
from auth.store import UserStore
from auth.tokens import hash_password, verify_dummy, verify_password
from core.config import get_settings

logger = logging.getLogger("batchmates.auth")


def normalize_email(email: str) -> str:
    """Canonical form used for storage and lookup."""
    return email.strip().lower()


class CredentialStore:
    """Owns the password side of a user record."""

    def __init__(self, store: UserStore, min_password_length: int | None = None) -> None:
        self.store = store
        self.min_password_length = min_password_length or get_settings().password_min_length

    def validate_password(self, password: str, confirmation: str | None) -> None:
        """Raise ValidationError (field "password") if the rules are not met."""
        messages: list[str] = []
        if len(password) < self.min_password_length:
            messages.append(f"The password must be at least {self.min_password_length} characters.")
        if confirmation is None or password != confirmation:
            messages.append("The password confirmation does not match.")
        if messages:
            raise ValidationError(messages[0], errors={"password": messages})

    def create(
        self,
        name: str,
        email: str,
        password: str,
        password_confirmation: str | None,
        status: str = UserStatus.active.value,
        role_id: int | None = None,
    ) -> User:
        """Create an account and return it.

        role_id, when given, is linked in the same transaction as the user row.

        Raises ValidationError for password rule violations and DuplicateEmail
        (via the store's unique index) when the email is already registered.
        """
        self.validate_password(password, password_confirmation)
        if status not in {s.value for s in UserStatus}:
            raise ValidationError.for_field("status", "The selected status is invalid.")
        user = User(
            name=name.strip(),
            email=normalize_email(email),
            hashed_password=hash_password(password),
            status=status,
        )
        user.id = self.store.create_user(user, role_id=role_id)
        logger.info("User %d registered", user.id)
        return self.store.get_by_id(user.id) or user

    def verify(self, email: str, password: str) -> User:
        """Return the user whose email and password match, else raise InvalidCredentials.

        Always runs bcrypt whether or not the user exists, so response time
        does not reveal which half of the pair was wrong.
        """
        user = self.store.get_by_email(normalize_email(email))
        if user is None or not user.hashed_password:
            verify_dummy(password)
            raise InvalidCredentials()
        if not verify_password(password, user.hashed_password):
            raise InvalidCredentials()
        return user

    @staticmethod
    def check_status(user: User) -> AccessStatus:
        return AccessStatus.ACTIVE if user.is_active else AccessStatus.GATED

    def authenticate(self, email: str, password: str) -> User:
        """verify() followed by the status gate. Raises AccountGated for non-active accounts."""
        user = self.verify(email, password)
        if self.check_status(user) is AccessStatus.GATED:
            logger.warning("Login refused for user %d (status=%s)", user.id, user.status)
            raise AccountGated(user.status)
        return user

    def set_password(self, user_id: int, password: str, password_confirmation: str | None) -> None:
        self.validate_password(password, password_confirmation)
        self.store.update_user(user_id, hashed_password=hash_password(password))
