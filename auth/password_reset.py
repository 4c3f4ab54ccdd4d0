"""
auth/password_reset.py -- Forgot-password / reset-password flow.

One outstanding token per email. The token is 40 random characters, stored
as HMAC-SHA256(SECRET_KEY, token) and handed to the notifier inside a URL.
Issuing a new token replaces the previous one; a successful reset deletes it.

Link shape comes from the ResetLinkConfig injected at construction, never
from global settings:
  deep link enabled   -> <scheme>://reset-password?token=...&email=...
  otherwise           -> <frontend_url>/reset-password?token=...&email=...

request_reset() reports nothing about whether the email exists. The route
returns the same message in both cases.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

from auth.credentials import CredentialStore, normalize_email
from auth.errors import InvalidResetToken
from auth.notifications import BaseNotifier, ResetPasswordMessage
from auth.store import UserStore
from auth.tokens import generate_secret, hash_secret, secrets_match
from core.config import ResetLinkConfig

logger = logging.getLogger("batchmates.auth.reset")

RESET_LINK_SENT = "If that email exists, a password reset link has been sent"
PASSWORD_RESET = "Password has been reset successfully"


class PasswordResetService:
    def __init__(
        self,
        store: UserStore,
        credentials: CredentialStore,
        notifier: BaseNotifier,
        link_config: ResetLinkConfig,
    ) -> None:
        self.store = store
        self.credentials = credentials
        self.notifier = notifier
        self.link_config = link_config

    @property
    def lifetime(self) -> timedelta:
        return timedelta(minutes=self.link_config.expire_minutes)

    def build_reset_url(self, token: str, email: str) -> str:
        query = urlencode({"token": token, "email": email})
        if self.link_config.mobile_deep_link_enabled:
            return f"{self.link_config.mobile_app_scheme}://reset-password?{query}"
        return f"{self.link_config.frontend_url}/reset-password?{query}"

    def request_reset(self, email: str) -> bool:
        """Issue and deliver a reset token if the account exists.

        Returns True when a message was handed to the notifier. Callers must
        not surface the return value to the client.
        """
        email = normalize_email(email)
        user = self.store.get_by_email(email)
        if user is None:
            logger.info("Password reset requested for unknown email")
            return False
        token = generate_secret()
        self.store.put_reset_token(email, hash_secret(token))
        message = ResetPasswordMessage(
            recipient=user.email,
            name=user.name,
            url=self.build_reset_url(token, user.email),
            expire_minutes=self.link_config.expire_minutes,
        )
        if not self.notifier.send_reset_link(message):
            logger.warning("Reset link for user %d could not be delivered", user.id)
            return False
        logger.info("Password reset token issued for user %d", user.id)
        return True

    def verify_token(self, email: str, token: str) -> bool:
        """True if the token matches the outstanding one for email and has not expired."""
        record = self.store.get_reset_token(normalize_email(email))
        if record is None:
            return False
        if not secrets_match(hash_secret(token), record.token_hash):
            return False
        issued = datetime.fromisoformat(record.created_at)
        return issued + self.lifetime > datetime.now(timezone.utc)

    def reset_password(self, email: str, token: str, password: str, password_confirmation: str | None) -> None:
        """Set a new password and consume the token.

        Password rules are checked first so a typo in the confirmation does
        not burn the token. Raises ValidationError or InvalidResetToken.
        """
        self.credentials.validate_password(password, password_confirmation)
        email = normalize_email(email)
        user = self.store.get_by_email(email)
        if user is None or not self.verify_token(email, token):
            raise InvalidResetToken()
        self.credentials.set_password(user.id, password, password_confirmation)
        self.store.delete_reset_token(email)
        logger.info("Password reset completed for user %d", user.id)

    def prune_expired(self) -> int:
        cutoff = (datetime.now(timezone.utc) - self.lifetime).isoformat()
        return self.store.delete_reset_tokens_before(cutoff)
