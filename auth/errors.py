"""
auth/errors.py -- Domain error taxonomy for the auth subsystem.

Every failure an auth operation can report is an AuthError subclass carrying
the HTTP-equivalent status, a machine-readable code, a human message, and
optional field-level errors. The gateway converts these into the uniform
response envelope; nothing here is fatal to the process.

Layer rule: no imports from api/. Status codes are plain ints so auth/ does
not depend on the web framework.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for per-request auth failures."""

    status_code: int = 400
    code: str = "auth_error"
    default_message: str = "Authentication error."

    def __init__(self, message: str | None = None, errors: dict[str, list[str]] | None = None) -> None:
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)


class ValidationError(AuthError):
    """Missing or malformed input. errors maps field name -> messages."""

    status_code = 422
    code = "validation_error"
    default_message = "The given data was invalid."

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, errors={field: [message]})


class DuplicateEmail(ValidationError):
    code = "duplicate_email"
    default_message = "The email has already been taken."

    def __init__(self, message: str | None = None, errors: dict[str, list[str]] | None = None) -> None:
        message = message or self.default_message
        super().__init__(message, errors or {"email": [message]})


class UnknownRole(ValidationError):
    code = "unknown_role"
    default_message = "The selected role is invalid."

    def __init__(self, role_name: str) -> None:
        self.role_name = role_name
        super().__init__(self.default_message, {"role": [self.default_message]})


class UnknownPermission(ValidationError):
    code = "unknown_permission"
    default_message = "The selected permission is invalid."

    def __init__(self, permission_name: str) -> None:
        self.permission_name = permission_name
        super().__init__(self.default_message, {"permission": [self.default_message]})


class InvalidCredentials(AuthError):
    """Wrong email or wrong password. The two cases share one message."""

    status_code = 401
    code = "invalid_credentials"
    default_message = "The provided credentials are incorrect."

    def __init__(self) -> None:
        super().__init__(self.default_message, {"email": [self.default_message]})


class AccountGated(AuthError):
    """Credentials were correct but the account status is not active."""

    status_code = 403
    code = "account_gated"
    default_message = "Your account is suspended or pending approval"

    def __init__(self, status: str | None = None) -> None:
        self.status = status
        super().__init__(self.default_message)


class Unauthenticated(AuthError):
    status_code = 401
    code = "unauthenticated"
    default_message = "Unauthenticated."


class NotFound(AuthError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found."


class CsrfMismatch(AuthError):
    status_code = 419
    code = "csrf_mismatch"
    default_message = "CSRF token mismatch."


class InvalidResetToken(ValidationError):
    code = "invalid_reset_token"
    default_message = "This password reset token is invalid or has expired."

    def __init__(self) -> None:
        super().__init__(self.default_message, {"email": [self.default_message]})
