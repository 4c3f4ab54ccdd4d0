"""
API request and response models for the Batchmates auth endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers pass validated fields
through to the AuthGateway.

Request models reject missing or malformed fields before the store is
touched. Password length and confirmation rules live in CredentialStore
because the minimum is configurable; here a password only has to be present
and short enough that bcrypt does not truncate it.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# bcrypt only looks at the first 72 bytes.
PASSWORD_MAX_LENGTH = 72

# Roles a client may pick for itself at registration, per channel. The
# resolver enforces the full recognized set independently of these.
MobileRole = Literal["donor", "institution", "student"]
WebRole = Literal["donor", "institution", "student", "admin"]


# ---------------------------------------------------------------------------
# Request models -- mobile channel
# ---------------------------------------------------------------------------


class _Credentials(BaseModel):
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)


class _Registration(_Credentials):
    name: str = Field(min_length=1, max_length=255)
    password_confirmation: Optional[str] = Field(default=None, max_length=PASSWORD_MAX_LENGTH)


class MobileRegister(_Registration):
    """Request body for POST /api/v1/mobile/auth/register."""

    device_name: str = Field(min_length=1, max_length=255)
    device_token: Optional[str] = Field(default=None, max_length=512)
    role: Optional[MobileRole] = None


class MobileLogin(_Credentials):
    """Request body for POST /api/v1/mobile/auth/login."""

    device_name: str = Field(min_length=1, max_length=255)
    device_token: Optional[str] = Field(default=None, max_length=512)


# ---------------------------------------------------------------------------
# Request models -- web channel
# ---------------------------------------------------------------------------


class WebRegister(_Registration):
    """Request body for POST /api/v1/web/auth/register."""

    role: Optional[WebRole] = None


class WebLogin(_Credentials):
    """Request body for POST /api/v1/web/auth/login."""


# ---------------------------------------------------------------------------
# Request models -- password reset
# ---------------------------------------------------------------------------


class ForgotPassword(BaseModel):
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)


class VerifyResetToken(ForgotPassword):
    token: str = Field(min_length=1, max_length=255)


class ResetPassword(VerifyResetToken):
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)
    password_confirmation: Optional[str] = Field(default=None, max_length=PASSWORD_MAX_LENGTH)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
