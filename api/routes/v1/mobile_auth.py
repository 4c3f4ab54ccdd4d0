"""
api/routes/v1/mobile_auth.py -- Bearer-token authentication for the mobile apps.

Routes:
  POST   /api/v1/mobile/auth/register      -- create account + first device token; 201
  POST   /api/v1/mobile/auth/login         -- new token for this device (rate limited)
  GET    /api/v1/mobile/auth/me            -- current user with roles and permissions
  POST   /api/v1/mobile/auth/logout        -- revoke the token used for this request
  POST   /api/v1/mobile/auth/logout-all    -- revoke every token the user owns
  GET    /api/v1/mobile/auth/devices       -- list device tokens, newest first
  DELETE /api/v1/mobile/auth/devices/{id}  -- revoke one of the caller's tokens

Security:
  The plaintext token appears in the register/login response body only.
  DELETE /devices/{id} reports another user's token as 404, same as a
  missing one.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import MobileLogin, MobileRegister
from api.responses import envelope_response
from auth.dependencies import MobileIdentity, get_gateway, get_mobile_identity
from auth.gateway import AuthGateway

# Auth policy:
# - POST   /register, /login:          public
# - everything else:                   bearer token (or web session -> Ephemeral)
router = APIRouter(prefix="/mobile/auth")


@router.post("/register", status_code=201)
def register(body: MobileRegister, gateway: AuthGateway = Depends(get_gateway)) -> JSONResponse:
    """Create an account, assign its role, and mint the first device token."""
    return envelope_response(
        gateway.mobile_register(
            body.name,
            body.email,
            body.password,
            body.password_confirmation,
            body.device_name,
            role=body.role,
            device_token=body.device_token,
        )
    )


@limiter.limit(login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/login")
def login(request: Request, body: MobileLogin) -> JSONResponse:
    """Authenticate and mint a token for this device.

    Tokens on the user's other devices are left alone.
    """
    gateway = get_gateway(request)
    return envelope_response(gateway.mobile_login(body.email, body.password, body.device_name, body.device_token))


@router.get("/me")
def me(
    identity: MobileIdentity = Depends(get_mobile_identity),
    gateway: AuthGateway = Depends(get_gateway),
) -> JSONResponse:
    return envelope_response(gateway.me(identity.user))


@router.post("/logout")
def logout(
    identity: MobileIdentity = Depends(get_mobile_identity),
    gateway: AuthGateway = Depends(get_gateway),
) -> JSONResponse:
    return envelope_response(gateway.mobile_logout(identity.artifact))


@router.post("/logout-all")
def logout_all(
    identity: MobileIdentity = Depends(get_mobile_identity),
    gateway: AuthGateway = Depends(get_gateway),
) -> JSONResponse:
    return envelope_response(gateway.mobile_logout_all(identity.user))


@router.get("/devices")
def devices(
    identity: MobileIdentity = Depends(get_mobile_identity),
    gateway: AuthGateway = Depends(get_gateway),
) -> JSONResponse:
    return envelope_response(gateway.list_devices(identity.user))


@router.delete("/devices/{token_id}")
def revoke_device(
    token_id: int,
    identity: MobileIdentity = Depends(get_mobile_identity),
    gateway: AuthGateway = Depends(get_gateway),
) -> JSONResponse:
    return envelope_response(gateway.revoke_device(identity.user, token_id))
