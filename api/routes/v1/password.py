"""
api/routes/v1/password.py -- Password recovery, shared by both channels.

Routes:
  POST /api/v1/auth/forgot-password     -- issue a reset link (rate limited); always 200
  POST /api/v1/auth/verify-reset-token  -- 200 {valid: true} or 422 {valid: false}
  POST /api/v1/auth/reset-password      -- set a new password and consume the token

forgot-password answers identically whether or not the email is registered.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import ForgotPassword, ResetPassword, VerifyResetToken
from api.responses import envelope_response
from auth.dependencies import get_gateway
from auth.gateway import AuthGateway

router = APIRouter(prefix="/auth")


@limiter.limit(login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/forgot-password")
def forgot_password(request: Request, body: ForgotPassword) -> JSONResponse:
    return envelope_response(get_gateway(request).forgot_password(body.email))


@router.post("/verify-reset-token")
def verify_reset_token(body: VerifyResetToken, gateway: AuthGateway = Depends(get_gateway)) -> JSONResponse:
    return envelope_response(gateway.verify_reset_token(body.email, body.token))


@router.post("/reset-password")
def reset_password(body: ResetPassword, gateway: AuthGateway = Depends(get_gateway)) -> JSONResponse:
    return envelope_response(
        gateway.reset_password(body.email, body.token, body.password, body.password_confirmation)
    )
