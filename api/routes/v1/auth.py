"""
api/routes/v1/auth.py -- Password authentication REST endpoints.

Routes:
  POST /api/v1/auth/register          -- create pending account, email code (201)
  POST /api/v1/auth/login             -- check password, email login code
  POST /api/v1/auth/verify-2fa        -- exchange code for tokens; sets refresh cookie
  POST /api/v1/auth/resend-2fa        -- replace and re-send the code
  POST /api/v1/auth/refresh           -- new access token from refresh cookie/body
  POST /api/v1/auth/logout            -- clear cookies and ephemeral state
  POST /api/v1/auth/forgot-password   -- email a reset link (generic response)
  POST /api/v1/auth/reset-password    -- consume reset token, set new password
  GET  /api/v1/auth/me                -- current account (requires auth)

Security:
  [H2] Credential endpoints are rate-limited per IP (STRICT_LIMIT); reset and
       resend endpoints use MODERATE_LIMIT.
  [C1] The login flow equalizes timing for unknown emails -- never inline a
       lookup + verify here.
  [M5] Cache-Control: no-store on every response carrying a token.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import MODERATE_LIMIT, STRICT_LIMIT, limiter
from api.models import (
    AccountResponse,
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    RegisterResponse,
    ResendTwoFactorRequest,
    ResetPasswordRequest,
    TokenResponse,
    VerifyTwoFactorRequest,
)
from auth.dependencies import get_current_account, try_get_current_account
from auth.errors import RefreshTokenMissing
from auth.flows import PasswordAuthFlow
from auth.models import Principal
from auth.tokens import REFRESH_COOKIE, clear_auth_cookies, set_refresh_cookie

# Auth policy:
# - register / login / verify-2fa / resend-2fa / forgot / reset: public
# - refresh: public, authenticated by the refresh token itself
# - logout: optional auth -- clearing cookies must work with an expired token
# - me: requires auth (get_current_account)
router = APIRouter()


def _flow(request: Request) -> PasswordAuthFlow:
    return request.app.state.password_flow


# ---------------------------------------------------------------------------
# Registration and login
# ---------------------------------------------------------------------------


@limiter.limit(STRICT_LIMIT)  # [H2]
@router.post("/auth/register", response_model=RegisterResponse, status_code=201)
async def register(request: Request, body: RegisterRequest) -> RegisterResponse:
    """Create a pending account and email its verification code."""
    result = await _flow(request).register(
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        phone=body.phone,
        user_type=body.role,
    )
    return RegisterResponse(account_id=result.account_id, message=result.message)


@limiter.limit(STRICT_LIMIT)  # [H2]
@router.post("/auth/login", response_model=LoginResponse)
async def login(request: Request, body: LoginRequest, response: Response) -> LoginResponse:
    """Verify email + password and send a login code. No tokens yet.

    Unknown email and wrong password return the same INVALID_CREDENTIALS
    error so the endpoint cannot be used to enumerate accounts.
    """
    result = await _flow(request).login(body.email, body.password)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return LoginResponse(
        account_id=result.account_id,
        requires_two_factor=result.requires_two_factor,
        message=result.message,
    )


@limiter.limit(STRICT_LIMIT)  # [H2]
@router.post("/auth/verify-2fa", response_model=TokenResponse)
async def verify_two_factor(request: Request, body: VerifyTwoFactorRequest, response: Response) -> TokenResponse:
    """Exchange the emailed code for tokens.

    The access token is returned in the body for the Authorization header;
    the refresh token only travels as an httpOnly cookie.
    """
    result = await _flow(request).verify_two_factor(body.account_id, body.code)
    set_refresh_cookie(response, result.tokens.refresh_token, request.app.state.settings)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return TokenResponse(
        user=AccountResponse.from_account(result.account),
        access_token=result.tokens.access_token,
        expires_in=result.tokens.expires_in,
    )


@limiter.limit(MODERATE_LIMIT)
@router.post("/auth/resend-2fa", response_model=MessageResponse)
async def resend_two_factor(request: Request, body: ResendTwoFactorRequest) -> MessageResponse:
    await _flow(request).resend_two_factor(body.account_id)
    return MessageResponse(message="Verification code sent")


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------


@router.post("/auth/refresh", response_model=RefreshResponse)
async def refresh(
    request: Request,
    response: Response,
    body: Optional[RefreshRequest] = None,
) -> RefreshResponse:
    """Issue a new access token from the refresh cookie (or body fallback).

    The refresh cookie is re-set with a newly signed token so its lifetime
    slides forward with activity.
    """
    token = request.cookies.get(REFRESH_COOKIE) or (body.refresh_token if body else None)
    if not token:
        raise RefreshTokenMissing()
    result = await _flow(request).refresh(token)
    set_refresh_cookie(response, result.tokens.refresh_token, request.app.state.settings)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return RefreshResponse(access_token=result.tokens.access_token, expires_in=result.tokens.expires_in)


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    response: Response,
    principal: Optional[Principal] = Depends(try_get_current_account),
) -> MessageResponse:
    """Clear auth cookies and any pending code. Always succeeds."""
    if principal is not None:
        await _flow(request).logout(principal.id)
    clear_auth_cookies(response)
    return MessageResponse(message="Logged out successfully")


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@limiter.limit(MODERATE_LIMIT)
@router.post("/auth/forgot-password", response_model=MessageResponse)
async def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Send a reset link. The response is identical whether or not the email exists."""
    await _flow(request).forgot_password(body.email)
    return MessageResponse(message="Password reset email sent if account exists")


@limiter.limit(MODERATE_LIMIT)
@router.post("/auth/reset-password", response_model=MessageResponse)
async def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    await _flow(request).reset_password(body.token, body.new_password)
    return MessageResponse(message="Password reset successful")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=AccountResponse)
async def me(principal: Principal = Depends(get_current_account)) -> AccountResponse:
    """Return the currently authenticated account."""
    return AccountResponse.from_account(principal.account)
