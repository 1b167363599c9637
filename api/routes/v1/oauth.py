"""
api/routes/v1/oauth.py -- Google sign-in and account linking endpoints.

Routes:
  GET    /api/v1/auth/google/init       -- consent URL + single-use state nonce
  GET    /api/v1/auth/google/roles      -- roles a Google sign-up may pick
  POST   /api/v1/auth/google/callback   -- finish sign-in / sign-up; sets refresh cookie
  POST   /api/v1/auth/google/link       -- attach Google to the signed-in account
  DELETE /api/v1/auth/google/unlink     -- detach Google (requires a password)

The frontend owns the redirect: Google sends the browser back to the client
app, which posts {code, state} here. No server-side session is involved; the
state nonce lives in the secret store and is deleted on first use.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import MODERATE_LIMIT, STRICT_LIMIT, limiter
from api.models import (
    AccountResponse,
    MessageResponse,
    OAuthCallbackRequest,
    OAuthCallbackResponse,
    OAuthInitResponse,
    OAuthLinkRequest,
    RoleResponse,
)
from auth.dependencies import get_current_account
from auth.flows import OAuthFlow
from auth.models import Principal
from auth.tokens import set_refresh_cookie

router = APIRouter()


def _flow(request: Request) -> OAuthFlow:
    return request.app.state.oauth_flow


@limiter.limit(MODERATE_LIMIT)
@router.get("/auth/google/init", response_model=OAuthInitResponse)
async def google_init(request: Request) -> OAuthInitResponse:
    ip = request.client.host if request.client else "unknown"
    result = await _flow(request).initiate(ip)
    return OAuthInitResponse(auth_url=result.auth_url, state=result.state)


@router.get("/auth/google/roles", response_model=list[RoleResponse])
async def google_roles(request: Request) -> list[RoleResponse]:
    roles = await _flow(request).available_roles()
    return [RoleResponse.from_role(r) for r in roles]


@limiter.limit(STRICT_LIMIT)
@router.post("/auth/google/callback", response_model=OAuthCallbackResponse)
async def google_callback(request: Request, body: OAuthCallbackRequest, response: Response) -> OAuthCallbackResponse:
    """Exchange the authorization code and sign the user in.

    role only matters when the callback creates a new account.
    """
    result = await _flow(request).complete_callback(body.code, body.state, body.role)
    set_refresh_cookie(response, result.tokens.refresh_token, request.app.state.settings)
    response.headers["Cache-Control"] = "no-store"
    return OAuthCallbackResponse(
        user=AccountResponse.from_account(result.account),
        access_token=result.tokens.access_token,
        expires_in=result.tokens.expires_in,
        redirect_url=result.redirect_url,
        is_new_user=result.is_new_user,
        message="Registration successful" if result.is_new_user else "Login successful",
    )


@limiter.limit(STRICT_LIMIT)
@router.post("/auth/google/link", response_model=AccountResponse)
async def google_link(
    request: Request,
    body: OAuthLinkRequest,
    principal: Principal = Depends(get_current_account),
) -> AccountResponse:
    account = await _flow(request).link_account(principal.id, body.code, body.state)
    return AccountResponse.from_account(account)


@router.delete("/auth/google/unlink", response_model=MessageResponse)
async def google_unlink(request: Request, principal: Principal = Depends(get_current_account)) -> MessageResponse:
    await _flow(request).unlink_account(principal.id)
    return MessageResponse(message="Google account unlinked successfully")
