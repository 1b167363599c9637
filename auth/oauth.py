"""
auth/oauth.py -- Google OAuth 2.0 / OIDC client built on Authlib.

The API is consumed by a single-page frontend, so the authorization redirect
and the callback are split across two JSON calls:

  1. GET  /auth/google/init      -- we mint the state nonce, persist it in the
     secret store, and return the provider URL built here.
  2. POST /auth/google/callback  -- the frontend posts back code + state; the
     flow consumes the state, then exchange_code() trades the code for tokens
     and reads the userinfo endpoint.

State is therefore NOT kept in a Starlette session; the flow owns it through
the ephemeral secret store so any API instance can complete the callback.

Security notes:
  [H1] Email verification is mandatory. exchange_code() refuses an identity
       whose email the provider has not verified -- an unverified address
       could belong to someone else, and the callback links accounts by email.

Layer rule: no imports from api/ or cache/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging

import httpx
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.httpx_client import AsyncOAuth2Client

from auth.errors import OAuthVerificationFailed
from auth.models import ExternalIdentity
from core.config import Settings

logger = logging.getLogger("eatfast.auth.oauth")

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"  # noqa: S105 -- URL, not a password
GOOGLE_USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"
GOOGLE_SCOPES = "openid email profile"


class GoogleIdentityProvider:
    """Builds authorization URLs and exchanges codes for an ExternalIdentity."""

    name = "google"

    def __init__(self, client_id: str, client_secret: str, redirect_uri: str, timeout: float = 10.0) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> GoogleIdentityProvider:
        provider = cls(settings.google_client_id, settings.google_client_secret, settings.google_redirect_uri)
        if provider.enabled:
            logger.info("Google OAuth provider registered")
        return provider

    @property
    def enabled(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def _client(self) -> AsyncOAuth2Client:
        return AsyncOAuth2Client(
            client_id=self.client_id,
            client_secret=self.client_secret,
            scope=GOOGLE_SCOPES,
            redirect_uri=self.redirect_uri,
            timeout=self.timeout,
        )

    def authorization_url(self, state: str) -> str:
        """Return the consent-screen URL carrying our state nonce.

        access_type=offline asks Google for a refresh token; prompt=consent
        makes Google re-issue it even for returning users.
        """
        client = self._client()
        url, _ = client.create_authorization_url(
            GOOGLE_AUTHORIZE_URL,
            state=state,
            access_type="offline",
            prompt="consent",
        )
        return url

    async def exchange_code(self, code: str) -> ExternalIdentity:
        """Trade an authorization code for the caller's verified identity.

        Raises:
            OAuthVerificationFailed: token exchange or userinfo call failed,
                or the provider did not vouch for the email [H1].
        """
        try:
            async with self._client() as client:
                await client.fetch_token(GOOGLE_TOKEN_URL, code=code)
                resp = await client.get(GOOGLE_USERINFO_URL)
                resp.raise_for_status()
                userinfo = resp.json()
        except (AuthlibBaseError, httpx.HTTPError, ValueError) as exc:
            logger.warning("Google code exchange failed: %s", exc)
            raise OAuthVerificationFailed() from exc
        return _identity_from_userinfo(userinfo)


def _identity_from_userinfo(userinfo: dict) -> ExternalIdentity:
    """Normalize Google's userinfo claims. Enforces [H1]."""
    subject = userinfo.get("sub")
    email = userinfo.get("email")
    if not subject or not email:
        logger.warning("Google userinfo missing sub or email claim")
        raise OAuthVerificationFailed()
    if not userinfo.get("email_verified", False):
        logger.warning("Google identity %s has an unverified email", subject)
        raise OAuthVerificationFailed("Google account email is not verified")
    return ExternalIdentity(
        subject=str(subject),
        email=email,
        first_name=userinfo.get("given_name") or "",
        last_name=userinfo.get("family_name") or "",
        picture=userinfo.get("picture"),
        email_verified=True,
    )
