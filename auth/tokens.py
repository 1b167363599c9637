"""
auth/tokens.py -- Token issuing/verification, password hashing, cookie helpers.

Security design decisions:
  JWT: python-jose with HS256. Access tokens carry accountId, email, role and
       the role's permission set; refresh tokens carry only accountId. The two
       kinds are signed with different secrets [M8], so one kind can never be
       replayed as the other.

       verify() distinguishes TokenExpired from TokenInvalid. Clients treat the
       former as "refresh silently" and the latter as "log in again".

       Expiry is checked against an injectable clock instead of jose's
       built-in wall-clock check, which lets tests age a token without sleeping.

  Passwords: argon2-cffi PasswordHasher (Argon2id). Memory-hard, so GPU
       brute-force of a leaked table is expensive. The _DUMMY_HASH constant
       enables timing equalization in the login flow: the hash is verified
       even when the email is unknown, so response time does not reveal
       whether an account exists [C1].

Layer rule: no imports from api/ or cache/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError
from jose import JWTError, jwt

from auth.errors import TokenExpired, TokenInvalid
from auth.models import TokenPair

if TYPE_CHECKING:
    from auth.models import Account
    from core.config import Settings

logger = logging.getLogger("eatfast.auth")

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing (Argon2id)
# ---------------------------------------------------------------------------

_hasher = PasswordHasher(type=Type.ID)


def hash_password(plain: str) -> str:
    """Return an Argon2id hash of the given plaintext password."""
    return _hasher.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the Argon2 hash."""
    try:
        return _hasher.verify(hashed, plain)
    except (VerificationError, InvalidHashError):
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones [C1].
_DUMMY_HASH: str = hash_password("eatfast_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Run a full hash verification against a throwaway hash [C1]."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# JWT issue / verify
# ---------------------------------------------------------------------------


class TokenKind(str, Enum):
    access = "access"
    refresh = "refresh"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenIssuer:
    """Creates and validates the signed access/refresh token pair.

    Usage:
        issuer = TokenIssuer.from_settings(get_settings())
        pair = issuer.issue(account)
        claims = issuer.verify(pair.access_token, TokenKind.access)
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl: int = 15 * 60,
        refresh_ttl: int = 7 * 24 * 60 * 60,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._secrets = {TokenKind.access: access_secret, TokenKind.refresh: refresh_secret}
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Callable[[], datetime] = _utcnow) -> TokenIssuer:
        return cls(
            access_secret=settings.secret_key,
            refresh_secret=settings.refresh_secret_key,
            access_ttl=settings.access_token_expire_seconds,
            refresh_ttl=settings.refresh_token_expire_seconds,
            clock=clock,
        )

    def _encode(self, claims: dict, kind: TokenKind, ttl: int) -> str:
        now = self.clock()
        payload = dict(claims)
        payload["iat"] = int(now.timestamp())
        payload["exp"] = int((now + timedelta(seconds=ttl)).timestamp())
        return jwt.encode(payload, self._secrets[kind], algorithm=_ALGORITHM)

    def issue(self, account: Account) -> TokenPair:
        """Sign a fresh access + refresh token pair for the account.

        account.role must be loaded -- its name and permissions become claims.
        """
        role = account.role
        access = self._encode(
            {
                "accountId": account.id,
                "email": account.email,
                "role": role.name if role else "",
                "permissions": list(role.permissions) if role else [],
            },
            TokenKind.access,
            self.access_ttl,
        )
        refresh = self._encode({"accountId": account.id}, TokenKind.refresh, self.refresh_ttl)
        return TokenPair(access_token=access, refresh_token=refresh, expires_in=self.access_ttl)

    def verify(self, token: str, kind: TokenKind = TokenKind.access) -> dict:
        """Decode and verify a token of the given kind. Returns its claims.

        Raises:
            TokenExpired: signature is valid but exp is in the past.
            TokenInvalid: bad signature, malformed token, or missing claims.
        """
        try:
            payload = jwt.decode(
                token,
                self._secrets[kind],
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise TokenInvalid() from exc
        exp = payload.get("exp")
        if not isinstance(exp, int) or "accountId" not in payload:
            raise TokenInvalid()
        if exp <= int(self.clock().timestamp()):
            raise TokenExpired()
        return payload


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------

REFRESH_COOKIE = "refreshToken"


def set_refresh_cookie(response, token: str, settings: Settings) -> None:
    """Write the refresh token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="strict": never sent on cross-site requests (CSRF mitigation).
    secure: only sent over HTTPS when SECURE_COOKIES=true (production).
    max_age: matches the refresh token lifetime.
    """
    response.set_cookie(
        REFRESH_COOKIE,
        value=token,
        httponly=True,
        samesite="strict",
        secure=settings.secure_cookies,
        max_age=settings.refresh_token_expire_seconds,
        path="/",
    )


def clear_auth_cookies(response) -> None:
    response.delete_cookie(REFRESH_COOKIE, path="/")
    response.delete_cookie("accessToken", path="/")
