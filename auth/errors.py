"""
auth/errors.py -- Closed error taxonomy for the authentication flows.

Every failure a flow can report is one of the AuthError subclasses below.
Each carries a stable machine-readable code and the HTTP status the API layer
should use; api/main.py renders them as {"error": message, "code": code}.

Message policy:
  Credential and lockout errors are intentionally vague (no account
  enumeration, no brute-force feedback). Token and permission errors are
  intentionally specific so legitimate clients can recover (silent refresh
  vs. forced re-login, missing role vs. missing permission).

Layer rule: no imports from api/. cache/ is allowed (SecretStoreError).
"""

from __future__ import annotations

import functools
import logging

from sqlalchemy.exc import SQLAlchemyError

from cache.store import SecretStoreError

logger = logging.getLogger("eatfast.auth")


class AuthError(Exception):
    """Base class for every error a flow step reports to its caller."""

    code: str = "AUTH_ERROR"
    status_code: int = 400
    message: str = "Authentication failed"

    def __init__(self, message: str | None = None, **extra) -> None:
        self.message = message or self.message
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        body.update(self.extra)
        return body


class ValidationFailed(AuthError):
    code = "VALIDATION_FAILED"
    message = "Validation failed"


class DuplicateAccount(AuthError):
    code = "USER_EXISTS"
    message = "User already exists"


class InvalidCredentials(AuthError):
    code = "INVALID_CREDENTIALS"
    status_code = 401
    message = "Invalid credentials"


class AccountLocked(AuthError):
    code = "ACCOUNT_LOCKED"
    status_code = 401
    message = "Account is temporarily locked"


class AccountInactive(AuthError):
    code = "ACCOUNT_INACTIVE"
    status_code = 401
    message = "Account is not active"


class InvalidCode(AuthError):
    code = "INVALID_CODE"
    message = "Invalid verification code"


class InvalidOrExpiredState(AuthError):
    code = "INVALID_STATE"
    message = "Invalid or expired state parameter"


class OAuthVerificationFailed(AuthError):
    code = "OAUTH_CALLBACK_FAILED"
    status_code = 500
    message = "OAuth authentication failed"


class InvalidRole(AuthError):
    code = "INVALID_ROLE"
    message = "Invalid role"


class AccountAlreadyLinked(AuthError):
    code = "GOOGLE_ACCOUNT_ALREADY_LINKED"
    message = "This Google account is already linked to another user"


class LastCredential(AuthError):
    code = "LAST_CREDENTIAL"
    message = "Set a password before unlinking your Google account"


class AuthenticationRequired(AuthError):
    code = "NO_TOKEN"
    status_code = 401
    message = "Access token required"


class RefreshTokenMissing(AuthenticationRequired):
    code = "NO_REFRESH_TOKEN"
    message = "Refresh token required"


class TokenExpired(AuthError):
    code = "TOKEN_EXPIRED"
    status_code = 401
    message = "Token expired"


class TokenInvalid(AuthError):
    code = "INVALID_TOKEN"
    status_code = 401
    message = "Invalid token"


class InsufficientPermissions(AuthError):
    code = "INSUFFICIENT_PERMISSIONS"
    status_code = 403
    message = "Insufficient permissions"


class ResourceAccessDenied(AuthError):
    code = "RESOURCE_ACCESS_DENIED"
    status_code = 403
    message = "Access denied to this resource"


class NotFound(AuthError):
    code = "NOT_FOUND"
    status_code = 404
    message = "Not found"


class ServiceUnavailable(AuthError):
    code = "INTERNAL_ERROR"
    status_code = 500
    message = "Internal server error"


def flow_boundary(func):
    """Map datastore and secret-store failures to ServiceUnavailable.

    Wraps an async flow step. AuthError subclasses pass through untouched;
    SQLAlchemy and secret-store failures are logged with traceback and
    re-raised as ServiceUnavailable so no driver exception reaches a client.
    """

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except (SQLAlchemyError, SecretStoreError) as exc:
            logger.exception("Backend failure in %s", func.__qualname__)
            raise ServiceUnavailable() from exc

    return wrapper
