"""
auth/dependencies.py -- FastAPI Depends() helpers forming the access guard.

Per request the guard walks:

  Unauthenticated -> TokenPresent -> TokenValid -> AccountActive
      -> RoleAuthorized -> PermissionAuthorized -> Admitted

and any failed step raises the matching AuthError, so the route body never
runs. The token comes from the Authorization: Bearer header only -- the
refresh cookie is never accepted as an access credential.

try_get_current_account() is the optional variant (returns None on failure).
get_current_account() raises 401-class errors.
require_roles() / require_permissions() add the 403 checks.
check_ownership() is called inside handlers once the resource owner is known.

Role and permissions are loaded from the database on every request, so a
role change or suspension takes effect before the access token expires.

Layer rule: no imports from api/. fastapi is allowed because this module is
part of the dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

from fastapi import Depends, Request

from auth.errors import (
    AccountInactive,
    AccountLocked,
    AuthenticationRequired,
    AuthError,
    InsufficientPermissions,
    ResourceAccessDenied,
    TokenInvalid,
)
from auth.models import AccountStatus, Principal, RoleName
from auth.store import AccountStore
from auth.tokens import TokenIssuer, TokenKind


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_current_account(request: Request) -> Principal:
    """Require a valid bearer token for an active, unlocked account.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(principal: Principal = Depends(get_current_account)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise AuthenticationRequired()

    issuer: TokenIssuer = request.app.state.token_issuer
    claims = issuer.verify(token, TokenKind.access)

    store: AccountStore = request.app.state.account_store
    account = store.get_by_id(claims["accountId"])
    if account is None:
        raise TokenInvalid("User not found")
    if account.status != AccountStatus.active:
        raise AccountInactive()
    if account.is_locked(datetime.now(timezone.utc)):
        raise AccountLocked()

    return Principal(
        account=account,
        role=account.role_name,
        permissions=list(account.role.permissions) if account.role else [],
    )


def try_get_current_account(request: Request) -> Principal | None:
    """Optional authentication. Never raises an auth error.

    Returns None for a missing, expired or invalid token, or an inactive
    account; the request proceeds anonymously.
    """
    if _bearer_token(request) is None:
        return None
    try:
        return get_current_account(request)
    except AuthError:
        return None


def require_roles(*roles: RoleName | str) -> Callable[..., Principal]:
    """Build a dependency admitting only principals holding one of roles."""
    allowed = [r.value if isinstance(r, RoleName) else r for r in roles]

    def dependency(principal: Principal = Depends(get_current_account)) -> Principal:
        if principal.role not in allowed:
            raise InsufficientPermissions(required=allowed, current=principal.role)
        return principal

    return dependency


def require_permissions(*permissions: str) -> Callable[..., Principal]:
    """Build a dependency admitting principals holding ANY of permissions.

    The "*" permission (administrators) satisfies every check.
    """
    wanted = list(permissions)

    def dependency(principal: Principal = Depends(get_current_account)) -> Principal:
        if not principal.has_permission(*wanted):
            raise InsufficientPermissions(required=wanted, current=principal.permissions)
        return principal

    return dependency


def check_ownership(principal: Principal, owner_id: str | None) -> None:
    """Raise ResourceAccessDenied unless principal owns the resource or is admin."""
    if principal.role == RoleName.admin.value:
        return
    if owner_id is None or owner_id != principal.id:
        raise ResourceAccessDenied()
