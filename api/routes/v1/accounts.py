"""
api/routes/v1/accounts.py -- Account administration endpoints.

Routes:
  GET   /api/v1/accounts               -- list accounts (permission users:read)
  GET   /api/v1/accounts/{id}          -- one account (owner or admin)
  PATCH /api/v1/accounts/{id}/status   -- suspend / ban / reactivate (admin)
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from api.models import AccountResponse, StatusPatch
from auth.dependencies import check_ownership, get_current_account, require_permissions, require_roles
from auth.errors import NotFound
from auth.models import Principal, RoleName
from auth.store import AccountStore

logger = logging.getLogger("eatfast.api")

router = APIRouter()


def _store(request: Request) -> AccountStore:
    return request.app.state.account_store


@router.get("/accounts", response_model=list[AccountResponse])
def list_accounts(
    request: Request,
    principal: Principal = Depends(require_permissions("users:read")),
) -> list[AccountResponse]:
    return [AccountResponse.from_account(a) for a in _store(request).list_accounts()]


@router.get("/accounts/{account_id}", response_model=AccountResponse)
def get_account(
    account_id: str,
    request: Request,
    principal: Principal = Depends(get_current_account),
) -> AccountResponse:
    # Ownership first so a non-admin cannot probe which ids exist.
    check_ownership(principal, account_id)
    account = _store(request).get_by_id(account_id)
    if account is None:
        raise NotFound("User not found")
    return AccountResponse.from_account(account)


@router.patch("/accounts/{account_id}/status", response_model=AccountResponse)
def update_status(
    account_id: str,
    body: StatusPatch,
    request: Request,
    principal: Principal = Depends(require_roles(RoleName.admin)),
) -> AccountResponse:
    """Change an account's lifecycle status.

    Takes effect on the account's next request: the guard reloads the
    account every time, so outstanding access tokens stop working.
    """
    store = _store(request)
    if not store.update_status(account_id, body.status):
        raise NotFound("User not found")
    logger.info("Account %s status set to %s by %s", account_id, body.status.value, principal.id)
    return AccountResponse.from_account(store.get_by_id(account_id))
