"""
tests/test_api_accounts.py -- Integration tests for the access guard and the
account administration endpoints.

Coverage:
  - permission check (users:read) with the admin "*" wildcard
  - ownership check on GET /accounts/{id}
  - role check on PATCH /accounts/{id}/status
  - suspension takes effect on the next request with an unexpired token
"""

from __future__ import annotations

from conftest import bearer


def test_customer_cannot_list_accounts(api):
    _, token = api.register_and_verify("nosy@example.com")
    resp = api.client.get("/api/v1/accounts", headers=bearer(token))
    assert resp.status_code == 403
    body = resp.json()
    assert body["code"] == "INSUFFICIENT_PERMISSIONS"
    assert body["required"] == ["users:read"]


def test_admin_lists_accounts(api):
    resp = api.client.get("/api/v1/accounts", headers=bearer(api.admin_token))
    assert resp.status_code == 200
    emails = [a["email"] for a in resp.json()]
    assert "admin@eatfast.test" in emails
    assert all("hashedPassword" not in a for a in resp.json())


def test_owner_reads_own_account(api):
    account_id, token = api.register_and_verify("owner@example.com")
    resp = api.client.get(f"/api/v1/accounts/{account_id}", headers=bearer(token))
    assert resp.status_code == 200
    assert resp.json()["id"] == account_id


def test_customer_cannot_read_other_account(api):
    _, token = api.register_and_verify("peeker@example.com")
    resp = api.client.get(f"/api/v1/accounts/{api.admin_id}", headers=bearer(token))
    assert resp.status_code == 403
    assert resp.json()["code"] == "RESOURCE_ACCESS_DENIED"


def test_admin_reads_any_account_and_gets_404(api):
    account_id, _ = api.register_and_verify("target@example.com")
    resp = api.client.get(f"/api/v1/accounts/{account_id}", headers=bearer(api.admin_token))
    assert resp.status_code == 200
    resp = api.client.get("/api/v1/accounts/does-not-exist", headers=bearer(api.admin_token))
    assert resp.status_code == 404


def test_customer_cannot_change_status(api):
    account_id, token = api.register_and_verify("self-ban@example.com")
    resp = api.client.patch(
        f"/api/v1/accounts/{account_id}/status", json={"status": "active"}, headers=bearer(token)
    )
    assert resp.status_code == 403
    body = resp.json()
    assert body["required"] == ["admin"]
    assert body["current"] == "customer"


def test_suspension_blocks_outstanding_token(api):
    account_id, token = api.register_and_verify("suspend@example.com")
    assert api.client.get("/api/v1/auth/me", headers=bearer(token)).status_code == 200
    resp = api.client.patch(
        f"/api/v1/accounts/{account_id}/status", json={"status": "suspended"}, headers=bearer(api.admin_token)
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "suspended"
    resp = api.client.get("/api/v1/auth/me", headers=bearer(token))
    assert resp.status_code == 401
    assert resp.json()["code"] == "ACCOUNT_INACTIVE"


def test_invalid_status_value(api):
    account_id, _ = api.register_and_verify("badstatus@example.com")
    resp = api.client.patch(
        f"/api/v1/accounts/{account_id}/status", json={"status": "deleted"}, headers=bearer(api.admin_token)
    )
    assert resp.status_code == 422


def test_status_patch_unknown_account(api):
    resp = api.client.patch(
        "/api/v1/accounts/missing/status", json={"status": "banned"}, headers=bearer(api.admin_token)
    )
    assert resp.status_code == 404
    assert resp.json()["code"] == "NOT_FOUND"
