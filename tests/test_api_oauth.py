"""
tests/test_api_oauth.py -- Integration tests for the Google OAuth endpoints.

The identity provider is the FakeIdentityProvider from conftest: each test
registers the authorization code it will post, so no network call is made.
"""

from __future__ import annotations

from conftest import bearer


def _init(api) -> str:
    resp = api.client.get("/api/v1/auth/google/init")
    assert resp.status_code == 200
    return resp.json()["state"]


def _callback(api, code, state, role=None):
    body = {"code": code, "state": state}
    if role is not None:
        body["role"] = role
    return api.client.post("/api/v1/auth/google/callback", json=body)


def test_init_returns_consent_url(api):
    resp = api.client.get("/api/v1/auth/google/init")
    data = resp.json()
    assert data["authUrl"].endswith(f"state={data['state']}")
    assert len(data["state"]) == 32


def test_roles_lists_self_assignable_only(api):
    resp = api.client.get("/api/v1/auth/google/roles")
    assert resp.status_code == 200
    names = [r["name"] for r in resp.json()]
    assert names == ["customer", "delivery_person", "restaurant_owner"]


def test_new_user_sign_up(api):
    api.provider.add("new-code", "g-new", "fresh@gmail.test", first_name="Fresh", last_name="User")
    resp = _callback(api, "new-code", _init(api), role="delivery")
    assert resp.status_code == 200
    data = resp.json()
    assert data["isNewUser"] is True
    assert data["redirectUrl"] == "/delivery/dashboard"
    assert data["user"]["role"] == "delivery_person"
    assert data["user"]["provider"] == "google"
    assert data["user"]["googleLinked"] is True
    assert data["user"]["lastLogin"] is not None
    assert "refreshToken=" in resp.headers["set-cookie"]


def test_returning_user(api):
    api.provider.add("again-code", "g-again", "again@gmail.test")
    first = _callback(api, "again-code", _init(api)).json()
    second = _callback(api, "again-code", _init(api)).json()
    assert second["isNewUser"] is False
    assert second["user"]["id"] == first["user"]["id"]


def test_state_is_single_use(api):
    api.provider.add("once-code", "g-once", "once@gmail.test")
    state = _init(api)
    assert _callback(api, "once-code", state).status_code == 200
    resp = _callback(api, "once-code", state)
    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_STATE"


def test_admin_role_refused(api):
    api.provider.add("sneaky-code", "g-sneaky", "sneaky@gmail.test")
    resp = _callback(api, "sneaky-code", _init(api), role="admin")
    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_ROLE"
    assert api.store.get_by_email("sneaky@gmail.test") is None


def test_provider_failure(api):
    resp = _callback(api, "unregistered-code", _init(api))
    assert resp.status_code == 500
    assert resp.json()["code"] == "OAUTH_CALLBACK_FAILED"


def test_link_requires_authentication(api):
    resp = api.client.post("/api/v1/auth/google/link", json={"code": "x", "state": "y"})
    assert resp.status_code == 401


def test_link_conflict(api):
    api.provider.add("taken-code", "g-taken", "taken@gmail.test")
    _callback(api, "taken-code", _init(api))
    _, token = api.register_and_verify("linker@example.com")
    resp = api.client.post(
        "/api/v1/auth/google/link",
        json={"code": "taken-code", "state": _init(api)},
        headers=bearer(token),
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "GOOGLE_ACCOUNT_ALREADY_LINKED"


def test_link_then_unlink(api):
    _, token = api.register_and_verify("both@example.com")
    api.provider.add("both-code", "g-both", "both.personal@gmail.test")
    resp = api.client.post(
        "/api/v1/auth/google/link",
        json={"code": "both-code", "state": _init(api)},
        headers=bearer(token),
    )
    assert resp.status_code == 200
    assert resp.json()["googleLinked"] is True
    resp = api.client.delete("/api/v1/auth/google/unlink", headers=bearer(token))
    assert resp.status_code == 200
    me = api.client.get("/api/v1/auth/me", headers=bearer(token)).json()
    assert me["googleLinked"] is False


def test_unlink_last_credential(api):
    api.provider.add("only-code", "g-only", "only@gmail.test")
    token = _callback(api, "only-code", _init(api)).json()["accessToken"]
    resp = api.client.delete("/api/v1/auth/google/unlink", headers=bearer(token))
    assert resp.status_code == 400
    assert resp.json()["code"] == "LAST_CREDENTIAL"
