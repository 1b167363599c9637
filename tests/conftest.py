"""
tests/conftest.py -- Shared fixtures for the Eat Fast auth test suite.

This module provides:
  - FakeClock / RecordingNotifier / FakeIdentityProvider test doubles
  - account_store / secret_store / flows: unit-level fixtures (no HTTP)
  - api: module-scoped TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are used for the
API fixture because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread.

DEBUG and RATE_LIMIT_ENABLED must be set before any api/auth/core import:
get_settings() is cached on first call and api.limiter reads it at import.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

# CRITICAL: set before importing the app. DEBUG lets Settings generate
# signing secrets; the lockout tests make more than 5 login attempts.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("SECRET_STORE_URL", "memory://")

import pytest
from fastapi.testclient import TestClient

from api.main import app, init_services
from auth.errors import OAuthVerificationFailed
from auth.flows import OAuthFlow, PasswordAuthFlow
from auth.models import ExternalIdentity
from auth.seed import seed_admin, seed_roles
from auth.store import AccountStore
from auth.tokens import TokenIssuer
from cache.store import MemorySecretStore
from core.config import Settings, get_settings

STRONG_PASSWORD = "Str0ng!pass"
ADMIN_EMAIL = "admin@eatfast.test"
ADMIN_PASSWORD = "Adm1n!secret"

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Mutable UTC clock. Call it to read, advance() to move it forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@dataclass
class SentMessage:
    kind: str
    email: str
    secret: str


@dataclass
class RecordingNotifier:
    """Captures outgoing codes and reset tokens instead of emailing them."""

    sent: list[SentMessage] = field(default_factory=list)

    async def send_verification_code(self, email: str, code: str) -> None:
        self.sent.append(SentMessage("verification", email, code))

    async def send_login_code(self, email: str, code: str) -> None:
        self.sent.append(SentMessage("login", email, code))

    async def send_password_reset(self, email: str, token: str) -> None:
        self.sent.append(SentMessage("reset", email, token))

    def last(self, email: str, kind: str | None = None) -> str:
        for msg in reversed(self.sent):
            if msg.email == email and (kind is None or msg.kind == kind):
                return msg.secret
        raise AssertionError(f"no {kind or 'message'} sent to {email}")


class FakeIdentityProvider:
    """Maps authorization codes to identities; unknown codes fail verification."""

    name = "google"
    enabled = True

    def __init__(self) -> None:
        self.identities: dict[str, ExternalIdentity] = {}

    def add(self, code: str, subject: str, email: str, **kwargs) -> ExternalIdentity:
        identity = ExternalIdentity(subject=subject, email=email, email_verified=True, **kwargs)
        self.identities[code] = identity
        return identity

    def authorization_url(self, state: str) -> str:
        return f"https://accounts.example.test/auth?state={state}"

    async def exchange_code(self, code: str) -> ExternalIdentity:
        try:
            return self.identities[code]
        except KeyError:
            raise OAuthVerificationFailed() from None


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(
        debug=True,
        secret_key="a" * 40,
        refresh_secret_key="b" * 40,
        smtp_host="",
        _env_file=None,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def account_store() -> Generator[AccountStore, None, None]:
    """In-memory AccountStore with the default roles seeded."""
    store = AccountStore("sqlite:///:memory:")
    seed_roles(store)
    yield store
    store.close()


@pytest.fixture
def secret_store() -> MemorySecretStore:
    return MemorySecretStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def issuer(settings, clock) -> TokenIssuer:
    return TokenIssuer.from_settings(settings, clock=clock)


@pytest.fixture
def password_flow(account_store, secret_store, issuer, notifier, settings, clock) -> PasswordAuthFlow:
    return PasswordAuthFlow(account_store, secret_store, issuer, notifier, settings, clock=clock)


@pytest.fixture
def oauth_flow(account_store, secret_store, issuer, provider, settings) -> OAuthFlow:
    return OAuthFlow(account_store, secret_store, issuer, provider, settings)


def run(coro):
    """Run a flow coroutine to completion from a sync test."""
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    store: AccountStore
    notifier: RecordingNotifier
    provider: FakeIdentityProvider
    admin_id: str
    admin_token: str

    def register_and_verify(self, email: str, role: str | None = None) -> tuple[str, str]:
        """Register an account, verify it with the emailed code and return (id, access token)."""
        body = {"email": email, "password": STRONG_PASSWORD, "firstName": "Test", "lastName": "User"}
        if role is not None:
            body["role"] = role
        resp = self.client.post("/api/v1/auth/register", json=body)
        assert resp.status_code == 201, resp.text
        account_id = resp.json()["accountId"]
        code = self.notifier.last(email, "verification")
        resp = self.client.post("/api/v1/auth/verify-2fa", json={"accountId": account_id, "code": code})
        assert resp.status_code == 200, resp.text
        return account_id, resp.json()["accessToken"]


def _patch_lifespan(store: AccountStore, notifier: RecordingNotifier, provider: FakeIdentityProvider):
    """Return a lifespan that wires test doubles into app.state.

    Stores are closed by the fixture, not the lifespan, so a test module can
    inspect the database after the client has stopped.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        init_services(
            app,
            get_settings(),
            account_store=store,
            secret_store=MemorySecretStore(),
            notifier=notifier,
            identity_provider=provider,
        )
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api() -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness over the real app with isolated in-memory stores.

    One database per test module; an active admin is seeded before the
    client starts.
    """
    db_url = f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    store = AccountStore(db_url)
    seed_roles(store)
    admin_id = seed_admin(store, ADMIN_EMAIL, ADMIN_PASSWORD)
    notifier = RecordingNotifier()
    provider = FakeIdentityProvider()

    app.router.lifespan_context = _patch_lifespan(store, notifier, provider)

    with TestClient(app, raise_server_exceptions=True) as client:
        admin_token = app.state.token_issuer.issue(store.get_by_id(admin_id)).access_token
        yield ApiHarness(client, store, notifier, provider, admin_id, admin_token)

    store.close()


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
