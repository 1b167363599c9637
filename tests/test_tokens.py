"""Unit tests for auth/tokens.py -- token issuing, expiry and password hashing.

Covers:
- issue() claims for access vs refresh tokens
- verify() distinguishes TokenExpired from TokenInvalid
- one token kind is never accepted as the other
- Argon2id hashing round trip and the timing-equalizer helper
"""

from datetime import timedelta

import pytest
from jose import jwt

from auth.errors import TokenExpired, TokenInvalid
from auth.models import Account, Role
from auth.tokens import (
    TokenIssuer,
    TokenKind,
    burn_password_check,
    hash_password,
    verify_password,
)


@pytest.fixture
def account() -> Account:
    return Account(
        id="4f1c2d7e-0000-4000-8000-000000000001",
        email="jane@example.com",
        role_id=2,
        role=Role(name="customer", permissions=["orders:read", "orders:create"], id=2),
    )


class TestIssue:
    def test_access_token_carries_role_and_permissions(self, issuer, account):
        pair = issuer.issue(account)
        claims = issuer.verify(pair.access_token, TokenKind.access)
        assert claims["accountId"] == account.id
        assert claims["email"] == "jane@example.com"
        assert claims["role"] == "customer"
        assert claims["permissions"] == ["orders:read", "orders:create"]
        assert claims["exp"] - claims["iat"] == issuer.access_ttl

    def test_refresh_token_carries_only_account_id(self, issuer, account):
        claims = issuer.verify(issuer.issue(account).refresh_token, TokenKind.refresh)
        assert claims["accountId"] == account.id
        assert "role" not in claims
        assert "email" not in claims

    def test_expires_in_matches_access_ttl(self, issuer, account):
        assert issuer.issue(account).expires_in == 900


class TestVerify:
    def test_expired_access_token(self, issuer, clock, account):
        token = issuer.issue(account).access_token
        clock.advance(issuer.access_ttl + 1)
        with pytest.raises(TokenExpired):
            issuer.verify(token, TokenKind.access)

    def test_token_valid_just_before_expiry(self, issuer, clock, account):
        token = issuer.issue(account).access_token
        clock.advance(issuer.access_ttl - 1)
        assert issuer.verify(token)["accountId"] == account.id

    def test_refresh_outlives_access(self, issuer, clock, account):
        pair = issuer.issue(account)
        clock.advance(timedelta(days=1).total_seconds())
        with pytest.raises(TokenExpired):
            issuer.verify(pair.access_token, TokenKind.access)
        assert issuer.verify(pair.refresh_token, TokenKind.refresh)["accountId"] == account.id

    def test_refresh_token_rejected_as_access(self, issuer, account):
        with pytest.raises(TokenInvalid):
            issuer.verify(issuer.issue(account).refresh_token, TokenKind.access)

    def test_access_token_rejected_as_refresh(self, issuer, account):
        with pytest.raises(TokenInvalid):
            issuer.verify(issuer.issue(account).access_token, TokenKind.refresh)

    def test_garbage_is_invalid(self, issuer):
        with pytest.raises(TokenInvalid):
            issuer.verify("not-a-jwt")

    def test_foreign_secret_is_invalid(self, issuer, account, clock):
        other = TokenIssuer("c" * 40, "d" * 40, clock=clock)
        with pytest.raises(TokenInvalid):
            issuer.verify(other.issue(account).access_token)

    def test_missing_account_id_is_invalid(self, issuer, clock):
        exp = int(clock().timestamp()) + 60
        token = jwt.encode({"exp": exp}, "a" * 40, algorithm="HS256")
        with pytest.raises(TokenInvalid):
            issuer.verify(token)


class TestPasswords:
    def test_hash_round_trip(self):
        hashed = hash_password("Str0ng!pass")
        assert hashed.startswith("$argon2id$")
        assert verify_password("Str0ng!pass", hashed)
        assert not verify_password("wrong", hashed)

    def test_hashes_are_salted(self):
        assert hash_password("same") != hash_password("same")

    def test_malformed_hash_is_a_mismatch(self):
        assert verify_password("anything", "not-an-argon2-hash") is False

    def test_burn_password_check_returns_nothing(self):
        assert burn_password_check("whatever") is None
