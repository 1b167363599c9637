"""
auth/flows.py -- Password and Google OAuth authentication flows.

PasswordAuthFlow: register -> login -> verify_two_factor -> refresh -> logout,
    plus resend_two_factor and the forgot/reset password pair.
OAuthFlow: initiate -> complete_callback, link_account, unlink_account.

Both flows are plain classes with their collaborators injected (account
store, secret store, token issuer, notifier, identity provider), so tests
build them directly and the API builds them once per app in lifespan.

Every public step either returns a result dataclass or raises one of the
auth.errors taxonomy. @flow_boundary turns datastore/secret-store failures
into ServiceUnavailable; nothing else escapes.

Secret store keys:
  2fa:<accountId>           6-digit code, TTL one_time_code_ttl_seconds
  2fa:attempts:<accountId>  wrong-code counter, same TTL
  oauth:state:<nonce>       {"timestamp", "ip"} JSON, TTL oauth_state_ttl_seconds
  reset:<token>             account id, TTL password_reset_ttl_seconds
  session:<accountId>       cleared on logout
"""

from __future__ import annotations

import hmac
import json
import logging
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError

from auth.errors import (
    AccountAlreadyLinked,
    AccountInactive,
    AccountLocked,
    DuplicateAccount,
    InvalidCode,
    InvalidCredentials,
    InvalidOrExpiredState,
    InvalidRole,
    LastCredential,
    NotFound,
    OAuthVerificationFailed,
    TokenInvalid,
    flow_boundary,
)
from auth.models import (
    ROLE_ALIASES,
    ROLE_REDIRECTS,
    SELF_ASSIGNABLE_ROLES,
    Account,
    AccountStatus,
    AuthProvider,
    Role,
    RoleName,
    TokenPair,
    normalize_email,
)
from auth.notify import Notifier
from auth.store import AccountStore
from auth.tokens import TokenIssuer, TokenKind, burn_password_check, hash_password, verify_password
from cache.store import SecretStore, SecretStoreError
from core.config import Settings

logger = logging.getLogger("eatfast.auth")

_BLOCKED_STATUSES = (AccountStatus.suspended, AccountStatus.banned)


def _code_key(account_id: str) -> str:
    return f"2fa:{account_id}"


def _attempts_key(account_id: str) -> str:
    return f"2fa:attempts:{account_id}"


def _state_key(nonce: str) -> str:
    return f"oauth:state:{nonce}"


def _reset_key(token: str) -> str:
    return f"reset:{token}"


def _codes_match(stored: str, submitted: str) -> bool:
    # compare_digest rejects non-ASCII str, so compare the UTF-8 bytes.
    return hmac.compare_digest(stored.encode(), submitted.encode())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_code() -> str:
    """Return a 6-digit numeric one-time code from a CSPRNG."""
    return str(100000 + secrets.randbelow(900000))


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class RegistrationResult:
    account_id: str
    message: str = "Registration successful. Please check your email for verification code."


@dataclass
class LoginChallenge:
    account_id: str
    requires_two_factor: bool = True
    message: str = "Please check your email for verification code."


@dataclass
class AuthResult:
    account: Account
    tokens: TokenPair


@dataclass
class OAuthInitiation:
    auth_url: str
    state: str


@dataclass
class OAuthResult:
    account: Account
    tokens: TokenPair
    redirect_url: str
    is_new_user: bool


# ---------------------------------------------------------------------------
# Password flow
# ---------------------------------------------------------------------------


class PasswordAuthFlow:
    """Email + password authentication with an emailed second factor."""

    def __init__(
        self,
        store: AccountStore,
        secret_store: SecretStore,
        issuer: TokenIssuer,
        notifier: Notifier,
        settings: Settings,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.secrets = secret_store
        self.issuer = issuer
        self.notifier = notifier
        self.settings = settings
        self.clock = clock

    def _resolve_role(self, user_type: str | None) -> Role:
        """Map a requested user type onto a self-assignable role.

        Unknown or privileged types fall back to customer rather than failing,
        so a client cannot escalate by sending role=admin.
        """
        wanted = ROLE_ALIASES.get((user_type or "").strip().lower(), RoleName.customer)
        role = self.store.get_role_by_name(wanted.value)
        if role is None:
            role = self.store.get_role_by_name(RoleName.customer.value)
        if role is None:
            raise InvalidRole("Default role is not configured")
        return role

    async def _issue_code(self, account_id: str) -> str:
        code = generate_code()
        ttl = self.settings.one_time_code_ttl_seconds
        await self.secrets.set(_code_key(account_id), code, ttl)
        await self.secrets.delete(_attempts_key(account_id))
        return code

    @flow_boundary
    async def register(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        phone: str | None = None,
        user_type: str | None = None,
    ) -> RegistrationResult:
        """Create a pending account and email it a verification code.

        Raises DuplicateAccount when the (normalized) email is taken.
        """
        email = normalize_email(email)
        if self.store.get_by_email(email) is not None:
            raise DuplicateAccount()
        role = self._resolve_role(user_type)
        account = Account(
            email=email,
            role_id=role.id,
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            hashed_password=hash_password(password),
            status=AccountStatus.pending,
            provider=AuthProvider.local,
        )
        try:
            account_id = self.store.create_account(account)
        except IntegrityError as exc:
            # A concurrent registration won the race for this email.
            raise DuplicateAccount() from exc
        logger.info("Registered account %s with role %s", account_id, role.name)

        code = await self._issue_code(account_id)
        await self.notifier.send_verification_code(email, code)
        return RegistrationResult(account_id=account_id)

    @flow_boundary
    async def login(self, email: str, password: str) -> LoginChallenge:
        """Check the password and send a login code. Does not issue tokens.

        Unknown email and wrong password produce the same InvalidCredentials,
        and both run a full hash verification [C1].
        """
        account = self.store.get_by_email(normalize_email(email))
        if account is None or not account.hashed_password:
            burn_password_check(password)
            raise InvalidCredentials()

        now = self.clock()
        if account.is_locked(now):
            raise AccountLocked()
        if account.locked_until is not None:
            # Lock has lapsed: start counting from zero again.
            self.store.reset_login_attempts(account.id)

        if not verify_password(password, account.hashed_password):
            updated = self.store.record_failed_login(
                account.id,
                self.settings.max_login_attempts,
                now + timedelta(seconds=self.settings.lockout_seconds),
            )
            if updated is not None and updated.is_locked(now):
                logger.warning("Account %s locked after %d failed logins", account.id, updated.failed_login_attempts)
            raise InvalidCredentials()

        if account.status in _BLOCKED_STATUSES:
            raise AccountInactive()

        self.store.reset_login_attempts(account.id)
        code = await self._issue_code(account.id)
        await self.notifier.send_login_code(account.email, code)
        return LoginChallenge(account_id=account.id)

    @flow_boundary
    async def verify_two_factor(self, account_id: str, code: str) -> AuthResult:
        """Consume the emailed code and issue the token pair.

        A wrong code counts towards max_code_attempts; once reached the code
        is discarded and the user must log in again.
        """
        stored = await self.secrets.get(_code_key(account_id))
        if stored is None or not _codes_match(stored, code):
            if stored is not None:
                attempts = await self.secrets.incr(
                    _attempts_key(account_id), self.settings.one_time_code_ttl_seconds
                )
                if attempts >= self.settings.max_code_attempts:
                    logger.warning("Discarding login code for %s after %d wrong attempts", account_id, attempts)
                    await self.secrets.delete(_code_key(account_id), _attempts_key(account_id))
            raise InvalidCode()

        # GETDEL so two concurrent submissions of the same code cannot both win.
        consumed = await self.secrets.pop(_code_key(account_id))
        if consumed is None or not _codes_match(consumed, code):
            raise InvalidCode()
        await self.secrets.delete(_attempts_key(account_id))

        account = self.store.get_by_id(account_id)
        if account is None:
            raise NotFound("User not found")
        if account.status in _BLOCKED_STATUSES:
            raise AccountInactive()

        self.store.mark_verified(account.id, activate=account.status == AccountStatus.pending)
        self.store.update_last_login(account.id)
        account = self.store.get_by_id(account.id)
        return AuthResult(account=account, tokens=self.issuer.issue(account))

    @flow_boundary
    async def resend_two_factor(self, account_id: str) -> None:
        """Replace the account's code with a fresh one and email it."""
        account = self.store.get_by_id(account_id)
        if account is None:
            raise NotFound("User not found")
        if account.status in _BLOCKED_STATUSES:
            raise AccountInactive()
        code = await self._issue_code(account.id)
        if account.status == AccountStatus.pending:
            await self.notifier.send_verification_code(account.email, code)
        else:
            await self.notifier.send_login_code(account.email, code)

    @flow_boundary
    async def refresh(self, refresh_token: str) -> AuthResult:
        """Issue a new token pair from a valid refresh token.

        The old refresh token is not revoked; it stays valid until it expires.
        """
        claims = self.issuer.verify(refresh_token, TokenKind.refresh)
        account = self.store.get_by_id(claims["accountId"])
        if account is None or account.status != AccountStatus.active:
            raise TokenInvalid("Invalid refresh token")
        return AuthResult(account=account, tokens=self.issuer.issue(account))

    async def logout(self, account_id: str) -> None:
        """Drop any ephemeral artifacts for the account. Never raises."""
        try:
            await self.secrets.delete(f"session:{account_id}", _code_key(account_id), _attempts_key(account_id))
        except SecretStoreError:
            logger.warning("Could not clear ephemeral state for %s on logout", account_id, exc_info=True)

    @flow_boundary
    async def forgot_password(self, email: str) -> None:
        """Email a single-use reset link if the account exists.

        Returns nothing either way so the caller cannot tell whether the
        address is registered.
        """
        account = self.store.get_by_email(normalize_email(email))
        if account is None or account.status in _BLOCKED_STATUSES:
            return
        token = secrets.token_urlsafe(32)
        await self.secrets.set(_reset_key(token), account.id, self.settings.password_reset_ttl_seconds)
        await self.notifier.send_password_reset(account.email, token)

    @flow_boundary
    async def reset_password(self, token: str, new_password: str) -> None:
        """Consume a reset token and store the new password hash.

        Also clears any lockout, since the user has just proven control of
        the mailbox.
        """
        account_id = await self.secrets.pop(_reset_key(token))
        if account_id is None:
            raise InvalidCode("Invalid or expired reset token")
        if self.store.get_by_id(account_id) is None:
            raise InvalidCode("Invalid or expired reset token")
        self.store.set_password(account_id, hash_password(new_password))
        logger.info("Password reset for account %s", account_id)


# ---------------------------------------------------------------------------
# OAuth flow
# ---------------------------------------------------------------------------


class OAuthFlow:
    """Google sign-in, sign-up and account linking."""

    def __init__(
        self,
        store: AccountStore,
        secret_store: SecretStore,
        issuer: TokenIssuer,
        provider,
        settings: Settings,
    ) -> None:
        self.store = store
        self.secrets = secret_store
        self.issuer = issuer
        self.provider = provider
        self.settings = settings

    @flow_boundary
    async def initiate(self, ip: str) -> OAuthInitiation:
        """Mint and persist a state nonce; return the provider consent URL."""
        if not self.provider.enabled:
            raise OAuthVerificationFailed("Google sign-in is not configured")
        state = secrets.token_hex(16)
        payload = json.dumps({"timestamp": int(time.time() * 1000), "ip": ip})
        await self.secrets.set(_state_key(state), payload, self.settings.oauth_state_ttl_seconds)
        return OAuthInitiation(auth_url=self.provider.authorization_url(state), state=state)

    async def _consume_state(self, state: str) -> dict:
        """Delete the state nonce and return its metadata.

        Missing and expired are the same thing. The nonce is gone after this
        call whatever happens next in the flow.
        """
        raw = await self.secrets.pop(_state_key(state))
        if raw is None:
            raise InvalidOrExpiredState()
        return json.loads(raw)

    def _resolve_requested_role(self, requested: str | None) -> Role:
        wanted = ROLE_ALIASES.get((requested or RoleName.customer.value).strip().lower())
        if wanted is None or wanted not in SELF_ASSIGNABLE_ROLES:
            raise InvalidRole()
        role = self.store.get_role_by_name(wanted.value)
        if role is None:
            raise InvalidRole()
        return role

    @flow_boundary
    async def complete_callback(self, code: str, state: str, requested_role: str | None = None) -> OAuthResult:
        """Finish Google sign-in.

        Reconciliation order:
          1. account already linked to this Google subject -> use it
          2. account with the same email -> link it in place
          3. otherwise create an active account with the requested role
        """
        await self._consume_state(state)
        identity = await self.provider.exchange_code(code)

        is_new_user = False
        account = self.store.get_by_google_id(identity.subject)
        if account is None:
            email = normalize_email(identity.email)
            existing = self.store.get_by_email(email)
            if existing is not None:
                self.store.link_google(
                    existing.id,
                    identity.subject,
                    identity.picture,
                    provider=AuthProvider.google,
                    verified=True,
                )
                if existing.status == AccountStatus.pending:
                    # A verified provider email stands in for the emailed code.
                    self.store.mark_verified(existing.id, activate=True)
                logger.info("Linked Google identity to existing account %s", existing.id)
                account_id = existing.id
            else:
                role = self._resolve_requested_role(requested_role)
                try:
                    account_id = self.store.create_account(
                        Account(
                            email=email,
                            role_id=role.id,
                            first_name=identity.first_name,
                            last_name=identity.last_name,
                            google_id=identity.subject,
                            profile_picture=identity.picture,
                            provider=AuthProvider.google,
                            status=AccountStatus.active,
                            is_verified=True,
                        )
                    )
                except IntegrityError as exc:
                    raise DuplicateAccount() from exc
                is_new_user = True
                logger.info("Created account %s from Google sign-in with role %s", account_id, role.name)
            account = self.store.get_by_id(account_id)

        if account.status in _BLOCKED_STATUSES:
            raise AccountInactive()

        self.store.update_last_login(account.id)
        account = self.store.get_by_id(account.id)
        return OAuthResult(
            account=account,
            tokens=self.issuer.issue(account),
            redirect_url=ROLE_REDIRECTS.get(account.role_name, "/"),
            is_new_user=is_new_user,
        )

    @flow_boundary
    async def link_account(self, account_id: str, code: str, state: str) -> Account:
        """Attach a Google identity to the signed-in account."""
        await self._consume_state(state)
        identity = await self.provider.exchange_code(code)

        owner = self.store.get_by_google_id(identity.subject)
        if owner is not None and owner.id != account_id:
            raise AccountAlreadyLinked()
        if self.store.get_by_id(account_id) is None:
            raise NotFound("User not found")
        try:
            self.store.link_google(account_id, identity.subject, identity.picture)
        except IntegrityError as exc:
            raise AccountAlreadyLinked() from exc
        return self.store.get_by_id(account_id)

    @flow_boundary
    async def unlink_account(self, account_id: str) -> None:
        """Detach the Google identity, keeping the account reachable.

        Refuses when the account has no password: unlinking would leave it
        with no way to sign in.
        """
        account = self.store.get_by_id(account_id)
        if account is None:
            raise NotFound("User not found")
        if not account.hashed_password or not self.store.unlink_google(account_id):
            raise LastCredential()

    @flow_boundary
    async def available_roles(self) -> list[Role]:
        return self.store.list_roles(sorted(r.value for r in SELF_ASSIGNABLE_ROLES))
