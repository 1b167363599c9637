"""
API request and response models for the Eat Fast auth endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Wire format:
  - JSON field names are camelCase. Request models also accept the snake_case
    names older frontends send (first_name, phone_number, user_type).
  - Unknown request fields are rejected (extra="forbid") so nothing
    unexpected reaches a flow.
  - Error bodies are always {"error": str, "code": str, ...}.
"""

import re
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import Account, AccountStatus, Role

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
PHONE_PATTERN = r"^\+?[1-9]\d{1,14}$"
CODE_PATTERN = r"^[0-9]{6}$"
UUID_PATTERN = r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"

# At least one lower, one upper and one digit. Symbols are allowed, not required.
_PASSWORD_RULES = [
    (re.compile(r"[a-z]"), "a lowercase letter"),
    (re.compile(r"[A-Z]"), "an uppercase letter"),
    (re.compile(r"[0-9]"), "a digit"),
]


def _check_password_strength(value: str) -> str:
    missing = [label for pattern, label in _PASSWORD_RULES if not pattern.search(value)]
    if missing:
        raise ValueError("Password must contain " + ", ".join(missing))
    return value


class _Request(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class _Response(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Uniform error body returned by every endpoint."""

    error: str
    code: str
    required: Optional[Any] = None
    current: Optional[Any] = None
    details: Optional[Any] = None


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_Request):
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=8, max_length=128)
    first_name: str = Field(
        min_length=2, max_length=50, validation_alias=AliasChoices("firstName", "first_name")
    )
    last_name: str = Field(
        min_length=2, max_length=50, validation_alias=AliasChoices("lastName", "last_name")
    )
    phone: Optional[str] = Field(
        default=None, pattern=PHONE_PATTERN, validation_alias=AliasChoices("phone", "phone_number")
    )
    role: Optional[str] = Field(
        default=None, max_length=32, validation_alias=AliasChoices("role", "user_type", "userType")
    )

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return _check_password_strength(value)


class LoginRequest(_Request):
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class VerifyTwoFactorRequest(_Request):
    account_id: str = Field(pattern=UUID_PATTERN, validation_alias=AliasChoices("accountId", "userId", "user_id"))
    code: str = Field(pattern=CODE_PATTERN)


class ResendTwoFactorRequest(_Request):
    account_id: str = Field(pattern=UUID_PATTERN, validation_alias=AliasChoices("accountId", "userId", "user_id"))


class RefreshRequest(_Request):
    refresh_token: Optional[str] = Field(default=None, validation_alias=AliasChoices("refreshToken", "refresh_token"))


class ForgotPasswordRequest(_Request):
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)


class ResetPasswordRequest(_Request):
    token: str = Field(min_length=1, max_length=256)
    new_password: str = Field(
        min_length=8, max_length=128, validation_alias=AliasChoices("newPassword", "new_password")
    )

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return _check_password_strength(value)


class OAuthCallbackRequest(_Request):
    code: str = Field(min_length=1, max_length=2048)
    state: str = Field(min_length=1, max_length=128)
    role: Optional[str] = Field(default=None, max_length=32)


class OAuthLinkRequest(_Request):
    code: str = Field(min_length=1, max_length=2048)
    state: str = Field(min_length=1, max_length=128)


class StatusPatch(_Request):
    status: AccountStatus


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(_Response):
    """Sanitized account view. Never carries the password hash."""

    id: str
    email: str
    first_name: str
    last_name: str
    phone: Optional[str] = None
    role: str
    status: str
    is_verified: bool
    provider: str
    profile_picture: Optional[str] = None
    google_linked: bool = False
    last_login: Optional[str] = None

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            id=account.id,
            email=account.email,
            first_name=account.first_name,
            last_name=account.last_name,
            phone=account.phone,
            role=account.role_name,
            status=account.status.value,
            is_verified=account.is_verified,
            provider=account.provider.value,
            profile_picture=account.profile_picture,
            google_linked=account.google_id is not None,
            last_login=account.last_login.isoformat() if account.last_login else None,
        )


class RegisterResponse(_Response):
    account_id: str
    message: str


class LoginResponse(_Response):
    account_id: str
    requires_two_factor: bool
    message: str


class TokenResponse(_Response):
    """Access token for the Authorization header; the refresh token is a cookie."""

    user: AccountResponse
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    message: str = "Login successful"


class RefreshResponse(_Response):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    message: str = "Token refreshed"


class MessageResponse(_Response):
    message: str


class OAuthInitResponse(_Response):
    auth_url: str
    state: str


class OAuthCallbackResponse(_Response):
    user: AccountResponse
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    redirect_url: str
    is_new_user: bool
    message: str


class RoleResponse(_Response):
    name: str
    description: str

    @classmethod
    def from_role(cls, role: Role) -> "RoleResponse":
        return cls(name=role.name, description=role.description)


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
