"""
auth/models.py -- Domain dataclasses and enums for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and flows
do the work; these types only own the domain shape.

Layer rule: no imports from api/, core/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class RoleName(str, Enum):
    """Closed set of role names. Free-text role fields are mapped onto this."""

    admin = "admin"
    customer = "customer"
    restaurant_owner = "restaurant_owner"
    delivery_person = "delivery_person"
    support_agent = "support_agent"


class AccountStatus(str, Enum):
    pending = "pending"
    active = "active"
    suspended = "suspended"
    banned = "banned"


class AuthProvider(str, Enum):
    local = "local"
    google = "google"


# Roles a user may pick for themselves during OAuth sign-up. admin and
# support_agent are only ever assigned by an administrator.
SELF_ASSIGNABLE_ROLES: frozenset[RoleName] = frozenset(
    {RoleName.customer, RoleName.restaurant_owner, RoleName.delivery_person}
)

# Frontend "user type" aliases -> role. Anything absent here is not
# self-assignable.
ROLE_ALIASES: dict[str, RoleName] = {
    "client": RoleName.customer,
    "customer": RoleName.customer,
    "restaurant": RoleName.restaurant_owner,
    "restaurant_owner": RoleName.restaurant_owner,
    "delivery": RoleName.delivery_person,
    "delivery_person": RoleName.delivery_person,
}

ROLE_REDIRECTS: dict[str, str] = {
    RoleName.admin.value: "/admin/dashboard",
    RoleName.customer.value: "/client/dashboard",
    RoleName.restaurant_owner.value: "/restaurant/dashboard",
    RoleName.delivery_person.value: "/delivery/dashboard",
    RoleName.support_agent.value: "/agent/dashboard",
}


@dataclass
class Role:
    """Named permission bundle. "*" in permissions grants everything."""

    name: str
    permissions: list[str] = field(default_factory=list)
    description: str = ""
    id: int | None = None


@dataclass
class Account:
    """An identity record -- the subject of authentication.

    hashed_password is None for accounts created through Google sign-in;
    google_id is None until the account signs in with (or links) Google.
    The store refuses to leave both empty.

    email is always stored normalized (trimmed, lower-cased).
    """

    email: str
    role_id: int
    first_name: str = ""
    last_name: str = ""
    phone: str | None = None
    id: str | None = None
    hashed_password: str | None = None
    status: AccountStatus = AccountStatus.pending
    is_verified: bool = False
    failed_login_attempts: int = 0
    locked_until: datetime | None = None
    last_login: datetime | None = None
    google_id: str | None = None
    profile_picture: str | None = None
    provider: AuthProvider = AuthProvider.local
    created_at: datetime | None = None
    role: Role | None = None

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and self.locked_until > now

    @property
    def role_name(self) -> str:
        return self.role.name if self.role else ""


@dataclass
class ExternalIdentity:
    """Identity assertion returned by the OAuth provider after code exchange."""

    subject: str
    email: str
    first_name: str = ""
    last_name: str = ""
    picture: str | None = None
    email_verified: bool = False


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int


@dataclass
class Principal:
    """The authenticated caller attached to a request by the access guard."""

    account: Account
    role: str
    permissions: list[str] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.account.id

    def has_permission(self, *wanted: str) -> bool:
        if "*" in self.permissions:
            return True
        return any(p in self.permissions for p in wanted)


def normalize_email(email: str) -> str:
    return email.strip().lower()
