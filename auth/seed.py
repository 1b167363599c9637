"""
auth/seed.py -- Idempotent bootstrap data: the role table and an optional admin.

Called from the API lifespan on every startup and from `python main.py seed`.
Existing rows are never modified, so permissions edited in the database
survive restarts.
"""

from __future__ import annotations

import logging

from auth.models import Account, AccountStatus, AuthProvider, Role, RoleName, normalize_email
from auth.store import AccountStore
from auth.tokens import hash_password

logger = logging.getLogger("eatfast.auth")

DEFAULT_ROLES: list[Role] = [
    Role(
        name=RoleName.admin.value,
        description="System administrator with full access",
        permissions=["*"],
    ),
    Role(
        name=RoleName.customer.value,
        description="Regular customer with basic access",
        permissions=["orders:read", "orders:create"],
    ),
    Role(
        name=RoleName.restaurant_owner.value,
        description="Restaurant owner with menu and order management",
        permissions=["menu:read", "menu:write", "orders:read", "orders:update"],
    ),
    Role(
        name=RoleName.delivery_person.value,
        description="Delivery person with order tracking access",
        permissions=["orders:read", "orders:update_status"],
    ),
    Role(
        name=RoleName.support_agent.value,
        description="Support agent handling customer requests",
        permissions=["users:read", "orders:read", "contacts:read"],
    ),
]


def seed_roles(store: AccountStore) -> int:
    """Insert any missing default roles. Returns the number created."""
    created = 0
    for role in DEFAULT_ROLES:
        if store.get_role_by_name(role.name) is None:
            store.create_role(role)
            created += 1
    if created:
        logger.info("Seeded %d roles", created)
    return created


def seed_admin(store: AccountStore, email: str, password: str) -> str | None:
    """Create an active admin account unless the email is already registered.

    Returns the new account id, or None when nothing was created.
    """
    email = normalize_email(email)
    if store.get_by_email(email) is not None:
        return None
    role = store.get_role_by_name(RoleName.admin.value)
    if role is None:
        raise RuntimeError("Roles must be seeded before the admin account")
    account_id = store.create_account(
        Account(
            email=email,
            role_id=role.id,
            first_name="Admin",
            last_name="User",
            hashed_password=hash_password(password),
            status=AccountStatus.active,
            is_verified=True,
            provider=AuthProvider.local,
        )
    )
    logger.info("Created admin account %s", account_id)
    return account_id
