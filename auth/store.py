"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts and roles.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account / _row_to_role are the mappers. Flow and dependency code never
touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Account invariant: an account must keep at least one credential mechanism
  (hashed_password or google_id). create_account() and unlink_google() refuse
  to write a row that violates it.

  The failed-login counter is incremented with a single UPDATE that also
  decides the lock, so concurrent failed logins cannot lose increments.

Timestamps are stored as ISO 8601 UTC strings and parsed back to aware
datetimes by the mapper.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    case,
    create_engine,
    event,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import Account, AccountStatus, AuthProvider, Role

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False, unique=True),
    Column("description", Text, nullable=False, server_default=""),
    Column("permissions", JSON, nullable=False),
)

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),  # normalized lower-case
    Column("hashed_password", Text),  # NULL for Google-only accounts
    Column("first_name", String(50), nullable=False, server_default=""),
    Column("last_name", String(50), nullable=False, server_default=""),
    Column("phone", String(20)),
    Column("role_id", Integer, ForeignKey("roles.id"), nullable=False),
    Column("status", String(16), nullable=False, server_default="pending"),
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("failed_login_attempts", Integer, nullable=False, server_default="0"),
    Column("locked_until", String(32)),
    Column("last_login", String(32)),
    Column("google_id", String(255), unique=True),
    Column("profile_picture", String(500)),
    Column("provider", String(16), nullable=False, server_default="local"),
    Column("created_at", String(32), nullable=False),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety (SQLite only)."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _iso(value: datetime | None) -> str | None:
    return value.astimezone(timezone.utc).isoformat() if value is not None else None


def _parse(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _account_select():
    return select(
        _accounts,
        _roles.c.name.label("role_name"),
        _roles.c.permissions.label("role_permissions"),
        _roles.c.description.label("role_description"),
    ).join(_roles, _accounts.c.role_id == _roles.c.id)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account and Role entities.

    Usage:
        store = AccountStore("sqlite:///eatfast_auth.db")
        role = store.get_role_by_name("customer")
        account_id = store.create_account(Account(email="a@b.com", role_id=role.id, hashed_password=h))
        account = store.get_by_email("a@b.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def create_role(self, role: Role) -> int:
        """Insert a role and return its ID. IntegrityError if the name exists."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _roles.insert().values(
                    name=role.name,
                    description=role.description,
                    permissions=list(role.permissions),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_role_by_name(self, name: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.name == name)).fetchone()
        return _row_to_role(row) if row is not None else None

    def list_roles(self, names: list[str] | None = None) -> list[Role]:
        """Return roles ordered by name, optionally restricted to names."""
        query = _roles.select().order_by(_roles.c.name)
        if names is not None:
            query = query.where(_roles.c.name.in_(names))
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_role(r) for r in rows]

    # ------------------------------------------------------------------
    # Account queries
    # ------------------------------------------------------------------

    def create_account(self, account: Account) -> str:
        """Insert a new account and return its generated UUID.

        Raises sqlalchemy.exc.IntegrityError if the email or google_id is
        already taken, ValueError if the account has no credential at all.
        """
        if not account.hashed_password and not account.google_id:
            raise ValueError("An account needs a password or a linked Google identity")
        account_id = account.id or str(uuid.uuid4())
        with self.engine.connect() as conn:
            conn.execute(
                _accounts.insert().values(
                    id=account_id,
                    email=account.email,
                    hashed_password=account.hashed_password,
                    first_name=account.first_name,
                    last_name=account.last_name,
                    phone=account.phone,
                    role_id=account.role_id,
                    status=AccountStatus(account.status).value,
                    is_verified=1 if account.is_verified else 0,
                    failed_login_attempts=0,
                    google_id=account.google_id,
                    profile_picture=account.profile_picture,
                    provider=AuthProvider(account.provider).value,
                    last_login=_iso(account.last_login),
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return account_id

    def get_by_id(self, account_id: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_account_select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_email(self, email: str) -> Account | None:
        """Look up by email. Callers pass the normalized (lower-cased) form."""
        with self.engine.connect() as conn:
            row = conn.execute(_account_select().where(_accounts.c.email == email)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_google_id(self, google_id: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_account_select().where(_accounts.c.google_id == google_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def list_accounts(self) -> list[Account]:
        """Return all accounts ordered by email. Admin/support operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_account_select().order_by(_accounts.c.email)).fetchall()
        return [_row_to_account(r) for r in rows]

    # ------------------------------------------------------------------
    # Login bookkeeping
    # ------------------------------------------------------------------

    def record_failed_login(self, account_id: str, max_attempts: int, lock_until: datetime) -> Account | None:
        """Increment the failed-attempt counter; lock once it reaches max_attempts.

        Single UPDATE: the SET expressions read the pre-update counter, so the
        increment and the lock decision cannot interleave with another request.
        Returns the refreshed account.
        """
        attempts = _accounts.c.failed_login_attempts + 1
        with self.engine.connect() as conn:
            conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(
                    failed_login_attempts=attempts,
                    locked_until=case((attempts >= max_attempts, _iso(lock_until)), else_=_accounts.c.locked_until),
                )
            )
            conn.commit()
        return self.get_by_id(account_id)

    def reset_login_attempts(self, account_id: str) -> None:
        self.update_account(account_id, failed_login_attempts=0, locked_until=None)

    def update_last_login(self, account_id: str) -> None:
        """Stamp the current UTC timestamp as last_login."""
        self.update_account(account_id, last_login=_now_iso())

    def mark_verified(self, account_id: str, activate: bool) -> None:
        """Set is_verified; also move the account to active when activate is True."""
        fields: dict = {"is_verified": True}
        if activate:
            fields["status"] = AccountStatus.active
        self.update_account(account_id, **fields)

    # ------------------------------------------------------------------
    # Credential changes
    # ------------------------------------------------------------------

    def set_password(self, account_id: str, hashed_password: str) -> None:
        self.update_account(
            account_id,
            hashed_password=hashed_password,
            failed_login_attempts=0,
            locked_until=None,
        )

    def link_google(
        self,
        account_id: str,
        google_id: str,
        picture: str | None,
        provider: AuthProvider | None = None,
        verified: bool | None = None,
    ) -> None:
        """Attach a Google identity to an existing account.

        The UNIQUE constraint on google_id makes a concurrent double-link fail
        with IntegrityError instead of silently sharing an identity.
        """
        fields: dict = {"google_id": google_id, "profile_picture": picture}
        if provider is not None:
            fields["provider"] = provider
        if verified is not None:
            fields["is_verified"] = verified
        self.update_account(account_id, **fields)

    def unlink_google(self, account_id: str) -> bool:
        """Detach the Google identity. Only succeeds while a password remains.

        Returns False (and writes nothing) when the account has no password.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update()
                .where((_accounts.c.id == account_id) & (_accounts.c.hashed_password.is_not(None)))
                .values(google_id=None, profile_picture=None, provider=AuthProvider.local.value)
            )
            conn.commit()
        return result.rowcount > 0

    def update_status(self, account_id: str, status: AccountStatus) -> bool:
        return self.update_account(account_id, status=status)

    def update_account(self, account_id: str, **fields) -> bool:
        """Update mutable columns on an existing account.

        Enum values are stored by value, bools as 0/1, datetimes as ISO text.
        Returns True if a row was updated, False if account_id was not found.
        """
        values: dict = {}
        for key, value in fields.items():
            if isinstance(value, (AccountStatus, AuthProvider)):
                value = value.value
            elif isinstance(value, bool):
                value = 1 if value else 0
            elif isinstance(value, datetime):
                value = _iso(value)
            values[key] = value
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
            return True
        except SQLAlchemyError:
            return False

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_role(row) -> Role:
    return Role(
        id=row.id,
        name=row.name,
        description=row.description or "",
        permissions=list(row.permissions or []),
    )


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        phone=row.phone,
        role_id=row.role_id,
        status=AccountStatus(row.status),
        is_verified=bool(row.is_verified),
        failed_login_attempts=row.failed_login_attempts,
        locked_until=_parse(row.locked_until),
        last_login=_parse(row.last_login),
        google_id=row.google_id,
        profile_picture=row.profile_picture,
        provider=AuthProvider(row.provider),
        created_at=_parse(row.created_at),
        role=Role(
            id=row.role_id,
            name=row.role_name,
            description=row.role_description or "",
            permissions=list(row.role_permissions or []),
        ),
    )
