"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts, profiles and audit.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account / _row_to_profile / _row_to_audit are the mappers. The state
machine never touches SQL directly.

Concurrency:
  The core keeps no locks. Every transition that consumes a one-time code is
  a single conditional UPDATE whose WHERE clause repeats the precondition
  (compare-and-swap). rowcount == 0 means another request got there first;
  the method returns False and the caller reports the losing outcome.

Time:
  Columns hold naive UTC datetimes (SQLite has no timezone type). Values are
  converted at this boundary; everything above the store sees aware UTC.

Emails:
  Stored and queried normalized (strip + lower). The UNIQUE constraint on
  the normalized column makes the duplicate check race-free.

Security:
  All queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    case,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from auth.models import (
    ACCOUNT_PROFILE_FIELDS,
    PROFILE_FIELDS,
    Account,
    AccountStatus,
    AuditAction,
    AuditEvent,
    Profile,
    Role,
)

logger = logging.getLogger("accountgate.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(320), nullable=False, unique=True, index=True),  # normalized
    Column("credential_hash", Text),  # NULL for OAuth-only accounts
    Column("role", String(20), nullable=False, server_default=Role.USER.value),
    Column("status", String(20), nullable=False, server_default=AccountStatus.INACTIVE.value),
    Column("verified", Boolean, nullable=False, server_default="0"),
    Column("verification_code", String(6)),
    Column("verification_expiry", DateTime),
    Column("reset_token", String(6)),
    Column("reset_token_expiry", DateTime),
    Column("name", String(255)),
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("phone", String(50)),
    Column("company", String(255)),
    Column("title", String(255)),
    Column("department", String(255)),
    Column("image", Text),
    Column("oauth_provider", String(30)),
    Column("oauth_subject", Text),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
    Column("last_login_at", DateTime),
)

_profiles = Table(
    "profiles",
    _metadata,
    Column("account_id", String(36), ForeignKey("accounts.id", ondelete="CASCADE"), primary_key=True),
    Column("bio", Text),
    Column("date_of_birth", Date),
    Column("gender", String(50)),
    Column("nationality", String(100)),
    Column("address", String(255)),
    Column("address2", String(255)),
    Column("city", String(100)),
    Column("state", String(100)),
    Column("country", String(100)),
    Column("zip_code", String(20)),
    Column("industry", String(100)),
    Column("job_title", String(255)),
    Column("years_of_experience", Integer),
    Column("linkedin", String(255)),
    Column("github", String(255)),
    Column("twitter", String(255)),
    Column("website", String(255)),
    Column("timezone", String(64)),
    Column("language", String(16)),
    Column("currency", String(8)),
    Column("theme", String(16)),
)

# Append-only. account_id goes NULL when the account is deleted so the
# record itself survives; resource_id keeps the original id.
_audit_log = Table(
    "audit_log",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", String(36), ForeignKey("accounts.id", ondelete="SET NULL"), index=True),
    Column("action", String(64), nullable=False, index=True),
    Column("resource_type", String(32), nullable=False),
    Column("resource_id", String(36)),
    Column("details", JSON),
    Column("outcome", String(16), nullable=False),
    Column("created_at", DateTime, nullable=False, index=True),
)

# Columns the admin/owner update paths may write through update_account().
_UPDATABLE_ACCOUNT_FIELDS = frozenset(
    {
        "role",
        "status",
        "verified",
        "verification_code",
        "verification_expiry",
        "name",
        "image",
        "credential_hash",
        "oauth_provider",
        "oauth_subject",
        *ACCOUNT_PROFILE_FIELDS,
    }
)


# ---------------------------------------------------------------------------
# Engine setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL and foreign keys per connection.

    SQLite PRAGMAs are not inherited by new pooled connections. foreign_keys
    is off by default in SQLite, which would silently skip the ON DELETE rules.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _is_memory_url(db_url: str) -> bool:
    return db_url in ("sqlite://", "sqlite:///:memory:")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _to_db(value: datetime | None) -> datetime | None:
    """Aware UTC -> naive UTC for storage."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_db(value: datetime | None) -> datetime | None:
    """Naive UTC from storage -> aware UTC."""
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account, Profile and AuditEvent records.

    Usage:
        store = AccountStore("sqlite:///accountgate.db")
        account_id = store.create_account(Account(email="a@x.com", credential_hash=h))
        account = store.get_by_email("A@X.com")
        store.close()

    In-memory URLs ("sqlite://") use a StaticPool so every thread sees the
    same database, which is what TestClient's worker threads need.
    """

    def __init__(self, db_url: str = "sqlite:///accountgate.db") -> None:
        engine_kwargs: dict[str, Any] = {}
        if db_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if _is_memory_url(db_url):
                engine_kwargs["poolclass"] = StaticPool
        self.engine: Engine = create_engine(db_url, **engine_kwargs)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Account queries
    # ------------------------------------------------------------------

    def create_account(self, account: Account, profile: Profile | None = None) -> str:
        """Insert an account (and its profile row) and return the new id.

        Raises sqlalchemy.exc.IntegrityError if the normalized email already
        exists. The state machine turns that into DuplicateAccount, which
        covers the race where two registrations pass the existence check
        together.
        """
        account_id = account.id or uuid.uuid4().hex
        now = _now()
        profile_values = _profile_values(profile) if profile is not None else {}
        with self.engine.connect() as conn:
            conn.execute(
                _accounts.insert().values(
                    id=account_id,
                    email=normalize_email(account.email),
                    credential_hash=account.credential_hash,
                    role=Role(account.role).value,
                    status=AccountStatus(account.status).value,
                    verified=account.verified,
                    verification_code=account.verification_code,
                    verification_expiry=_to_db(account.verification_expiry),
                    reset_token=account.reset_token,
                    reset_token_expiry=_to_db(account.reset_token_expiry),
                    name=account.name,
                    first_name=account.first_name,
                    last_name=account.last_name,
                    phone=account.phone,
                    company=account.company,
                    title=account.title,
                    department=account.department,
                    image=account.image,
                    oauth_provider=account.oauth_provider,
                    oauth_subject=account.oauth_subject,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.execute(_profiles.insert().values(account_id=account_id, **profile_values))
            conn.commit()
        return account_id

    def get_by_id(self, account_id: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_email(self, email: str) -> Account | None:
        """Look up an account by email, case-insensitively."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == normalize_email(email))).fetchone()
        return _row_to_account(row) if row is not None else None

    def list_accounts(self) -> list[Account]:
        """Return all accounts, newest first. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_accounts.select().order_by(_accounts.c.created_at.desc())).fetchall()
        return [_row_to_account(r) for r in rows]

    def update_account(self, account_id: str, **fields) -> bool:
        """Update mutable fields on an existing account.

        Accepted fields: role, status, verification state, name, image,
        credential_hash, OAuth link fields and the identity fields of a
        profile patch. Unknown
        fields raise ValueError. Returns True if a row was updated.
        """
        unknown = set(fields) - _UPDATABLE_ACCOUNT_FIELDS
        if unknown:
            raise ValueError(f"Unknown account fields: {unknown!r}")
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        if "status" in fields:
            fields["status"] = AccountStatus(fields["status"]).value
        if "verification_expiry" in fields:
            fields["verification_expiry"] = _to_db(fields["verification_expiry"])
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update().where(_accounts.c.id == account_id).values(updated_at=_now(), **fields)
            )
            conn.commit()
        return result.rowcount > 0

    def delete_account(self, account_id: str) -> bool:
        """Permanently delete an account. The profile row cascades.

        Callers check the self-deletion and last-admin guards before calling.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.delete().where(_accounts.c.id == account_id))
            conn.commit()
        return result.rowcount > 0

    def touch_last_login(self, account_id: str, when: datetime) -> None:
        with self.engine.connect() as conn:
            conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(last_login_at=_to_db(when)))
            conn.commit()

    def count_active_admins(self) -> int:
        """Return the number of ACTIVE admin accounts (last-admin guard)."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_accounts)
                .where(
                    (_accounts.c.role == Role.ADMIN.value) & (_accounts.c.status == AccountStatus.ACTIVE.value)
                )
            ).scalar()
        return result or 0

    def stats(self, now: datetime, recent_days: int = 30) -> dict[str, int]:
        """Return the admin console counters."""
        since = _to_db(now - timedelta(days=recent_days))
        count = select(func.count()).select_from(_accounts)
        with self.engine.connect() as conn:
            total = conn.execute(count).scalar() or 0
            active = conn.execute(count.where(_accounts.c.status == AccountStatus.ACTIVE.value)).scalar() or 0
            suspended = conn.execute(count.where(_accounts.c.status == AccountStatus.SUSPENDED.value)).scalar() or 0
            admins = conn.execute(count.where(_accounts.c.role == Role.ADMIN.value)).scalar() or 0
            recent = conn.execute(count.where(_accounts.c.created_at >= since)).scalar() or 0
        return {
            "total_users": total,
            "active_users": active,
            "suspended_users": suspended,
            "admin_count": admins,
            "recent_users": recent,
        }

    # ------------------------------------------------------------------
    # Verification codes
    # ------------------------------------------------------------------

    def set_verification_code(self, account_id: str, code: str, expires_at: datetime) -> None:
        """Store a new pending verification code, replacing any previous one."""
        with self.engine.connect() as conn:
            conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(verification_code=code, verification_expiry=_to_db(expires_at), updated_at=_now())
            )
            conn.commit()

    def mark_verified(self, account_id: str, code: str) -> bool:
        """Consume the verification code and activate the account in one UPDATE.

        The WHERE clause repeats the preconditions (code still pending, not yet
        verified), so of two concurrent confirmations only one matches a row.
        verified, status and the cleared code fields change together; no
        intermediate state is ever stored. A SUSPENDED account becomes verified
        but stays SUSPENDED: only an admin lifts a suspension.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update()
                .where(
                    (_accounts.c.id == account_id)
                    & (_accounts.c.verification_code == code)
                    & (_accounts.c.verified.is_(False))
                )
                .values(
                    verified=True,
                    status=case(
                        (_accounts.c.status == AccountStatus.SUSPENDED.value, AccountStatus.SUSPENDED.value),
                        else_=AccountStatus.ACTIVE.value,
                    ),
                    verification_code=None,
                    verification_expiry=None,
                    updated_at=_now(),
                )
            )
            conn.commit()
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Reset tokens
    # ------------------------------------------------------------------

    def set_reset_token(self, account_id: str, token: str, expires_at: datetime) -> None:
        """Store a new pending reset code, replacing any previous one."""
        with self.engine.connect() as conn:
            conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(reset_token=token, reset_token_expiry=_to_db(expires_at), updated_at=_now())
            )
            conn.commit()

    def find_by_reset_token(self, email: str, token: str, now: datetime) -> Account | None:
        """Return the account matching {email, reset_token, unexpired} or None."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _accounts.select().where(
                    (_accounts.c.email == normalize_email(email))
                    & (_accounts.c.reset_token == token)
                    & (_accounts.c.reset_token_expiry > _to_db(now))
                )
            ).fetchone()
        return _row_to_account(row) if row is not None else None

    def consume_reset_token(self, account_id: str, token: str, now: datetime, credential_hash: str) -> bool:
        """Replace the credential and clear the reset code if it is still valid.

        Compare-and-swap on (reset_token, reset_token_expiry): a second request
        with the same code finds no row.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update()
                .where(
                    (_accounts.c.id == account_id)
                    & (_accounts.c.reset_token == token)
                    & (_accounts.c.reset_token_expiry > _to_db(now))
                )
                .values(
                    credential_hash=credential_hash,
                    reset_token=None,
                    reset_token_expiry=None,
                    updated_at=_now(),
                )
            )
            conn.commit()
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def get_profile(self, account_id: str) -> Profile | None:
        with self.engine.connect() as conn:
            row = conn.execute(_profiles.select().where(_profiles.c.account_id == account_id)).fetchone()
        return _row_to_profile(row) if row is not None else None

    def upsert_profile(self, account_id: str, **fields) -> None:
        """Write profile fields, creating the row if the account has none yet."""
        unknown = set(fields) - set(PROFILE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown profile fields: {unknown!r}")
        with self.engine.connect() as conn:
            exists = conn.execute(
                select(_profiles.c.account_id).where(_profiles.c.account_id == account_id)
            ).fetchone()
            if exists is None:
                conn.execute(_profiles.insert().values(account_id=account_id, **fields))
            elif fields:
                conn.execute(_profiles.update().where(_profiles.c.account_id == account_id).values(**fields))
            conn.commit()

    # ------------------------------------------------------------------
    # Audit log (append-only)
    # ------------------------------------------------------------------

    def append_audit(self, audit: AuditEvent) -> int:
        """Insert one audit record and return its id. There is no update or delete."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _audit_log.insert().values(
                    account_id=audit.account_id,
                    action=AuditAction(audit.action).value,
                    resource_type=audit.resource_type,
                    resource_id=audit.resource_id,
                    details=audit.details or {},
                    outcome=audit.outcome,
                    created_at=_to_db(audit.timestamp) or _now(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def list_audit(self, account_id: str | None = None, limit: int = 100) -> list[AuditEvent]:
        """Return audit records oldest first; limited to the newest `limit` rows."""
        query = _audit_log.select()
        if account_id is not None:
            query = query.where(
                (_audit_log.c.account_id == account_id) | (_audit_log.c.resource_id == account_id)
            )
        query = query.order_by(_audit_log.c.id.desc()).limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_audit(r) for r in reversed(rows)]

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            conn.execute(select(1))
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        credential_hash=row.credential_hash,
        role=Role(row.role),
        status=AccountStatus(row.status),
        verified=bool(row.verified),
        verification_code=row.verification_code,
        verification_expiry=_from_db(row.verification_expiry),
        reset_token=row.reset_token,
        reset_token_expiry=_from_db(row.reset_token_expiry),
        name=row.name,
        first_name=row.first_name,
        last_name=row.last_name,
        phone=row.phone,
        company=row.company,
        title=row.title,
        department=row.department,
        image=row.image,
        oauth_provider=row.oauth_provider,
        oauth_subject=row.oauth_subject,
        created_at=_from_db(row.created_at),
        updated_at=_from_db(row.updated_at),
        last_login_at=_from_db(row.last_login_at),
    )


def _profile_values(profile: Profile) -> dict[str, Any]:
    return {name: getattr(profile, name) for name in PROFILE_FIELDS}


def _row_to_profile(row) -> Profile:
    return Profile(account_id=row.account_id, **{name: getattr(row, name) for name in PROFILE_FIELDS})


def _row_to_audit(row) -> AuditEvent:
    return AuditEvent(
        id=row.id,
        account_id=row.account_id,
        action=AuditAction(row.action),
        resource_type=row.resource_type,
        resource_id=row.resource_id,
        details=row.details or {},
        outcome=row.outcome,
        timestamp=_from_db(row.created_at),
    )
