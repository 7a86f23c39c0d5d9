"""
auth/models.py -- Domain dataclasses and enums for account entities.

Pattern: Data class (pure data container, zero logic). The state machine and
the store do the work; these classes only own the shape.

Timestamps are timezone-aware UTC datetimes everywhere in the core. The store
converts to and from the naive UTC values the database holds.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any


class Role(str, Enum):
    USER = "USER"
    MODERATOR = "MODERATOR"
    ADMIN = "ADMIN"


class AccountStatus(str, Enum):
    """Top-level account state.

    INACTIVE is the unverified state: every registered password account starts
    here and leaves it only through a successful code confirmation.
    """

    INACTIVE = "INACTIVE"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


class AuditAction(str, Enum):
    REGISTER = "ACCOUNT_CREATED"
    VERIFICATION_RESENT = "VERIFICATION_CODE_RESENT"
    VERIFY = "EMAIL_VERIFIED"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    PASSWORD_RESET_REQUESTED = "PASSWORD_RESET_REQUESTED"
    PASSWORD_RESET = "PASSWORD_RESET"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    PROFILE_UPDATED = "PROFILE_UPDATED"
    USER_UPDATED = "USER_UPDATED"
    USER_DELETED = "USER_DELETED"


# Identity fields an account owner may edit through a profile patch.
ACCOUNT_PROFILE_FIELDS: tuple[str, ...] = ("first_name", "last_name", "phone", "company", "title", "department")


@dataclass
class Account:
    """An identity record.

    credential_hash is None for OAuth-only accounts (they have no local
    password). verification_code/verification_expiry and
    reset_token/reset_token_expiry are each either both set or both None.

    id is None before the record is written to the database.
    """

    email: str
    id: str | None = None
    credential_hash: str | None = None
    role: Role = Role.USER
    status: AccountStatus = AccountStatus.INACTIVE
    verified: bool = False
    verification_code: str | None = None
    verification_expiry: datetime | None = None
    reset_token: str | None = None
    reset_token_expiry: datetime | None = None
    name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    company: str | None = None
    title: str | None = None
    department: str | None = None
    image: str | None = None
    oauth_provider: str | None = None  # "github", "google", "oidc"
    oauth_subject: str | None = None  # provider's stable user ID
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_login_at: datetime | None = None

    @property
    def has_credential(self) -> bool:
        return self.credential_hash is not None


@dataclass
class Profile:
    """One-to-one extension of Account with optional personal details."""

    account_id: str
    bio: str | None = None
    date_of_birth: date | None = None
    gender: str | None = None
    nationality: str | None = None
    address: str | None = None
    address2: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    zip_code: str | None = None
    industry: str | None = None
    job_title: str | None = None
    years_of_experience: int | None = None
    linkedin: str | None = None
    github: str | None = None
    twitter: str | None = None
    website: str | None = None
    timezone: str | None = None
    language: str | None = None
    currency: str | None = None
    theme: str | None = None


PROFILE_FIELDS: tuple[str, ...] = tuple(f for f in Profile.__dataclass_fields__ if f != "account_id")


@dataclass(frozen=True)
class AuditEvent:
    """Immutable record of one security-relevant transition.

    account_id is the acting account (None for events that cannot be tied to
    a real account). resource_id names the record the action touched.
    """

    action: AuditAction
    account_id: str | None
    resource_type: str = "User"
    resource_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    outcome: str = "success"  # "success" | "failure"
    timestamp: datetime | None = None
    id: int | None = None


@dataclass(frozen=True)
class SessionIdentity:
    """The identity claims carried by a session token."""

    account_id: str
    email: str
    role: Role
    name: str | None = None
    issued_at: datetime | None = None
    expires_at: datetime | None = None

    @classmethod
    def from_account(cls, account: Account) -> "SessionIdentity":
        return cls(account_id=account.id, email=account.email, role=account.role, name=account.name)
