"""
API request and response models for accountgate REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Validation errors raised here never reach the state machine: FastAPI turns
them into a 422 with the shared error envelope (see api/main.py).
"""

import re
from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from auth.credentials import MAX_SECRET_BYTES, secret_too_long
from auth.models import Account, AccountStatus, AuditEvent, Profile, Role
from core.patch import patch_from_fields

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# PASSWORD_MAX counts characters; _check_password also caps the UTF-8 bytes
# at what bcrypt accepts, since one character may take up to four.
PASSWORD_MIN = 8
PASSWORD_MAX = MAX_SECRET_BYTES


def _check_email(value: str) -> str:
    value = value.strip().lower()
    if not EMAIL_RE.match(value):
        raise ValueError("Invalid email address")
    return value


def _check_password(value: str) -> str:
    if secret_too_long(value):
        raise ValueError(f"Password must be at most {MAX_SECRET_BYTES} bytes")
    return value


# ---------------------------------------------------------------------------
# Shared envelopes
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class MessageResponse(BaseModel):
    """Plain acknowledgement. code is only populated when EXPOSE_CODES is on."""

    message: str
    code: Optional[str] = None


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=320)
    password: str = Field(min_length=PASSWORD_MIN, max_length=PASSWORD_MAX)
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=50)
    company: Optional[str] = Field(default=None, max_length=255)
    accept_terms: bool

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return _check_email(value)

    @field_validator("password")
    @classmethod
    def password_fits(cls, value: str) -> str:
        return _check_password(value)

    @field_validator("accept_terms")
    @classmethod
    def terms_accepted(cls, value: bool) -> bool:
        if not value:
            raise ValueError("You must accept the terms and conditions")
        return value


class EmailRequest(BaseModel):
    """Request body for resend-code and forgot-password."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=320)


class VerifyRequest(BaseModel):
    """Request body for POST /api/v1/auth/verify."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=320)
    code: str = Field(min_length=1, max_length=16)


class ResetPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/reset-password."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=320)
    reset_code: str = Field(min_length=1, max_length=16)
    new_password: str = Field(min_length=PASSWORD_MIN, max_length=PASSWORD_MAX)

    @field_validator("new_password")
    @classmethod
    def password_fits(cls, value: str) -> str:
        return _check_password(value)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    email: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1, max_length=255)


class PasswordChangeRequest(BaseModel):
    """Request body for POST /api/v1/user/password."""

    current_password: str = Field(min_length=1, max_length=255)
    new_password: str = Field(min_length=PASSWORD_MIN, max_length=PASSWORD_MAX)
    confirm_password: str = Field(min_length=1, max_length=PASSWORD_MAX)

    @field_validator("new_password")
    @classmethod
    def password_fits(cls, value: str) -> str:
        return _check_password(value)

    @model_validator(mode="after")
    def passwords_match(self) -> "PasswordChangeRequest":
        if self.new_password != self.confirm_password:
            raise ValueError("Passwords don't match")
        return self


class ProfilePatchRequest(BaseModel):
    """Request body for PATCH /api/v1/user/profile.

    Every field is optional. A field left out is not touched; a field sent as
    null or "" is cleared; anything else is stored. to_patch() carries that
    three-way distinction into core.patch.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=50)
    company: Optional[str] = Field(default=None, max_length=255)
    title: Optional[str] = Field(default=None, max_length=255)
    department: Optional[str] = Field(default=None, max_length=255)
    bio: Optional[str] = Field(default=None, max_length=2000)
    date_of_birth: Optional[str] = Field(default=None, max_length=32)
    gender: Optional[str] = Field(default=None, max_length=50)
    nationality: Optional[str] = Field(default=None, max_length=100)
    address: Optional[str] = Field(default=None, max_length=255)
    address2: Optional[str] = Field(default=None, max_length=255)
    city: Optional[str] = Field(default=None, max_length=100)
    state: Optional[str] = Field(default=None, max_length=100)
    country: Optional[str] = Field(default=None, max_length=100)
    zip_code: Optional[str] = Field(default=None, max_length=20)
    industry: Optional[str] = Field(default=None, max_length=100)
    job_title: Optional[str] = Field(default=None, max_length=255)
    years_of_experience: Optional[int] = Field(default=None, ge=0, le=80)
    linkedin: Optional[str] = Field(default=None, max_length=255)
    github: Optional[str] = Field(default=None, max_length=255)
    twitter: Optional[str] = Field(default=None, max_length=255)
    website: Optional[str] = Field(default=None, max_length=255)
    timezone: Optional[str] = Field(default=None, max_length=64)
    language: Optional[str] = Field(default=None, max_length=16)
    currency: Optional[str] = Field(default=None, max_length=8)
    theme: Optional[str] = Field(default=None, max_length=16)

    def to_patch(self) -> dict[str, Any]:
        return patch_from_fields(self.model_dump(), self.model_fields_set)


class AdminUserPatch(BaseModel):
    """Request body for PATCH /api/v1/admin/users/{id}."""

    role: Optional[Role] = None
    status: Optional[AccountStatus] = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Public view of an account. Hashes and pending codes are never included."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: Optional[str]
    role: Role
    status: AccountStatus
    verified: bool
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    title: Optional[str] = None
    department: Optional[str] = None
    image: Optional[str] = None
    oauth_provider: Optional[str] = None
    has_password: bool = False
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            id=account.id,
            email=account.email,
            name=account.name,
            role=account.role,
            status=account.status,
            verified=account.verified,
            first_name=account.first_name,
            last_name=account.last_name,
            phone=account.phone,
            company=account.company,
            title=account.title,
            department=account.department,
            image=account.image,
            oauth_provider=account.oauth_provider,
            has_password=account.has_credential,
            created_at=account.created_at,
            last_login_at=account.last_login_at,
        )


class ProfileData(BaseModel):
    model_config = ConfigDict(frozen=True)

    bio: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    nationality: Optional[str] = None
    address: Optional[str] = None
    address2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    zip_code: Optional[str] = None
    industry: Optional[str] = None
    job_title: Optional[str] = None
    years_of_experience: Optional[int] = None
    linkedin: Optional[str] = None
    github: Optional[str] = None
    twitter: Optional[str] = None
    website: Optional[str] = None
    timezone: Optional[str] = None
    language: Optional[str] = None
    currency: Optional[str] = None
    theme: Optional[str] = None

    @classmethod
    def from_profile(cls, profile: Profile) -> "ProfileData":
        return cls(**{k: v for k, v in vars(profile).items() if k != "account_id"})


class ProfileResponse(BaseModel):
    user: AccountResponse
    profile: ProfileData


class RegisterResponse(BaseModel):
    message: str
    user: AccountResponse
    verification_required: bool = True
    verification_code: Optional[str] = None


class VerifyResponse(BaseModel):
    message: str
    verified: bool


class LoginResponse(BaseModel):
    access_token: str
    token_type: str
    expires_in: int
    user: AccountResponse


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[int]
    account_id: Optional[str]
    action: str
    resource_type: str
    resource_id: Optional[str]
    details: dict
    outcome: str
    timestamp: Optional[datetime]

    @classmethod
    def from_event(cls, event: AuditEvent) -> "AuditEntryResponse":
        return cls(
            id=event.id,
            account_id=event.account_id,
            action=event.action.value,
            resource_type=event.resource_type,
            resource_id=event.resource_id,
            details=event.details,
            outcome=event.outcome,
            timestamp=event.timestamp,
        )


class AdminUserDetail(BaseModel):
    user: AccountResponse
    profile: ProfileData
    recent_activity: list[AuditEntryResponse]


class StatsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_users: int
    active_users: int
    suspended_users: int
    admin_count: int
    recent_users: int


class OAuthProviderInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    label: str
