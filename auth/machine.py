"""
auth/machine.py -- Account lifecycle: registration, verification, reset, sign-in, admin changes.

States: INACTIVE (unverified) -> ACTIVE <-> SUSPENDED. Pending verification
and reset codes are independent flags on the account, not states.

Every public method is one transition. It reads the account, checks the
preconditions in a fixed order, applies the change through a single store
call, and then writes exactly one audit event. The audit write happens after
the change has committed and can never undo it (see auth/audit.py).

Security design decisions:
  [C1] authenticate() runs bcrypt even for unknown emails (timing
       equalization) and answers unknown email, missing password and wrong
       password with the same InvalidCredentials error.

  AccountSuspended is checked before the password and IS distinguishable:
       a suspended user must learn why sign-in fails.

  request_password_reset() returns None for unknown emails and writes no
       audit event; confirm_password_reset() answers every failure with the
       same InvalidOrExpiredCode. Neither reveals whether an email exists.

  Code consumption is a compare-and-swap UPDATE in the store. The loser of
       a race gets CodeMismatch / InvalidOrExpiredCode, never a second success.

  [M4] Admin changes refuse to delete, suspend or demote the acting admin's
       own account and refuse to remove the last active admin.

The role check for admin operations (caller must be ADMIN) is the HTTP
layer's job (auth/dependencies.require_role); this class trusts acting_id.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import IntegrityError

from auth.audit import AuditSink, record_event
from auth.codes import CodeGenerator
from auth.credentials import CredentialVerifier
from auth.delivery import CodeDelivery, CodePurpose, LoggingCodeDelivery
from auth.models import Account, AccountStatus, AuditAction, AuditEvent, Role
from auth.store import AccountStore, normalize_email
from core.clock import Clock, utc_now
from core.errors import (
    AccountNotVerified,
    AccountSuspended,
    AlreadyVerified,
    CodeExpired,
    CodeMismatch,
    DuplicateAccount,
    InvalidCredentials,
    InvalidCurrentCredential,
    InvalidInput,
    InvalidOrExpiredCode,
    InvalidStatusTransition,
    LastAdminProtected,
    NoCredentialSet,
    NoPendingCode,
    NotFound,
    SelfStatusChangeForbidden,
)

logger = logging.getLogger("accountgate.auth.machine")


class AccountStateMachine:
    """Owns every account lifecycle transition.

    Collaborators are injected; the instance keeps no per-request state and
    is safe to share across requests.
    """

    def __init__(
        self,
        store: AccountStore,
        credentials: CredentialVerifier,
        codes: CodeGenerator,
        audit: AuditSink,
        delivery: CodeDelivery | None = None,
        clock: Clock = utc_now,
        login_requires_verification: bool = False,
    ) -> None:
        self._store = store
        self._credentials = credentials
        self._codes = codes
        self._audit = audit
        self._delivery = delivery or LoggingCodeDelivery()
        self._clock = clock
        self.login_requires_verification = login_requires_verification

    # ------------------------------------------------------------------
    # Registration and email verification
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        secret: str,
        *,
        first_name: str | None = None,
        last_name: str | None = None,
        phone: str | None = None,
        company: str | None = None,
    ) -> Account:
        """Create an INACTIVE, unverified account and issue its first verification code."""
        email = _require_email(email)
        if self._store.get_by_email(email) is not None:
            raise DuplicateAccount()

        credential_hash = self._credentials.hash(secret)
        issued = self._codes.generate()
        account = Account(
            email=email,
            credential_hash=credential_hash,
            role=Role.USER,
            status=AccountStatus.INACTIVE,
            verified=False,
            verification_code=issued.code,
            verification_expiry=issued.expires_at,
            name=_display_name(email, first_name, last_name),
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            company=company,
        )
        try:
            account_id = self._store.create_account(account)
        except IntegrityError as exc:
            # Lost the race against a concurrent registration of the same email.
            raise DuplicateAccount() from exc

        self._deliver(email, CodePurpose.VERIFICATION, issued.code)
        self._record(AuditAction.REGISTER, account_id, details={"method": "email"})
        logger.info("Account registered: %s", account_id)
        return self._reload(account_id)

    def request_verification(self, email: str) -> str:
        """Issue a fresh verification code, invalidating any pending one."""
        account = self._store.get_by_email(_require_email(email))
        if account is None:
            raise NotFound()
        if account.verified:
            raise AlreadyVerified()

        issued = self._codes.generate()
        self._store.set_verification_code(account.id, issued.code, issued.expires_at)
        self._deliver(account.email, CodePurpose.VERIFICATION, issued.code)
        self._record(AuditAction.VERIFICATION_RESENT, account.id, details={"email": account.email})
        return issued.code

    def confirm_verification(self, email: str, code: str) -> Account:
        """Consume the pending code and move the account to ACTIVE + verified.

        A SUSPENDED account is marked verified but stays SUSPENDED.

        Checks, in order: NotFound, AlreadyVerified, NoPendingCode,
        CodeExpired, CodeMismatch.
        """
        account = self._store.get_by_email(_require_email(email))
        if account is None:
            raise NotFound()
        if account.verified:
            raise AlreadyVerified()
        if account.verification_code is None or account.verification_expiry is None:
            raise NoPendingCode()
        if self._clock() > account.verification_expiry:
            raise CodeExpired()
        if code != account.verification_code:
            raise CodeMismatch()
        if not self._store.mark_verified(account.id, account.verification_code):
            # Another request consumed or replaced the code in between.
            raise CodeMismatch()

        self._record(AuditAction.VERIFY, account.id, details={"email": account.email})
        logger.info("Account verified: %s", account.id)
        return self._reload(account.id)

    # ------------------------------------------------------------------
    # Password reset and change
    # ------------------------------------------------------------------

    def request_password_reset(self, email: str) -> str | None:
        """Issue a reset code if the account exists.

        Returns the code, or None for an unknown email. Callers must answer
        both cases identically.
        """
        account = self._store.get_by_email(_require_email(email))
        if account is None:
            logger.info("Password reset requested for an unknown email")
            return None

        issued = self._codes.generate()
        self._store.set_reset_token(account.id, issued.code, issued.expires_at)
        self._deliver(account.email, CodePurpose.PASSWORD_RESET, issued.code)
        self._record(AuditAction.PASSWORD_RESET_REQUESTED, account.id, details={"email": account.email})
        return issued.code

    def confirm_password_reset(self, email: str, code: str, new_secret: str) -> None:
        """Replace the credential if {email, code, unexpired} match; else InvalidOrExpiredCode."""
        # Hash first so every outcome costs one bcrypt round.
        new_hash = self._credentials.hash(new_secret)
        now = self._clock()
        account = self._store.find_by_reset_token(_require_email(email), code or "", now)
        if account is None:
            raise InvalidOrExpiredCode()
        if not self._store.consume_reset_token(account.id, code, now, new_hash):
            raise InvalidOrExpiredCode()

        self._record(AuditAction.PASSWORD_RESET, account.id, details={"email": account.email})
        logger.info("Password reset completed: %s", account.id)

    def change_credential(self, account_id: str, current_secret: str, new_secret: str) -> None:
        """Replace the password of a signed-in account after checking the current one."""
        account = self._store.get_by_id(account_id)
        if account is None:
            raise NotFound()
        if not account.has_credential:
            raise NoCredentialSet()
        if not current_secret or not self._credentials.verify(current_secret, account.credential_hash):
            raise InvalidCurrentCredential()

        self._store.update_account(account.id, credential_hash=self._credentials.hash(new_secret))
        self._record(AuditAction.PASSWORD_CHANGED, account.id, details={"email": account.email})

    # ------------------------------------------------------------------
    # Sign-in
    # ------------------------------------------------------------------

    def authenticate(self, email: str, secret: str) -> Account:
        """Check a password sign-in and return the account.

        InvalidCredentials for unknown email, OAuth-only account or wrong
        password; AccountSuspended for a suspended account, even with the
        correct password.
        """
        if not email or not secret:
            raise InvalidCredentials()
        account = self._store.get_by_email(email)
        if account is None or not account.has_credential:
            self._credentials.burn(secret)  # [C1] do NOT return before running bcrypt
            raise InvalidCredentials()
        if account.status == AccountStatus.SUSPENDED:
            self._record(
                AuditAction.LOGIN,
                account.id,
                details={"method": "credentials", "reason": "suspended"},
                outcome="failure",
            )
            raise AccountSuspended()
        if not self._credentials.verify(secret, account.credential_hash):
            self._record(
                AuditAction.LOGIN,
                account.id,
                details={"method": "credentials", "reason": "bad_credentials"},
                outcome="failure",
            )
            raise InvalidCredentials()
        if self.login_requires_verification and not account.verified:
            raise AccountNotVerified()

        if self._credentials.needs_rehash(account.credential_hash):
            self._store.update_account(account.id, credential_hash=self._credentials.hash(secret))
            logger.info("Credential re-hashed at cost %d: %s", self._credentials.rounds, account.id)

        self._store.touch_last_login(account.id, self._clock())
        self._record(AuditAction.LOGIN, account.id, details={"method": "credentials"})
        return self._reload(account.id)

    def authenticate_oauth(
        self,
        email: str,
        provider: str,
        subject: str,
        name: str | None = None,
        image: str | None = None,
    ) -> Account:
        """Sign in with an identity whose email the provider has verified.

        Unknown emails get a new OAuth-only account (no password, verified,
        ACTIVE). Known emails are linked to the provider on first use. Linking
        an unverified account verifies it and drops any password set before
        the email was proven.
        """
        email = _require_email(email)
        account = self._store.get_by_email(email)
        if account is not None and account.status == AccountStatus.SUSPENDED:
            self._record(
                AuditAction.LOGIN,
                account.id,
                details={"method": provider, "reason": "suspended"},
                outcome="failure",
            )
            raise AccountSuspended()

        if account is None:
            account = self._create_oauth_account(email, provider, subject, name, image)
        elif account.oauth_subject is None:
            link: dict[str, Any] = {"oauth_provider": provider, "oauth_subject": subject}
            if not account.verified:
                link.update(
                    verified=True,
                    status=AccountStatus.ACTIVE,
                    credential_hash=None,
                    verification_code=None,
                    verification_expiry=None,
                )
            self._store.update_account(account.id, **link)
            logger.info("Linked %s identity to account %s", provider, account.id)

        self._store.touch_last_login(account.id, self._clock())
        self._record(AuditAction.LOGIN, account.id, details={"method": provider})
        return self._reload(account.id)

    def sign_out(self, account_id: str) -> None:
        self._record(AuditAction.LOGOUT, account_id)

    # ------------------------------------------------------------------
    # Admin changes
    # ------------------------------------------------------------------

    def update_account(
        self,
        acting_id: str,
        target_id: str,
        *,
        role: Role | str | None = None,
        status: AccountStatus | str | None = None,
    ) -> Account:
        """Apply an admin change of role and/or status to another account."""
        role = _parse(Role, role, "role")
        status = _parse(AccountStatus, status, "status")
        if role is None and status is None:
            raise InvalidInput("No fields to update.")

        removes_admin = (status is not None and status != AccountStatus.ACTIVE) or (
            role is not None and role != Role.ADMIN
        )
        if acting_id == target_id and removes_admin:
            raise SelfStatusChangeForbidden()

        target = self._store.get_by_id(target_id)
        if target is None:
            raise NotFound()
        if status == AccountStatus.ACTIVE and not target.verified:
            raise InvalidStatusTransition("Only verified accounts can be activated.")
        if status == AccountStatus.INACTIVE and target.status != AccountStatus.INACTIVE:
            # INACTIVE means "awaiting verification"; a verified account could never leave it.
            raise InvalidStatusTransition("Accounts cannot be moved back to INACTIVE.")
        if removes_admin:
            self._guard_last_admin(target)

        changes: dict[str, Any] = {}
        if role is not None and role != target.role:
            changes["role"] = role
        if status is not None and status != target.status:
            changes["status"] = status
        if not changes:
            return target

        self._store.update_account(target.id, **changes)
        self._record(
            AuditAction.USER_UPDATED,
            acting_id,
            resource_id=target.id,
            details={
                "changes": {k: v.value for k, v in changes.items()},
                "previous": {k: getattr(target, k).value for k in changes},
            },
        )
        logger.info("Account %s updated by %s: %s", target.id, acting_id, sorted(changes))
        return self._reload(target.id)

    def set_status(self, acting_id: str, target_id: str, new_status: AccountStatus | str) -> Account:
        return self.update_account(acting_id, target_id, status=new_status)

    def set_role(self, acting_id: str, target_id: str, new_role: Role | str) -> Account:
        return self.update_account(acting_id, target_id, role=new_role)

    def delete_account(self, acting_id: str, target_id: str) -> None:
        """Permanently delete another account."""
        if acting_id == target_id:
            raise SelfStatusChangeForbidden()
        target = self._store.get_by_id(target_id)
        if target is None:
            raise NotFound()
        self._guard_last_admin(target)

        if not self._store.delete_account(target.id):
            raise NotFound()
        self._record(
            AuditAction.USER_DELETED,
            acting_id,
            resource_id=target.id,
            details={"email": target.email},
        )
        logger.info("Account %s deleted by %s", target.id, acting_id)

    def bootstrap_admin(self, email: str, secret: str) -> Account:
        """Create an ACTIVE, verified ADMIN with a password (first-run setup)."""
        email = _require_email(email)
        if self._store.get_by_email(email) is not None:
            raise DuplicateAccount()
        account = Account(
            email=email,
            credential_hash=self._credentials.hash(secret),
            role=Role.ADMIN,
            status=AccountStatus.ACTIVE,
            verified=True,
            name=_display_name(email),
        )
        try:
            account_id = self._store.create_account(account)
        except IntegrityError as exc:
            raise DuplicateAccount() from exc
        self._record(AuditAction.REGISTER, account_id, details={"method": "bootstrap"})
        logger.info("Admin account bootstrapped: %s", account_id)
        return self._reload(account_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _guard_last_admin(self, target: Account) -> None:
        if target.role == Role.ADMIN and target.status == AccountStatus.ACTIVE:
            if self._store.count_active_admins() <= 1:
                raise LastAdminProtected()

    def _create_oauth_account(
        self, email: str, provider: str, subject: str, name: str | None, image: str | None
    ) -> Account:
        account = Account(
            email=email,
            credential_hash=None,
            status=AccountStatus.ACTIVE,
            verified=True,
            name=name or _display_name(email),
            image=image,
            oauth_provider=provider,
            oauth_subject=subject,
        )
        try:
            account_id = self._store.create_account(account)
        except IntegrityError:
            # A concurrent callback created it first; use that record.
            existing = self._store.get_by_email(email)
            if existing is None:
                raise
            return existing
        self._record(AuditAction.REGISTER, account_id, details={"method": provider})
        logger.info("OAuth account created via %s: %s", provider, account_id)
        return self._reload(account_id)

    def _deliver(self, email: str, purpose: CodePurpose, code: str) -> None:
        try:
            self._delivery.send(email, purpose, code)
        except Exception:
            logger.exception("Code delivery failed (%s)", purpose.value)

    def _record(
        self,
        action: AuditAction,
        account_id: str | None,
        *,
        resource_id: str | None = None,
        details: dict[str, Any] | None = None,
        outcome: str = "success",
    ) -> None:
        record_event(
            self._audit,
            AuditEvent(
                action=action,
                account_id=account_id,
                resource_type="User",
                resource_id=resource_id or account_id,
                details=details or {},
                outcome=outcome,
                timestamp=self._clock(),
            ),
        )

    def _reload(self, account_id: str) -> Account:
        account = self._store.get_by_id(account_id)
        if account is None:
            raise NotFound()
        return account


def _require_email(email: str) -> str:
    normalized = normalize_email(email or "")
    if not normalized:
        raise InvalidInput("Email is required.")
    return normalized


def _display_name(email: str, first_name: str | None = None, last_name: str | None = None) -> str:
    if first_name and last_name:
        return f"{first_name} {last_name}"
    return email.split("@")[0]


def _parse(enum_cls, value, field_name: str):
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise InvalidInput(f"Invalid {field_name}: {value!r}") from exc
