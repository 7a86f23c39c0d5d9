"""
core/errors.py -- Error taxonomy shared by the auth core and the HTTP adapter.

Every expected failure of an account operation is an AccountError subclass
carrying a stable machine-readable code, a user-facing message, and the HTTP
status class the adapter should answer with. api/main.py registers a single
exception handler for AccountError, so route handlers never translate errors
by hand.

Classes map to the status classes:
  400 -- validation and business-rule failures (caller re-prompts the user)
  401 -- missing or invalid identity
  403 -- authorization failures, including the suspended-account block
  404 -- missing resources
  409 -- uniqueness conflicts

Enumeration-prone outcomes (InvalidCredentials, InvalidOrExpiredCode) have a
fixed message. Callers must not pass a custom message to them.

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations


class AccountError(Exception):
    """Base class for every named outcome of an account operation."""

    code: str = "account_error"
    message: str = "The request could not be completed."
    status_code: int = 400

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


# ---------------------------------------------------------------------------
# Validation (400)
# ---------------------------------------------------------------------------


class InvalidInput(AccountError):
    code = "invalid_input"
    message = "Invalid input."


# ---------------------------------------------------------------------------
# Business rules (400 / 409)
# ---------------------------------------------------------------------------


class DuplicateAccount(AccountError):
    code = "duplicate_account"
    message = "An account with this email already exists."
    status_code = 409


class AlreadyVerified(AccountError):
    code = "already_verified"
    message = "Account already verified."


class NoPendingCode(AccountError):
    code = "no_pending_code"
    message = "No verification code found. Please request a new one."


class CodeExpired(AccountError):
    code = "code_expired"
    message = "Verification code has expired. Please request a new one."


class CodeMismatch(AccountError):
    code = "code_mismatch"
    message = "Invalid verification code."


class InvalidOrExpiredCode(AccountError):
    """Covers wrong code, expired code and unknown email alike."""

    code = "invalid_or_expired_code"
    message = "Invalid or expired reset code."


class NoCredentialSet(AccountError):
    code = "no_credential_set"
    message = "Password not set for this account (OAuth sign-in only)."


class InvalidCurrentCredential(AccountError):
    code = "invalid_current_credential"
    message = "Current password is incorrect."


class InvalidStatusTransition(AccountError):
    code = "invalid_status_transition"
    message = "This status change is not allowed."


class LastAdminProtected(AccountError):
    code = "last_admin"
    message = "Cannot remove the last active admin account."


# ---------------------------------------------------------------------------
# Identity (401)
# ---------------------------------------------------------------------------


class InvalidCredentials(AccountError):
    """One message for unknown email, missing password and wrong password."""

    code = "invalid_credentials"
    message = "Invalid email or password."
    status_code = 401


class SessionExpired(AccountError):
    code = "session_expired"
    message = "Session has expired. Please sign in again."
    status_code = 401


class SessionInvalid(AccountError):
    code = "session_invalid"
    message = "Authentication required."
    status_code = 401


# ---------------------------------------------------------------------------
# Authorization (403)
# ---------------------------------------------------------------------------


class AccountSuspended(AccountError):
    code = "account_suspended"
    message = "Account suspended. Please contact support."
    status_code = 403


class AccountNotVerified(AccountError):
    code = "account_not_verified"
    message = "Please verify your email address before signing in."
    status_code = 403


class PermissionDenied(AccountError):
    code = "forbidden"
    message = "You do not have permission to perform this action."
    status_code = 403


class SelfStatusChangeForbidden(AccountError):
    code = "self_status_change"
    message = "You cannot delete, suspend or demote your own account."
    status_code = 403


# ---------------------------------------------------------------------------
# Missing resources (404)
# ---------------------------------------------------------------------------


class NotFound(AccountError):
    code = "not_found"
    message = "User not found."
    status_code = 404
