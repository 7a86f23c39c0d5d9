"""
auth/profiles.py -- Owner-initiated profile updates.

A profile patch may touch two records: identity fields on the account row
(first/last name, phone, company, title, department) and the one-to-one
profile row (bio, address, preferences, ...). Both go through the single
merge rule in core.patch: absent keeps, null/"" clears, a value sets.

The display name is recomputed from first and last name whenever either
changes, so session tokens can be refreshed with it afterwards.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import date
from typing import Any

from auth.audit import AuditSink, record_event
from auth.models import ACCOUNT_PROFILE_FIELDS, PROFILE_FIELDS, Account, AuditAction, AuditEvent, Profile
from auth.store import AccountStore
from core.clock import Clock, utc_now
from core.errors import InvalidInput, NotFound
from core.patch import CLEAR, apply_patch

logger = logging.getLogger("accountgate.auth.profiles")


class ProfileService:
    def __init__(self, store: AccountStore, audit: AuditSink, clock: Clock = utc_now) -> None:
        self._store = store
        self._audit = audit
        self._clock = clock

    def get(self, account_id: str) -> tuple[Account, Profile]:
        account = self._store.get_by_id(account_id)
        if account is None:
            raise NotFound()
        profile = self._store.get_profile(account_id) or Profile(account_id=account_id)
        return account, profile

    def update(self, account_id: str, patch: dict[str, Any]) -> tuple[Account, Profile]:
        """Apply a three-way patch to the account's identity and profile fields.

        Returns the refreshed (account, profile). An empty effective change
        set writes nothing and records no audit event.
        """
        account, profile = self.get(account_id)

        account_patch = {k: v for k, v in patch.items() if k in ACCOUNT_PROFILE_FIELDS}
        profile_patch = {k: v for k, v in patch.items() if k not in ACCOUNT_PROFILE_FIELDS}
        if "date_of_birth" in profile_patch and profile_patch["date_of_birth"] is not CLEAR:
            profile_patch["date_of_birth"] = _parse_date(profile_patch["date_of_birth"])

        account_current = {k: getattr(account, k) for k in ACCOUNT_PROFILE_FIELDS}
        merged_account, account_changes = apply_patch(account_current, account_patch, allowed=ACCOUNT_PROFILE_FIELDS)
        _, profile_changes = apply_patch(
            {k: v for k, v in asdict(profile).items() if k != "account_id"},
            profile_patch,
            allowed=PROFILE_FIELDS,
        )
        if not account_changes and not profile_changes:
            return account, profile

        if "first_name" in account_changes or "last_name" in account_changes:
            full_name = " ".join(
                part for part in (merged_account["first_name"], merged_account["last_name"]) if part
            )
            account_changes["name"] = full_name or account.email.split("@")[0]

        if account_changes:
            self._store.update_account(account_id, **account_changes)
        if profile_changes:
            self._store.upsert_profile(account_id, **profile_changes)

        record_event(
            self._audit,
            AuditEvent(
                action=AuditAction.PROFILE_UPDATED,
                account_id=account_id,
                resource_type="Profile",
                resource_id=account_id,
                details={"changed": sorted({*account_changes, *profile_changes})},
                timestamp=self._clock(),
            ),
        )
        logger.info("Profile updated: %s", account_id)
        return self.get(account_id)


def _parse_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError as exc:
        raise InvalidInput("date_of_birth must be an ISO date (YYYY-MM-DD).") from exc
