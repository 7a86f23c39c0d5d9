"""
tests/test_profiles.py -- Unit tests for auth.profiles.ProfileService.

Covers the three-way patch semantics across both records (account identity
fields and the profile row), display-name recomputation and auditing.
"""

from __future__ import annotations

from datetime import date

import pytest

from auth.audit import StoreAuditSink
from auth.models import AuditAction
from auth.profiles import ProfileService
from core.errors import InvalidInput, NotFound
from core.patch import CLEAR


@pytest.fixture
def profiles(store, clock) -> ProfileService:
    return ProfileService(store, StoreAuditSink(store), clock=clock)


@pytest.fixture
def account(machine):
    return machine.register("ada@example.com", "analytical-engine", first_name="Ada", phone="555-0100")


def test_get_returns_account_and_profile(profiles, account):
    got_account, profile = profiles.get(account.id)
    assert got_account.id == account.id
    assert profile.account_id == account.id


def test_get_unknown(profiles):
    with pytest.raises(NotFound):
        profiles.get("missing")


def test_absent_fields_untouched(profiles, account):
    updated, _ = profiles.update(account.id, {"company": "Analytical Ltd"})
    assert updated.company == "Analytical Ltd"
    assert updated.phone == "555-0100"
    assert updated.first_name == "Ada"


def test_clear_sets_none(profiles, account):
    updated, _ = profiles.update(account.id, {"phone": CLEAR})
    assert updated.phone is None


def test_profile_row_fields(profiles, account):
    _, profile = profiles.update(account.id, {"bio": "Mathematician", "date_of_birth": "1815-12-10", "city": "London"})
    assert profile.bio == "Mathematician"
    assert profile.date_of_birth == date(1815, 12, 10)
    assert profile.city == "London"

    _, profile = profiles.update(account.id, {"city": CLEAR})
    assert profile.city is None
    assert profile.bio == "Mathematician"


def test_name_recomputed_from_first_and_last(profiles, account):
    updated, _ = profiles.update(account.id, {"last_name": "Lovelace"})
    assert updated.name == "Ada Lovelace"


def test_clearing_names_falls_back_to_email(profiles, account):
    updated, _ = profiles.update(account.id, {"first_name": CLEAR})
    assert updated.name == "ada"


def test_update_is_audited_with_changed_fields(profiles, account, store):
    profiles.update(account.id, {"bio": "x", "company": "y"})
    event = store.list_audit(account_id=account.id)[-1]
    assert event.action == AuditAction.PROFILE_UPDATED
    assert event.resource_type == "Profile"
    assert event.details == {"changed": ["bio", "company"]}


def test_no_effective_change_writes_nothing(profiles, account, store):
    before = len(store.list_audit(account_id=account.id))
    profiles.update(account.id, {"first_name": "Ada"})
    assert len(store.list_audit(account_id=account.id)) == before


def test_unknown_field_rejected(profiles, account):
    with pytest.raises(InvalidInput):
        profiles.update(account.id, {"role": "ADMIN"})


def test_bad_date_rejected(profiles, account):
    with pytest.raises(InvalidInput):
        profiles.update(account.id, {"date_of_birth": "not-a-date"})
