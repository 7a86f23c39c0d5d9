"""
tests/test_store.py -- Unit tests for auth.store.AccountStore.

Covers:
  - Email normalization and the UNIQUE constraint
  - Compare-and-swap code consumption (mark_verified, consume_reset_token)
  - update_account field whitelist
  - Profile cascade on delete; audit rows survive with account_id cleared
  - list_audit ordering and limit
  - stats counters
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import Account, AccountStatus, AuditAction, AuditEvent, Role


def _make(store, email="user@example.com", **kwargs) -> str:
    return store.create_account(Account(email=email, credential_hash="$2b$04$x", **kwargs))


def test_email_is_normalized(store):
    account_id = _make(store, email="  Mixed.Case@Example.COM ")
    assert store.get_by_email("mixed.case@example.com").id == account_id
    assert store.get_by_email("MIXED.CASE@EXAMPLE.COM").id == account_id


def test_duplicate_email_raises_integrity_error(store):
    _make(store, email="dup@example.com")
    with pytest.raises(IntegrityError):
        _make(store, email="DUP@example.com")


def test_create_inserts_empty_profile(store):
    account_id = _make(store)
    profile = store.get_profile(account_id)
    assert profile is not None
    assert profile.bio is None


def test_mark_verified_is_compare_and_swap(store, clock):
    account_id = _make(store, verification_code="123456", verification_expiry=clock.now + timedelta(minutes=15))
    assert store.mark_verified(account_id, "123456") is True
    # Second consumer finds no matching row.
    assert store.mark_verified(account_id, "123456") is False

    account = store.get_by_id(account_id)
    assert account.verified is True
    assert account.status == AccountStatus.ACTIVE
    assert account.verification_code is None
    assert account.verification_expiry is None


def test_mark_verified_wrong_code_changes_nothing(store, clock):
    account_id = _make(store, verification_code="123456", verification_expiry=clock.now + timedelta(minutes=15))
    assert store.mark_verified(account_id, "654321") is False
    assert store.get_by_id(account_id).verified is False


def test_mark_verified_keeps_suspension(store, clock):
    account_id = _make(
        store,
        status=AccountStatus.SUSPENDED,
        verification_code="123456",
        verification_expiry=clock.now + timedelta(minutes=15),
    )
    assert store.mark_verified(account_id, "123456") is True
    account = store.get_by_id(account_id)
    assert account.verified is True
    assert account.status == AccountStatus.SUSPENDED


def test_reset_token_lookup_respects_expiry(store, clock):
    account_id = _make(store)
    store.set_reset_token(account_id, "111222", clock.now + timedelta(minutes=15))
    assert store.find_by_reset_token("user@example.com", "111222", clock.now).id == account_id
    assert store.find_by_reset_token("user@example.com", "999999", clock.now) is None
    assert store.find_by_reset_token("user@example.com", "111222", clock.now + timedelta(minutes=16)) is None


def test_consume_reset_token_once(store, clock):
    account_id = _make(store)
    store.set_reset_token(account_id, "111222", clock.now + timedelta(minutes=15))
    assert store.consume_reset_token(account_id, "111222", clock.now, "$2b$04$new") is True
    assert store.consume_reset_token(account_id, "111222", clock.now, "$2b$04$other") is False

    account = store.get_by_id(account_id)
    assert account.credential_hash == "$2b$04$new"
    assert account.reset_token is None


def test_datetimes_come_back_aware(store, clock):
    account_id = _make(store, verification_code="123456", verification_expiry=clock.now + timedelta(minutes=15))
    account = store.get_by_id(account_id)
    assert account.verification_expiry == clock.now + timedelta(minutes=15)
    assert account.created_at.tzinfo is not None


def test_update_account_rejects_unknown_fields(store):
    account_id = _make(store)
    with pytest.raises(ValueError):
        store.update_account(account_id, email="someone-else@example.com")


def test_update_account_role_and_status(store):
    account_id = _make(store)
    assert store.update_account(account_id, role=Role.MODERATOR, status="SUSPENDED") is True
    account = store.get_by_id(account_id)
    assert account.role == Role.MODERATOR
    assert account.status == AccountStatus.SUSPENDED


def test_delete_cascades_profile_and_keeps_audit(store):
    account_id = _make(store)
    store.upsert_profile(account_id, bio="hello")
    store.append_audit(AuditEvent(action=AuditAction.LOGIN, account_id=account_id, resource_id=account_id))

    assert store.delete_account(account_id) is True
    assert store.get_by_id(account_id) is None
    assert store.get_profile(account_id) is None

    events = store.list_audit(account_id=account_id)
    assert len(events) == 1
    assert events[0].account_id is None
    assert events[0].resource_id == account_id


def test_list_audit_newest_window_oldest_first(store):
    account_id = _make(store)
    for action in (AuditAction.REGISTER, AuditAction.VERIFY, AuditAction.LOGIN, AuditAction.LOGOUT):
        store.append_audit(AuditEvent(action=action, account_id=account_id, resource_id=account_id))
    events = store.list_audit(account_id=account_id, limit=3)
    assert [e.action for e in events] == [AuditAction.VERIFY, AuditAction.LOGIN, AuditAction.LOGOUT]


def test_audit_details_round_trip(store):
    account_id = _make(store)
    store.append_audit(
        AuditEvent(action=AuditAction.REGISTER, account_id=account_id, details={"method": "email"})
    )
    assert store.list_audit(account_id=account_id)[0].details == {"method": "email"}


def test_count_active_admins(store):
    _make(store, email="a1@example.com", role=Role.ADMIN, status=AccountStatus.ACTIVE)
    _make(store, email="a2@example.com", role=Role.ADMIN, status=AccountStatus.SUSPENDED)
    _make(store, email="u1@example.com", role=Role.USER, status=AccountStatus.ACTIVE)
    assert store.count_active_admins() == 1


def test_stats(store):
    _make(store, email="a1@example.com", role=Role.ADMIN, status=AccountStatus.ACTIVE)
    _make(store, email="u1@example.com", status=AccountStatus.ACTIVE)
    _make(store, email="u2@example.com", status=AccountStatus.SUSPENDED)
    _make(store, email="u3@example.com")
    stats = store.stats(datetime.now(timezone.utc))
    assert stats == {
        "total_users": 4,
        "active_users": 2,
        "suspended_users": 1,
        "admin_count": 1,
        "recent_users": 4,
    }


def test_ping(store):
    assert store.ping() is True
