"""
tests/test_credentials.py -- Unit tests for auth.credentials.CredentialVerifier.

Covers:
  - hash/verify happy path and mismatch (False, not an exception)
  - Empty secrets rejected with InvalidInput
  - Salted hashes differ for the same secret
  - Malformed stored hash treated as a mismatch
  - needs_rehash() follows the configured cost factor
  - Secrets are capped at 72 UTF-8 bytes, not characters
"""

from __future__ import annotations

import pytest

from auth.credentials import CredentialVerifier, hash_cost
from core.errors import InvalidInput


def test_hash_then_verify(credentials):
    hashed = credentials.hash("correct horse")
    assert credentials.verify("correct horse", hashed) is True


def test_wrong_secret_returns_false(credentials):
    hashed = credentials.hash("correct horse")
    assert credentials.verify("battery staple", hashed) is False


def test_same_secret_hashes_differently(credentials):
    assert credentials.hash("same-secret") != credentials.hash("same-secret")


def test_hash_is_not_plaintext(credentials):
    hashed = credentials.hash("plaintext-pw")
    assert "plaintext-pw" not in hashed
    assert hashed.startswith("$2")


def test_empty_secret_hash_rejected(credentials):
    with pytest.raises(InvalidInput):
        credentials.hash("")


def test_empty_secret_verify_rejected(credentials):
    hashed = credentials.hash("something")
    with pytest.raises(InvalidInput):
        credentials.verify("", hashed)


def test_malformed_hash_is_a_mismatch(credentials):
    assert credentials.verify("anything", "not-a-bcrypt-hash") is False


def test_burn_accepts_any_secret(credentials):
    credentials.burn("whatever")
    credentials.burn("")


def test_hash_cost_parsed(credentials):
    assert hash_cost(credentials.hash("x1")) == credentials.rounds
    assert hash_cost("garbage") is None


def test_needs_rehash_when_cost_differs(credentials):
    cheap_hash = credentials.hash("pw")
    stronger = CredentialVerifier(rounds=credentials.rounds + 1)
    assert credentials.needs_rehash(cheap_hash) is False
    assert stronger.needs_rehash(cheap_hash) is True


@pytest.mark.parametrize("rounds", [3, 32])
def test_out_of_range_rounds_rejected(rounds):
    with pytest.raises(ValueError):
        CredentialVerifier(rounds=rounds)


def test_secret_over_72_bytes_rejected(credentials):
    # 40 characters, 80 bytes once encoded.
    with pytest.raises(InvalidInput):
        credentials.hash("é" * 40)


def test_secret_at_72_bytes_accepted(credentials):
    secret = "é" * 36
    assert credentials.verify(secret, credentials.hash(secret)) is True


def test_overlong_secret_never_verifies(credentials):
    hashed = credentials.hash("é" * 36)
    assert credentials.verify("é" * 36 + "x", hashed) is False
    credentials.burn("é" * 40)
