"""
tests/test_patch.py -- Unit tests for core.patch three-way merges.

absent -> keep, null/"" -> clear, value -> set.
"""

from __future__ import annotations

import pytest

from core.errors import InvalidInput
from core.patch import CLEAR, UNSET, apply_patch, patch_from_fields, patch_value

CURRENT = {"first_name": "Ada", "phone": "555-0100", "city": "London"}


def test_absent_fields_are_kept():
    merged, changed = apply_patch(CURRENT, {})
    assert merged == CURRENT
    assert changed == {}


def test_clear_sets_none():
    merged, changed = apply_patch(CURRENT, {"phone": CLEAR})
    assert merged["phone"] is None
    assert changed == {"phone": None}


def test_value_sets():
    merged, changed = apply_patch(CURRENT, {"city": "Paris"})
    assert merged["city"] == "Paris"
    assert changed == {"city": "Paris"}


def test_unset_is_ignored():
    merged, changed = apply_patch(CURRENT, {"city": UNSET})
    assert merged["city"] == "London"
    assert changed == {}


def test_same_value_is_not_a_change():
    _, changed = apply_patch(CURRENT, {"first_name": "Ada"})
    assert changed == {}


def test_unknown_field_rejected():
    with pytest.raises(InvalidInput):
        apply_patch(CURRENT, {"role": "ADMIN"}, allowed=CURRENT.keys())


@pytest.mark.parametrize("raw", [None, "", "   "])
def test_blank_values_mean_clear(raw):
    assert patch_value(raw) is CLEAR


@pytest.mark.parametrize("raw", ["x", 0, False])
def test_other_values_are_kept(raw):
    assert patch_value(raw) == raw


def test_patch_from_fields_drops_unsent_keys():
    data = {"first_name": "Grace", "phone": None, "city": None}
    patch = patch_from_fields(data, {"first_name", "phone"})
    assert patch == {"first_name": "Grace", "phone": CLEAR}


def test_sentinels_are_falsy_and_named():
    assert not UNSET and not CLEAR
    assert repr(CLEAR) == "CLEAR"
