"""
core/patch.py -- Three-way patch values for partial updates.

A partial update has to tell apart three requests per field:

  UNSET        -- the field was not mentioned; keep the stored value
  CLEAR        -- the caller sent null or ""; store None
  any value    -- the caller sent a value; store it

Plain dicts cannot express this (a missing key and a None value collapse
into each other once defaults are applied), so patches are ordinary dicts
whose values may be the UNSET / CLEAR sentinels, and apply_patch() is the
single place where they are merged into a stored record.

Usage:
    patch = patch_from_fields(body.model_dump(), body.model_fields_set)
    merged, changed = apply_patch(current, patch, allowed=PROFILE_FIELDS)

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from core.errors import InvalidInput


class _Sentinel:
    __slots__ = ("_name",)

    def __init__(self, name: str) -> None:
        self._name = name

    def __repr__(self) -> str:
        return self._name

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Sentinel("UNSET")
CLEAR: Any = _Sentinel("CLEAR")


def patch_value(raw: Any) -> Any:
    """Map an explicitly supplied request value onto the patch vocabulary.

    None and empty or whitespace-only strings mean CLEAR; everything else is
    a value to set. Absent fields never reach this function -- they are UNSET.
    """
    if raw is None:
        return CLEAR
    if isinstance(raw, str) and not raw.strip():
        return CLEAR
    return raw


def patch_from_fields(data: Mapping[str, Any], fields_set: Iterable[str]) -> dict[str, Any]:
    """Build a patch from a request payload and the names the client sent.

    fields_set is pydantic's model_fields_set: only keys in it become CLEAR
    or a value; every other key of data is UNSET and dropped from the patch.
    """
    sent = set(fields_set)
    return {name: patch_value(value) for name, value in data.items() if name in sent}


def apply_patch(
    current: Mapping[str, Any],
    patch: Mapping[str, Any],
    allowed: Iterable[str] | None = None,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Merge a patch into a stored record.

    Returns (merged, changed): merged is a new dict with every stored key,
    changed holds only the keys whose value actually differs (CLEAR shows up
    as None). Unknown keys raise InvalidInput rather than being ignored.
    """
    if allowed is not None:
        unknown = set(patch) - set(allowed)
        if unknown:
            raise InvalidInput(f"Unknown fields: {', '.join(sorted(unknown))}")

    merged = dict(current)
    changed: dict[str, Any] = {}
    for name, value in patch.items():
        if value is UNSET:
            continue
        new_value = None if value is CLEAR else value
        if merged.get(name) != new_value:
            changed[name] = new_value
        merged[name] = new_value
    return merged, changed
