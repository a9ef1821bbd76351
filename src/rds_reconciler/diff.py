"""Top-level structural difference between two mappings.

Used to decide up front whether a whole pipeline phase applies to an
operation. The decision is taken from the caller's previous and desired
snapshots, which do not change within one logical operation, so it comes out
the same on every invocation.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

# Value pairs are (previous, desired); None stands for "absent"
Difference = dict[str, tuple[Any, Any]]


def _normalize(value: Any) -> Any:
    """Empty containers, None and missing keys are equivalent."""
    if value in ({}, [], "", None):
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Parameter values arrive as strings from some callers
        return str(value)
    return value


def diff(previous: Mapping[str, Any] | None, desired: Mapping[str, Any] | None) -> Difference:
    """Compare two mappings key by key.

    Args:
        previous: Mapping before the change (None is treated as empty).
        desired: Mapping after the change (None is treated as empty).

    Returns:
        Keys whose normalized values differ, mapped to (previous, desired).
    """
    previous = previous or {}
    desired = desired or {}

    differences: Difference = {}
    for key in sorted(set(previous) | set(desired)):
        before = _normalize(previous.get(key))
        after = _normalize(desired.get(key))
        if before != after:
            differences[key] = (before, after)
    return differences


def has_changes(previous: Mapping[str, Any] | None, desired: Mapping[str, Any] | None) -> bool:
    return bool(diff(previous, desired))
