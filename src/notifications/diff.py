"""
Snapshot diffing and significance filtering for class changes.

A diff maps each changed field to ``{"old": ..., "new": ...}``. Container
values (lists, dicts) compare by canonical JSON, scalars compare by their
string form so that ``1`` and ``"1"`` are equal, and ``None`` differs from
everything except ``None``.
"""

import json
from typing import Any, Dict, Iterable, Optional

# Changing any of these on a class is worth an email.
SIGNIFICANT_CLASS_FIELDS = (
    "class_status",
    "start_date",
    "end_date",
    "learner_ids",
    "event_dates",
    "class_facilitator",
    "class_coach",
    "class_assessor",
    "original_start_date",
    "client_id",
    "class_type",
    "class_subject",
)


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def _as_string(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def values_differ(old: Any, new: Any) -> bool:
    """Compare two field values under the diff rules.

    Args:
        old: Previous value
        new: Current value

    Returns:
        True if the values count as different
    """
    if old is None and new is None:
        return False
    if old is None or new is None:
        return True

    if isinstance(old, (list, dict)) and isinstance(new, (list, dict)):
        return _canonical(old) != _canonical(new)

    return _as_string(old) != _as_string(new)


def compute_diff(old: Optional[Dict[str, Any]], new: Optional[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """
    Compute the field-level difference between two snapshots.

    Keys only present in ``old`` are reported with ``new`` set to ``None``.

    Args:
        old: Snapshot before the change
        new: Snapshot after the change

    Returns:
        Mapping of field name to ``{"old": value, "new": value}``
    """
    old = old or {}
    new = new or {}
    diff: Dict[str, Dict[str, Any]] = {}

    for key, new_value in new.items():
        old_value = old.get(key)
        if values_differ(old_value, new_value):
            diff[key] = {"old": old_value, "new": new_value}

    for key, old_value in old.items():
        if key not in new and old_value is not None:
            diff[key] = {"old": old_value, "new": None}

    return diff


def is_significant_change(
    diff: Dict[str, Any],
    significant_fields: Iterable[str] = SIGNIFICANT_CLASS_FIELDS,
) -> bool:
    """True if any changed field is on the significance allow-list."""
    if not diff:
        return False
    allowed = set(significant_fields)
    return any(field in allowed for field in diff)


def get_significant_fields() -> tuple:
    return SIGNIFICANT_CLASS_FIELDS
