"""
PII aliasing for payloads sent to the summarization service.

Person names become ``Learner A``, ``Learner B``...; email addresses become
``learner-a@redacted.invalid``; identity numbers, phone numbers and passport
numbers are masked down to their last two characters.

The value -> token table lives in an immutable :class:`AliasingContext`.
Every obfuscation call takes a context and returns a new one, so running
``new_row``, ``diff`` and ``old_row`` through the same chain of contexts
gives a value the same token in all three payloads.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from .schemas import EmailContext, ObfuscatedData

FIELD_LABELS: Dict[str, str] = {
    "class_status": "Status",
    "start_date": "Start Date",
    "end_date": "End Date",
    "original_start_date": "Original Start Date",
    "schedule_pattern": "Schedule Pattern",
    "event_dates": "Event Dates",
    "learner_ids": "Learner Roster",
    "class_facilitator": "Facilitator",
    "class_coach": "Coach",
    "class_assessor": "Assessor",
    "client_id": "Client",
    "class_type": "Class Type",
    "class_subject": "Subject",
    "class_code": "Class Code",
}

NAME_FIELDS = frozenset({
    "name",
    "first_name",
    "second_name",
    "last_name",
    "surname",
    "full_name",
    "learner_name",
    "agent_name",
    "contact_person",
    "initials",
})

# *_name keys that describe things, not people
NON_PERSON_NAME_FIELDS = frozenset({
    "class_name",
    "client_name",
    "site_name",
    "subject_name",
    "course_name",
    "qualification_name",
    "location_name",
})

PHONE_HINTS = ("phone", "mobile", "cell", "tel", "contact_number")
ID_HINTS = ("id_number", "sa_id", "identity_number")
PASSPORT_HINTS = ("passport",)

# Keys inside a diff entry carry the field name of their parent.
DIFF_SIDE_KEYS = frozenset({"old", "new"})

EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}$")
NUMBER_LIKE_PATTERN = re.compile(r"^[0-9\s()+\-]+$")
ISO_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}")
PASSPORT_PATTERN = re.compile(r"^[A-Z0-9]{6,12}$", re.IGNORECASE)
MIN_PII_LENGTH = 6


def field_label(key: str) -> str:
    """Human-readable label for a field name."""
    if key in FIELD_LABELS:
        return FIELD_LABELS[key]
    return " ".join(part.capitalize() for part in str(key).split("_") if part)


def _letters(index: int) -> str:
    """0 -> A, 25 -> Z, 26 -> AA."""
    letters = ""
    index += 1
    while index > 0:
        index, remainder = divmod(index - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return letters


def _digits(value: str) -> str:
    return re.sub(r"[^0-9]", "", value)


def mask_sa_id(value: str) -> str:
    digits = _digits(value)
    if len(digits) != 13:
        return "ID-XXXXXXXXXXXXX"
    return "ID-XXXXXXXXXXX" + digits[-2:]


def mask_phone(value: str) -> str:
    digits = _digits(value)
    if len(digits) < 2:
        return "PHONE-XXXX"
    return "PHONE-" + "X" * max(len(digits) - 2, 2) + digits[-2:]


def mask_passport(value: str) -> str:
    value = value.strip()
    if len(value) < MIN_PII_LENGTH:
        return "PASSPORT-XXXX"
    return "PASSPORT-" + "X" * max(len(value) - 2, 2) + value[-2:]


def looks_like_sa_id(value: str) -> bool:
    return len(_digits(value)) == 13


def looks_like_phone(value: str) -> bool:
    return 7 <= len(_digits(value)) <= 15


def looks_like_passport(value: str) -> bool:
    return bool(PASSPORT_PATTERN.match(value.strip()))


def detect_pii_pattern(value: str) -> Optional[str]:
    """
    Classify a free value that has no field-name hint.

    Only strings made of digits and phone punctuation are considered, and
    ISO dates are left alone.

    Returns:
        ``"sa_id"``, ``"phone"`` or ``None``
    """
    stripped = value.strip()
    if len(stripped) < MIN_PII_LENGTH:
        return None
    if not NUMBER_LIKE_PATTERN.match(stripped) or ISO_DATE_PATTERN.match(stripped):
        return None
    if looks_like_sa_id(stripped):
        return "sa_id"
    if looks_like_phone(stripped):
        return "phone"
    return None


@dataclass(frozen=True)
class AliasingContext:
    """Immutable alias table for one event.

    Attributes:
        aliases: Original value -> token
        reverse: Token -> original value
        name_count: Person-name tokens handed out so far
        email_count: Email tokens handed out so far
    """
    aliases: Dict[str, str] = field(default_factory=dict)
    reverse: Dict[str, str] = field(default_factory=dict)
    name_count: int = 0
    email_count: int = 0

    def lookup(self, value: str) -> Optional[str]:
        return self.aliases.get(value)

    def original(self, token: str) -> Optional[str]:
        return self.reverse.get(token)

    def with_alias(self, value: str, token: str) -> "AliasingContext":
        aliases = dict(self.aliases)
        reverse = dict(self.reverse)
        aliases[value] = token
        reverse[token] = value
        return AliasingContext(aliases, reverse, self.name_count, self.email_count)

    def alias_name(self, value: str) -> Tuple[str, "AliasingContext"]:
        existing = self.lookup(value)
        if existing:
            return existing, self
        token = f"Learner {_letters(self.name_count)}"
        updated = self.with_alias(value, token)
        return token, AliasingContext(
            updated.aliases, updated.reverse, self.name_count + 1, self.email_count
        )

    def alias_email(self, value: str) -> Tuple[str, "AliasingContext"]:
        existing = self.lookup(value)
        if existing:
            return existing, self
        token = f"learner-{_letters(self.email_count).lower()}@redacted.invalid"
        updated = self.with_alias(value, token)
        return token, AliasingContext(
            updated.aliases, updated.reverse, self.name_count, self.email_count + 1
        )

    def alias_masked(self, value: str, masked: str) -> Tuple[str, "AliasingContext"]:
        existing = self.lookup(value)
        if existing:
            return existing, self
        return masked, self.with_alias(value, masked)


@dataclass
class ObfuscationResult:
    """Payload after aliasing plus the context to thread into the next call."""
    payload: Any
    context: AliasingContext
    field_labels: Dict[str, str] = field(default_factory=dict)


def _hint_kind(key: Optional[str]) -> Optional[str]:
    if not key:
        return None
    key = str(key).lower()
    if key in NON_PERSON_NAME_FIELDS:
        return None
    if key in NAME_FIELDS or key.endswith("_surname"):
        return "name"
    if "email" in key:
        return "email"
    if any(hint in key for hint in PASSPORT_HINTS):
        return "passport"
    if any(hint in key for hint in ID_HINTS):
        return "sa_id"
    if any(hint in key for hint in PHONE_HINTS):
        return "phone"
    return None


def _obfuscate_scalar(value: Any, hint: Optional[str], context: AliasingContext) -> Tuple[Any, AliasingContext]:
    if isinstance(value, bool) or value is None:
        return value, context

    kind = _hint_kind(hint)

    if isinstance(value, (int, float)):
        if kind in ("phone", "sa_id", "passport"):
            value = str(value)
        else:
            return value, context

    if not isinstance(value, str) or not value.strip():
        return value, context

    text = value.strip()
    existing = context.lookup(text)
    if existing:
        return existing, context

    if kind == "name":
        return context.alias_name(text)
    if EMAIL_PATTERN.match(text):
        return context.alias_email(text)
    if kind == "passport":
        return context.alias_masked(text, mask_passport(text))
    if kind == "sa_id" and looks_like_sa_id(text):
        return context.alias_masked(text, mask_sa_id(text))
    if kind == "phone" and looks_like_phone(text):
        return context.alias_masked(text, mask_phone(text))

    pattern = detect_pii_pattern(text)
    if pattern == "sa_id":
        return context.alias_masked(text, mask_sa_id(text))
    if pattern == "phone":
        return context.alias_masked(text, mask_phone(text))

    return value, context


def _obfuscate_value(value: Any, hint: Optional[str], context: AliasingContext) -> Tuple[Any, AliasingContext]:
    if isinstance(value, dict):
        result = {}
        for key, item in value.items():
            child_hint = hint if key in DIFF_SIDE_KEYS else key
            result[key], context = _obfuscate_value(item, child_hint, context)
        return result, context

    if isinstance(value, (list, tuple)):
        items = []
        for item in value:
            obfuscated, context = _obfuscate_value(item, hint, context)
            items.append(obfuscated)
        return items, context

    return _obfuscate_scalar(value, hint, context)


def obfuscate_payload(payload: Optional[Dict[str, Any]], context: Optional[AliasingContext] = None) -> ObfuscationResult:
    """
    Replace PII in a payload with alias tokens.

    Args:
        payload: Row snapshot or diff
        context: Alias table from a previous call for the same event

    Returns:
        ObfuscationResult carrying the aliased payload, the extended
        context, and labels for the payload's top-level fields
    """
    context = context or AliasingContext()
    payload = payload or {}

    obfuscated, context = _obfuscate_value(payload, None, context)
    labels = {str(key): field_label(key) for key in payload}

    return ObfuscationResult(payload=obfuscated, context=context, field_labels=labels)


def obfuscate_event_payloads(
    new_row: Optional[Dict[str, Any]],
    diff: Optional[Dict[str, Any]],
    old_row: Optional[Dict[str, Any]],
) -> EmailContext:
    """
    Alias the three payloads of one event through a single context chain.

    Returns:
        EmailContext with the alias map, merged field labels and the
        obfuscated payloads
    """
    new_result = obfuscate_payload(new_row)
    diff_result = obfuscate_payload(diff, new_result.context)
    old_result = obfuscate_payload(old_row, diff_result.context)

    labels: Dict[str, str] = {}
    labels.update(new_result.field_labels)
    labels.update(diff_result.field_labels)
    labels.update(old_result.field_labels)

    return EmailContext(
        alias_map=dict(old_result.context.aliases),
        field_labels=labels,
        obfuscated=ObfuscatedData(
            new_row=new_result.payload,
            diff=diff_result.payload,
            old_row=old_result.payload,
        ),
    )
