"""
Event, status and error-code enumerations for class change notifications.
"""

from enum import Enum
from typing import FrozenSet, Optional

from .exceptions import InvalidEventTypeError


class EventType(str, Enum):
    """Kinds of class and learner-roster changes that produce an event."""
    CLASS_INSERT = "CLASS_INSERT"
    CLASS_UPDATE = "CLASS_UPDATE"
    CLASS_DELETE = "CLASS_DELETE"
    STATUS_CHANGE = "STATUS_CHANGE"
    LEARNER_ADD = "LEARNER_ADD"
    LEARNER_REMOVE = "LEARNER_REMOVE"
    LEARNER_UPDATE = "LEARNER_UPDATE"

    @classmethod
    def from_value(cls, value: Optional[str], default: Optional["EventType"] = None) -> Optional["EventType"]:
        """Parse a stored or configured value, case-insensitively.

        Args:
            value: Raw event type string
            default: Returned when the value is empty or unknown

        Returns:
            Matching EventType or ``default``
        """
        if not value:
            return default
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return default

    @classmethod
    def for_entity(cls, entity_type: str, operation: str) -> "EventType":
        """Resolve the event type for an entity and a coarse operation.

        Raises:
            InvalidEventTypeError: If the combination is not supported
        """
        key = (str(entity_type).lower(), str(operation).upper())
        mapping = {
            ("class", "INSERT"): cls.CLASS_INSERT,
            ("class", "UPDATE"): cls.CLASS_UPDATE,
            ("class", "DELETE"): cls.CLASS_DELETE,
            ("learner", "INSERT"): cls.LEARNER_ADD,
            ("learner", "UPDATE"): cls.LEARNER_UPDATE,
            ("learner", "DELETE"): cls.LEARNER_REMOVE,
        }
        if key not in mapping:
            raise InvalidEventTypeError(
                f"No event type for entity '{entity_type}' and operation '{operation}'"
            )
        return mapping[key]

    @classmethod
    def from_legacy_operation(cls, operation: str) -> Optional["EventType"]:
        """Map a legacy INSERT/UPDATE/DELETE string onto a class event type."""
        return {
            "INSERT": cls.CLASS_INSERT,
            "UPDATE": cls.CLASS_UPDATE,
            "DELETE": cls.CLASS_DELETE,
        }.get(str(operation).strip().upper())

    def label(self) -> str:
        """Human-readable name for subjects and dashboards."""
        return _LABELS[self]

    def priority(self) -> int:
        """Display priority, 1 (highest) to 5."""
        return _PRIORITIES[self]

    @property
    def operation(self) -> str:
        """Coarse operation used for presentation: INSERT, UPDATE or DELETE."""
        if self in (EventType.CLASS_INSERT, EventType.LEARNER_ADD):
            return "INSERT"
        if self in (EventType.CLASS_DELETE, EventType.LEARNER_REMOVE):
            return "DELETE"
        return "UPDATE"

    @property
    def entity_type(self) -> str:
        return "learner" if self.is_learner_event else "class"

    @property
    def is_class_event(self) -> bool:
        return self in (
            EventType.CLASS_INSERT,
            EventType.CLASS_UPDATE,
            EventType.CLASS_DELETE,
            EventType.STATUS_CHANGE,
        )

    @property
    def is_learner_event(self) -> bool:
        return self in (
            EventType.LEARNER_ADD,
            EventType.LEARNER_REMOVE,
            EventType.LEARNER_UPDATE,
        )

    @property
    def is_creation(self) -> bool:
        return self in (EventType.CLASS_INSERT, EventType.LEARNER_ADD)

    @property
    def is_deletion(self) -> bool:
        return self in (EventType.CLASS_DELETE, EventType.LEARNER_REMOVE)

    @property
    def skips_ai_summary(self) -> bool:
        """True for changes whose email never benefits from an AI narrative."""
        return self in AI_SKIPPED_EVENT_TYPES


AI_SKIPPED_EVENT_TYPES: FrozenSet[EventType] = frozenset({
    EventType.CLASS_INSERT,
    EventType.CLASS_DELETE,
    EventType.LEARNER_ADD,
    EventType.LEARNER_REMOVE,
})

_LABELS = {
    EventType.CLASS_INSERT: "New Class Created",
    EventType.CLASS_UPDATE: "Class Updated",
    EventType.CLASS_DELETE: "Class Deleted",
    EventType.STATUS_CHANGE: "Status Changed",
    EventType.LEARNER_ADD: "Learner Added",
    EventType.LEARNER_REMOVE: "Learner Removed",
    EventType.LEARNER_UPDATE: "Learner Updated",
}

_PRIORITIES = {
    EventType.CLASS_DELETE: 1,
    EventType.STATUS_CHANGE: 2,
    EventType.CLASS_INSERT: 3,
    EventType.CLASS_UPDATE: 3,
    EventType.LEARNER_REMOVE: 4,
    EventType.LEARNER_ADD: 4,
    EventType.LEARNER_UPDATE: 5,
}


class NotificationStatus(str, Enum):
    """Position of an event in the notification pipeline.

    pending -> enriching -> sending -> sent | failed, with enriching optional.
    """
    PENDING = "pending"
    ENRICHING = "enriching"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (NotificationStatus.SENT, NotificationStatus.FAILED)

    def allowed_predecessors(self) -> FrozenSet["NotificationStatus"]:
        """Statuses an event may hold immediately before moving to this one.

        Only one stage can move an event into ``sending``. The terminal
        statuses may be rewritten by a repeated send, but nothing ever returns
        to ``pending``.
        """
        return _PREDECESSORS[self]


_PREDECESSORS = {
    NotificationStatus.PENDING: frozenset(),
    NotificationStatus.ENRICHING: frozenset({NotificationStatus.PENDING}),
    NotificationStatus.SENDING: frozenset({
        NotificationStatus.PENDING,
        NotificationStatus.ENRICHING,
    }),
    NotificationStatus.SENT: frozenset({
        NotificationStatus.ENRICHING,
        NotificationStatus.SENDING,
        NotificationStatus.SENT,
        NotificationStatus.FAILED,
    }),
    NotificationStatus.FAILED: frozenset({
        NotificationStatus.ENRICHING,
        NotificationStatus.SENDING,
        NotificationStatus.SENT,
        NotificationStatus.FAILED,
    }),
}


class SummaryStatus(str, Enum):
    """AI summary state; success and failed are final."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self != SummaryStatus.PENDING


class ErrorCode(str, Enum):
    """Classified reasons an AI summary could not be produced."""
    CONFIG_MISSING = "config_missing"
    FEATURE_DISABLED = "feature_disabled"
    QUOTA_EXCEEDED = "quota_exceeded"
    OPENAI_TIMEOUT = "openai_timeout"
    VALIDATION_FAILED = "validation_failed"
    UNKNOWN_ERROR = "unknown_error"
