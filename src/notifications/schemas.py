"""
Data structures passed between the notification pipeline stages.
"""

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from .event_types import ErrorCode, EventType, NotificationStatus, SummaryStatus


@dataclass(frozen=True)
class SummaryRecord:
    """AI summary state stored in ``class_events.ai_summary``.

    Instances are immutable; the ``with_*`` helpers return updated copies.
    """
    summary: Optional[str] = None
    status: SummaryStatus = SummaryStatus.PENDING
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    attempts: int = 0
    viewed: bool = False
    viewed_at: Optional[str] = None
    generated_at: Optional[str] = None
    model: Optional[str] = None
    tokens_used: int = 0
    processing_time_ms: int = 0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SummaryRecord":
        """Build a record from stored JSON, tolerating missing or odd fields."""
        if not data:
            return cls()

        status = data.get("status") or SummaryStatus.PENDING.value
        try:
            status = SummaryStatus(status)
        except ValueError:
            status = SummaryStatus.PENDING

        return cls(
            summary=data.get("summary"),
            status=status,
            error_code=data.get("error_code"),
            error_message=data.get("error_message"),
            attempts=int(data.get("attempts") or 0),
            viewed=bool(data.get("viewed", False)),
            viewed_at=data.get("viewed_at"),
            generated_at=data.get("generated_at"),
            model=data.get("model"),
            tokens_used=int(data.get("tokens_used") or 0),
            processing_time_ms=int(data.get("processing_time_ms") or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def with_status(self, status: SummaryStatus) -> "SummaryRecord":
        return replace(self, status=status)

    def with_attempts(self, attempts: int) -> "SummaryRecord":
        return replace(self, attempts=attempts)

    def with_error(self, code: Optional[str], message: Optional[str]) -> "SummaryRecord":
        return replace(self, error_code=code, error_message=message)

    def with_summary(self, summary: Optional[str]) -> "SummaryRecord":
        return replace(self, summary=summary)

    def with_generated_at(self, generated_at: Optional[str]) -> "SummaryRecord":
        return replace(self, generated_at=generated_at)

    def with_model(self, model: Optional[str]) -> "SummaryRecord":
        return replace(self, model=model)

    def with_metrics(self, tokens_used: int, processing_time_ms: int) -> "SummaryRecord":
        return replace(self, tokens_used=tokens_used, processing_time_ms=processing_time_ms)

    def with_viewed(self, viewed_at: str) -> "SummaryRecord":
        return replace(self, viewed=True, viewed_at=viewed_at)


@dataclass
class ObfuscatedData:
    """The three event payloads after PII aliasing."""
    new_row: Dict[str, Any] = field(default_factory=dict)
    diff: Dict[str, Any] = field(default_factory=dict)
    old_row: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"new_row": self.new_row, "diff": self.diff, "old_row": self.old_row}


@dataclass
class EmailContext:
    """Obfuscated view of an event handed from enrichment to the email step.

    Travels inside a SendEmail job, so it must stay JSON-serialisable.
    """
    alias_map: Dict[str, str] = field(default_factory=dict)
    field_labels: Dict[str, str] = field(default_factory=dict)
    obfuscated: ObfuscatedData = field(default_factory=ObfuscatedData)

    @classmethod
    def empty(cls) -> "EmailContext":
        return cls()

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EmailContext":
        if not data:
            return cls()
        obfuscated = data.get("obfuscated") or {}
        return cls(
            alias_map=dict(data.get("alias_map") or {}),
            field_labels=dict(data.get("field_labels") or {}),
            obfuscated=ObfuscatedData(
                new_row=dict(obfuscated.get("new_row") or {}),
                diff=dict(obfuscated.get("diff") or {}),
                old_row=dict(obfuscated.get("old_row") or {}),
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alias_map": dict(self.alias_map),
            "field_labels": dict(self.field_labels),
            "obfuscated": self.obfuscated.to_dict(),
        }

    @property
    def is_empty(self) -> bool:
        return not self.alias_map and not self.field_labels and not any(
            self.obfuscated.to_dict().values()
        )


@dataclass
class ClassEvent:
    """One stored class change event."""
    event_id: int
    event_type: EventType
    entity_type: str
    entity_id: int
    event_data: Dict[str, Any] = field(default_factory=dict)
    notification_status: NotificationStatus = NotificationStatus.PENDING
    ai_summary: Optional[SummaryRecord] = None
    user_id: Optional[int] = None
    created_at: Optional[datetime] = None
    enriched_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    viewed_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None

    @property
    def new_row(self) -> Dict[str, Any]:
        return self.event_data.get("new_row") or {}

    @property
    def old_row(self) -> Dict[str, Any]:
        return self.event_data.get("old_row") or {}

    @property
    def diff(self) -> Dict[str, Any]:
        return self.event_data.get("diff") or {}

    @property
    def metadata(self) -> Dict[str, Any]:
        return self.event_data.get("metadata") or {}

    @property
    def operation(self) -> str:
        return self.event_type.operation

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "event_data": self.event_data,
            "notification_status": self.notification_status.value,
            "ai_summary": self.ai_summary.to_dict() if self.ai_summary else None,
            "user_id": self.user_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "enriched_at": self.enriched_at.isoformat() if self.enriched_at else None,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "viewed_at": self.viewed_at.isoformat() if self.viewed_at else None,
            "acknowledged_at": self.acknowledged_at.isoformat() if self.acknowledged_at else None,
        }


@dataclass
class SummaryResult:
    """Outcome of one summarizer invocation."""
    record: SummaryRecord
    email_context: EmailContext

    @property
    def status(self) -> SummaryStatus:
        return self.record.status


@dataclass
class EnrichmentResult:
    """Outcome of enriching one event."""
    success: bool
    should_email: bool
    recipients: List[str] = field(default_factory=list)
    email_context: EmailContext = field(default_factory=EmailContext)


@dataclass(frozen=True)
class Eligibility:
    """Whether an event may be sent to the summarization service."""
    eligible: bool
    reason: Optional[ErrorCode] = None

    @classmethod
    def allowed(cls) -> "Eligibility":
        return cls(eligible=True)

    @classmethod
    def denied(cls, reason: ErrorCode) -> "Eligibility":
        return cls(eligible=False, reason=reason)
