"""
Background job variants and the queue interface that runs them.

There are exactly two kinds of job: enrich an event, and send one email
for an event to one recipient.
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Protocol, Union

from .schemas import EmailContext


@dataclass(frozen=True)
class EnrichEvent:
    """Enrich an event and then schedule its emails."""
    event_id: int

    name: ClassVar[str] = "process_event"

    def to_payload(self) -> Dict[str, Any]:
        return {"event_id": self.event_id}


@dataclass(frozen=True)
class SendEmail:
    """Send the notification email for an event to one recipient."""
    event_id: int
    recipient: str
    email_context: EmailContext = field(default_factory=EmailContext)

    name: ClassVar[str] = "send_notification_email"

    def to_payload(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "recipient": self.recipient,
            "email_context": self.email_context.to_dict(),
        }


Job = Union[EnrichEvent, SendEmail]


def job_from_payload(name: str, payload: Dict[str, Any]) -> Job:
    """
    Rebuild a job from its name and JSON payload.

    Raises:
        ValueError: If the name is not a known job
    """
    if name == EnrichEvent.name:
        return EnrichEvent(event_id=int(payload["event_id"]))
    if name == SendEmail.name:
        return SendEmail(
            event_id=int(payload["event_id"]),
            recipient=str(payload["recipient"]),
            email_context=EmailContext.from_dict(payload.get("email_context")),
        )
    raise ValueError(f"Unknown job: {name}")


class JobQueue(Protocol):
    """Submits jobs for asynchronous execution on a worker."""

    def submit(self, job: Job) -> None:
        ...
