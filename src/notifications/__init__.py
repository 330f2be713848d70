"""
Class Change Notification Pipeline

Captures significant class and learner-roster changes, summarises them with
an AI model and emails them to configured recipients.

Modules:
- dispatcher: event capture with diffing and significance filtering
- processor: locked, time-boxed batch drain of pending events
- enricher / summarizer: AI summaries with PII aliasing and bounded retries
- emailer / presenter: email rendering and delivery
- recipients: who receives each event type

Only the shared types are re-exported here; import the services from their
modules, e.g.:

    from notifications.dispatcher import EventDispatcher
    from notifications import notify_safely

    event_id = await notify_safely(
        dispatcher.class_updated, class_id, new_data, old_data, user_id=7
    )
"""

from .email_provider import (
    DeliveryResult,
    DeliveryStatus,
    EmailMessage,
    EmailProvider,
    NullEmailProvider,
    get_email_provider,
    send_email,
    set_email_provider,
)
from .event_types import ErrorCode, EventType, NotificationStatus, SummaryStatus
from .exceptions import (
    EventNotFoundError,
    EventPersistenceError,
    InvalidEventTypeError,
    NotificationError,
    notify_safely,
)
from .jobs import EnrichEvent, Job, JobQueue, SendEmail
from .schemas import ClassEvent, EmailContext, SummaryRecord

__all__ = [
    "notify_safely",
    # Jobs
    "EnrichEvent",
    "SendEmail",
    "Job",
    "JobQueue",
    # Types
    "ClassEvent",
    "EmailContext",
    "SummaryRecord",
    "EventType",
    "NotificationStatus",
    "SummaryStatus",
    "ErrorCode",
    # Errors
    "NotificationError",
    "EventNotFoundError",
    "EventPersistenceError",
    "InvalidEventTypeError",
    # Mail transport
    "EmailProvider",
    "EmailMessage",
    "DeliveryResult",
    "DeliveryStatus",
    "NullEmailProvider",
    "get_email_provider",
    "set_email_provider",
    "send_email",
]
