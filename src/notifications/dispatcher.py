"""
Event capture: the entry point business code calls after a class or
learner-roster mutation.

Each dispatch call either records an event and schedules its processing,
returning the new event id, or returns ``0`` when the change is
intentionally skipped. Persistence errors propagate; callers wrap dispatch
with :func:`notifications.exceptions.notify_safely` so a notification
failure never blocks the mutation itself.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from config import feature_flags
from database.repositories.class_event_repository import ClassEventRepository

from .diff import compute_diff, is_significant_change
from .event_types import EventType
from .jobs import EnrichEvent, JobQueue
from .recipients import NotificationRecipients

logger = logging.getLogger(__name__)

DispatchFilter = Callable[[EventType], bool]


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_event_data(
    new_row: Dict[str, Any],
    old_row: Optional[Dict[str, Any]],
    diff: Dict[str, Any],
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Standard ``event_data`` payload."""
    return {
        "new_row": new_row,
        "old_row": old_row,
        "diff": diff,
        "metadata": metadata or {},
    }


class EventDispatcher:
    """
    Records significant changes and schedules their notification.

    Dispatch of a type can be vetoed by the ``dispatch_<type>`` feature flag
    or by any registered filter returning False. Vetoes are checked before
    anything is written.
    """

    def __init__(
        self,
        repository: ClassEventRepository,
        queue: JobQueue,
        recipients: Optional[NotificationRecipients] = None,
    ):
        self.repository = repository
        self.queue = queue
        self.recipients = recipients
        self._filters: List[DispatchFilter] = []

    def register_dispatch_filter(self, callback: DispatchFilter) -> None:
        """
        Register a site policy hook.

        Args:
            callback: Receives the event type; returning False vetoes dispatch
        """
        self._filters.append(callback)

    def should_dispatch(self, event_type: EventType) -> bool:
        flag = f"dispatch_{event_type.value.lower()}"
        if not feature_flags.is_enabled(flag):
            logger.debug(f"Event type {event_type.value} disabled via feature flag")
            return False

        for callback in self._filters:
            if not callback(event_type):
                logger.debug(f"Event type {event_type.value} disabled via dispatch filter")
                return False

        return True

    async def _record(
        self,
        event_type: EventType,
        entity_type: str,
        entity_id: int,
        event_data: Dict[str, Any],
        user_id: Optional[int],
    ) -> int:
        event_id = await self.repository.insert(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            event_data=event_data,
            user_id=user_id,
        )
        self.queue.submit(EnrichEvent(event_id=event_id))

        logger.debug(
            f"Created {event_type.value} event {event_id} for {entity_type} {entity_id}",
            extra={"event_id": event_id, "event_type": event_type.value},
        )
        return event_id

    async def dispatch_class_event(
        self,
        event_type: EventType,
        class_id: int,
        new_row: Dict[str, Any],
        old_row: Optional[Dict[str, Any]] = None,
        user_id: Optional[int] = None,
    ) -> int:
        """
        Record a class INSERT, UPDATE or DELETE.

        Args:
            event_type: CLASS_INSERT, CLASS_UPDATE or CLASS_DELETE
            class_id: Class id
            new_row: Class data after the change
            old_row: Class data before the change, if known
            user_id: Actor who made the change

        Returns:
            The event id, or 0 if skipped
        """
        if not self.should_dispatch(event_type):
            return 0

        diff: Dict[str, Any] = {}
        if old_row is not None:
            diff = compute_diff(old_row, new_row)

            if event_type == EventType.CLASS_UPDATE and not is_significant_change(diff):
                logger.debug(f"Skipping non-significant UPDATE for class {class_id}")
                return 0

        event_data = build_event_data(new_row, old_row, diff, {
            "changed_fields": list(diff.keys()),
            "timestamp": _timestamp(),
        })

        return await self._record(event_type, "class", class_id, event_data, user_id)

    async def dispatch_learner_event(
        self,
        event_type: EventType,
        learner_id: int,
        class_id: int,
        event_data: Dict[str, Any],
        user_id: Optional[int] = None,
    ) -> int:
        """
        Record a learner being added to, removed from or updated in a class.

        Learner details are kept at the top level of ``event_data`` and also
        exposed as ``new_row`` so every stage reads events the same way.

        Returns:
            The event id, or 0 if skipped
        """
        if not self.should_dispatch(event_type):
            return 0

        details = dict(event_data)
        payload = dict(details)
        payload["class_id"] = class_id
        payload.setdefault("new_row", {**details, "class_id": class_id})
        payload.setdefault("old_row", None)
        payload.setdefault("diff", {})
        payload["metadata"] = {
            "timestamp": _timestamp(),
            "learner_id": learner_id,
        }

        return await self._record(event_type, "learner", learner_id, payload, user_id)

    async def dispatch_status_change(
        self,
        class_id: int,
        old_status: str,
        new_status: str,
        class_data: Dict[str, Any],
        user_id: Optional[int] = None,
    ) -> int:
        """
        Record a class status transition. Always significant.

        Returns:
            The event id, or 0 if skipped
        """
        if not self.should_dispatch(EventType.STATUS_CHANGE):
            return 0

        diff = {"class_status": {"old": old_status, "new": new_status}}
        event_data = build_event_data(class_data, None, diff, {
            "changed_fields": ["class_status"],
            "timestamp": _timestamp(),
            "status_transition": f"{old_status} -> {new_status}",
        })

        return await self._record(EventType.STATUS_CHANGE, "class", class_id, event_data, user_id)

    async def is_notification_enabled(self, event_type: EventType) -> bool:
        """True if anyone would receive an email for this event type."""
        if self.recipients is None:
            return False
        return bool(await self.recipients.get_recipients_by_event_type(event_type))

    # Convenience wrappers

    async def class_created(self, class_id: int, class_data: Dict[str, Any], user_id: Optional[int] = None) -> int:
        return await self.dispatch_class_event(EventType.CLASS_INSERT, class_id, class_data, user_id=user_id)

    async def class_updated(
        self,
        class_id: int,
        new_data: Dict[str, Any],
        old_data: Dict[str, Any],
        user_id: Optional[int] = None,
    ) -> int:
        return await self.dispatch_class_event(EventType.CLASS_UPDATE, class_id, new_data, old_data, user_id)

    async def class_deleted(self, class_id: int, class_data: Dict[str, Any], user_id: Optional[int] = None) -> int:
        return await self.dispatch_class_event(EventType.CLASS_DELETE, class_id, class_data, user_id=user_id)

    async def learner_added(
        self,
        learner_id: int,
        class_id: int,
        learner_data: Dict[str, Any],
        user_id: Optional[int] = None,
    ) -> int:
        return await self.dispatch_learner_event(EventType.LEARNER_ADD, learner_id, class_id, learner_data, user_id)

    async def learner_removed(
        self,
        learner_id: int,
        class_id: int,
        learner_data: Dict[str, Any],
        user_id: Optional[int] = None,
    ) -> int:
        return await self.dispatch_learner_event(EventType.LEARNER_REMOVE, learner_id, class_id, learner_data, user_id)
