"""Async Class Event Repository.

The event store for the notification pipeline. Every stage reads and
advances rows through this repository; each call runs in its own short
transaction so that stages running in different worker processes only
ever overwrite the columns they own.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import ClassEventRecord, utcnow
from notifications.event_types import EventType, NotificationStatus
from notifications.exceptions import EventPersistenceError
from notifications.schemas import ClassEvent, SummaryRecord

logger = logging.getLogger(__name__)


class ClassEventRepository:
    """
    Async repository for ``class_events`` rows.

    Status updates are guarded: a row only moves to a status if it currently
    holds one of that status's allowed predecessors, so nothing ever moves
    back to ``pending``.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """
        Initialize repository with a session factory.

        Args:
            session_factory: Factory producing async sessions.
        """
        self._session_factory = session_factory

    @staticmethod
    def _to_event(record: ClassEventRecord) -> ClassEvent:
        summary = SummaryRecord.from_dict(record.ai_summary) if record.ai_summary else None
        return ClassEvent(
            event_id=record.event_id,
            event_type=EventType(record.event_type),
            entity_type=record.entity_type,
            entity_id=record.entity_id,
            event_data=record.event_data or {},
            notification_status=NotificationStatus(record.notification_status),
            ai_summary=summary,
            user_id=record.user_id,
            created_at=record.created_at,
            enriched_at=record.enriched_at,
            sent_at=record.sent_at,
            viewed_at=record.viewed_at,
            acknowledged_at=record.acknowledged_at,
        )

    async def insert(
        self,
        event_type: EventType,
        entity_type: str,
        entity_id: int,
        event_data: Dict[str, Any],
        user_id: Optional[int] = None,
    ) -> int:
        """
        Persist a new event with ``notification_status=pending``.

        Returns:
            The new event id.

        Raises:
            EventPersistenceError: If the database did not assign an id.
        """
        record = ClassEventRecord(
            event_type=event_type.value,
            entity_type=entity_type,
            entity_id=entity_id,
            event_data=event_data,
            notification_status=NotificationStatus.PENDING.value,
            user_id=user_id,
            created_at=utcnow(),
        )

        async with self._session_factory() as session:
            async with session.begin():
                session.add(record)
                await session.flush()
                event_id = record.event_id

        if not event_id:
            raise EventPersistenceError(
                f"Insert of {event_type.value} event for {entity_type}:{entity_id} returned no id"
            )

        return int(event_id)

    async def find_by_id(self, event_id: int) -> Optional[ClassEvent]:
        """Get an event by id, or None."""
        async with self._session_factory() as session:
            record = await session.get(ClassEventRecord, event_id)
            return self._to_event(record) if record else None

    async def find_pending_for_processing(self, limit: int = 50) -> List[ClassEvent]:
        """
        Get pending events, oldest first.

        Args:
            limit: Maximum number of events.
        """
        query = (
            select(ClassEventRecord)
            .where(ClassEventRecord.notification_status == NotificationStatus.PENDING.value)
            .order_by(ClassEventRecord.created_at.asc(), ClassEventRecord.event_id.asc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [self._to_event(r) for r in result.scalars().all()]

    async def find_by_entity(self, entity_type: str, entity_id: int, limit: int = 50) -> List[ClassEvent]:
        """Get the most recent events for one entity, newest first."""
        query = (
            select(ClassEventRecord)
            .where(
                ClassEventRecord.entity_type == entity_type,
                ClassEventRecord.entity_id == entity_id,
            )
            .order_by(ClassEventRecord.created_at.desc(), ClassEventRecord.event_id.desc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [self._to_event(r) for r in result.scalars().all()]

    async def _guarded_update(
        self,
        event_id: int,
        status: NotificationStatus,
        values: Dict[str, Any],
        expected: Optional[Iterable[NotificationStatus]] = None,
    ) -> bool:
        predecessors = status.allowed_predecessors()
        if expected is not None:
            predecessors = predecessors & frozenset(expected)
        query = (
            update(ClassEventRecord)
            .where(
                ClassEventRecord.event_id == event_id,
                ClassEventRecord.notification_status.in_([s.value for s in predecessors]),
            )
            .values(notification_status=status.value, **values)
        )
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(query)
                updated = result.rowcount > 0

        if not updated:
            logger.warning(
                f"Event {event_id} not moved to {status.value}",
                extra={"event_id": event_id, "status": status.value},
            )
        return updated

    async def update_status(
        self,
        event_id: int,
        status: NotificationStatus,
        expected: Optional[Iterable[NotificationStatus]] = None,
    ) -> bool:
        """
        Advance an event's notification status.

        Args:
            event_id: Event to move
            status: Target status
            expected: Narrows the allowed predecessors, so the move only
                happens from one of these statuses

        Returns:
            True if the row moved; False if it does not exist or its current
            status may not move to ``status``.
        """
        if status == NotificationStatus.SENT:
            return await self.mark_sent(event_id)
        return await self._guarded_update(event_id, status, {}, expected)

    async def mark_sent(self, event_id: int, sent_at: Optional[datetime] = None) -> bool:
        """
        Set ``notification_status=sent`` with a timestamp.

        ``sent`` and ``failed`` may overwrite each other: with several
        recipients, or a manual re-send, the last delivery outcome wins.
        """
        return await self._guarded_update(
            event_id, NotificationStatus.SENT, {"sent_at": sent_at or utcnow()}
        )

    async def mark_failed(self, event_id: int) -> bool:
        """Set ``notification_status=failed``; last delivery outcome wins, as in ``mark_sent``."""
        return await self._guarded_update(event_id, NotificationStatus.FAILED, {})

    async def update_ai_summary(self, event_id: int, summary: SummaryRecord) -> bool:
        """
        Store the AI summary record and stamp ``enriched_at``.

        Does not touch ``notification_status``.
        """
        query = (
            update(ClassEventRecord)
            .where(ClassEventRecord.event_id == event_id)
            .values(ai_summary=summary.to_dict(), enriched_at=utcnow())
        )
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(query)
                updated = result.rowcount > 0
        return updated

    async def _stamp_once(self, event_id: int, column) -> bool:
        query = (
            update(ClassEventRecord)
            .where(ClassEventRecord.event_id == event_id, column.is_(None))
            .values({column.key: utcnow()})
        )
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(query)
                updated = result.rowcount > 0
        return updated

    async def mark_viewed(self, event_id: int) -> bool:
        """Set ``viewed_at`` unless it is already set."""
        return await self._stamp_once(event_id, ClassEventRecord.viewed_at)

    async def mark_acknowledged(self, event_id: int) -> bool:
        """Set ``acknowledged_at`` unless it is already set."""
        return await self._stamp_once(event_id, ClassEventRecord.acknowledged_at)

    async def get_timeline(self, limit: int = 50, before_id: Optional[int] = None) -> List[ClassEvent]:
        """
        Get recent events for the dashboard, newest first.

        Args:
            limit: Page size.
            before_id: Only return events with a smaller id (pagination cursor).
        """
        query = select(ClassEventRecord)
        if before_id is not None:
            query = query.where(ClassEventRecord.event_id < before_id)
        query = query.order_by(
            ClassEventRecord.created_at.desc(), ClassEventRecord.event_id.desc()
        ).limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return [self._to_event(r) for r in result.scalars().all()]

    async def get_unread_count(self) -> int:
        """Count events the dashboard has not shown yet."""
        query = select(func.count()).select_from(ClassEventRecord).where(
            ClassEventRecord.viewed_at.is_(None)
        )
        async with self._session_factory() as session:
            result = await session.execute(query)
            return int(result.scalar_one())
