"""
Batch drain of pending notification events.

Run periodically (Celery beat). Each run holds a global advisory lock, pulls
the oldest pending events and, per event, either hands it to the enricher or
schedules its emails directly. The run is time-boxed; whatever is left stays
``pending`` for the next tick.
"""

import gc
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from cache.advisory_lock import AdvisoryLock
from config.ai_providers import OpenAIConfig
from config.settings import NotificationSettings
from database.repositories.class_event_repository import ClassEventRepository

from .event_types import NotificationStatus
from .jobs import EnrichEvent, JobQueue, SendEmail
from .recipients import NotificationRecipients
from .schemas import ClassEvent, EmailContext

logger = logging.getLogger(__name__)


@dataclass
class ProcessStats:
    """Counters for one batch run."""
    acquired: bool = False
    fetched: int = 0
    processed: int = 0
    skipped: int = 0
    deferred: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "acquired": self.acquired,
            "fetched": self.fetched,
            "processed": self.processed,
            "skipped": self.skipped,
            "deferred": self.deferred,
        }


class NotificationProcessor:
    """
    Locked, time-boxed scan of pending events.

    Usage:
        processor = NotificationProcessor(repo, recipients, config, queue, lock, settings)
        stats = await processor.process()
    """

    def __init__(
        self,
        repository: ClassEventRepository,
        recipients: NotificationRecipients,
        config: OpenAIConfig,
        queue: JobQueue,
        lock: AdvisoryLock,
        settings: NotificationSettings,
        clock: Callable[[], float] = time.monotonic,
        collect: Callable[[], Any] = gc.collect,
    ):
        """
        Args:
            repository: Event store
            recipients: Recipient settings
            config: OpenAI configuration, used for the eligibility check
            queue: Where follow-up jobs are submitted
            lock: Advisory lock guarding the drain
            settings: Batch limits and lock parameters
            clock: Monotonic seconds source
            collect: Memory cleanup callable
        """
        self.repository = repository
        self.recipients = recipients
        self.config = config
        self.queue = queue
        self.lock = lock
        self.settings = settings
        self._clock = clock
        self._collect = collect

    def _should_stop(self, started: float) -> bool:
        elapsed = self._clock() - started
        remaining = self.settings.max_runtime_seconds - elapsed
        return elapsed >= self.settings.max_runtime_seconds or remaining < self.settings.min_remaining_seconds

    async def process(self) -> ProcessStats:
        """
        Run one batch drain.

        Returns:
            ProcessStats; ``acquired`` is False when another drain held the lock
        """
        stats = ProcessStats()
        lock_key = self.settings.lock_key

        if not await self.lock.acquire(lock_key, self.settings.lock_ttl):
            logger.info("Notification batch already running, skipping this run")
            return stats

        stats.acquired = True
        try:
            await self._drain(stats)
        finally:
            await self.lock.release(lock_key)

        logger.info(
            f"Notification batch finished: {stats.processed} processed, "
            f"{stats.skipped} skipped, {stats.deferred} deferred",
            extra=stats.to_dict(),
        )
        return stats

    async def _drain(self, stats: ProcessStats) -> None:
        started = self._clock()
        events = await self.repository.find_pending_for_processing(self.settings.batch_limit)
        stats.fetched = len(events)

        for index, event in enumerate(events):
            if self._should_stop(started):
                stats.deferred = len(events) - index
                logger.info(f"Batch time budget exhausted, deferring {stats.deferred} events")
                break

            if await self.process_event(event):
                stats.processed += 1
                if stats.processed % self.settings.memory_cleanup_interval == 0:
                    self._collect()
                    logger.debug(f"Memory cleanup after {stats.processed} events")
            else:
                stats.skipped += 1

    async def process_event(self, event: ClassEvent) -> bool:
        """
        Route one pending event.

        Returns:
            True if the event left ``pending``
        """
        recipients = await self.recipients.get_recipients_by_event_type(event.event_type)
        if not recipients:
            logger.debug(f"No recipients for event {event.event_id}, leaving pending")
            return False

        if event.event_type.skips_ai_summary:
            return await self._send_directly(event, recipients)

        eligibility = self.config.assess_eligibility(event.event_id)
        if not eligibility.eligible:
            logger.debug(
                f"AI not available for event {event.event_id}: {eligibility.reason.value}",
                extra={"event_id": event.event_id},
            )
            return await self._send_directly(event, recipients)

        if not await self._claim(event, NotificationStatus.ENRICHING):
            return False

        self.queue.submit(EnrichEvent(event_id=event.event_id))
        return True

    async def _send_directly(self, event: ClassEvent, recipients) -> bool:
        if not await self._claim(event, NotificationStatus.SENDING):
            return False

        for recipient in recipients:
            self.queue.submit(SendEmail(
                event_id=event.event_id,
                recipient=recipient,
                email_context=EmailContext.empty(),
            ))
        return True

    async def _claim(self, event: ClassEvent, status: NotificationStatus) -> bool:
        # The batch snapshot may be stale; only move rows that are still pending.
        moved = await self.repository.update_status(
            event.event_id, status, expected={NotificationStatus.PENDING}
        )
        if not moved:
            logger.debug(f"Event {event.event_id} left pending before this run reached it")
        return moved
