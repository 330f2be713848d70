"""
Per-event AI enrichment, run by the ``process_event`` job.

The enricher loads an event, resolves its recipients, brings the AI summary
to a final state (or finalises it as skipped when AI is unavailable), moves
the event to ``sending`` and hands one SendEmail job per recipient to the
queue.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from config.ai_providers import OpenAIConfig
from database.repositories.class_event_repository import ClassEventRepository

from .event_types import ErrorCode, NotificationStatus, SummaryStatus
from .jobs import JobQueue, SendEmail
from .recipients import NotificationRecipients
from .schemas import ClassEvent, EmailContext, EnrichmentResult, SummaryRecord
from .summarizer import AISummaryService, _utc_iso

logger = logging.getLogger(__name__)

SKIP_MESSAGES = {
    ErrorCode.CONFIG_MISSING.value: "OpenAI configuration missing or invalid.",
    ErrorCode.FEATURE_DISABLED.value: "AI summaries disabled via admin settings.",
}

MetricsListener = Callable[[Dict[str, Any]], None]

ENRICHABLE_STATUSES = frozenset({NotificationStatus.PENDING, NotificationStatus.ENRICHING})


def finalize_skipped_summary(record: Optional[SummaryRecord], reason: str) -> SummaryRecord:
    """Mark a summary failed because AI was not available for the event."""
    record = record or SummaryRecord()
    record = record.with_status(SummaryStatus.FAILED).with_error(
        reason, SKIP_MESSAGES.get(reason, "AI summary skipped.")
    )
    if not record.generated_at:
        record = record.with_generated_at(_utc_iso())
    return record


class NotificationEnricher:
    """
    Orchestrates the summary step for one event.

    The summarizer is called repeatedly within one ``enrich`` until the
    record is final, persisting after every attempt so the attempt count
    survives a worker crash. Backoff between attempts comes from the
    summarizer.
    """

    def __init__(
        self,
        repository: ClassEventRepository,
        summarizer: AISummaryService,
        config: OpenAIConfig,
        recipients: NotificationRecipients,
        queue: Optional[JobQueue] = None,
    ):
        self.repository = repository
        self.summarizer = summarizer
        self.config = config
        self.recipients = recipients
        self.queue = queue
        self._metrics_listeners: List[MetricsListener] = []

    def register_metrics_listener(self, callback: MetricsListener) -> None:
        """
        Register a callback for summary metrics.

        Args:
            callback: Receives the metrics dict after each persisted summary
        """
        self._metrics_listeners.append(callback)

    def should_generate_summary(self, record: Optional[SummaryRecord]) -> bool:
        record = record or SummaryRecord()
        if record.is_terminal:
            return False
        return record.attempts < self.summarizer.max_attempts

    @staticmethod
    def should_mark_failure(record: Optional[SummaryRecord]) -> bool:
        return record is None or not record.is_terminal

    def emit_summary_metrics(self, event_id: int, record: SummaryRecord) -> Dict[str, Any]:
        metrics = {
            "event_id": event_id,
            "status": record.status.value,
            "model": record.model,
            "tokens_used": record.tokens_used,
            "processing_time_ms": record.processing_time_ms,
            "attempts": record.attempts,
        }
        logger.info(f"AI summary {record.status.value} for event {event_id}", extra=metrics)

        for callback in self._metrics_listeners:
            try:
                callback(metrics)
            except Exception as e:
                logger.error(f"Metrics listener failed: {e}")

        return metrics

    @staticmethod
    def _summary_context(event: ClassEvent) -> Dict[str, Any]:
        class_id = event.event_data.get("class_id")
        if class_id is None and event.entity_type == "class":
            class_id = event.entity_id
        return {
            "event_id": event.event_id,
            "operation": event.operation,
            "changed_at": event.created_at.isoformat() if event.created_at else None,
            "class_id": class_id,
            "new_row": event.new_row,
            "old_row": event.old_row,
            "diff": event.diff,
        }

    async def _persist(self, event_id: int, record: SummaryRecord) -> None:
        await self.repository.update_ai_summary(event_id, record)
        self.emit_summary_metrics(event_id, record)

    async def enrich(self, event_id: int) -> EnrichmentResult:
        """
        Bring an event's AI summary to its final state.

        The event is claimed (``pending`` to ``enriching``) before the
        summarizer runs, so a batch drain during a long enrichment does not
        pick it up again. Only the caller whose move to ``sending`` succeeds
        gets ``should_email``.

        Returns:
            EnrichmentResult; ``should_email`` is False when the event is
            missing, nobody is configured to receive it, or another job
            already moved it past enrichment
        """
        event = await self.repository.find_by_id(event_id)
        if event is None:
            logger.warning(f"Event {event_id} not found for enrichment")
            return EnrichmentResult(success=False, should_email=False)

        if event.notification_status not in ENRICHABLE_STATUSES:
            logger.info(
                f"Event {event_id} already {event.notification_status.value}, skipping enrichment",
                extra={"event_id": event_id},
            )
            return EnrichmentResult(success=True, should_email=False)

        recipients = await self.recipients.get_recipients_by_event_type(event.event_type)
        if not recipients:
            logger.debug(f"No recipients for {event.event_type.value} on event {event_id}")
            return EnrichmentResult(success=True, should_email=False)

        if event.notification_status == NotificationStatus.PENDING:
            claimed = await self.repository.update_status(
                event_id, NotificationStatus.ENRICHING, expected={NotificationStatus.PENDING}
            )
            if not claimed:
                logger.info(f"Event {event_id} claimed by another job", extra={"event_id": event_id})
                return EnrichmentResult(success=True, should_email=False)

        record = event.ai_summary
        email_context = EmailContext.empty()
        eligibility = self.config.assess_eligibility(event_id)

        if not eligibility.eligible:
            if self.should_mark_failure(record):
                reason = eligibility.reason.value if eligibility.reason else ErrorCode.FEATURE_DISABLED.value
                record = finalize_skipped_summary(record, reason)
                await self._persist(event_id, record)
        else:
            context = self._summary_context(event)
            while self.should_generate_summary(record):
                result = await self.summarizer.generate_summary(context, record)
                record = result.record
                if not result.email_context.is_empty:
                    email_context = result.email_context
                await self._persist(event_id, record)

        moved = await self.repository.update_status(
            event_id, NotificationStatus.SENDING, expected={NotificationStatus.ENRICHING}
        )
        if not moved:
            logger.info(f"Event {event_id} already handed to the emailer", extra={"event_id": event_id})
            return EnrichmentResult(success=True, should_email=False)

        return EnrichmentResult(
            success=True,
            should_email=True,
            recipients=recipients,
            email_context=email_context,
        )

    async def handle(self, event_id: int) -> EnrichmentResult:
        """Enrich an event, then submit one SendEmail job per recipient."""
        result = await self.enrich(event_id)
        if not result.should_email:
            return result

        if self.queue is None:
            raise RuntimeError("NotificationEnricher.handle requires a job queue")

        for recipient in result.recipients:
            self.queue.submit(SendEmail(
                event_id=event_id,
                recipient=recipient,
                email_context=result.email_context,
            ))

        return result
