"""
Notification Background Tasks - Celery entry points for the pipeline.

- process_notifications: periodic batch drain (beat)
- process_event: enrich one event, then schedule its emails
- send_notification_email: send one email

Each task runs its coroutine on a fresh event loop with its own database
engine and Redis connection, opened by :func:`open_pipeline`.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional

from celery.signals import worker_ready

from cache.advisory_lock import AdvisoryLock, RedisAdvisoryLock
from cache.redis_client import RedisClient
from config.ai_providers import OpenAIConfig, get_openai_config
from config.database import get_database_settings
from config.logging_config import event_id_var, log_performance
from config.feature_flags import log_feature_flags
from config.settings import NotificationSettings, get_notification_settings, get_settings
from database.async_engine import create_engine, get_session_factory, init_database
from database.repositories.class_event_repository import ClassEventRepository
from notifications.dispatcher import EventDispatcher
from notifications.emailer import NotificationEmailer
from notifications.enricher import NotificationEnricher
from notifications.jobs import EnrichEvent, Job, JobQueue, SendEmail, job_from_payload
from notifications.presenter import NotificationEmailPresenter
from notifications.processor import NotificationProcessor
from notifications.recipients import NotificationRecipients, RedisOptionStore
from notifications.summarizer import AISummaryService

from .celery_app import TaskBase, celery_app

logger = logging.getLogger(__name__)


def _run_async(coro):
    """
    Run an async coroutine from sync context, handling existing event loops.

    Works in both sync context (Celery workers) and async context (tests).
    """
    import asyncio

    try:
        # Check if there's already a running event loop
        asyncio.get_running_loop()
    except RuntimeError:
        # No running loop - create a new one (normal sync context)
        loop = asyncio.new_event_loop()
        try:
            return loop.run_until_complete(coro)
        finally:
            loop.close()
    else:
        # There's a running loop - run the coroutine on its own thread
        import concurrent.futures
        with concurrent.futures.ThreadPoolExecutor() as executor:
            future = executor.submit(asyncio.run, coro)
            return future.result(timeout=300)


class CeleryJobQueue:
    """
    JobQueue that submits pipeline jobs as Celery tasks.

    Args:
        tasks: Job name -> task mapping, defaults to this module's tasks
    """

    def __init__(self, tasks: Optional[Dict[str, Any]] = None):
        self._tasks = tasks

    @property
    def tasks(self) -> Dict[str, Any]:
        if self._tasks is None:
            self._tasks = {
                EnrichEvent.name: process_event,
                SendEmail.name: send_notification_email,
            }
        return self._tasks

    def submit(self, job: Job) -> None:
        task = self.tasks.get(job.name)
        if task is None:
            raise ValueError(f"No task registered for job {job.name}")
        task.delay(**job.to_payload())
        logger.debug(f"Submitted {job.name} for event {job.event_id}")


@dataclass
class NotificationPipeline:
    """Wired pipeline services sharing one repository, queue and config."""
    repository: ClassEventRepository
    recipients: NotificationRecipients
    config: OpenAIConfig
    queue: JobQueue
    lock: AdvisoryLock
    settings: NotificationSettings
    summarizer: Optional[AISummaryService] = field(default=None)

    def dispatcher(self) -> EventDispatcher:
        return EventDispatcher(self.repository, self.queue, self.recipients)

    def processor(self) -> NotificationProcessor:
        return NotificationProcessor(
            repository=self.repository,
            recipients=self.recipients,
            config=self.config,
            queue=self.queue,
            lock=self.lock,
            settings=self.settings,
        )

    def enricher(self) -> NotificationEnricher:
        if self.summarizer is None:
            self.summarizer = AISummaryService(
                self.config,
                max_attempts=self.settings.max_summary_attempts,
                timeout_seconds=self.settings.summary_timeout_seconds,
                brand=self.settings.brand,
            )
        return NotificationEnricher(
            repository=self.repository,
            summarizer=self.summarizer,
            config=self.config,
            recipients=self.recipients,
            queue=self.queue,
        )

    def emailer(self) -> NotificationEmailer:
        return NotificationEmailer(
            repository=self.repository,
            presenter=NotificationEmailPresenter(brand=self.settings.brand),
            from_email=self.settings.from_email,
            from_name=self.settings.from_name,
        )

    async def close(self) -> None:
        if self.summarizer is not None:
            await self.summarizer.close()


@asynccontextmanager
async def open_pipeline(queue: Optional[JobQueue] = None) -> AsyncIterator[NotificationPipeline]:
    """
    Open database and Redis connections and wire the pipeline.

    Args:
        queue: Job queue override, defaults to CeleryJobQueue
    """
    redis_settings = get_settings().redis
    notification_settings = get_notification_settings()
    engine = create_engine(get_database_settings())
    redis = RedisClient(redis_settings)

    pipeline: Optional[NotificationPipeline] = None
    try:
        await redis.connect()
        pipeline = NotificationPipeline(
            repository=ClassEventRepository(get_session_factory(engine)),
            recipients=NotificationRecipients.from_settings(
                RedisOptionStore(redis), notification_settings
            ),
            config=get_openai_config(),
            queue=queue or CeleryJobQueue(),
            lock=RedisAdvisoryLock(redis),
            settings=notification_settings,
        )
        yield pipeline
    finally:
        if pipeline is not None:
            await pipeline.close()
        await redis.close()
        await engine.dispose()


@log_performance("process_notifications")
async def run_process_notifications(pipeline: NotificationPipeline) -> Dict[str, Any]:
    """One batch drain."""
    stats = await pipeline.processor().process()
    return stats.to_dict()


async def run_process_event(pipeline: NotificationPipeline, event_id: int) -> Dict[str, Any]:
    """Enrich one event and schedule its emails."""
    job = job_from_payload(EnrichEvent.name, {"event_id": event_id})
    token = event_id_var.set(job.event_id)
    try:
        result = await pipeline.enricher().handle(job.event_id)
    finally:
        event_id_var.reset(token)

    return {
        "event_id": job.event_id,
        "success": result.success,
        "emails_scheduled": len(result.recipients) if result.should_email else 0,
    }


async def run_send_notification_email(
    pipeline: NotificationPipeline,
    event_id: int,
    recipient: str,
    email_context: Optional[Dict[str, Any]] = None,
) -> bool:
    """Send one notification email."""
    job = job_from_payload(SendEmail.name, {
        "event_id": event_id,
        "recipient": recipient,
        "email_context": email_context,
    })
    token = event_id_var.set(job.event_id)
    try:
        return await pipeline.emailer().send(job.event_id, job.recipient, job.email_context)
    finally:
        event_id_var.reset(token)


@celery_app.task(
    bind=True,
    base=TaskBase,
    name="tasks.notification_tasks.process_notifications",
)
def process_notifications(self) -> Dict[str, Any]:
    """Periodic batch drain of pending events."""
    async def _run():
        async with open_pipeline() as pipeline:
            return await run_process_notifications(pipeline)

    return _run_async(_run())


@celery_app.task(
    bind=True,
    base=TaskBase,
    name="tasks.notification_tasks.process_event",
)
def process_event(self, event_id: int) -> Dict[str, Any]:
    """AI enrichment of one event, followed by its send jobs."""
    async def _run():
        async with open_pipeline() as pipeline:
            return await run_process_event(pipeline, int(event_id))

    return _run_async(_run())


@celery_app.task(
    bind=True,
    base=TaskBase,
    name="tasks.notification_tasks.send_notification_email",
)
def send_notification_email(
    self,
    event_id: int,
    recipient: str,
    email_context: Optional[Dict[str, Any]] = None,
) -> bool:
    """
    Send the notification for one event to one recipient.

    Failed sends are terminal. To resend, submit this task again by hand:
        send_notification_email.delay(event_id=42, recipient="ops@example.org")
    """
    async def _run():
        async with open_pipeline() as pipeline:
            return await run_send_notification_email(
                pipeline, int(event_id), recipient, email_context
            )

    return _run_async(_run())


async def ensure_schema() -> None:
    """Create the class_events table on a short-lived engine."""
    engine = create_engine(get_database_settings())
    try:
        await init_database(engine=engine)
    finally:
        await engine.dispose()


@worker_ready.connect
def on_worker_ready_init_schema(sender, **kwargs):
    """Make sure the event table exists before jobs run."""
    logger.info(f"Notification worker ready (environment={get_settings().environment})")
    log_feature_flags()
    _run_async(ensure_schema())
