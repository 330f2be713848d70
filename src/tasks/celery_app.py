"""
Celery App Configuration - job queue for the notification pipeline.

Runs the periodic batch drain and the two per-event jobs:
- process_event: AI enrichment of one event
- send_notification_email: one email for one event and recipient

Usage:
    # Run worker
    celery -A tasks.celery_app worker --loglevel=info

    # Run with beat scheduler (batch drain)
    celery -A tasks.celery_app worker --beat --loglevel=info
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, Optional

from celery import Celery, Task
from celery.signals import (
    setup_logging,
    task_failure,
    task_postrun,
    task_prerun,
    worker_ready,
    worker_shutdown,
)

from config.logging_config import configure_logging
from config.settings import (
    CelerySettings,
    NotificationSettings,
    RedisSettings,
    get_settings,
)

logger = logging.getLogger(__name__)

APP_NAME = "notification_pipeline"


def build_beat_schedule(notification_settings: NotificationSettings) -> Dict[str, Any]:
    """Periodic tasks: the batch drain on a fixed interval."""
    return {
        "process-notifications": {
            "task": "tasks.notification_tasks.process_notifications",
            "schedule": float(notification_settings.process_interval_seconds),
        },
    }


def create_celery_app(
    redis_settings: Optional[RedisSettings] = None,
    celery_settings: Optional[CelerySettings] = None,
    notification_settings: Optional[NotificationSettings] = None,
) -> Celery:
    """
    Create and configure a Celery application.

    Args:
        redis_settings: Redis connection settings
        celery_settings: Celery configuration settings
        notification_settings: Pipeline settings (beat interval)

    Returns:
        Configured Celery application
    """
    settings = get_settings()
    redis_settings = redis_settings or settings.redis
    celery_settings = celery_settings or settings.celery
    notification_settings = notification_settings or settings.notifications

    # Build broker and backend URLs
    auth = f":{redis_settings.password}@" if redis_settings.password else ""
    protocol = "rediss" if redis_settings.ssl else "redis"
    base_url = f"{protocol}://{auth}{redis_settings.host}:{redis_settings.port}"

    app = Celery(
        APP_NAME,
        broker=f"{base_url}/{celery_settings.broker_db}",
        backend=f"{base_url}/{celery_settings.result_db}",
        include=["tasks.notification_tasks"],
    )

    app.conf.update(
        # Serialization
        task_serializer=celery_settings.task_serializer,
        result_serializer=celery_settings.result_serializer,
        accept_content=celery_settings.accept_content,
        result_accept_content=celery_settings.accept_content,

        # Task acknowledgment
        task_acks_late=celery_settings.task_acks_late,
        task_reject_on_worker_lost=celery_settings.task_reject_on_worker_lost,

        # Worker settings
        worker_prefetch_multiplier=celery_settings.worker_prefetch_multiplier,

        # Time limits
        task_time_limit=celery_settings.task_time_limit,
        task_soft_time_limit=celery_settings.task_soft_time_limit,

        result_expires=3600,
        task_track_started=True,

        timezone="UTC",
        enable_utc=True,

        beat_schedule=build_beat_schedule(notification_settings),
    )

    return app


# Global Celery app instance
celery_app = create_celery_app()


@lru_cache
def get_celery_app() -> Celery:
    """Get the global Celery app instance."""
    return celery_app


class TaskBase(Task):
    """
    Base task class: logging only.

    Tasks never auto-retry; retry policy lives in the pipeline itself
    (summary attempts) or is manual (failed sends).
    """

    abstract = True
    max_retries = 0

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        """Handle task failure."""
        logger.error(
            f"Task {self.name}[{task_id}] failed: {exc}",
            extra={
                "task_id": task_id,
                "task_name": self.name,
                "kwargs": kwargs,
                "exception": str(exc),
            },
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):
        """Handle task success."""
        logger.info(
            f"Task {self.name}[{task_id}] succeeded",
            extra={
                "task_id": task_id,
                "task_name": self.name,
            },
        )
        super().on_success(retval, task_id, args, kwargs)


# Register base task class
celery_app.Task = TaskBase


@setup_logging.connect
def on_setup_logging(**kwargs):
    """Use the application's log format in workers."""
    settings = get_settings()
    configure_logging(level=settings.log_level, json_output=settings.log_json)


@worker_ready.connect
def on_worker_ready(sender, **kwargs):
    """Log when worker is ready."""
    logger.info(f"Celery worker ready: {sender}")


@worker_shutdown.connect
def on_worker_shutdown(sender, **kwargs):
    """Log when worker shuts down."""
    logger.info(f"Celery worker shutting down: {sender}")


@task_prerun.connect
def on_task_prerun(task_id, task, args, kwargs, **other):
    """Log task start."""
    logger.debug(
        f"Task starting: {task.name}[{task_id}]",
        extra={
            "task_id": task_id,
            "task_name": task.name,
        },
    )


@task_postrun.connect
def on_task_postrun(task_id, task, args, kwargs, retval, state, **other):
    """Log task completion."""
    logger.debug(
        f"Task completed: {task.name}[{task_id}] state={state}",
        extra={
            "task_id": task_id,
            "task_name": task.name,
            "state": state,
        },
    )


@task_failure.connect
def on_task_failure(task_id, exception, args, kwargs, traceback, einfo, **other):
    """Log failed pipeline jobs with their event id for manual follow-up."""
    sender = other.get("sender")
    logger.warning(
        f"Pipeline job {getattr(sender, 'name', 'unknown')}[{task_id}] not completed",
        extra={
            "task_id": task_id,
            "event_id": (kwargs or {}).get("event_id"),
            "exception": str(exception),
        },
    )
