"""
Background Tasks Module - Celery-based job execution for the notification pipeline.

Provides:
- Celery app configuration with Redis broker and the batch drain schedule
- process_event and send_notification_email jobs
- CeleryJobQueue, the JobQueue used by the pipeline in workers
"""

from .celery_app import celery_app, get_celery_app
from .notification_tasks import (
    CeleryJobQueue,
    NotificationPipeline,
    open_pipeline,
    process_event,
    process_notifications,
    send_notification_email,
)

__all__ = [
    # Celery app
    "celery_app",
    "get_celery_app",
    # Pipeline tasks
    "CeleryJobQueue",
    "NotificationPipeline",
    "open_pipeline",
    "process_event",
    "process_notifications",
    "send_notification_email",
]
