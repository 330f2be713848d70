"""
Notification pipeline exceptions.
"""

import functools
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """Base class for notification pipeline errors."""
    pass


class EventNotFoundError(NotificationError):
    """Raised when an event id does not resolve to a stored event."""

    def __init__(self, event_id: int):
        self.event_id = event_id
        super().__init__(f"Class event {event_id} not found")


class EventPersistenceError(NotificationError):
    """Raised when the event store fails to return an id for a new event."""
    pass


class InvalidEventTypeError(NotificationError, ValueError):
    """Raised for unknown event types or unsupported entity/operation pairs."""
    pass


async def notify_safely(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> int:
    """
    Run a dispatch call so that a notification failure never breaks the caller.

    Business code wraps every dispatcher call with this after its own
    mutation has been committed.

    Args:
        fn: Dispatcher coroutine function (e.g. ``dispatcher.dispatch_class_event``)
        *args: Positional arguments for ``fn``
        **kwargs: Keyword arguments for ``fn``

    Returns:
        The event id, or 0 if dispatch raised
    """
    try:
        return await fn(*args, **kwargs)
    except Exception as e:
        name = getattr(fn, "__name__", repr(fn))
        logger.exception(
            f"Notification dispatch failed in {name}: {e}",
            extra={"dispatch_call": name},
        )
        return 0


def safe_dispatch(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator form of :func:`notify_safely`."""

    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> int:
        return await notify_safely(fn, *args, **kwargs)

    return wrapper
