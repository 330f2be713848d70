"""Repository implementations for the notification pipeline."""

from .class_event_repository import ClassEventRepository

__all__ = [
    "ClassEventRepository",
]
