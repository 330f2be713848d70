"""Configuration module for the notification pipeline."""

from .database import DatabaseSettings, get_database_settings
from .settings import (
    NotificationSettings,
    Settings,
    get_notification_settings,
    get_settings,
)

__all__ = [
    "DatabaseSettings",
    "get_database_settings",
    "NotificationSettings",
    "Settings",
    "get_notification_settings",
    "get_settings",
]
