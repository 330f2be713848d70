"""Application settings using Pydantic Settings.

Centralized configuration for the change-notification pipeline.

Environment variables:
- APP_*: general application settings
- REDIS_*: Redis connection (cache, advisory lock, Celery broker)
- CELERY_*: Celery worker settings
- NOTIFY_*: notification pipeline limits and recipient seeds
"""

import logging
from functools import lru_cache
from typing import Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class RedisSettings(BaseSettings):
    """Redis configuration for locks, option storage and the Celery broker."""

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        extra="ignore",
    )

    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    db: int = Field(default=0, description="Redis database number")
    password: Optional[str] = Field(default=None, description="Redis password")
    ssl: bool = Field(default=False, description="Use SSL for Redis connection")

    # Connection pool settings
    max_connections: int = Field(default=50, description="Max Redis connections")
    socket_timeout: int = Field(default=5, description="Socket timeout in seconds")
    socket_connect_timeout: int = Field(default=5, description="Connection timeout")

    # Key settings
    key_prefix: str = Field(default="notify:", description="Prefix for all keys")
    default_ttl: int = Field(default=3600, description="Default TTL in seconds (1 hour)")

    @property
    def url(self) -> str:
        """Get Redis URL."""
        auth = f":{self.password}@" if self.password else ""
        protocol = "rediss" if self.ssl else "redis"
        return f"{protocol}://{auth}{self.host}:{self.port}/{self.db}"


class CelerySettings(BaseSettings):
    """Celery task queue configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CELERY_",
        extra="ignore",
    )

    broker_db: int = Field(default=1, description="Redis DB for Celery broker")
    result_db: int = Field(default=2, description="Redis DB for Celery results")

    task_serializer: str = Field(default="json", description="Task serialization format")
    result_serializer: str = Field(default="json", description="Result serialization format")
    accept_content: list = Field(default=["json"], description="Accepted content types")

    task_acks_late: bool = Field(default=True, description="Acknowledge tasks after completion")
    task_reject_on_worker_lost: bool = Field(default=True, description="Reject tasks if worker lost")

    worker_prefetch_multiplier: int = Field(default=1, description="Tasks to prefetch per worker")
    task_time_limit: int = Field(default=300, description="Hard task time limit in seconds")
    task_soft_time_limit: int = Field(default=240, description="Soft task time limit")


class NotificationSettings(BaseSettings):
    """Notification pipeline configuration.

    Limits for the batch drain, the AI summary retry bound, and the seed
    values for recipient settings (the live values are held in the option
    store, see ``notifications.recipients``).
    """

    model_config = SettingsConfigDict(
        env_prefix="NOTIFY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Batch processor
    lock_key: str = Field(default="notifications:batch_lock", description="Advisory lock key")
    lock_ttl: int = Field(default=120, ge=1, description="Advisory lock TTL in seconds")
    batch_limit: int = Field(default=50, ge=1, description="Pending events fetched per run")
    max_runtime_seconds: float = Field(default=90.0, gt=0, description="Run budget in seconds")
    min_remaining_seconds: float = Field(default=5.0, ge=0, description="Safety margin in seconds")
    memory_cleanup_interval: int = Field(default=50, ge=1, description="Events between gc passes")
    process_interval_seconds: float = Field(default=60.0, gt=0, description="Beat interval for the drain")

    # AI summaries
    max_summary_attempts: int = Field(default=3, ge=1, description="Max AI summary attempts per event")
    summary_timeout_seconds: float = Field(default=60.0, gt=0, description="Summarization call timeout")

    # Recipient seeds
    recipients: Dict[str, List[str]] = Field(
        default_factory=dict,
        description="JSON map of event type to recipient emails",
    )
    class_created: Optional[str] = Field(default=None, description="Legacy INSERT recipient")
    class_updated: Optional[str] = Field(default=None, description="Legacy UPDATE recipient")
    class_deleted: Optional[str] = Field(default=None, description="Legacy DELETE recipient")

    # Email presentation
    from_email: Optional[str] = Field(default=None, description="Sender address override")
    from_name: str = Field(default="Training Notifications", description="Sender display name")
    brand: str = Field(default="WeCoza", description="Subject line prefix")

    @field_validator("recipients", mode="before")
    @classmethod
    def _upper_case_keys(cls, value):
        if isinstance(value, dict):
            return {str(k).upper(): v for k, v in value.items()}
        return value

    @property
    def legacy_recipients(self) -> Dict[str, Optional[str]]:
        """Legacy single-recipient values keyed by coarse operation."""
        return {
            "INSERT": self.class_created,
            "UPDATE": self.class_updated,
            "DELETE": self.class_deleted,
        }


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application info
    name: str = Field(default="Notification Pipeline", description="Application name")
    version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Debug mode")
    environment: str = Field(default="development", description="Environment name")

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")
    log_json: bool = Field(default=False, description="Emit JSON formatted logs")

    # Nested settings (loaded separately)
    @property
    def redis(self) -> RedisSettings:
        return RedisSettings()

    @property
    def celery(self) -> CelerySettings:
        return CelerySettings()

    @property
    def notifications(self) -> NotificationSettings:
        return NotificationSettings()


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings instance.

    Returns:
        Settings: Cached settings loaded from environment.
    """
    return Settings()


@lru_cache
def get_notification_settings() -> NotificationSettings:
    """Get cached notification pipeline settings."""
    return NotificationSettings()
