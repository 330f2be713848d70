"""
Recipient settings for class change notifications.

Recipients are stored as one option: a map from event type value to a list
of email addresses. Three legacy single-address options (one per coarse
operation) fill in for event types that have no entry in the map.

Options live in an :class:`OptionStore`; Redis in production, a dict in
tests and single-process setups. Both are seeded from
``NotificationSettings`` the first time they are read.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol

from pydantic import EmailStr, TypeAdapter, ValidationError

from cache.redis_client import RedisClient
from config.settings import NotificationSettings

from .event_types import EventType

logger = logging.getLogger(__name__)

RECIPIENTS_OPTION = "notification_recipients"

LEGACY_OPTIONS = {
    "INSERT": "notification_class_created",
    "UPDATE": "notification_class_updated",
    "DELETE": "notification_class_deleted",
}

_email_adapter = TypeAdapter(EmailStr)


class OptionStore(Protocol):
    """Async key/value store for persisted settings."""

    async def get(self, key: str, default: Any = None) -> Any:
        ...

    async def set(self, key: str, value: Any) -> None:
        ...


class InMemoryOptionStore:
    """Dict-backed option store."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._options: Dict[str, Any] = dict(initial or {})

    async def get(self, key: str, default: Any = None) -> Any:
        return self._options.get(key, default)

    async def set(self, key: str, value: Any) -> None:
        self._options[key] = value


class RedisOptionStore:
    """Option store kept in Redis under ``options:<key>`` without expiry."""

    def __init__(self, client: RedisClient, namespace: str = "options:"):
        self.client = client
        self.namespace = namespace

    async def get(self, key: str, default: Any = None) -> Any:
        value = await self.client.get(f"{self.namespace}{key}")
        return default if value is None else value

    async def set(self, key: str, value: Any) -> None:
        await self.client.set(f"{self.namespace}{key}", value, ttl=0)


def seed_options(settings: NotificationSettings) -> Dict[str, Any]:
    """Initial option values derived from ``NOTIFY_*`` settings."""
    options: Dict[str, Any] = {}
    if settings.recipients:
        options[RECIPIENTS_OPTION] = dict(settings.recipients)
    for operation, address in settings.legacy_recipients.items():
        if address:
            options[LEGACY_OPTIONS[operation]] = address
    return options


def validate_email(email: Any) -> bool:
    """True for a non-blank, well-formed email address."""
    if not isinstance(email, str):
        return False
    email = email.strip()
    if not email:
        return False
    try:
        _email_adapter.validate_python(email)
    except ValidationError:
        return False
    return True


def filter_valid_emails(emails: Any) -> List[str]:
    """Drop non-string and malformed entries, trimming the rest."""
    if isinstance(emails, str):
        emails = [emails]
    if not isinstance(emails, (list, tuple)):
        return []
    return [email.strip() for email in emails if validate_email(email)]


class NotificationRecipients:
    """
    Resolves who receives the email for each event type.

    Reads never raise for bad configuration: invalid addresses are dropped
    and an unusable option reads as empty.
    """

    def __init__(
        self,
        store: OptionStore,
        seed: Optional[Dict[str, Any]] = None,
    ):
        """
        Args:
            store: Backing option store
            seed: Option values written the first time an option is found missing
        """
        self.store = store
        self._seed = dict(seed or {})

    @classmethod
    def from_settings(cls, store: OptionStore, settings: NotificationSettings) -> "NotificationRecipients":
        return cls(store, seed=seed_options(settings))

    async def _option(self, key: str, default: Any) -> Any:
        value = await self.store.get(key)
        if value is None and key in self._seed:
            value = self._seed[key]
            await self.store.set(key, value)
        return default if value is None else value

    async def get_all(self) -> Dict[str, List[str]]:
        """The raw recipients map, keyed by event type value."""
        option = await self._option(RECIPIENTS_OPTION, {})
        if not isinstance(option, dict):
            return {}
        return {str(k).upper(): v for k, v in option.items()}

    async def set_all(self, recipients: Dict[Any, Iterable[str]]) -> Dict[str, List[str]]:
        """
        Replace the whole recipients map.

        Unknown event types are dropped and addresses are validated before
        saving.

        Returns:
            The map as saved
        """
        cleaned: Dict[str, List[str]] = {}
        for key, emails in recipients.items():
            event_type = key if isinstance(key, EventType) else EventType.from_value(key)
            if event_type is None:
                logger.warning(f"Ignoring recipients for unknown event type {key!r}")
                continue
            cleaned[event_type.value] = filter_valid_emails(list(emails))

        await self.store.set(RECIPIENTS_OPTION, cleaned)
        return cleaned

    async def set_for_event_type(self, event_type: EventType, emails: Iterable[str]) -> List[str]:
        """Replace the recipients of one event type; returns the saved list."""
        recipients = await self.get_all()
        recipients[event_type.value] = filter_valid_emails(list(emails))
        await self.store.set(RECIPIENTS_OPTION, recipients)
        return recipients[event_type.value]

    async def get_legacy_recipient(self, operation: str) -> Optional[str]:
        key = LEGACY_OPTIONS.get(str(operation).upper())
        if key is None:
            return None
        value = await self._option(key, "")
        if isinstance(value, str) and validate_email(value):
            return value.strip()
        return None

    async def get_recipients_by_event_type(self, event_type: EventType) -> List[str]:
        """
        Recipients for an event type.

        An entry in the recipients map wins, even if it validates to an empty
        list; the legacy option for the type's coarse operation is only read
        when the map has no entry at all.
        """
        recipients = await self.get_all()
        if event_type.value in recipients:
            return filter_valid_emails(recipients[event_type.value])

        legacy = await self.get_legacy_recipient(event_type.operation)
        if legacy is not None:
            return [legacy]

        logger.debug(f"No recipients configured for {event_type.value}")
        return []

    async def get_recipients_for_event_type(self, value: str) -> List[str]:
        """
        Recipients for a canonical event type value or a legacy
        INSERT/UPDATE/DELETE operation string.
        """
        event_type = EventType.from_value(value) or EventType.from_legacy_operation(value)
        if event_type is None:
            return []
        return await self.get_recipients_by_event_type(event_type)

    async def get_recipient_for_operation(self, operation: str) -> Optional[str]:
        """First recipient for a coarse operation, or None."""
        event_type = EventType.from_legacy_operation(operation)
        if event_type is None:
            return None
        recipients = await self.get_recipients_by_event_type(event_type)
        return recipients[0] if recipients else None
