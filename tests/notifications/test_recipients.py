"""Tests for recipient settings."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from config.settings import NotificationSettings
from notifications.event_types import EventType
from notifications.recipients import (
    LEGACY_OPTIONS,
    RECIPIENTS_OPTION,
    InMemoryOptionStore,
    NotificationRecipients,
    RedisOptionStore,
    filter_valid_emails,
    seed_options,
    validate_email,
)


class TestValidation:
    """Tests for email validation."""

    @pytest.mark.parametrize("email", ["ops@wecoza.co.za", "  admin@example.com  "])
    def test_valid(self, email):
        assert validate_email(email)

    @pytest.mark.parametrize("email", ["", "   ", "not-an-email", "a@", None, 42, ["ops@wecoza.co.za"]])
    def test_invalid(self, email):
        assert not validate_email(email)

    def test_filter_drops_invalid_and_trims(self):
        assert filter_valid_emails([" ops@wecoza.co.za ", "bad", None, "qa@wecoza.co.za"]) == [
            "ops@wecoza.co.za",
            "qa@wecoza.co.za",
        ]

    def test_filter_accepts_single_string(self):
        assert filter_valid_emails("ops@wecoza.co.za") == ["ops@wecoza.co.za"]

    def test_filter_non_list(self):
        assert filter_valid_emails({"a": 1}) == []


class TestResolution:
    """Tests for per-event-type recipient resolution."""

    @pytest.mark.asyncio
    async def test_map_entry(self, recipients):
        await recipients.set_all({"CLASS_UPDATE": ["ops@wecoza.co.za", "qa@wecoza.co.za"]})
        assert await recipients.get_recipients_by_event_type(EventType.CLASS_UPDATE) == [
            "ops@wecoza.co.za",
            "qa@wecoza.co.za",
        ]

    @pytest.mark.asyncio
    async def test_invalid_entries_dropped_on_read(self, option_store, recipients):
        await option_store.set(RECIPIENTS_OPTION, {"CLASS_UPDATE": ["ops@wecoza.co.za", "junk", 7]})
        assert await recipients.get_recipients_by_event_type(EventType.CLASS_UPDATE) == ["ops@wecoza.co.za"]

    @pytest.mark.asyncio
    async def test_legacy_fallback_when_no_entry(self, option_store, recipients):
        await option_store.set(LEGACY_OPTIONS["DELETE"], "legacy@wecoza.co.za")
        assert await recipients.get_recipients_by_event_type(EventType.CLASS_DELETE) == ["legacy@wecoza.co.za"]
        assert await recipients.get_recipients_by_event_type(EventType.LEARNER_REMOVE) == ["legacy@wecoza.co.za"]

    @pytest.mark.asyncio
    async def test_map_entry_wins_even_if_empty(self, option_store, recipients):
        await option_store.set(LEGACY_OPTIONS["UPDATE"], "legacy@wecoza.co.za")
        await option_store.set(RECIPIENTS_OPTION, {"CLASS_UPDATE": []})
        assert await recipients.get_recipients_by_event_type(EventType.CLASS_UPDATE) == []

    @pytest.mark.asyncio
    async def test_nothing_configured(self, recipients):
        assert await recipients.get_recipients_by_event_type(EventType.STATUS_CHANGE) == []

    @pytest.mark.asyncio
    async def test_invalid_legacy_value_ignored(self, option_store, recipients):
        await option_store.set(LEGACY_OPTIONS["INSERT"], "not-an-email")
        assert await recipients.get_recipients_by_event_type(EventType.CLASS_INSERT) == []

    @pytest.mark.asyncio
    async def test_corrupt_map_reads_as_empty(self, option_store, recipients):
        await option_store.set(RECIPIENTS_OPTION, "garbage")
        assert await recipients.get_all() == {}

    @pytest.mark.asyncio
    async def test_canonical_and_legacy_strings_resolve_the_same(self, recipients):
        await recipients.set_all({EventType.CLASS_INSERT: ["ops@wecoza.co.za"]})
        assert await recipients.get_recipients_for_event_type("CLASS_INSERT") == ["ops@wecoza.co.za"]
        assert await recipients.get_recipients_for_event_type("insert") == ["ops@wecoza.co.za"]
        assert await recipients.get_recipients_for_event_type("bogus") == []

    @pytest.mark.asyncio
    async def test_recipient_for_operation(self, recipients):
        await recipients.set_all({"CLASS_UPDATE": ["first@wecoza.co.za", "second@wecoza.co.za"]})
        assert await recipients.get_recipient_for_operation("UPDATE") == "first@wecoza.co.za"
        assert await recipients.get_recipient_for_operation("DELETE") is None


class TestSaving:
    """Tests for writing recipient settings."""

    @pytest.mark.asyncio
    async def test_set_all_drops_unknown_types_and_invalid_addresses(self, option_store, recipients):
        saved = await recipients.set_all({
            "class_update": ["ops@wecoza.co.za", "bad"],
            "NOT_A_TYPE": ["ops@wecoza.co.za"],
        })
        assert saved == {"CLASS_UPDATE": ["ops@wecoza.co.za"]}
        assert await option_store.get(RECIPIENTS_OPTION) == saved

    @pytest.mark.asyncio
    async def test_set_for_event_type_keeps_other_entries(self, recipients):
        await recipients.set_all({"CLASS_INSERT": ["a@wecoza.co.za"]})
        saved = await recipients.set_for_event_type(EventType.STATUS_CHANGE, ["b@wecoza.co.za", "x"])

        assert saved == ["b@wecoza.co.za"]
        assert await recipients.get_all() == {
            "CLASS_INSERT": ["a@wecoza.co.za"],
            "STATUS_CHANGE": ["b@wecoza.co.za"],
        }


class TestSeeding:
    """Tests for seeding options from NOTIFY_* settings."""

    def test_seed_options(self):
        settings = NotificationSettings(
            recipients={"class_update": ["ops@wecoza.co.za"]},
            class_created="new@wecoza.co.za",
            class_updated=None,
            class_deleted=None,
        )
        assert seed_options(settings) == {
            RECIPIENTS_OPTION: {"CLASS_UPDATE": ["ops@wecoza.co.za"]},
            LEGACY_OPTIONS["INSERT"]: "new@wecoza.co.za",
        }

    @pytest.mark.asyncio
    async def test_seed_written_on_first_read(self):
        store = InMemoryOptionStore()
        settings = NotificationSettings(
            recipients={"STATUS_CHANGE": ["ops@wecoza.co.za"]},
            class_created=None,
            class_updated=None,
            class_deleted=None,
        )
        recipients = NotificationRecipients.from_settings(store, settings)

        assert await recipients.get_recipients_by_event_type(EventType.STATUS_CHANGE) == ["ops@wecoza.co.za"]
        assert await store.get(RECIPIENTS_OPTION) == {"STATUS_CHANGE": ["ops@wecoza.co.za"]}

    @pytest.mark.asyncio
    async def test_stored_value_beats_seed(self):
        store = InMemoryOptionStore({RECIPIENTS_OPTION: {"STATUS_CHANGE": ["stored@wecoza.co.za"]}})
        recipients = NotificationRecipients(store, seed={RECIPIENTS_OPTION: {"STATUS_CHANGE": ["seed@wecoza.co.za"]}})
        assert await recipients.get_recipients_by_event_type(EventType.STATUS_CHANGE) == ["stored@wecoza.co.za"]


class TestRedisOptionStore:
    """Tests for the Redis-backed option store."""

    @pytest.mark.asyncio
    async def test_get_set_use_namespace_without_expiry(self):
        client = MagicMock()
        client.get = AsyncMock(return_value=None)
        client.set = AsyncMock(return_value=True)
        store = RedisOptionStore(client)

        assert await store.get("notification_recipients", {}) == {}
        client.get.assert_awaited_once_with("options:notification_recipients")

        await store.set("notification_recipients", {"CLASS_UPDATE": []})
        client.set.assert_awaited_once_with("options:notification_recipients", {"CLASS_UPDATE": []}, ttl=0)
