"""Tests for event capture."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from config import feature_flags
from notifications.dispatcher import EventDispatcher, build_event_data
from notifications.event_types import EventType, NotificationStatus
from notifications.exceptions import EventPersistenceError, notify_safely
from notifications.jobs import EnrichEvent


@pytest.fixture
def dispatcher(repository, queue, recipients):
    return EventDispatcher(repository, queue, recipients)


class TestClassEvents:
    """Tests for class INSERT / UPDATE / DELETE capture."""

    @pytest.mark.asyncio
    async def test_significant_update_is_persisted_and_scheduled(self, dispatcher, repository, queue, class_row):
        new_row = dict(class_row, class_status="stopped")

        event_id = await dispatcher.class_updated(101, new_row, class_row, user_id=3)

        assert event_id > 0
        event = await repository.find_by_id(event_id)
        assert event.notification_status == NotificationStatus.PENDING
        assert event.event_type == EventType.CLASS_UPDATE
        assert event.entity_type == "class"
        assert event.user_id == 3
        assert event.diff == {"class_status": {"old": "active", "new": "stopped"}}
        assert event.metadata["changed_fields"] == ["class_status"]
        assert "timestamp" in event.metadata
        assert queue.jobs == [EnrichEvent(event_id=event_id)]

    @pytest.mark.asyncio
    async def test_updated_at_only_update_is_skipped(self, dispatcher, repository, queue, class_row):
        new_row = dict(class_row, updated_at="2026-01-21 09:00:00")

        assert await dispatcher.class_updated(101, new_row, class_row) == 0
        assert queue.jobs == []
        assert await repository.get_timeline() == []

    @pytest.mark.asyncio
    async def test_unchanged_update_is_skipped(self, dispatcher, queue, class_row):
        assert await dispatcher.class_updated(101, dict(class_row), class_row) == 0
        assert queue.jobs == []

    @pytest.mark.asyncio
    async def test_insert_is_always_significant(self, dispatcher, repository, queue, class_row):
        event_id = await dispatcher.class_created(101, class_row)

        event = await repository.find_by_id(event_id)
        assert event.event_type == EventType.CLASS_INSERT
        assert event.diff == {}
        assert event.event_data["old_row"] is None
        assert len(queue.jobs) == 1

    @pytest.mark.asyncio
    async def test_delete(self, dispatcher, repository, class_row):
        event_id = await dispatcher.class_deleted(101, class_row)
        event = await repository.find_by_id(event_id)
        assert event.event_type == EventType.CLASS_DELETE
        assert event.new_row["class_code"] == "AET-101"

    @pytest.mark.asyncio
    async def test_insert_with_old_row_keeps_diff(self, dispatcher, repository, class_row):
        event_id = await dispatcher.dispatch_class_event(
            EventType.CLASS_INSERT, 101, class_row, old_row={"class_status": "draft"}
        )
        event = await repository.find_by_id(event_id)
        assert event.diff["class_status"] == {"old": "draft", "new": "active"}


class TestLearnerAndStatusEvents:
    """Tests for learner-roster and status-change capture."""

    @pytest.mark.asyncio
    async def test_learner_added(self, dispatcher, repository, queue):
        event_id = await dispatcher.learner_added(55, 101, {"first_name": "Naledi", "surname": "Dlamini"})

        event = await repository.find_by_id(event_id)
        assert event.event_type == EventType.LEARNER_ADD
        assert event.entity_type == "learner"
        assert event.entity_id == 55
        assert event.event_data["class_id"] == 101
        assert event.event_data["first_name"] == "Naledi"
        assert event.new_row == {"first_name": "Naledi", "surname": "Dlamini", "class_id": 101}
        assert event.metadata["learner_id"] == 55
        assert queue.jobs == [EnrichEvent(event_id=event_id)]

    @pytest.mark.asyncio
    async def test_learner_removed(self, dispatcher, repository):
        event_id = await dispatcher.learner_removed(55, 101, {"first_name": "Naledi"})
        event = await repository.find_by_id(event_id)
        assert event.event_type == EventType.LEARNER_REMOVE

    @pytest.mark.asyncio
    async def test_status_change(self, dispatcher, repository, class_row):
        event_id = await dispatcher.dispatch_status_change(101, "active", "stopped", class_row, user_id=9)

        event = await repository.find_by_id(event_id)
        assert event.event_type == EventType.STATUS_CHANGE
        assert event.diff == {"class_status": {"old": "active", "new": "stopped"}}
        assert event.metadata["status_transition"] == "active -> stopped"
        assert event.metadata["changed_fields"] == ["class_status"]
        assert event.user_id == 9


class TestDispatchVetoes:
    """Tests for the should-dispatch hook point."""

    @pytest.mark.asyncio
    async def test_feature_flag_veto(self, dispatcher, repository, queue, class_row):
        feature_flags.set_flag("dispatch_class_insert", False)

        assert await dispatcher.class_created(101, class_row) == 0
        assert queue.jobs == []
        assert await repository.get_timeline() == []

    @pytest.mark.asyncio
    async def test_filter_veto_checked_before_persistence(self, queue, class_row):
        repository = MagicMock()
        repository.insert = AsyncMock()
        dispatcher = EventDispatcher(repository, queue)
        seen = []

        def only_status_changes(event_type):
            seen.append(event_type)
            return event_type == EventType.STATUS_CHANGE

        dispatcher.register_dispatch_filter(only_status_changes)

        assert await dispatcher.class_created(101, class_row) == 0
        repository.insert.assert_not_awaited()
        assert seen == [EventType.CLASS_INSERT]

    @pytest.mark.asyncio
    async def test_learner_update_flag_veto(self, dispatcher, repository, queue):
        feature_flags.set_flag("dispatch_learner_update", False)

        event_id = await dispatcher.dispatch_learner_event(
            EventType.LEARNER_UPDATE, 7, 101, {"learner_name": "Thandi Nkosi"}
        )

        assert event_id == 0
        assert queue.jobs == []

    def test_every_event_type_has_a_dispatch_flag(self):
        flags = feature_flags.get_all_flags()
        for event_type in EventType:
            assert f"dispatch_{event_type.value.lower()}" in flags

    @pytest.mark.asyncio
    async def test_is_notification_enabled(self, dispatcher, recipients, queue, repository):
        assert not await dispatcher.is_notification_enabled(EventType.CLASS_UPDATE)
        await recipients.set_all({"CLASS_UPDATE": ["ops@wecoza.co.za"]})
        assert await dispatcher.is_notification_enabled(EventType.CLASS_UPDATE)
        assert not await EventDispatcher(repository, queue).is_notification_enabled(EventType.CLASS_UPDATE)


class TestErrorPropagation:
    """Persistence errors propagate; notify_safely contains them."""

    @pytest.mark.asyncio
    async def test_persistence_error_propagates(self, queue, class_row):
        repository = MagicMock()
        repository.insert = AsyncMock(side_effect=EventPersistenceError("no id"))
        dispatcher = EventDispatcher(repository, queue)

        with pytest.raises(EventPersistenceError):
            await dispatcher.class_created(101, class_row)
        assert queue.jobs == []

    @pytest.mark.asyncio
    async def test_notify_safely_returns_zero(self, queue, class_row):
        repository = MagicMock()
        repository.insert = AsyncMock(side_effect=RuntimeError("database down"))
        dispatcher = EventDispatcher(repository, queue)

        assert await notify_safely(dispatcher.class_created, 101, class_row) == 0


def test_build_event_data_shape():
    data = build_event_data({"a": 1}, None, {}, None)
    assert data == {"new_row": {"a": 1}, "old_row": None, "diff": {}, "metadata": {}}
