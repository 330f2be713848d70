"""Pytest configuration and fixtures for the notification pipeline tests."""

import os
import sys
from pathlib import Path
from types import SimpleNamespace
from typing import List
from unittest.mock import AsyncMock, MagicMock

import pytest

# Set test environment BEFORE any other imports
os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("DB_DRIVER", "sqlite+aiosqlite")
os.environ.pop("OPENAI_API_KEY", None)
os.environ.pop("SMTP_HOST", None)

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

VALID_API_KEY = "sk-test" + "a" * 40


def _reset_db_modules():
    """Reset database module globals to ensure clean state."""
    try:
        import database.async_engine as module
        module._async_engine = None
        module._async_session_factory = None
    except ImportError:
        pass


@pytest.fixture(autouse=True)
def reset_database_globals():
    """Reset database module globals before and after each test."""
    _reset_db_modules()
    yield
    _reset_db_modules()


@pytest.fixture(autouse=True)
def restore_feature_flags():
    """Undo runtime feature flag changes made by a test."""
    from config import feature_flags

    saved = dict(feature_flags.FEATURE_FLAGS)
    yield
    feature_flags.FEATURE_FLAGS.clear()
    feature_flags.FEATURE_FLAGS.update(saved)


@pytest.fixture(autouse=True)
def reset_email_provider():
    """Drop any provider selected or injected by a test."""
    from notifications.email_provider import set_email_provider

    set_email_provider(None)
    yield
    set_email_provider(None)


class RecordingQueue:
    """JobQueue double that keeps submitted jobs in order."""

    def __init__(self):
        self.jobs: List = []
        self.submitted: List = []

    def submit(self, job) -> None:
        self.jobs.append(job)
        self.submitted.append(job)

    def of_kind(self, name: str) -> List:
        return [job for job in self.jobs if job.name == name]


@pytest.fixture
def queue():
    """A job queue that records submissions."""
    return RecordingQueue()


@pytest.fixture
def notification_settings():
    """Pipeline settings with the production defaults."""
    from config.settings import NotificationSettings
    return NotificationSettings(recipients={}, class_created=None, class_updated=None, class_deleted=None)


@pytest.fixture
async def engine(tmp_path):
    """Async SQLite engine on a temporary file with the schema created."""
    from config.database import DatabaseSettings
    from database.async_engine import create_engine, init_database

    settings = DatabaseSettings(driver="sqlite+aiosqlite", sqlite_path=tmp_path / "events.db")
    engine = create_engine(settings)
    await init_database(engine=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def repository(engine):
    """Event store over the temporary database."""
    from database.async_engine import get_session_factory
    from database.repositories.class_event_repository import ClassEventRepository
    return ClassEventRepository(get_session_factory(engine))


@pytest.fixture
def option_store():
    from notifications.recipients import InMemoryOptionStore
    return InMemoryOptionStore()


@pytest.fixture
def recipients(option_store):
    """Recipient settings backed by an in-memory option store."""
    from notifications.recipients import NotificationRecipients
    return NotificationRecipients(option_store)


@pytest.fixture
def openai_config():
    """OpenAI configuration with a well-formed key."""
    from config.ai_providers import OpenAIConfig
    return OpenAIConfig(raw_api_key=VALID_API_KEY)


@pytest.fixture
def missing_openai_config():
    """OpenAI configuration without a key."""
    from config.ai_providers import OpenAIConfig
    return OpenAIConfig(raw_api_key=None)


def _completion(content="- Status changed from active to stopped", tokens=42, model="gpt-4o-mini"):
    """A chat completion response as returned by the openai client."""
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(total_tokens=tokens),
        model=model,
    )


@pytest.fixture
def make_completion():
    return _completion


@pytest.fixture
def make_openai_client():
    """
    Build a fake AsyncOpenAI client.

    Each positional argument is one call outcome: a response object or an
    exception to raise.
    """
    def _make(*outcomes):
        client = MagicMock()
        client.chat.completions.create = AsyncMock(side_effect=list(outcomes))
        client.close = AsyncMock()
        return client
    return _make


@pytest.fixture
def no_sleep():
    """Backoff sleep double that records requested delays."""
    return AsyncMock(return_value=None)


@pytest.fixture
def class_row():
    """A class row as the business layer passes it to the dispatcher."""
    return {
        "class_id": 101,
        "class_code": "AET-101",
        "class_subject": "Communication",
        "class_status": "active",
        "class_type": "AET",
        "start_date": "2026-02-02",
        "class_facilitator": "Thandi Mokoena",
        "learner_ids": [11, 12],
        "updated_at": "2026-01-20 10:00:00",
    }
