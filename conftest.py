"""Shared test configuration — must be loaded before gitlab_notifier modules."""

import itertools
import os

# Override settings before any gitlab_notifier modules are imported.
os.environ["GITLAB_DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["GITLAB_BOT_TOKEN"] = "123:test"
os.environ["GITLAB_BOT_USERNAME"] = "gitlab_test_bot"
os.environ["GITLAB_PUBLIC_URL"] = "https://notifier.test"
os.environ["GITLAB_SECRET_KEY"] = "test-secret"
os.environ["GITLAB_JOB_RETRY_UNIT_SECONDS"] = "0"
os.environ["GITLAB_NICK_MAP_JOB_DELAY_SECONDS"] = "0"
os.environ["GITLAB_BUILD_CORRELATION_DELAY_SECONDS"] = "0"

from unittest.mock import AsyncMock, patch

import pytest

import gitlab_notifier.main  # noqa: F401  registers models and job types
from gitlab_notifier.database import engine, Base
from gitlab_notifier.services.jobs import job_queue


@pytest.fixture(autouse=True)
async def _reset_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await job_queue.stop()
    job_queue.failed.clear()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def telegram():
    """Telegram client mock shared by every send and edit; message ids count up from 100."""
    ids = itertools.count(100)
    mock = AsyncMock()
    mock.send_message.side_effect = lambda *args, **kwargs: next(ids)
    mock.close = AsyncMock()
    with (
        patch("gitlab_notifier.services.messenger.TelegramClient", return_value=mock),
        patch("gitlab_notifier.handlers.settings_handler.TelegramClient", return_value=mock),
    ):
        yield mock
