"""Shared test fixtures and configuration.

Sets up fake environment variables so recall.config doesn't sys.exit(),
and provides common fixtures like temp DBs and a fake notification channel.
"""

import os

# Patch env vars BEFORE any recall imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("TELEGRAM_CHAT_ID", "12345")
os.environ.setdefault("LLM_API_KEY", "fake-llm-key-for-tests")
os.environ.setdefault("LLM_PROVIDER", "gemini")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("GOOGLE_MAPS_API_KEY", "")

import itertools
from datetime import datetime

import pytest

from recall.data.models import ScheduledNotification

# Monday 10 March 2025, 10:00 local time
NOW = datetime(2025, 3, 10, 10, 0)


class FakeNotifier:
    """In-memory NotificationPort that records live notifications."""

    def __init__(self) -> None:
        self.live: dict[str, ScheduledNotification] = {}
        self.permission = True
        self.schedule_calls = 0
        self.cancelled: list[str] = []
        self._ids = itertools.count(1)

    async def request_permissions(self) -> bool:
        return self.permission

    async def schedule(self, title, body, trigger_at, data=None) -> str:
        self.schedule_calls += 1
        notification_id = f"n{next(self._ids)}"
        self.live[notification_id] = ScheduledNotification(
            id=notification_id,
            title=title,
            body=body,
            trigger_at=trigger_at,
            slot_key=(data or {}).get("slot"),
            data=dict(data or {}),
        )
        return notification_id

    async def cancel(self, notification_id: str) -> None:
        self.cancelled.append(notification_id)
        self.live.pop(notification_id, None)

    async def cancel_all(self) -> None:
        self.cancelled.extend(self.live)
        self.live.clear()

    async def list_scheduled(self) -> list[ScheduledNotification]:
        return list(self.live.values())


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_recall.db")


@pytest.fixture
def kv_store(tmp_db_path):
    """Return a KeyValueDB instance backed by a temp file."""
    from recall.data.db import KeyValueDB
    return KeyValueDB(db_path=tmp_db_path)


@pytest.fixture
def task_db(tmp_db_path):
    """Return a TaskDB instance backed by a temp file."""
    from recall.data.db import TaskDB
    return TaskDB(db_path=tmp_db_path)


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def scheduler(notifier, kv_store):
    """ReminderScheduler whose clock is pinned to NOW."""
    from recall.core.reminder_scheduler import ReminderScheduler
    return ReminderScheduler(notifier, kv_store, clock=lambda: NOW)
