"""Task/profile port — read access to notes, profile and journal data.

Core modules depend on this protocol, never on a specific store.
"""

from __future__ import annotations

from typing import Protocol

from recall.data.models import JournalEntry, PendingTaskDetails, TaskItem, UserProfile


class TaskPort(Protocol):
    """Abstract task/profile interface used by core modules."""

    async def get_pending_location_items(self) -> list[TaskItem]: ...

    async def get_items_for_categories(self, categories: list[str]) -> list[TaskItem]: ...

    async def get_todays_tasks(self, limit: int = 10) -> list[TaskItem]: ...

    async def get_pending_task_details(self, limit: int = 3) -> PendingTaskDetails: ...

    async def get_profile(self) -> UserProfile | None: ...

    async def get_recent_journal_entries(self, days: int) -> list[JournalEntry]: ...

    async def mark_location_completed(self, item_id: int) -> bool: ...
