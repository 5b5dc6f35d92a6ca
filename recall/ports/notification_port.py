"""Notification port — abstract interface for scheduling notifications.

Core modules depend on this protocol, never on a specific delivery channel.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from recall.data.models import ScheduledNotification


class NotificationError(Exception):
    """Raised when the notification channel fails to schedule or cancel."""


class NotificationPort(Protocol):
    """Abstract notification interface used by core modules."""

    async def request_permissions(self) -> bool: ...

    async def schedule(
        self,
        title: str,
        body: str,
        trigger_at: datetime,
        data: dict | None = None,
    ) -> str: ...

    async def cancel(self, notification_id: str) -> None: ...

    async def cancel_all(self) -> None: ...

    async def list_scheduled(self) -> list[ScheduledNotification]: ...
