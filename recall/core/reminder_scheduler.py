"""
Recall Assistant — Reminder Scheduler.

Schedules and cancels single notifications through the NotificationPort,
and keeps "one live notification per slot" bookkeeping in the key-value
store: scheduling into a slot always cancels whatever the slot held first.

This module is provider-agnostic: it depends on NotificationPort and
KeyValueStore protocols, not on specific implementations.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable

from recall.core.time_parser import (
    ReminderInfo,
    extract_time_from_text,
    parse_reminder_time,
)

if TYPE_CHECKING:
    from recall.data.models import ScheduledNotification
    from recall.ports.notification_port import NotificationPort
    from recall.ports.store_port import KeyValueStore

logger = logging.getLogger(__name__)

_SLOT_PREFIX = "slot:"
_SLOT_REGISTRY_KEY = "slots"
_DEFAULT_NOTE_DELAY = timedelta(hours=1)
_REMINDER_TITLE = "⏰ Reminder"


def slot_storage_key(slot_key: str) -> str:
    """Key-value key holding the live notification id of a slot."""
    return f"{_SLOT_PREFIX}{slot_key}"


def note_slot(note_id: int | str) -> str:
    """Slot used by the reminder attached to a single note."""
    return f"note-{note_id}"


def _as_local_naive(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


class ReminderScheduler:
    """Idempotent notification scheduling on top of a NotificationPort."""

    def __init__(
        self,
        notifier: NotificationPort,
        store: KeyValueStore,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._notifier = notifier
        self._store = store
        self._clock = clock

    # ------------------------------------------------------------------
    # Single notifications
    # ------------------------------------------------------------------

    async def schedule_notification(
        self,
        title: str,
        body: str,
        date: datetime,
        data: dict | None = None,
    ) -> str | None:
        """Schedule one notification at date.

        Returns the channel-assigned id, or None when date is not a future
        datetime, permission is missing, or the channel fails. Nothing is
        sent to the channel for an invalid date.
        """
        if not isinstance(date, datetime) or _as_local_naive(date) <= self._clock():
            logger.warning("Not scheduling '%s': trigger %r is not in the future", title, date)
            return None

        try:
            if not await self._notifier.request_permissions():
                logger.warning("Notification permission not granted — '%s' not scheduled", title)
                return None
            notification_id = await self._notifier.schedule(title, body, date, data or {})
        except Exception as exc:
            logger.error("Failed to schedule notification '%s': %s", title, exc)
            return None

        logger.info("Notification %s scheduled for %s: %s", notification_id, date, title)
        return notification_id

    async def schedule_once(
        self,
        slot_key: str,
        title: str,
        body: str,
        date: datetime,
        extra: dict | None = None,
    ) -> str | None:
        """Replace whatever slot_key holds with a notification at date."""
        await self.cancel_stored(slot_key)

        if not isinstance(date, datetime) or _as_local_naive(date) <= self._clock():
            logger.info("Slot '%s' left empty: trigger %r already passed", slot_key, date)
            return None

        notification_id = await self.schedule_notification(
            title, body, date, {"slot": slot_key, **(extra or {})},
        )
        if notification_id is None:
            return None

        await self._store.set(slot_storage_key(slot_key), notification_id)
        await self._register_slot(slot_key)
        return notification_id

    # ------------------------------------------------------------------
    # Cancellation (best effort)
    # ------------------------------------------------------------------

    async def cancel_stored(self, slot_key: str) -> None:
        """Cancel the notification stored under slot_key and clear the pointer."""
        key = slot_storage_key(slot_key)
        try:
            notification_id = await self._store.get(key)
            if not notification_id:
                return
            try:
                await self._notifier.cancel(notification_id)
            except Exception as exc:
                logger.warning(
                    "Failed to cancel notification %s in slot '%s': %s",
                    notification_id, slot_key, exc,
                )
            await self._store.remove(key)
        except Exception as exc:
            logger.warning("Failed to clear slot '%s': %s", slot_key, exc)

    async def cancel(self, notification_id: str) -> None:
        try:
            await self._notifier.cancel(notification_id)
            logger.info("Notification cancelled: %s", notification_id)
        except Exception as exc:
            logger.error("Failed to cancel notification %s: %s", notification_id, exc)

        for slot_key in await self._registered_slots():
            key = slot_storage_key(slot_key)
            if await self._store.get(key) == notification_id:
                await self._store.remove(key)

    async def cancel_all(self) -> None:
        try:
            await self._notifier.cancel_all()
            logger.info("All notifications cancelled")
        except Exception as exc:
            logger.error("Failed to cancel all notifications: %s", exc)

        for slot_key in await self._registered_slots():
            await self._store.remove(slot_storage_key(slot_key))
        await self._store.remove(_SLOT_REGISTRY_KEY)

    async def list_scheduled(self) -> list[ScheduledNotification]:
        try:
            return await self._notifier.list_scheduled()
        except Exception as exc:
            logger.error("Failed to list scheduled notifications: %s", exc)
            return []

    async def get_badge_count(self) -> int:
        """Number of pending notifications (0 when the channel is unavailable)."""
        return len(await self.list_scheduled())

    # ------------------------------------------------------------------
    # Note reminders
    # ------------------------------------------------------------------

    async def schedule_reminder_from_note(
        self,
        text: str,
        hint: str | None = None,
        note_id: int | str | None = None,
    ) -> tuple[str | None, ReminderInfo]:
        """Schedule a reminder for a note.

        The time comes from hint when given, otherwise from the note text;
        with no time reference at all the reminder goes one hour out.
        """
        now = self._clock()
        if hint:
            info = parse_reminder_time(hint, now=now)
        else:
            extraction = extract_time_from_text(text, now=now)
            info = extraction.reminder_info or ReminderInfo(
                date=now + _DEFAULT_NOTE_DELAY,
                display_text="In 1 hour",
                is_valid=False,
            )

        notification_id = await self.schedule_reminder_for_date(text, info.date, note_id=note_id)
        return notification_id, info

    async def schedule_reminder_for_date(
        self,
        text: str,
        date: datetime,
        note_id: int | str | None = None,
    ) -> str | None:
        """Schedule a note reminder at an explicit time."""
        if note_id is not None:
            return await self.schedule_once(
                note_slot(note_id), _REMINDER_TITLE, text, date, {"type": "note-reminder"},
            )
        return await self.schedule_notification(
            _REMINDER_TITLE, text, date, {"type": "reminder"},
        )

    # ------------------------------------------------------------------
    # Slot registry
    # ------------------------------------------------------------------

    async def _registered_slots(self) -> list[str]:
        raw = await self._store.get(_SLOT_REGISTRY_KEY)
        if not raw:
            return []
        try:
            slots = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Corrupt slot registry, resetting")
            return []
        return [s for s in slots if isinstance(s, str)] if isinstance(slots, list) else []

    async def _register_slot(self, slot_key: str) -> None:
        slots = await self._registered_slots()
        if slot_key not in slots:
            slots.append(slot_key)
            await self._store.set(_SLOT_REGISTRY_KEY, json.dumps(slots))
