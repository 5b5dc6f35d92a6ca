"""
Recall Assistant — Data Models.

Plain records exchanged between the core engine and its collaborators.
Notes, profile and journal entries belong to the task/profile store;
scheduled notifications belong to the notification channel.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class ScheduledNotification:
    """A pending notification as reported by the notification channel."""

    id: str
    title: str
    body: str
    trigger_at: datetime
    slot_key: str | None = None
    data: dict = field(default_factory=dict)


@dataclass
class TaskItem:
    """A captured note: a task, a reminder or a location-tagged errand."""

    id: int
    transcript: str
    summary: str | None = None
    note_type: str = "task"                 # "task" | "note"
    is_reminder: bool = False
    is_completed: bool = False
    location_category: str | None = None    # e.g. "grocery", "pharmacy"
    location_completed: bool = False
    event_date: str | None = None           # ISO date YYYY-MM-DD
    event_location: str | None = None
    place_search_query: str | None = None
    reminder_at: str | None = None          # ISO datetime of the scheduled reminder
    created_at: str = ""

    @property
    def preview_label(self) -> str:
        """Short label used in notification previews."""
        return self.summary or self.transcript[:30]


@dataclass
class PendingTaskDetails:
    """Top pending task transcripts plus the total pending count."""

    transcripts: list[str] = field(default_factory=list)
    count: int = 0


@dataclass
class UserProfile:
    """The single user's preferences relevant to smart notifications."""

    wake_up_time: str | None = None     # HH:MM
    bed_time: str | None = None         # HH:MM
    tone: str | None = None             # professional | friendly | casual | motivational
    self_description: str | None = None
    hobbies: str | None = None          # comma separated


@dataclass
class JournalEntry:
    """A journal capture (food photo caption, selfie, ...) with its timestamp."""

    id: int
    category: str          # "food" | "selfie" | "general"
    caption: str
    created_at: datetime
