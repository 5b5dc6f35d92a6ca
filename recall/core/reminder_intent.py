"""Reminder intent detection — decides locally whether a note is a reminder.

No LLM involved: keyword intent plus the time parser.
"""

from __future__ import annotations

from datetime import datetime

from recall.core.time_parser import TimeExtraction, extract_time_from_text

REMINDER_KEYWORDS = [
    "remind", "reminder", "remember",
    "don't forget", "dont forget",
    "call", "email", "text", "message",
    "meeting", "appointment",
    "pick up", "buy", "get",
    "schedule", "book",
]

STRONG_REMINDER_KEYWORDS = ["remind", "reminder", "don't forget", "dont forget"]


def has_reminder_intent(text: str) -> bool:
    lower = text.lower()
    return any(keyword in lower for keyword in REMINDER_KEYWORDS)


def auto_detect_reminder(
    text: str, now: datetime | None = None,
) -> tuple[bool, TimeExtraction]:
    """Return (is_reminder, time extraction) for a captured note.

    A note is a reminder when it has intent keywords and a time reference,
    or a strong keyword ("remind", "don't forget") regardless of time.
    """
    extraction = extract_time_from_text(text, now=now)
    lower = text.lower()
    has_strong_intent = any(keyword in lower for keyword in STRONG_REMINDER_KEYWORDS)
    is_reminder = (has_reminder_intent(text) and extraction.has_time) or has_strong_intent
    return is_reminder, extraction
