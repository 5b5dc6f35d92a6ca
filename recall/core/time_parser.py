"""Natural-language time parser — pure business logic.

Turns free text ("call mom tomorrow at 3pm", "in 20 minutes", "next
friday") into a concrete future datetime plus a human-readable label.

Everything here is table driven: extraction, time-of-day, relative offsets
and date references are each an ordered list of rules, and the first rule
that matches wins.

No I/O: this module only transforms data.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Callable

from dateutil.relativedelta import relativedelta

logger = logging.getLogger(__name__)

_DEFAULT_HOUR = 9
_TONIGHT_HOUR = 20
_DEADLINE_HOUR = 17

_WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

# (early, default, late) hour per time-of-day keyword
_TIME_OF_DAY_HOURS: dict[str, tuple[int, int, int]] = {
    "morning":   (6, 9, 11),
    "afternoon": (13, 14, 17),
    "evening":   (17, 18, 21),
    "night":     (20, 20, 20),
}


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TimeExpressionMatch:
    """The extraction rule that fired and the substring it matched."""

    pattern_id: str
    matched: str


@dataclass
class ReminderInfo:
    """A resolved trigger time.

    is_valid=False marks a low-confidence guess (no date phrase was found),
    never an error.
    """

    date: datetime
    display_text: str
    is_valid: bool = True


@dataclass
class TimeExtraction:
    """Outcome of scanning free text for a time reference."""

    has_time: bool
    time_string: str | None = None
    reminder_info: ReminderInfo | None = None
    match: TimeExpressionMatch | None = None


# ---------------------------------------------------------------------------
# Regex building blocks
# ---------------------------------------------------------------------------

_WEEKDAY_NAMES = r"monday|tuesday|wednesday|thursday|friday|saturday|sunday"
_WEEKDAY = rf"(?:{_WEEKDAY_NAMES})"
_TOMORROW = r"(?:tomm?orr?ow|tmrw|tmr)"
_MERIDIEM = r"(?:a\.?m\.?|p\.?m\.?)"
_UNIT = r"(?:minutes?|mins?|hours?|hrs?|days?|weeks?|months?)"
_MONTH = (
    r"(?:january|february|march|april|may|june|july|august|september|october|"
    r"november|december|jan|feb|mar|apr|jun|jul|aug|sept?|oct|nov|dec)"
)
_CLOCK = (
    rf"(?:\d{{1,2}}(?::\d{{2}})?\s*{_MERIDIEM}(?![a-z])"
    r"|\d{1,2}:\d{2}"
    r"|noon|midnight"
    r"|(?:quarter|half)\s+(?:past|to)\s+\d{1,2}"
    r"|\d{1,2}\s+o'?clock)"
)
_AT_HOUR = r"at\s+\d{1,2}\b(?!:|\s*(?:minutes?|mins?|hours?|hrs?)\b)"
_TIME_OF_DAY = r"(?:(?:early|late)\s+)?(?:morning|afternoon|evening|night)"
_DATE_REF = (
    rf"(?:day\s+after\s+{_TOMORROW}|later\s+today|today|tonight|{_TOMORROW}"
    rf"|this\s+weekend|next\s+week|next\s+month"
    rf"|(?:(?:next|this|coming|following)\s+)?{_WEEKDAY})\b"
)
_TIME_PART = rf"(?:(?:at\s+)?{_CLOCK}|(?:in\s+the\s+)?{_TIME_OF_DAY}\b|{_AT_HOUR})"


def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


# ---------------------------------------------------------------------------
# Extraction table: most specific first, first match wins
# ---------------------------------------------------------------------------

_EXTRACTION_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    # Relative offsets
    ("relative_half_hour", _compile(r"\bin\s+half\s+an?\s+hour\b")),
    ("relative_from_now", _compile(rf"\b\d+\s+{_UNIT}\s+from\s+now\b")),
    ("relative_in", _compile(rf"\b(?:in|after)\s+\d+\s+{_UNIT}\b")),
    ("relative_within", _compile(r"\bwithin\s+\d+\s+(?:minutes?|mins?|hours?|hrs?)\b")),
    ("relative_in_a", _compile(r"\bin\s+an?\s+(?:minute|hour|day|week|month)\b")),
    # Day reference + clock / time of day, either order
    ("date_then_time", _compile(rf"\b{_DATE_REF}\s+{_TIME_PART}(?:\s+{_TIME_PART})?")),
    ("time_then_date", _compile(rf"\b(?:at\s+)?{_CLOCK}\s+(?:on\s+)?{_DATE_REF}")),
    # Absolute clock times
    ("clock_12h", _compile(rf"\b(?:at\s+)?\d{{1,2}}(?::\d{{2}})?\s*{_MERIDIEM}(?![a-z])")),
    ("clock_24h", _compile(r"\b(?:at\s+)?(?:[01]?\d|2[0-3]):[0-5]\d\b")),
    ("clock_named", _compile(r"\b(?:at\s+)?(?:noon|midnight)\b")),
    ("clock_quarter", _compile(r"\b(?:quarter|half)\s+(?:past|to)\s+\d{1,2}\b")),
    ("clock_oclock", _compile(r"\b\d{1,2}\s+o'?clock\b")),
    ("clock_at_hour", _compile(rf"\b{_AT_HOUR}")),
    # Day references
    ("day_after_tomorrow", _compile(rf"\bday\s+after\s+{_TOMORROW}\b")),
    ("later_today", _compile(r"\blater\s+today\b")),
    ("today", _compile(r"\btoday\b")),
    ("tonight", _compile(r"\btonight\b")),
    ("tomorrow", _compile(rf"\b{_TOMORROW}\b")),
    ("this_weekend", _compile(r"\bthis\s+weekend\b")),
    ("next_week", _compile(r"\bnext\s+week\b")),
    ("next_month", _compile(r"\bnext\s+month\b")),
    # Weekdays
    ("weekday", _compile(rf"\b(?:(?:next|this|coming|following)\s+)?{_WEEKDAY}\b")),
    # Time-of-day words
    ("time_of_day", _compile(rf"\b{_TIME_OF_DAY}\b")),
    # Calendar dates
    ("calendar_date", _compile(rf"\b{_MONTH}\.?\s+\d{{1,2}}(?:st|nd|rd|th)?\b")),
    ("calendar_date_of", _compile(rf"\b\d{{1,2}}(?:st|nd|rd|th)?\s+of\s+{_MONTH}\b")),
    # Deadlines
    ("deadline", _compile(r"\b(?:eod|eow|end\s+of\s+(?:the\s+)?(?:day|week))\b")),
]


def match_time_expression(text: str) -> TimeExpressionMatch | None:
    """Return the first extraction rule matching text, or None."""
    if not text:
        return None
    for pattern_id, pattern in _EXTRACTION_PATTERNS:
        m = pattern.search(text)
        if m:
            return TimeExpressionMatch(pattern_id=pattern_id, matched=m.group(0).strip())
    return None


def extract_time_from_text(text: str, now: datetime | None = None) -> TimeExtraction:
    """Scan free text for a time reference and resolve it.

    Returns has_time=False (and no reminder_info) when nothing matched.
    """
    match = match_time_expression(text)
    if match is None:
        return TimeExtraction(has_time=False)

    info = parse_reminder_time(match.matched, now=now)
    logger.debug("Matched %s: '%s' → %s", match.pattern_id, match.matched, info.display_text)
    return TimeExtraction(
        has_time=True,
        time_string=match.matched,
        reminder_info=info,
        match=match,
    )


# ---------------------------------------------------------------------------
# Time-of-day extraction
# ---------------------------------------------------------------------------


@dataclass
class _TimeOfDay:
    hour: int
    minute: int
    source: str   # rule id, or "default"


def _infer_pm(hour: int, text: str) -> int:
    """Read an am/pm-less hour as PM when the text or the hour suggests it."""
    if hour == 0 or hour >= 12:
        return hour
    if re.search(r"\bmorning\b", text):
        return hour
    if re.search(r"\b(?:afternoon|evening|night|tonight)\b", text) or hour <= 6:
        return hour + 12
    return hour


def _resolve_12h(m: re.Match[str], text: str) -> tuple[int, int] | None:
    hour = int(m.group(1))
    minute = int(m.group(2) or 0)
    if not (1 <= hour <= 12 and minute < 60):
        return None
    is_pm = m.group(3).lower().startswith("p")
    if is_pm and hour != 12:
        hour += 12
    elif not is_pm and hour == 12:
        hour = 0
    return hour, minute


def _resolve_24h(m: re.Match[str], text: str) -> tuple[int, int] | None:
    raw_hour = m.group(1)
    hour = int(raw_hour)
    if not raw_hour.startswith("0"):
        hour = _infer_pm(hour, text)
    return hour, int(m.group(2))


def _resolve_quarter(m: re.Match[str], text: str) -> tuple[int, int] | None:
    fraction, direction, raw_hour = m.group(1).lower(), m.group(2).lower(), int(m.group(3))
    if not 1 <= raw_hour <= 12:
        return None
    hour = _infer_pm(raw_hour, text)
    if direction == "past":
        return hour, 15 if fraction == "quarter" else 30
    return (hour - 1) % 24, 45 if fraction == "quarter" else 30


def _resolve_bare_hour(m: re.Match[str], text: str) -> tuple[int, int] | None:
    hour = int(m.group(1))
    if hour > 23:
        return None
    return _infer_pm(hour, text), 0


def _resolve_time_of_day(m: re.Match[str], text: str) -> tuple[int, int] | None:
    modifier = (m.group(1) or "").lower()
    early, default, late = _TIME_OF_DAY_HOURS[m.group(2).lower()]
    if modifier == "early":
        return early, 0
    if modifier == "late":
        return late, 0
    return default, 0


_TIME_RULES: list[tuple[str, re.Pattern[str], Callable[[re.Match[str], str], tuple[int, int] | None]]] = [
    ("clock_12h", _compile(rf"\b(\d{{1,2}})(?::(\d{{2}}))?\s*({_MERIDIEM})(?![a-z])"), _resolve_12h),
    ("clock_24h", _compile(r"\b([01]?\d|2[0-3]):([0-5]\d)\b"), _resolve_24h),
    ("noon", _compile(r"\bnoon\b"), lambda m, text: (12, 0)),
    ("midnight", _compile(r"\bmidnight\b"), lambda m, text: (0, 0)),
    ("clock_quarter", _compile(r"\b(quarter|half)\s+(past|to)\s+(\d{1,2})\b"), _resolve_quarter),
    ("clock_oclock", _compile(r"\b(\d{1,2})\s+o'?clock\b"), _resolve_bare_hour),
    ("clock_at_hour", _compile(r"\bat\s+(\d{1,2})\b(?!:|\s*(?:minutes?|mins?|hours?|hrs?)\b)"), _resolve_bare_hour),
    ("time_of_day", _compile(r"\b(?:(early|late)\s+)?(morning|afternoon|evening|night)\b"), _resolve_time_of_day),
]


def _extract_time_of_day(text: str) -> _TimeOfDay:
    for rule_id, pattern, resolve in _TIME_RULES:
        m = pattern.search(text)
        if not m:
            continue
        resolved = resolve(m, text)
        if resolved is not None:
            return _TimeOfDay(hour=resolved[0], minute=resolved[1], source=rule_id)
    return _TimeOfDay(hour=_DEFAULT_HOUR, minute=0, source="default")


# ---------------------------------------------------------------------------
# Relative offsets short-circuit every date rule
# ---------------------------------------------------------------------------


def _normalize_unit(raw: str) -> str:
    raw = raw.lower()
    if raw.startswith("mo"):
        return "month"
    if raw.startswith("mi"):
        return "minute"
    if raw.startswith("h"):
        return "hour"
    if raw.startswith("w"):
        return "week"
    return "day"


def _apply_offset(now: datetime, amount: int, unit: str) -> datetime:
    if unit == "minute":
        return now + timedelta(minutes=amount)
    if unit == "hour":
        return now + timedelta(hours=amount)
    if unit == "day":
        return now + timedelta(days=amount)
    if unit == "week":
        return now + timedelta(weeks=amount)
    return now + relativedelta(months=amount)


_RELATIVE_RULES: list[tuple[str, re.Pattern[str], Callable[[re.Match[str]], tuple[int, str]]]] = [
    ("half_hour", _compile(r"\bin\s+half\s+an?\s+hour\b"), lambda m: (30, "minute")),
    ("from_now", _compile(rf"\b(\d+)\s+({_UNIT})\s+from\s+now\b"),
     lambda m: (int(m.group(1)), _normalize_unit(m.group(2)))),
    ("in_after", _compile(rf"\b(?:in|after)\s+(\d+)\s+({_UNIT})\b"),
     lambda m: (int(m.group(1)), _normalize_unit(m.group(2)))),
    ("within", _compile(r"\bwithin\s+(\d+)\s+(minutes?|mins?|hours?|hrs?)\b"),
     lambda m: (int(m.group(1)), _normalize_unit(m.group(2)))),
    ("in_a", _compile(r"\bin\s+an?\s+(minute|hour|day|week|month)\b"),
     lambda m: (1, m.group(1).lower())),
]


def _resolve_relative(text: str, now: datetime) -> ReminderInfo | None:
    for _rule_id, pattern, resolve in _RELATIVE_RULES:
        m = pattern.search(text)
        if not m:
            continue
        amount, unit = resolve(m)
        if amount < 1:
            continue
        plural = "" if amount == 1 else "s"
        return ReminderInfo(
            date=_apply_offset(now, amount, unit),
            display_text=f"In {amount} {unit}{plural}",
            is_valid=True,
        )
    return None


# ---------------------------------------------------------------------------
# Date references
# ---------------------------------------------------------------------------


@dataclass
class _ResolvedDate:
    day: date
    label: str
    hour: int
    minute: int


def _day_label(day: date, now: datetime) -> str:
    delta = (day - now.date()).days
    if delta == 0:
        return "Today"
    if delta == 1:
        return "Tomorrow"
    if 1 < delta < 7:
        return _WEEKDAYS[day.weekday()].capitalize()
    return f"{day:%b} {day.day}"


def _at(day: date, hour: int, minute: int) -> datetime:
    return datetime.combine(day, time(hour, minute))


def _in_days(days: int):
    def resolve(m: re.Match[str], now: datetime, tod: _TimeOfDay) -> _ResolvedDate:
        day = now.date() + timedelta(days=days)
        return _ResolvedDate(day, _day_label(day, now), tod.hour, tod.minute)
    return resolve


def _resolve_tonight(m: re.Match[str], now: datetime, tod: _TimeOfDay) -> _ResolvedDate:
    hour, minute = tod.hour, tod.minute
    if (hour, minute) < (_TONIGHT_HOUR, 0):
        hour, minute = _TONIGHT_HOUR, 0
    return _ResolvedDate(now.date(), "Tonight", hour, minute)


def _resolve_next_month(m: re.Match[str], now: datetime, tod: _TimeOfDay) -> _ResolvedDate:
    day = now.date() + relativedelta(months=1)
    return _ResolvedDate(day, _day_label(day, now), tod.hour, tod.minute)


def _resolve_weekend(m: re.Match[str], now: datetime, tod: _TimeOfDay) -> _ResolvedDate:
    day = now.date() + timedelta(days=(5 - now.weekday()) % 7)
    if _at(day, tod.hour, tod.minute) <= now:
        day += timedelta(days=7)
    return _ResolvedDate(day, _day_label(day, now), tod.hour, tod.minute)


def _resolve_eod(m: re.Match[str], now: datetime, tod: _TimeOfDay) -> _ResolvedDate:
    day = now.date()
    if _at(day, _DEADLINE_HOUR, 0) <= now:
        day += timedelta(days=1)
    return _ResolvedDate(day, _day_label(day, now), _DEADLINE_HOUR, 0)


def _resolve_eow(m: re.Match[str], now: datetime, tod: _TimeOfDay) -> _ResolvedDate:
    day = now.date() + timedelta(days=(4 - now.weekday()) % 7)
    if _at(day, _DEADLINE_HOUR, 0) <= now:
        day += timedelta(days=7)
    return _ResolvedDate(day, _day_label(day, now), _DEADLINE_HOUR, 0)


def _next_weekday(now: datetime, weekday: int) -> date:
    """Next occurrence strictly after today (same weekday → one week out)."""
    days = (weekday - now.weekday()) % 7 or 7
    return now.date() + timedelta(days=days)


def _resolve_weekday(m: re.Match[str], now: datetime, tod: _TimeOfDay) -> _ResolvedDate:
    prefix = (m.group(1) or "").lower()
    name = m.group(2).lower()
    day = _next_weekday(now, _WEEKDAYS.index(name))
    if prefix == "next":
        day += timedelta(days=7)
        return _ResolvedDate(day, f"Next {name.capitalize()}", tod.hour, tod.minute)
    return _ResolvedDate(day, _day_label(day, now), tod.hour, tod.minute)


def _calendar_date(month_name: str, day_number: int, now: datetime, tod: _TimeOfDay) -> _ResolvedDate | None:
    month = _MONTHS[month_name.lower()[:3]]
    try:
        day = date(now.year, month, day_number)
        if _at(day, tod.hour, tod.minute) <= now:
            day = date(now.year + 1, month, day_number)
    except ValueError:
        return None
    return _ResolvedDate(day, _day_label(day, now), tod.hour, tod.minute)


def _resolve_month_day(m: re.Match[str], now: datetime, tod: _TimeOfDay) -> _ResolvedDate | None:
    return _calendar_date(m.group(1), int(m.group(2)), now, tod)


def _resolve_day_of_month(m: re.Match[str], now: datetime, tod: _TimeOfDay) -> _ResolvedDate | None:
    return _calendar_date(m.group(2), int(m.group(1)), now, tod)


def _resolve_noon(m: re.Match[str], now: datetime, tod: _TimeOfDay) -> _ResolvedDate:
    day = now.date()
    if _at(day, tod.hour, tod.minute) <= now:
        day += timedelta(days=1)
    return _ResolvedDate(day, _day_label(day, now), tod.hour, tod.minute)


def _resolve_midnight(m: re.Match[str], now: datetime, tod: _TimeOfDay) -> _ResolvedDate:
    day = now.date() + timedelta(days=1)
    return _ResolvedDate(day, _day_label(day, now), 0, 0)


_DateResolver = Callable[[re.Match[str], datetime, _TimeOfDay], "_ResolvedDate | None"]

_DATE_RULES: list[tuple[str, re.Pattern[str], _DateResolver]] = [
    ("day_after_tomorrow", _compile(rf"\bday\s+after\s+{_TOMORROW}\b"), _in_days(2)),
    ("today", _compile(r"\b(?:later\s+)?today\b"), _in_days(0)),
    ("tonight", _compile(r"\btonight\b"), _resolve_tonight),
    ("tomorrow", _compile(rf"\b{_TOMORROW}\b"), _in_days(1)),
    ("next_week", _compile(r"\bnext\s+week\b"), _in_days(7)),
    ("next_month", _compile(r"\bnext\s+month\b"), _resolve_next_month),
    ("this_weekend", _compile(r"\bthis\s+weekend\b"), _resolve_weekend),
    ("eod", _compile(r"\b(?:eod|end\s+of\s+(?:the\s+)?day)\b"), _resolve_eod),
    ("eow", _compile(r"\b(?:eow|end\s+of\s+(?:the\s+)?week)\b"), _resolve_eow),
    ("weekday", _compile(rf"\b(?:(next|this|coming|following)\s+)?({_WEEKDAY_NAMES})\b"), _resolve_weekday),
    ("calendar_date", _compile(rf"\b({_MONTH})\.?\s+(\d{{1,2}})(?:st|nd|rd|th)?\b"), _resolve_month_day),
    ("calendar_date_of", _compile(rf"\b(\d{{1,2}})(?:st|nd|rd|th)?\s+of\s+({_MONTH})\b"), _resolve_day_of_month),
    ("noon", _compile(r"\bnoon\b"), _resolve_noon),
    ("midnight", _compile(r"\bmidnight\b"), _resolve_midnight),
]

_PAST_CORRECTED_RULES = {"today", "tonight"}


def _resolve_date(text: str, now: datetime, tod: _TimeOfDay) -> tuple[str, _ResolvedDate] | None:
    for rule_id, pattern, resolve in _DATE_RULES:
        m = pattern.search(text)
        if not m:
            continue
        resolved = resolve(m, now, tod)
        if resolved is not None:
            return rule_id, resolved
    return None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def format_clock(dt: datetime) -> str:
    """12-hour clock with AM/PM, minutes omitted on the hour: '3 PM', '9:30 AM'."""
    hour12 = dt.hour % 12 or 12
    suffix = "AM" if dt.hour < 12 else "PM"
    if dt.minute == 0:
        return f"{hour12} {suffix}"
    return f"{hour12}:{dt.minute:02d} {suffix}"


def format_reminder_display(dt: datetime, now: datetime | None = None) -> str:
    """Render a trigger time as 'Today at 3 PM', 'Friday at 9:30 AM', 'Mar 15 at 9 AM'."""
    now = now or datetime.now()
    return f"{_day_label(dt.date(), now)} at {format_clock(dt)}"


def parse_reminder_time(time_string: str, now: datetime | None = None) -> ReminderInfo:
    """Resolve a time phrase into an absolute trigger time.

    Relative offsets ("in 5 minutes") are returned as-is. Otherwise a
    time of day is combined with the first matching date reference; when
    no date phrase matched the result is today or tomorrow, flagged
    is_valid=False.
    """
    now = now or datetime.now()
    text = (time_string or "").strip().lower()

    tod = _extract_time_of_day(text)

    relative = _resolve_relative(text, now)
    if relative is not None:
        return relative

    found = _resolve_date(text, now, tod)
    if found is None:
        candidate = _at(now.date(), tod.hour, tod.minute)
        if candidate > now:
            return ReminderInfo(candidate, f"Today at {format_clock(candidate)}", is_valid=False)
        candidate += timedelta(days=1)
        return ReminderInfo(candidate, f"Tomorrow at {format_clock(candidate)}", is_valid=False)

    rule_id, resolved = found
    result = _at(resolved.day, resolved.hour, resolved.minute)
    label = resolved.label

    if result <= now and rule_id in _PAST_CORRECTED_RULES:
        result += timedelta(days=1)
        label = "Tomorrow"

    return ReminderInfo(result, f"{label} at {format_clock(result)}", is_valid=True)
