"""
Recall Assistant — Smart Notification Orchestrator.

Keeps three notification slots filled:

1. MORNING   — at wake-up time: a personal start to the day.
2. BEDTIME   — at bed time: gentle nudge about pending tasks.
3. FOOD      — at the next meal time: a nutrition insight from the food journal.

Entry point: reschedule_smart_notifications(), called on every authorized
chat interaction and throttled internally to once per 12 hours. AI wording
is used when configured; every AI failure falls back to fixed wording.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, time, timedelta
from typing import TYPE_CHECKING, Callable, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

if TYPE_CHECKING:
    from recall.core.reminder_scheduler import ReminderScheduler
    from recall.data.models import TaskItem
    from recall.ports.ai_port import AIContentPort
    from recall.ports.store_port import KeyValueStore
    from recall.ports.task_port import TaskPort

logger = logging.getLogger(__name__)

MORNING_SLOT = "morning"
BEDTIME_SLOT = "bedtime"
FOOD_INSIGHT_SLOT = "foodInsight"

LAST_FULL_RESCHEDULE_KEY = "lastFullReschedule"
PAUSED_KEY = "smartNotificationsPaused"
FOOD_ANALYSIS_KEY = "foodAnalysis"
FOOD_ANALYSIS_DATE_KEY = "foodAnalysisDate"

RESCHEDULE_THROTTLE = timedelta(hours=12)
FOOD_ANALYSIS_TTL = timedelta(hours=24)
FOOD_ANALYSIS_DAYS = 14
MEAL_HISTORY_DAYS = 60
MIN_FOOD_ENTRIES = 3

DEFAULT_WAKE_TIME = time(7, 0)
DEFAULT_BED_TIME = time(22, 0)
DEFAULT_MEAL_HOURS = [12, 19]

MEAL_WINDOWS = [
    ("breakfast", 5, 10),
    ("lunch", 11, 15),
    ("dinner", 16, 22),
]


# ---------------------------------------------------------------------------
# JSON contracts of the AI collaborator
# ---------------------------------------------------------------------------

class NotificationContent(BaseModel):
    """AI reply for morning / bedtime wording.

    JSON example:
    {"title": "Heading to the gym today", "body": "Pack your shoes tonight."}
    """
    title: str = Field(min_length=1)
    body: str = Field(min_length=1)


class FoodAnalysis(BaseModel):
    """AI reply for the food-journal analysis.

    JSON example:
    {
        "pattern": "repetitive",
        "notificationTitle": "Loving pasta?",
        "notificationBody": "You've had pasta quite a bit, mix in something new."
    }
    """
    model_config = ConfigDict(populate_by_name=True)

    pattern: Literal[
        "high_sugar", "repetitive", "missing_fiber", "missing_protein", "balanced", "none"
    ]
    notification_title: str = Field("", alias="notificationTitle")
    notification_body: str = Field("", alias="notificationBody")

    @property
    def is_actionable(self) -> bool:
        return (
            self.pattern not in ("none", "balanced")
            and bool(self.notification_title)
            and bool(self.notification_body)
        )


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

MORNING_PROMPT = """You are a caring personal companion sending a morning notification.
Write a warm, specific notification that makes the user feel understood, not a generic greeting.

User context:
- Today: {day_name}
- Who they are: {self_description}
- Hobbies/interests: {hobbies}
- Tone preference: {tone}
- Tasks on their mind today:
{task_lines}
- Going somewhere today: {place}

Rules:
- Title: max 50 chars. Body: max 120 chars.
- If they have a place to go, mention it and help them feel prepared.
- If they have tasks, you can reference one specifically.
- If no tasks, reference their hobby or who they are.
- Match the tone: professional=formal, friendly=warm, casual=laid-back, motivational=energetic.
- Never start with "Good morning".
- One emoji is fine unless the tone is professional.

Return ONLY valid JSON: {{"title": "...", "body": "..."}}"""

BEDTIME_PROMPT = """You are a caring personal companion sending a gentle bedtime notification.
The user has pending tasks. Be warm and encouraging, never nagging or guilt-inducing.
It is fine if not everything gets done tonight.

Pending tasks (top 3):
{task_lines}{remaining}

Tone preference: {tone}

Rules:
- Title: max 50 chars. Body: max 120 chars.
- Reference one specific task by name if it is short and clear.
- Acknowledge that rest matters too.
- Match the tone: professional=calm, friendly=warm, casual=relaxed, motivational=energizing.
- One emoji is fine unless the tone is professional.

Return ONLY valid JSON: {{"title": "...", "body": "..."}}"""

FOOD_PROMPT = """You are a caring, non-judgmental nutrition companion. Analyze these food journal
entries from the last 14 days. Only flag a pattern if it is clearly present (3+ occurrences
or very dominant). Reference actual foods the user ate.

Food entries (most recent first):
{entries}

Return ONLY valid JSON with this exact shape:
{{
  "pattern": "high_sugar" | "repetitive" | "missing_fiber" | "missing_protein" | "balanced" | "none",
  "notificationTitle": "max 40 characters, specific",
  "notificationBody": "under 110 characters, mention the actual food, warm and actionable"
}}

Patterns:
- "high_sugar": sweets, sodas, candy or desserts appear frequently
- "repetitive": the same item 3+ times
- "missing_fiber": meals rarely have vegetables, fruit or whole grains
- "missing_protein": meals rarely include meat, eggs, legumes or dairy
- "balanced": varied and well-rounded
- "none": not enough data or no clear pattern; return empty title and body"""


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------

def parse_time(value: str | None, default: time) -> time:
    """Parse "HH:MM"; unparsable parts fall back to the default's parts."""
    if not value:
        return default
    hour_text, _, minute_text = value.strip().partition(":")
    try:
        hour = int(hour_text)
    except ValueError:
        hour = default.hour
    try:
        minute = int(minute_text)
    except ValueError:
        minute = default.minute
    if not 0 <= hour <= 23:
        hour = default.hour
    if not 0 <= minute <= 59:
        minute = default.minute
    return time(hour, minute)


def next_occurrence(at: time, now: datetime | None = None) -> datetime:
    """Next datetime the clock shows `at`: today if still ahead, else tomorrow."""
    now = now or datetime.now()
    candidate = now.replace(hour=at.hour, minute=at.minute, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


def content_cache_key(slot: str, now: datetime | None = None) -> str:
    """Per-day cache key, e.g. ``morning-2025-02-14`` (local calendar date)."""
    return f"{slot}-{(now or datetime.now()).date().isoformat()}"


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class SmartNotificationOrchestrator:
    """Morning / bedtime / food-insight scheduling with throttle and caches."""

    def __init__(
        self,
        scheduler: ReminderScheduler,
        store: KeyValueStore,
        tasks: TaskPort,
        ai: AIContentPort | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._scheduler = scheduler
        self._store = store
        self._tasks = tasks
        self._ai = ai
        self._clock = clock
        self.food_task: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()

    def _ai_ready(self) -> bool:
        return self._ai is not None and self._ai.is_configured()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def reschedule_smart_notifications(
        self, now: datetime | None = None, force: bool = False,
    ) -> bool:
        """Refill all smart slots; returns True when a full pass ran.

        force skips the 12 hour throttle (profile changes, bot restart).
        Never raises: every failure is logged and the pass ends early.
        """
        now = now or self._clock()
        try:
            return await self._reschedule(now, force)
        except Exception as exc:
            logger.error("Smart notification reschedule failed: %s", exc)
            return False

    async def cancel_all_smart_notifications(self) -> None:
        """Cancel every smart slot and pause until resume_smart_notifications()."""
        await self._store.set(PAUSED_KEY, "1")
        await asyncio.gather(
            self._scheduler.cancel_stored(MORNING_SLOT),
            self._scheduler.cancel_stored(BEDTIME_SLOT),
            self._scheduler.cancel_stored(FOOD_INSIGHT_SLOT),
        )
        logger.info("All smart notifications cancelled")

    async def resume_smart_notifications(self) -> None:
        await self._store.remove(PAUSED_KEY)
        logger.info("Smart notifications resumed")

    async def _reschedule(self, now: datetime, force: bool) -> bool:
        if await self._store.get(PAUSED_KEY):
            logger.info("Smart notifications paused, skipping")
            return False

        if not force and await self._recently_rescheduled(now):
            logger.info("Skipping smart notifications: rescheduled recently")
            return False

        profile = await self._tasks.get_profile()
        if profile is None or (not profile.wake_up_time and not profile.bed_time):
            logger.info("No wake/bed times set, skipping smart notifications")
            return False

        tone = profile.tone or "friendly"
        wake = parse_time(profile.wake_up_time, DEFAULT_WAKE_TIME)
        bed = parse_time(profile.bed_time, DEFAULT_BED_TIME)

        # 1. Morning
        todays_tasks = await self._safe_fetch(self._tasks.get_todays_tasks(limit=10), [])
        morning = await self.generate_morning_content(
            tone, profile.self_description, profile.hobbies, todays_tasks, now=now,
        )
        await self._scheduler.schedule_once(
            MORNING_SLOT, morning.title, morning.body, next_occurrence(wake, now),
            {"type": "morning"},
        )
        logger.info("Morning notification scheduled at %s", wake.strftime("%H:%M"))

        # 2. Bedtime
        details = await self._safe_fetch(self._tasks.get_pending_task_details(limit=3), None)
        if details is None:
            logger.warning("Pending tasks unavailable, bedtime notification left as is")
        else:
            bedtime = await self.generate_bedtime_content(tone, details.transcripts, details.count, now=now)
            if bedtime is not None:
                await self._scheduler.schedule_once(
                    BEDTIME_SLOT, bedtime.title, bedtime.body, next_occurrence(bed, now),
                    {"type": "bedtime"},
                )
                logger.info(
                    "Bedtime notification scheduled at %s (%d pending tasks)",
                    bed.strftime("%H:%M"), details.count,
                )
            else:
                await self._scheduler.cancel_stored(BEDTIME_SLOT)
                logger.info("No pending tasks, bedtime notification skipped")

        # 3. Food insight runs in the background
        self.food_task = asyncio.create_task(self._run_food_insight(now), name="food-insight")
        self._background.add(self.food_task)
        self.food_task.add_done_callback(self._background.discard)

        await self._store.set(LAST_FULL_RESCHEDULE_KEY, now.isoformat())
        logger.info("All smart notifications rescheduled")
        return True

    async def _recently_rescheduled(self, now: datetime) -> bool:
        raw = await self._store.get(LAST_FULL_RESCHEDULE_KEY)
        if not raw:
            return False
        try:
            last = datetime.fromisoformat(raw)
        except ValueError:
            logger.warning("Corrupt %s value %r, ignoring", LAST_FULL_RESCHEDULE_KEY, raw)
            return False
        return now - last < RESCHEDULE_THROTTLE

    # ------------------------------------------------------------------
    # Content generation
    # ------------------------------------------------------------------

    async def generate_morning_content(
        self,
        tone: str,
        self_description: str | None,
        hobbies: str | None,
        tasks: list[TaskItem],
        now: datetime | None = None,
    ) -> NotificationContent:
        """Morning wording, generated at most once per calendar day."""
        now = now or self._clock()
        cache_key = content_cache_key(MORNING_SLOT, now)
        cached = await self._read_cached_content(cache_key)
        if cached is not None:
            return cached

        location_task = next(
            (t for t in tasks if t.event_location or t.place_search_query), None
        )
        place = None
        if location_task is not None:
            place = location_task.event_location or location_task.place_search_query

        content = None
        if self._ai_ready():
            task_lines = "\n".join(f"- {t.transcript}" for t in tasks[:3])
            prompt = MORNING_PROMPT.format(
                day_name=now.strftime("%A"),
                self_description=self_description or "not set",
                hobbies=hobbies or "not set",
                tone=tone,
                task_lines=task_lines or "(no specific tasks)",
                place=f"Yes, {place}" if place else "No",
            )
            content = await self._ask_for_content(prompt, "morning")

        if content is None:
            if place:
                content = NotificationContent(
                    title=f"Heading to {place} today",
                    body="You've got this. Stay focused and enjoy the journey.",
                )
            elif hobbies:
                first_hobby = hobbies.split(",")[0].strip()
                content = NotificationContent(
                    title="A new day awaits",
                    body=f"Make time for what matters, including {first_hobby}.",
                )
            else:
                content = NotificationContent(
                    title="Morning check-in",
                    body="Take a moment to set your intention for today.",
                )

        await self._store.set(cache_key, content.model_dump_json())
        return content

    async def generate_bedtime_content(
        self,
        tone: str,
        pending_transcripts: list[str],
        total_count: int,
        now: datetime | None = None,
    ) -> NotificationContent | None:
        """Bedtime wording; None when nothing is pending."""
        if total_count == 0:
            return None

        now = now or self._clock()
        cache_key = content_cache_key(BEDTIME_SLOT, now)
        cached = await self._read_cached_content(cache_key)
        if cached is not None:
            return cached

        content = None
        if self._ai_ready():
            remaining = f" (+{total_count - 3} more)" if total_count > 3 else ""
            prompt = BEDTIME_PROMPT.format(
                task_lines="\n".join(f"- {t}" for t in pending_transcripts),
                remaining=remaining,
                tone=tone,
            )
            content = await self._ask_for_content(prompt, "bedtime")

        if content is None:
            if pending_transcripts:
                content = NotificationContent(
                    title="Before you sleep 🌙",
                    body=f'"{pending_transcripts[0][:60]}" is still waiting. Even a small step counts.',
                )
            else:
                content = NotificationContent(
                    title="Before you sleep 🌙",
                    body=f"{total_count} tasks waiting. Rest well, tomorrow is another chance.",
                )

        await self._store.set(cache_key, content.model_dump_json())
        return content

    async def _ask_for_content(self, prompt: str, label: str) -> NotificationContent | None:
        try:
            raw = await self._ai.generate_json(prompt, max_tokens=150)
            return NotificationContent.model_validate(raw)
        except Exception as exc:
            logger.warning("AI %s wording failed, using fallback: %s", label, exc)
            return None

    async def _read_cached_content(self, key: str) -> NotificationContent | None:
        raw = await self._store.get(key)
        if not raw:
            return None
        try:
            return NotificationContent.model_validate_json(raw)
        except ValidationError:
            logger.warning("Corrupt cached content under %s, regenerating", key)
            return None

    # ------------------------------------------------------------------
    # Food insight
    # ------------------------------------------------------------------

    async def _run_food_insight(self, now: datetime) -> None:
        try:
            analysis = await self.analyze_food_journal(now=now)
            if analysis is not None:
                await self.schedule_food_insight(analysis, now=now)
        except Exception as exc:
            logger.error("Food analysis error: %s", exc)

    async def analyze_food_journal(self, now: datetime | None = None) -> FoodAnalysis | None:
        """Food-journal pattern, cached for 24 hours. None when unavailable."""
        now = now or self._clock()
        cached = await self._read_cached_analysis(now)
        if cached is not None:
            return cached

        if not self._ai_ready():
            return None

        entries = await self._safe_fetch(
            self._tasks.get_recent_journal_entries(FOOD_ANALYSIS_DAYS), [],
        )
        food = [e for e in entries if e.category == "food" and e.caption and e.caption.strip()]
        if len(food) < MIN_FOOD_ENTRIES:
            return None

        prompt = FOOD_PROMPT.format(entries="\n".join(f"- {e.caption}" for e in food))
        try:
            raw = await self._ai.generate_json(prompt, max_tokens=250)
            analysis = FoodAnalysis.model_validate(raw)
        except Exception as exc:
            logger.error("Food analysis failed: %s", exc)
            return None

        await self._store.set(FOOD_ANALYSIS_KEY, analysis.model_dump_json(by_alias=True))
        await self._store.set(FOOD_ANALYSIS_DATE_KEY, now.isoformat())
        return analysis

    async def _read_cached_analysis(self, now: datetime) -> FoodAnalysis | None:
        stamp = await self._store.get(FOOD_ANALYSIS_DATE_KEY)
        if not stamp:
            return None
        try:
            if now - datetime.fromisoformat(stamp) >= FOOD_ANALYSIS_TTL:
                return None
        except ValueError:
            return None

        raw = await self._store.get(FOOD_ANALYSIS_KEY)
        if not raw:
            return None
        try:
            return FoodAnalysis.model_validate_json(raw)
        except ValidationError:
            logger.warning("Corrupt cached food analysis, ignoring")
            return None

    async def infer_meal_hours(self) -> list[int]:
        """Modal food-entry hour per meal window, ascending; [12, 19] without data."""
        entries = await self._safe_fetch(
            self._tasks.get_recent_journal_entries(MEAL_HISTORY_DAYS), [],
        )
        food_hours = [e.created_at.hour for e in entries if e.category == "food"]
        if len(food_hours) < MIN_FOOD_ENTRIES:
            return list(DEFAULT_MEAL_HOURS)

        meal_hours = []
        for _name, low, high in MEAL_WINDOWS:
            freq: dict[int, int] = {}
            for hour in food_hours:
                if low <= hour <= high:
                    freq[hour] = freq.get(hour, 0) + 1
            if freq:
                # Ties go to the earliest hour
                meal_hours.append(max(sorted(freq), key=freq.__getitem__))

        return sorted(meal_hours) if meal_hours else list(DEFAULT_MEAL_HOURS)

    async def next_meal_time(self, now: datetime | None = None) -> datetime:
        now = now or self._clock()
        meal_hours = await self.infer_meal_hours()
        for hour in meal_hours:
            candidate = now.replace(hour=hour, minute=0, second=0, microsecond=0)
            if candidate > now:
                return candidate
        tomorrow = now + timedelta(days=1)
        return tomorrow.replace(hour=meal_hours[0], minute=0, second=0, microsecond=0)

    async def schedule_food_insight(
        self, analysis: FoodAnalysis, now: datetime | None = None,
    ) -> str | None:
        if not analysis.is_actionable:
            return None

        fire_at = await self.next_meal_time(now=now)
        notification_id = await self._scheduler.schedule_once(
            FOOD_INSIGHT_SLOT,
            analysis.notification_title,
            analysis.notification_body,
            fire_at,
            {"type": "food_insight", "pattern": analysis.pattern},
        )
        logger.info("Food insight (%s) scheduled at %s", analysis.pattern, fire_at.strftime("%H:%M"))
        return notification_id

    @staticmethod
    async def _safe_fetch(query, default):
        try:
            return await query
        except Exception as exc:
            logger.error("Task lookup failed: %s", exc)
            return default


