"""
Recall Assistant — Geofence Engine.

Location-based reminders from two sources:

* user regions (home / work / gym) registered with the platform, which
  report enter/exit transitions;
* automatic store detection: periodic location samples are
  reverse-geocoded and matched against known store chains.

Platform events arrive as messages on ``GeofenceEngine.events`` and are
consumed by a single task, so detection check-and-update never
interleaves. Same-category store detections within 30 minutes and 500
meters of the previous one are suppressed.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Literal
from uuid import uuid4

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from recall.ports.location_port import (
    GeofenceEvent,
    GeofenceEventType,
    GeofenceRegion,
    LocationSample,
)

if TYPE_CHECKING:
    from recall.core.reminder_scheduler import ReminderScheduler
    from recall.data.models import TaskItem
    from recall.ports.location_port import GeocoderPort, GeofencingPort
    from recall.ports.store_port import KeyValueStore
    from recall.ports.task_port import TaskPort

logger = logging.getLogger(__name__)

SAVED_LOCATIONS_KEY = "savedLocations"
LOCATION_SETTINGS_KEY = "locationSettings"
LAST_DETECTED_STORE_KEY = "lastDetectedStore"

STORE_COOLDOWN = timedelta(minutes=30)
STORE_COOLDOWN_RADIUS_M = 500.0
SAMPLE_INTERVAL_SECONDS = 5 * 60
SAMPLE_DISTANCE_M = 100.0
EARTH_RADIUS_M = 6_371_000.0

_IMMEDIATE = timedelta(seconds=1)
_PREVIEW_ITEMS = 3

LocationType = Literal["home", "work", "gym"]

# Match order is table order: the first category with a matching chain wins.
STORE_CHAINS: dict[str, list[str]] = {
    "grocery": [
        "walmart", "costco", "kroger", "target", "safeway", "whole foods",
        "trader joe", "aldi", "publix", "wegmans", "heb", "meijer",
        "food lion", "giant", "stop & shop", "albertsons", "vons",
        "ralphs", "fred meyer", "winco", "sprouts", "market basket",
    ],
    "pharmacy": [
        "cvs", "walgreens", "rite aid", "pharmacy", "drugstore",
        "duane reade", "kinney drugs",
    ],
    "shopping": [
        "mall", "outlet", "shopping center", "department store",
        "best buy", "home depot", "lowes", "ikea", "bed bath",
    ],
    "health": ["hospital", "clinic", "doctor", "medical center", "urgent care"],
    "fitness": ["gym", "fitness", "ymca", "planet fitness", "24 hour fitness", "la fitness"],
    "work": ["office", "workplace"],
    "errand": ["post office", "bank", "dry cleaner", "auto shop"],
    "general": [],
}

NOTE_CATEGORIES = tuple(STORE_CHAINS)

# Home triggers the leaving-home flow, never a category flow.
LOCATION_TO_CATEGORIES: dict[str, list[str]] = {
    "home": [],
    "work": ["work"],
    "gym": ["fitness"],
}

CATEGORY_EMOJIS: dict[str, str] = {
    "grocery": "🛒",
    "shopping": "🛍️",
    "pharmacy": "💊",
    "health": "🏥",
    "fitness": "💪",
    "work": "💼",
    "errand": "📬",
    "general": "📍",
}


# ---------------------------------------------------------------------------
# Persisted models
# ---------------------------------------------------------------------------

class SavedLocation(BaseModel):
    """A user region (home / work / gym)."""
    id: str
    name: str
    type: LocationType
    address: str = ""
    latitude: float
    longitude: float
    radius: float = 100.0          # meters
    notify_on_enter: bool = True
    notify_on_exit: bool = True
    created_at: datetime = Field(default_factory=datetime.now)

    def to_region(self) -> GeofenceRegion:
        return GeofenceRegion(
            identifier=self.id,
            latitude=self.latitude,
            longitude=self.longitude,
            radius=self.radius,
            notify_on_enter=self.notify_on_enter,
            notify_on_exit=self.notify_on_exit,
        )


class LocationSettings(BaseModel):
    enabled: bool = False
    smart_filtering_enabled: bool = True   # only notify when relevant items exist
    leave_home_reminder: bool = True
    auto_detect_stores: bool = True


class DetectionRecord(BaseModel):
    """The last store detection that produced a notification."""
    category: str
    latitude: float
    longitude: float
    timestamp: datetime


_LOCATION_LIST = TypeAdapter(list[SavedLocation])


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters between two coordinates."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def detect_store_category(search_text: str) -> str | None:
    lower = search_text.lower()
    for category, chains in STORE_CHAINS.items():
        if any(chain in lower for chain in chains):
            return category
    return None


def detect_location_category(name: str, address: str = "") -> str | None:
    """Categorize a place (or a note) by its name and address text."""
    return detect_store_category(f"{name} {address}")


def store_name_from_address(search_text: str) -> str:
    """Friendly store name: the first known chain found, title-cased."""
    lower = search_text.lower()
    for chains in STORE_CHAINS.values():
        for chain in chains:
            if chain in lower:
                return " ".join(word[:1].upper() + word[1:] for word in chain.split(" "))
    return "a store"


def category_emoji(category: str) -> str:
    return CATEGORY_EMOJIS.get(category, "📍")


def preview_body(items: list[TaskItem]) -> str:
    """'You have 5 items: a, b, c +2 more'."""
    count = len(items)
    preview = ", ".join(item.preview_label for item in items[:_PREVIEW_ITEMS])
    body = f"You have {count} item{'s' if count != 1 else ''}: {preview}"
    if count > _PREVIEW_ITEMS:
        body += f" +{count - _PREVIEW_ITEMS} more"
    return body


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class GeofenceEngine:
    """Saved regions, monitoring lifecycle and the two reminder flows."""

    def __init__(
        self,
        store: KeyValueStore,
        scheduler: ReminderScheduler,
        platform: GeofencingPort,
        tasks: TaskPort,
        geocoder: GeocoderPort | None = None,
        events: asyncio.Queue | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._store = store
        self._scheduler = scheduler
        self._platform = platform
        self._tasks = tasks
        self._geocoder = geocoder
        self._clock = clock
        self.events: asyncio.Queue = events if events is not None else asyncio.Queue()
        self._detection_lock = asyncio.Lock()
        self._consumer: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Event queue
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Launch the queue consumer on the running loop."""
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(self.run(), name="geofence-events")
            logger.info("Geofence event consumer started")

    async def stop(self) -> None:
        if self._consumer is None:
            return
        self._consumer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._consumer
        self._consumer = None
        logger.info("Geofence event consumer stopped")

    async def run(self) -> None:
        while True:
            event = await self.events.get()
            try:
                await self.handle_event(event)
            except Exception as exc:
                logger.error("Failed to handle location event %r: %s", event, exc)
            finally:
                self.events.task_done()

    async def handle_event(self, event: GeofenceEvent | LocationSample) -> str | None:
        if isinstance(event, GeofenceEvent):
            return await self.handle_geofence_event(event)
        if isinstance(event, LocationSample):
            return await self.handle_location_update(event)
        logger.warning("Ignoring unknown location event: %r", event)
        return None

    # ------------------------------------------------------------------
    # Saved locations
    # ------------------------------------------------------------------

    async def get_saved_locations(self) -> list[SavedLocation]:
        raw = await self._store.get(SAVED_LOCATIONS_KEY)
        if not raw:
            return []
        try:
            return _LOCATION_LIST.validate_json(raw)
        except ValidationError as exc:
            logger.error("Corrupt saved locations, ignoring: %s", exc)
            return []

    async def _write_locations(self, locations: list[SavedLocation]) -> None:
        await self._store.set(SAVED_LOCATIONS_KEY, _LOCATION_LIST.dump_json(locations).decode())

    async def save_location(
        self,
        name: str,
        type: LocationType,
        latitude: float,
        longitude: float,
        radius: float = 100.0,
        address: str = "",
        notify_on_enter: bool = True,
        notify_on_exit: bool = True,
    ) -> SavedLocation:
        location = SavedLocation(
            id=f"loc_{uuid4().hex[:12]}",
            name=name,
            type=type,
            address=address,
            latitude=latitude,
            longitude=longitude,
            radius=radius,
            notify_on_enter=notify_on_enter,
            notify_on_exit=notify_on_exit,
            created_at=self._clock(),
        )
        locations = await self.get_saved_locations()
        locations.append(location)
        await self._write_locations(locations)
        logger.info("Saved %s location '%s' (%s)", type, name, location.id)

        await self.update_geofencing()
        return location

    async def update_location(self, location_id: str, **updates) -> SavedLocation | None:
        """Apply field updates to a saved location; None when the id is unknown."""
        locations = await self.get_saved_locations()
        for index, location in enumerate(locations):
            if location.id == location_id:
                updates.pop("id", None)
                locations[index] = SavedLocation.model_validate(
                    {**location.model_dump(), **updates}
                )
                await self._write_locations(locations)
                await self.update_geofencing()
                return locations[index]
        logger.warning("Cannot update unknown location %s", location_id)
        return None

    async def delete_location(self, location_id: str) -> bool:
        locations = await self.get_saved_locations()
        remaining = [loc for loc in locations if loc.id != location_id]
        if len(remaining) == len(locations):
            return False
        await self._write_locations(remaining)
        logger.info("Deleted location %s", location_id)
        await self.update_geofencing()
        return True

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    async def get_settings(self) -> LocationSettings:
        raw = await self._store.get(LOCATION_SETTINGS_KEY)
        if not raw:
            return LocationSettings()
        try:
            return LocationSettings.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Corrupt location settings, using defaults: %s", exc)
            return LocationSettings()

    async def update_settings(self, **changes) -> LocationSettings:
        current = await self.get_settings()
        updated = LocationSettings.model_validate({**current.model_dump(), **changes})
        await self._store.set(LOCATION_SETTINGS_KEY, updated.model_dump_json())
        await self.refresh_monitoring(updated)
        return updated

    # ------------------------------------------------------------------
    # Monitoring lifecycle
    # ------------------------------------------------------------------

    async def refresh_monitoring(self, settings: LocationSettings | None = None) -> None:
        """Bring region registration and sampling in line with the settings."""
        settings = settings or await self.get_settings()
        if settings.enabled:
            await self.update_geofencing()
            if settings.auto_detect_stores:
                await self.start_background_monitoring()
            else:
                await self.stop_background_monitoring()
        else:
            await self.stop_geofencing()
            await self.stop_background_monitoring()

    async def update_geofencing(self) -> None:
        """Re-register the full set of saved regions."""
        settings = await self.get_settings()
        if not settings.enabled:
            logger.info("Geofencing disabled")
            return

        permissions = await self._platform.has_permissions()
        if not permissions.background:
            logger.warning("Background location permission required for geofencing")
            return

        locations = await self.get_saved_locations()
        if not locations:
            logger.info("No locations to monitor")
            await self.stop_geofencing()
            return

        try:
            await self._platform.start_geofencing([loc.to_region() for loc in locations])
            logger.info("Geofencing started for %d locations", len(locations))
        except Exception as exc:
            logger.error("Start geofencing failed: %s", exc)

    async def stop_geofencing(self) -> None:
        try:
            await self._platform.stop_geofencing()
        except Exception as exc:
            logger.error("Stop geofencing failed: %s", exc)

    async def start_background_monitoring(self) -> None:
        settings = await self.get_settings()
        if not settings.enabled or not settings.auto_detect_stores:
            logger.info("Automatic store detection disabled")
            return
        if self._geocoder is None:
            logger.warning("No geocoder configured — store detection unavailable")
            return

        permissions = await self._platform.has_permissions()
        if not permissions.background:
            logger.warning("Background location permission required for store detection")
            return

        try:
            if await self._platform.is_location_updates_running():
                return
            await self._platform.start_location_updates(SAMPLE_INTERVAL_SECONDS, SAMPLE_DISTANCE_M)
            logger.info("Background location monitoring started")
        except Exception as exc:
            logger.error("Start background location failed: %s", exc)

    async def stop_background_monitoring(self) -> None:
        try:
            if await self._platform.is_location_updates_running():
                await self._platform.stop_location_updates()
                logger.info("Background location monitoring stopped")
        except Exception as exc:
            logger.error("Stop background location failed: %s", exc)

    # ------------------------------------------------------------------
    # User-region flows
    # ------------------------------------------------------------------

    async def handle_geofence_event(self, event: GeofenceEvent) -> str | None:
        settings = await self.get_settings()
        locations = await self.get_saved_locations()
        location = next((loc for loc in locations if loc.id == event.region_id), None)
        if location is None:
            logger.warning("Geofence event for unknown location %s", event.region_id)
            return None

        logger.info("%s %s", "Entered" if event.event_type is GeofenceEventType.ENTER else "Exited", location.name)

        if event.event_type is GeofenceEventType.EXIT and location.type == "home":
            return await self._handle_leaving_home(settings)
        if event.event_type is GeofenceEventType.ENTER:
            return await self._handle_arriving(location, settings)
        return None

    async def _handle_leaving_home(self, settings: LocationSettings) -> str | None:
        if not settings.leave_home_reminder:
            return None

        items = await self._safe_items(self._tasks.get_pending_location_items())
        if not items and settings.smart_filtering_enabled:
            logger.info("No pending items, skipping leave-home notification")
            return None

        body = preview_body(items) if items else "Hope you got everything!"
        return await self._scheduler.schedule_notification(
            "🏠 Leaving Home", body, self._clock() + _IMMEDIATE, {"type": "leaving-home"},
        )

    async def _handle_arriving(self, location: SavedLocation, settings: LocationSettings) -> str | None:
        categories = LOCATION_TO_CATEGORIES.get(location.type, [])
        if not categories:
            return None

        items = await self._safe_items(self._tasks.get_items_for_categories(categories))
        if not items:
            if settings.smart_filtering_enabled:
                logger.info("No relevant items for %s", location.name)
            return None

        return await self._scheduler.schedule_notification(
            f"📍 Near {location.name}",
            preview_body(items),
            self._clock() + _IMMEDIATE,
            {"type": "arrival", "location_id": location.id},
        )

    # ------------------------------------------------------------------
    # Store detection
    # ------------------------------------------------------------------

    async def handle_location_update(self, sample: LocationSample) -> str | None:
        settings = await self.get_settings()
        if not settings.enabled or not settings.auto_detect_stores or self._geocoder is None:
            return None

        address = await self._geocoder.reverse_geocode(sample.latitude, sample.longitude)
        if address is None:
            return None

        search_text = address.search_text()
        logger.info("Checking location: %s", search_text)
        category = detect_store_category(search_text)
        if category is None:
            return None

        async with self._detection_lock:
            if not await self.check_cooldown(category, sample.latitude, sample.longitude, sample.timestamp):
                logger.info("Cooldown active for %s", category)
                return None

            items = await self._safe_items(self._tasks.get_items_for_categories([category]))
            if not items:
                if settings.smart_filtering_enabled:
                    logger.info("No relevant items for %s", category)
                return None

            await self.save_last_detection(category, sample.latitude, sample.longitude, sample.timestamp)

            store_name = store_name_from_address(search_text)
            notification_id = await self._scheduler.schedule_notification(
                f"{category_emoji(category)} Near {store_name}",
                preview_body(items),
                self._clock() + _IMMEDIATE,
                {"type": "store", "category": category},
            )
            logger.info("Sent %s notification at %s", category, store_name)
            return notification_id

    async def check_cooldown(
        self,
        category: str,
        latitude: float,
        longitude: float,
        now: datetime | None = None,
    ) -> bool:
        """True when a detection of category at this point may notify."""
        now = now or self._clock()
        raw = await self._store.get(LAST_DETECTED_STORE_KEY)
        if not raw:
            return True
        try:
            last = DetectionRecord.model_validate_json(raw)
        except ValidationError:
            return True

        if last.category != category:
            return True
        if now - last.timestamp >= STORE_COOLDOWN:
            return True
        distance = haversine_distance(latitude, longitude, last.latitude, last.longitude)
        return distance >= STORE_COOLDOWN_RADIUS_M

    async def save_last_detection(
        self,
        category: str,
        latitude: float,
        longitude: float,
        now: datetime | None = None,
    ) -> None:
        record = DetectionRecord(
            category=category,
            latitude=latitude,
            longitude=longitude,
            timestamp=now or self._clock(),
        )
        try:
            await self._store.set(LAST_DETECTED_STORE_KEY, record.model_dump_json())
        except Exception as exc:
            logger.error("Save detection failed: %s", exc)

    async def mark_location_completed(self, item_id: int) -> bool:
        try:
            return await self._tasks.mark_location_completed(item_id)
        except Exception as exc:
            logger.error("Mark item %s completed failed: %s", item_id, exc)
            return False

    @staticmethod
    async def _safe_items(query) -> list[TaskItem]:
        try:
            return await query
        except Exception as exc:
            logger.error("Task lookup failed: %s", exc)
            return []
