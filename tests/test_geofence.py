"""Tests for recall.core.geofence — user regions and store detection."""

import asyncio
import json
from datetime import datetime, timedelta

import pytest
from unittest.mock import AsyncMock

from recall.core.geofence import (
    LAST_DETECTED_STORE_KEY,
    LocationSettings,
    GeofenceEngine,
    category_emoji,
    detect_location_category,
    detect_store_category,
    haversine_distance,
    preview_body,
    store_name_from_address,
)
from recall.data.models import TaskItem
from recall.ports.location_port import (
    GeocodedAddress,
    GeofenceEvent,
    GeofenceEventType,
    LocationPermissions,
    LocationSample,
)

NOW = datetime(2025, 3, 10, 10, 0)
STORE_LAT, STORE_LNG = 37.7749, -122.4194


class FakePlatform:
    def __init__(self, background=True):
        self.permissions = LocationPermissions(foreground=True, background=background)
        self.regions = None
        self.updates_running = False
        self.update_params = None

    async def has_permissions(self):
        return self.permissions

    async def start_geofencing(self, regions):
        self.regions = list(regions)

    async def stop_geofencing(self):
        self.regions = None

    async def start_location_updates(self, time_interval_seconds, distance_interval_meters):
        self.updates_running = True
        self.update_params = (time_interval_seconds, distance_interval_meters)

    async def stop_location_updates(self):
        self.updates_running = False

    async def is_location_updates_running(self):
        return self.updates_running


class FakeTasks:
    def __init__(self, items_by_category=None, pending=None):
        self.items_by_category = items_by_category or {}
        self.pending = pending or []
        self.completed = []

    async def get_pending_location_items(self):
        return list(self.pending)

    async def get_items_for_categories(self, categories):
        return [item for c in categories for item in self.items_by_category.get(c, [])]

    async def mark_location_completed(self, item_id):
        self.completed.append(item_id)
        return True


class FakeGeocoder:
    def __init__(self, address):
        self.address = address
        self.calls = 0

    async def reverse_geocode(self, latitude, longitude):
        self.calls += 1
        return self.address


def _item(item_id, label, category="grocery"):
    return TaskItem(id=item_id, transcript=label, location_category=category)


def _sample(minutes_after=0, lat=STORE_LAT, lng=STORE_LNG):
    return LocationSample(latitude=lat, longitude=lng, timestamp=NOW + timedelta(minutes=minutes_after))


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def tasks():
    return FakeTasks(items_by_category={"grocery": [_item(1, "milk"), _item(2, "eggs")]})


@pytest.fixture
def geocoder():
    return FakeGeocoder(GeocodedAddress(name="Safeway", street="2020 Market St", city="San Francisco"))


@pytest.fixture
def engine(kv_store, scheduler, platform, tasks, geocoder):
    return GeofenceEngine(kv_store, scheduler, platform, tasks, geocoder=geocoder, clock=lambda: NOW)


async def _enable(engine, **overrides):
    return await engine.update_settings(enabled=True, **overrides)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


class TestHaversine:
    def test_same_point_is_zero(self):
        assert haversine_distance(STORE_LAT, STORE_LNG, STORE_LAT, STORE_LNG) == 0

    def test_symmetric(self):
        a = haversine_distance(40.7128, -74.0060, 34.0522, -118.2437)
        b = haversine_distance(34.0522, -118.2437, 40.7128, -74.0060)
        assert a == pytest.approx(b)

    def test_known_distance(self):
        # New York to Los Angeles, roughly 3936 km
        distance = haversine_distance(40.7128, -74.0060, 34.0522, -118.2437)
        assert distance == pytest.approx(3_936_000, rel=0.01)

    def test_small_offset(self):
        # 0.001 degrees of latitude is about 111 m
        assert haversine_distance(0, 0, 0.001, 0) == pytest.approx(111.2, abs=0.5)


class TestCategoryDetection:
    def test_grocery_chain(self):
        assert detect_store_category("whole foods market, 1765 california st") == "grocery"

    def test_pharmacy_chain(self):
        assert detect_store_category("cvs pharmacy main st") == "pharmacy"

    def test_table_order_wins(self):
        # "target" is grocery, "mall" is shopping; grocery comes first
        assert detect_store_category("target at westfield mall") == "grocery"

    def test_unknown_place(self):
        assert detect_store_category("123 residential ave") is None

    def test_location_category_from_name_and_address(self):
        assert detect_location_category("Downtown", "Planet Fitness, 5th Ave") == "fitness"
        assert detect_location_category("pick up dry cleaner") == "errand"

    def test_store_name_title_cased(self):
        assert store_name_from_address("trader joe's 555 9th st") == "Trader Joe"
        assert store_name_from_address("somewhere else") == "a store"

    def test_category_emoji_default(self):
        assert category_emoji("grocery") == "🛒"
        assert category_emoji("unknown") == "📍"


class TestPreviewBody:
    def test_single_item(self):
        assert preview_body([_item(1, "milk")]) == "You have 1 item: milk"

    def test_overflow(self):
        items = [_item(i, f"item{i}") for i in range(5)]
        assert preview_body(items) == "You have 5 items: item0, item1, item2 +2 more"

    def test_summary_preferred_over_transcript(self):
        item = TaskItem(id=1, transcript="please remember to buy oat milk", summary="oat milk")
        assert preview_body([item]) == "You have 1 item: oat milk"


# ---------------------------------------------------------------------------
# Saved locations and monitoring
# ---------------------------------------------------------------------------


class TestSavedLocations:
    @pytest.mark.asyncio
    async def test_save_registers_regions(self, engine, platform):
        await _enable(engine)
        home = await engine.save_location("Home", "home", 37.0, -122.0, radius=150)

        assert home.id.startswith("loc_")
        assert [r.identifier for r in platform.regions] == [home.id]
        assert platform.regions[0].radius == 150

    @pytest.mark.asyncio
    async def test_save_while_disabled_does_not_register(self, engine, platform):
        await engine.save_location("Home", "home", 37.0, -122.0)
        assert platform.regions is None
        assert len(await engine.get_saved_locations()) == 1

    @pytest.mark.asyncio
    async def test_missing_background_permission_skips_registration(self, kv_store, scheduler, tasks):
        platform = FakePlatform(background=False)
        engine = GeofenceEngine(kv_store, scheduler, platform, tasks, clock=lambda: NOW)
        await _enable(engine)
        await engine.save_location("Home", "home", 37.0, -122.0)

        assert platform.regions is None

    @pytest.mark.asyncio
    async def test_delete_reregisters_remaining(self, engine, platform):
        await _enable(engine)
        home = await engine.save_location("Home", "home", 37.0, -122.0)
        work = await engine.save_location("Office", "work", 37.1, -122.1)

        assert await engine.delete_location(home.id) is True
        assert [r.identifier for r in platform.regions] == [work.id]

    @pytest.mark.asyncio
    async def test_deleting_last_location_stops_geofencing(self, engine, platform):
        await _enable(engine)
        home = await engine.save_location("Home", "home", 37.0, -122.0)
        await engine.delete_location(home.id)
        assert platform.regions is None

    @pytest.mark.asyncio
    async def test_delete_unknown_returns_false(self, engine):
        assert await engine.delete_location("loc_missing") is False

    @pytest.mark.asyncio
    async def test_update_location(self, engine, platform):
        await _enable(engine)
        gym = await engine.save_location("Gym", "gym", 37.0, -122.0)
        updated = await engine.update_location(gym.id, radius=300, name="Climbing gym")

        assert updated.radius == 300
        assert updated.name == "Climbing gym"
        assert platform.regions[0].radius == 300

    @pytest.mark.asyncio
    async def test_corrupt_location_list_reads_empty(self, engine, kv_store):
        await kv_store.set("savedLocations", "not json")
        assert await engine.get_saved_locations() == []


class TestSettings:
    @pytest.mark.asyncio
    async def test_defaults(self, engine):
        settings = await engine.get_settings()
        assert settings == LocationSettings()
        assert settings.enabled is False

    @pytest.mark.asyncio
    async def test_enable_starts_background_sampling(self, engine, platform):
        await _enable(engine)
        assert platform.updates_running is True
        assert platform.update_params == (300, 100.0)

    @pytest.mark.asyncio
    async def test_disabling_store_detection_stops_sampling(self, engine, platform):
        await _enable(engine)
        await engine.update_settings(auto_detect_stores=False)
        assert platform.updates_running is False

    @pytest.mark.asyncio
    async def test_disable_stops_everything(self, engine, platform):
        await _enable(engine)
        await engine.save_location("Home", "home", 37.0, -122.0)
        await engine.update_settings(enabled=False)

        assert platform.regions is None
        assert platform.updates_running is False

    @pytest.mark.asyncio
    async def test_no_geocoder_means_no_sampling(self, kv_store, scheduler, platform, tasks):
        engine = GeofenceEngine(kv_store, scheduler, platform, tasks, clock=lambda: NOW)
        await _enable(engine)
        assert platform.updates_running is False


# ---------------------------------------------------------------------------
# Region events
# ---------------------------------------------------------------------------


class TestGeofenceEvents:
    @pytest.mark.asyncio
    async def test_leaving_home_previews_pending_items(self, engine, tasks, notifier):
        tasks.pending = [_item(1, "milk"), _item(2, "stamps", "errand")]
        await _enable(engine)
        home = await engine.save_location("Home", "home", 37.0, -122.0)

        notification_id = await engine.handle_geofence_event(
            GeofenceEvent(GeofenceEventType.EXIT, home.id)
        )
        sent = notifier.live[notification_id]
        assert sent.title == "🏠 Leaving Home"
        assert sent.body == "You have 2 items: milk, stamps"
        assert sent.trigger_at == NOW + timedelta(seconds=1)

    @pytest.mark.asyncio
    async def test_leaving_home_with_nothing_pending_is_filtered(self, engine, notifier):
        await _enable(engine)
        home = await engine.save_location("Home", "home", 37.0, -122.0)
        result = await engine.handle_geofence_event(GeofenceEvent(GeofenceEventType.EXIT, home.id))

        assert result is None
        assert notifier.live == {}

    @pytest.mark.asyncio
    async def test_leaving_home_without_filtering_sends_generic(self, engine, notifier):
        await _enable(engine, smart_filtering_enabled=False)
        home = await engine.save_location("Home", "home", 37.0, -122.0)
        notification_id = await engine.handle_geofence_event(
            GeofenceEvent(GeofenceEventType.EXIT, home.id)
        )
        assert notifier.live[notification_id].body == "Hope you got everything!"

    @pytest.mark.asyncio
    async def test_leave_home_reminder_off(self, engine, tasks, notifier):
        tasks.pending = [_item(1, "milk")]
        await _enable(engine, leave_home_reminder=False)
        home = await engine.save_location("Home", "home", 37.0, -122.0)
        assert await engine.handle_geofence_event(GeofenceEvent(GeofenceEventType.EXIT, home.id)) is None

    @pytest.mark.asyncio
    async def test_entering_home_does_nothing(self, engine, tasks, notifier):
        tasks.pending = [_item(1, "milk")]
        await _enable(engine)
        home = await engine.save_location("Home", "home", 37.0, -122.0)
        assert await engine.handle_geofence_event(GeofenceEvent(GeofenceEventType.ENTER, home.id)) is None

    @pytest.mark.asyncio
    async def test_arriving_at_work_lists_work_items(self, engine, tasks, notifier):
        tasks.items_by_category["work"] = [_item(9, "print slides", "work")]
        await _enable(engine)
        work = await engine.save_location("Office", "work", 37.1, -122.1)

        notification_id = await engine.handle_geofence_event(
            GeofenceEvent(GeofenceEventType.ENTER, work.id)
        )
        sent = notifier.live[notification_id]
        assert sent.title == "📍 Near Office"
        assert sent.body == "You have 1 item: print slides"

    @pytest.mark.asyncio
    async def test_arriving_without_items_sends_nothing(self, engine, notifier):
        await _enable(engine)
        gym = await engine.save_location("Gym", "gym", 37.1, -122.1)
        assert await engine.handle_geofence_event(GeofenceEvent(GeofenceEventType.ENTER, gym.id)) is None
        assert notifier.live == {}

    @pytest.mark.asyncio
    async def test_unknown_region_is_ignored(self, engine, notifier):
        await _enable(engine)
        assert await engine.handle_geofence_event(GeofenceEvent(GeofenceEventType.EXIT, "loc_gone")) is None
        assert notifier.schedule_calls == 0

    @pytest.mark.asyncio
    async def test_task_lookup_failure_is_treated_as_empty(self, engine, tasks, notifier):
        tasks.get_items_for_categories = AsyncMock(side_effect=RuntimeError("db locked"))
        await _enable(engine)
        work = await engine.save_location("Office", "work", 37.1, -122.1)
        assert await engine.handle_geofence_event(GeofenceEvent(GeofenceEventType.ENTER, work.id)) is None


# ---------------------------------------------------------------------------
# Store detection and cooldown
# ---------------------------------------------------------------------------


class TestStoreDetection:
    @pytest.mark.asyncio
    async def test_store_detection_notifies(self, engine, notifier, kv_store):
        await _enable(engine)
        notification_id = await engine.handle_location_update(_sample())

        sent = notifier.live[notification_id]
        assert sent.title == "🛒 Near Safeway"
        assert sent.body == "You have 2 items: milk, eggs"
        assert sent.data["category"] == "grocery"

        record = json.loads(await kv_store.get(LAST_DETECTED_STORE_KEY))
        assert record["category"] == "grocery"

    @pytest.mark.asyncio
    async def test_cooldown_suppresses_nearby_repeat(self, engine, notifier):
        await _enable(engine)
        first = await engine.handle_location_update(_sample(0))
        second = await engine.handle_location_update(_sample(10, lat=STORE_LAT + 0.001))

        assert first is not None
        assert second is None
        assert notifier.schedule_calls == 1

    @pytest.mark.asyncio
    async def test_cooldown_expires_after_thirty_minutes(self, engine, notifier):
        await _enable(engine)
        await engine.handle_location_update(_sample(0))
        await engine.handle_location_update(_sample(10))
        third = await engine.handle_location_update(_sample(31))

        assert third is not None
        assert notifier.schedule_calls == 2

    @pytest.mark.asyncio
    async def test_far_away_same_category_notifies(self, engine, notifier):
        await _enable(engine)
        await engine.handle_location_update(_sample(0))
        # about 1.1 km north
        far = await engine.handle_location_update(_sample(5, lat=STORE_LAT + 0.01))
        assert far is not None

    @pytest.mark.asyncio
    async def test_different_category_bypasses_cooldown(self, engine, tasks, geocoder, notifier):
        tasks.items_by_category["pharmacy"] = [_item(3, "vitamins", "pharmacy")]
        await _enable(engine)
        await engine.handle_location_update(_sample(0))

        geocoder.address = GeocodedAddress(name="Walgreens", street="Market St")
        second = await engine.handle_location_update(_sample(2))

        assert notifier.live[second].title == "💊 Near Walgreens"

    @pytest.mark.asyncio
    async def test_no_items_does_not_start_cooldown(self, engine, tasks, notifier, kv_store):
        tasks.items_by_category = {}
        await _enable(engine)
        assert await engine.handle_location_update(_sample(0)) is None
        assert await kv_store.get(LAST_DETECTED_STORE_KEY) is None

    @pytest.mark.asyncio
    async def test_unrecognized_place_is_ignored(self, engine, geocoder, notifier):
        geocoder.address = GeocodedAddress(name="Dolores Park")
        await _enable(engine)
        assert await engine.handle_location_update(_sample()) is None

    @pytest.mark.asyncio
    async def test_geocode_miss_is_ignored(self, engine, geocoder):
        geocoder.address = None
        await _enable(engine)
        assert await engine.handle_location_update(_sample()) is None

    @pytest.mark.asyncio
    async def test_disabled_skips_geocoding(self, engine, geocoder):
        assert await engine.handle_location_update(_sample()) is None
        assert geocoder.calls == 0

    @pytest.mark.asyncio
    async def test_corrupt_detection_record_allows_notification(self, engine, kv_store):
        await kv_store.set(LAST_DETECTED_STORE_KEY, "garbage")
        assert await engine.check_cooldown("grocery", STORE_LAT, STORE_LNG, NOW) is True

    @pytest.mark.asyncio
    async def test_concurrent_samples_notify_once(self, engine, notifier):
        await _enable(engine)
        results = await asyncio.gather(
            engine.handle_location_update(_sample(0)),
            engine.handle_location_update(_sample(1)),
        )
        assert sum(r is not None for r in results) == 1
        assert notifier.schedule_calls == 1


class TestEventQueue:
    @pytest.mark.asyncio
    async def test_consumer_processes_queued_samples(self, engine, notifier):
        await _enable(engine)
        engine.start()
        try:
            await engine.events.put(_sample(0))
            await engine.events.put(_sample(5))
            await engine.events.join()
        finally:
            await engine.stop()

        assert notifier.schedule_calls == 1

    @pytest.mark.asyncio
    async def test_consumer_survives_handler_errors(self, engine, notifier, geocoder):
        await _enable(engine)
        geocoder.reverse_geocode = AsyncMock(side_effect=[RuntimeError("quota"), geocoder.address])
        engine.start()
        try:
            await engine.events.put(_sample(0))
            await engine.events.put(_sample(1))
            await engine.events.join()
        finally:
            await engine.stop()

        assert notifier.schedule_calls == 1

    @pytest.mark.asyncio
    async def test_unknown_event_is_ignored(self, engine):
        assert await engine.handle_event("not an event") is None


class TestMarkCompleted:
    @pytest.mark.asyncio
    async def test_delegates_to_tasks(self, engine, tasks):
        assert await engine.mark_location_completed(4) is True
        assert tasks.completed == [4]
