"""Telegram location adapter — implements GeofencingPort.

Software geofencing over the location (and live-location) messages the
owner shares with the bot. Region transitions and gated location samples
are put on the engine's event queue.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta

from recall.core.geofence import haversine_distance
from recall.ports.location_port import (
    GeofenceEvent,
    GeofenceEventType,
    GeofenceRegion,
    LocationPermissions,
    LocationSample,
)

logger = logging.getLogger(__name__)


class TelegramLocationAdapter:
    """Telegram implementation of GeofencingPort."""

    def __init__(self, events: asyncio.Queue) -> None:
        self._events = events
        self._regions: dict[str, GeofenceRegion] = {}
        self._inside: dict[str, bool] = {}
        self._updates_running = False
        self._sample_interval = timedelta(minutes=5)
        self._sample_distance = 100.0
        self._last_sample: LocationSample | None = None
        self.last_position: tuple[float, float] | None = None

    async def has_permissions(self) -> LocationPermissions:
        # Sharing a (live) location with the bot is the permission grant.
        return LocationPermissions(foreground=True, background=True)

    async def start_geofencing(self, regions: list[GeofenceRegion]) -> None:
        self._regions = {region.identifier: region for region in regions}
        # Keep known inside/outside state for regions that are still registered
        self._inside = {rid: state for rid, state in self._inside.items() if rid in self._regions}
        logger.info("Monitoring %d regions", len(self._regions))

    async def stop_geofencing(self) -> None:
        self._regions.clear()
        self._inside.clear()

    async def start_location_updates(
        self, time_interval_seconds: float, distance_interval_meters: float
    ) -> None:
        self._sample_interval = timedelta(seconds=time_interval_seconds)
        self._sample_distance = distance_interval_meters
        self._last_sample = None
        self._updates_running = True

    async def stop_location_updates(self) -> None:
        self._updates_running = False
        self._last_sample = None

    async def is_location_updates_running(self) -> bool:
        return self._updates_running

    async def handle_location(
        self, latitude: float, longitude: float, timestamp: datetime | None = None
    ) -> None:
        """Feed one location fix from a chat message."""
        timestamp = timestamp or datetime.now()
        self.last_position = (latitude, longitude)

        for region in self._regions.values():
            inside = haversine_distance(
                latitude, longitude, region.latitude, region.longitude
            ) <= region.radius
            previous = self._inside.get(region.identifier)
            self._inside[region.identifier] = inside
            if previous is None or previous == inside:
                # First fix only establishes the state
                continue
            if inside and region.notify_on_enter:
                await self._events.put(GeofenceEvent(GeofenceEventType.ENTER, region.identifier))
            elif not inside and region.notify_on_exit:
                await self._events.put(GeofenceEvent(GeofenceEventType.EXIT, region.identifier))

        if self._updates_running and self._sample_due(latitude, longitude, timestamp):
            sample = LocationSample(latitude, longitude, timestamp)
            self._last_sample = sample
            await self._events.put(sample)

    def _sample_due(self, latitude: float, longitude: float, timestamp: datetime) -> bool:
        last = self._last_sample
        if last is None:
            return True
        if timestamp - last.timestamp >= self._sample_interval:
            return True
        moved = haversine_distance(latitude, longitude, last.latitude, last.longitude)
        return moved >= self._sample_distance
