"""Location ports — geofence registration, location sampling, reverse geocoding.

The platform delivers enter/exit transitions and location samples as
messages on the queue it was given; core modules never poll it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol


class GeofenceEventType(Enum):
    ENTER = "enter"
    EXIT = "exit"


@dataclass(frozen=True)
class GeofenceRegion:
    """A circular region registered with the platform."""

    identifier: str
    latitude: float
    longitude: float
    radius: float              # meters
    notify_on_enter: bool = True
    notify_on_exit: bool = True


@dataclass(frozen=True)
class GeofenceEvent:
    """Platform message: the device crossed a registered region boundary."""

    event_type: GeofenceEventType
    region_id: str


@dataclass(frozen=True)
class LocationSample:
    """Platform message: a periodic or distance-gated location fix."""

    latitude: float
    longitude: float
    timestamp: datetime


@dataclass(frozen=True)
class LocationPermissions:
    foreground: bool
    background: bool


@dataclass
class GeocodedAddress:
    """Result of a reverse-geocode lookup."""

    name: str | None = None
    street: str | None = None
    city: str | None = None
    region: str | None = None

    def search_text(self) -> str:
        """Lowercased join of the non-empty address parts."""
        parts = [self.name, self.street, self.city, self.region]
        return " ".join(p for p in parts if p).lower()


class GeofencingPort(Protocol):
    """Region registration and background location sampling."""

    async def has_permissions(self) -> LocationPermissions: ...

    async def start_geofencing(self, regions: list[GeofenceRegion]) -> None: ...

    async def stop_geofencing(self) -> None: ...

    async def start_location_updates(
        self, time_interval_seconds: float, distance_interval_meters: float
    ) -> None: ...

    async def stop_location_updates(self) -> None: ...

    async def is_location_updates_running(self) -> bool: ...


class GeocoderPort(Protocol):
    """Coordinates → address text."""

    async def reverse_geocode(
        self, latitude: float, longitude: float
    ) -> GeocodedAddress | None: ...
