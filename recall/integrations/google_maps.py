"""Google Maps API integration — place lookup and reverse geocoding.

Uses the Places API (New):
* Nearby Search to name the place at a coordinate (store detection);
* Text Search to resolve a typed place/address into coordinates
  (saving a location without sharing one).

Gracefully degrades: returns None on any failure (no API key, timeout,
invalid response, etc.).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from recall.ports.location_port import GeocodedAddress

logger = logging.getLogger(__name__)

_PLACES_TEXT_SEARCH_URL = "https://places.googleapis.com/v1/places:searchText"
_PLACES_NEARBY_SEARCH_URL = "https://places.googleapis.com/v1/places:searchNearby"
_TIMEOUT_SECONDS = 5
_NEARBY_RADIUS_M = 50.0


@dataclass
class PlaceResult:
    """Result of a successful Text Search lookup."""

    display_name: str
    formatted_address: str
    latitude: float
    longitude: float


async def search_place(query: str, api_key: str) -> PlaceResult | None:
    """Resolve a place name or address to coordinates via Text Search."""
    if not query or not api_key:
        return None

    try:
        async with httpx.AsyncClient(timeout=_TIMEOUT_SECONDS) as client:
            resp = await client.post(
                _PLACES_TEXT_SEARCH_URL,
                json={"textQuery": query},
                headers={
                    "X-Goog-Api-Key": api_key,
                    "X-Goog-FieldMask": "places.displayName,places.formattedAddress,places.location",
                },
            )
            resp.raise_for_status()
            data = resp.json()

        places = data.get("places", [])
        if not places:
            logger.info("No Places results for '%s'", query)
            return None

        place = places[0]
        location = place["location"]
        return PlaceResult(
            display_name=place.get("displayName", {}).get("text", query),
            formatted_address=place.get("formattedAddress", ""),
            latitude=float(location["latitude"]),
            longitude=float(location["longitude"]),
        )
    except Exception as exc:
        logger.warning("Google Maps search failed for '%s': %s", query, exc)
        return None


async def reverse_geocode(
    latitude: float,
    longitude: float,
    api_key: str,
) -> GeocodedAddress | None:
    """Name the closest place to a coordinate via Nearby Search.

    Returns a GeocodedAddress (place name + formatted address) or None.
    """
    if not api_key:
        return None

    try:
        async with httpx.AsyncClient(timeout=_TIMEOUT_SECONDS) as client:
            resp = await client.post(
                _PLACES_NEARBY_SEARCH_URL,
                json={
                    "maxResultCount": 1,
                    "rankPreference": "DISTANCE",
                    "locationRestriction": {
                        "circle": {
                            "center": {"latitude": latitude, "longitude": longitude},
                            "radius": _NEARBY_RADIUS_M,
                        },
                    },
                },
                headers={
                    "X-Goog-Api-Key": api_key,
                    "X-Goog-FieldMask": "places.displayName,places.formattedAddress",
                },
            )
            resp.raise_for_status()
            data = resp.json()

        places = data.get("places", [])
        if not places:
            logger.info("No place found near %.5f,%.5f", latitude, longitude)
            return None

        place = places[0]
        return GeocodedAddress(
            name=place.get("displayName", {}).get("text"),
            street=place.get("formattedAddress"),
        )
    except Exception as exc:
        logger.warning("Reverse geocode failed for %.5f,%.5f: %s", latitude, longitude, exc)
        return None


class GoogleMapsGeocoder:
    """GeocoderPort implementation over the Places API."""

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key

    async def reverse_geocode(self, latitude: float, longitude: float) -> GeocodedAddress | None:
        return await reverse_geocode(latitude, longitude, self._api_key)
