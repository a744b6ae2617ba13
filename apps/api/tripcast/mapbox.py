from __future__ import annotations

import os
import logging
from typing import Optional, Dict, Any

import httpx

from tripcast import cache
from tripcast.models import Coordinates, Place
from tripcast.providers import DirectionsProvider, DirectionsResult, ReverseGeocoder

MAPBOX_TOKEN = os.environ.get("TRIPCAST_MAPBOX_TOKEN")
DIRECTIONS_URL = "https://api.mapbox.com/directions/v5/mapbox/driving"
GEOCODING_URL = "https://api.mapbox.com/geocoding/v5/mapbox.places"
TIMEOUT_SECONDS = float(os.environ.get("TRIPCAST_PROVIDER_TIMEOUT_SECONDS", "20"))

log = logging.getLogger(__name__)


class _MapboxClient:
    def __init__(self, token: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.token = token if token is not None else MAPBOX_TOKEN
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=TIMEOUT_SECONDS, transport=self._transport)


class MapboxDirections(_MapboxClient, DirectionsProvider):
    name = "mapbox-directions"

    async def route(self, start: Coordinates, end: Coordinates) -> Optional[DirectionsResult]:
        if not self.token:
            log.error("Mapbox token not configured (TRIPCAST_MAPBOX_TOKEN)")
            return None

        coords = f"{start.lng},{start.lat};{end.lng},{end.lat}"
        params = {"access_token": self.token, "geometries": "geojson", "overview": "full"}
        async with self._client() as client:
            r = await client.get(f"{DIRECTIONS_URL}/{coords}", params=params)
        if r.status_code != 200:
            raise httpx.HTTPStatusError(
                f"Directions API error: {r.status_code} {r.text[:200]}", request=r.request, response=r
            )
        data: Dict[str, Any] = r.json()
        routes = data.get("routes") or []
        if data.get("code") != "Ok" or not routes:
            return None

        best = routes[0]
        path = [(float(lng), float(lat)) for lng, lat in best.get("geometry", {}).get("coordinates", [])]
        if not path:
            return None
        return DirectionsResult(
            path=path,
            duration_s=float(best.get("duration", 0.0)),
            distance_m=float(best.get("distance", 0.0)),
        )


class MapboxReverseGeocoder(_MapboxClient, ReverseGeocoder):
    name = "mapbox-geocoding"
    place_types = "place,locality,neighborhood"

    async def reverse(self, at: Coordinates) -> Optional[Place]:
        if not self.token:
            return None

        cache_key = cache.point_key("reverse:v1", at)
        cached = cache.load(cache_key)
        if cached:
            # nearby points share a key; the step keeps its own sampled coordinate
            return Place(**{**cached, "coordinates": at})

        params = {
            "access_token": self.token,
            "types": self.place_types,
            "limit": "1",
            "language": "en",
        }
        async with self._client() as client:
            r = await client.get(f"{GEOCODING_URL}/{at.lng},{at.lat}.json", params=params)
        if r.status_code != 200:
            log.warning("reverse geocoding %s,%s returned %s", at.lat, at.lng, r.status_code)
            return None
        features = r.json().get("features") or []
        if not features:
            return None

        feature = features[0]
        # keep the sampled coordinate; the feature centroid can be far off the road
        place = Place(
            short_name=feature.get("text", ""),
            display_name=feature.get("place_name", ""),
            coordinates=at,
        )
        cache.store(cache_key, place.model_dump())
        return place
