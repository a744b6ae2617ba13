"""Route Step Planner: sample a driving route at even time intervals.

Each sampled point is resolved to a named place; adjacent samples that land
in the same place (by short name) collapse into one stop.
"""
from __future__ import annotations

import asyncio
import logging
import math
import os
from typing import List, Optional

from tripcast.errors import ResolutionSkipped, RouteUnavailable
from tripcast.geometry import interpolate_along
from tripcast.models import Coordinates, Place, RoutePlanParams, RouteStep
from tripcast.providers import DirectionsProvider, DirectionsResult, ReverseGeocoder

TIMEOUT_SECONDS = float(os.environ.get("TRIPCAST_PROVIDER_TIMEOUT_SECONDS", "20"))

log = logging.getLogger(__name__)


def step_count(total_hours: float, interval_hours: float) -> int:
    """Number of stops including origin and destination (always >= 2)."""
    return max(2, math.ceil(total_hours / interval_hours) + 1)


def sample_offsets(total_hours: float, interval_hours: float) -> List[float]:
    """Intermediate time offsets, stopping short of the destination."""
    out = []
    for i in range(1, step_count(total_hours, interval_hours) - 1):
        offset = i * interval_hours
        if offset >= total_hours:
            break
        out.append(offset)
    return out


class RoutePlanner:
    def __init__(
        self,
        directions: DirectionsProvider,
        geocoder: ReverseGeocoder,
        timeout_s: float = TIMEOUT_SECONDS,
    ):
        self.directions = directions
        self.geocoder = geocoder
        self.timeout_s = timeout_s

    async def directions_between(self, start: Place, end: Place) -> DirectionsResult:
        try:
            result = await asyncio.wait_for(
                self.directions.route(start.coordinates, end.coordinates), self.timeout_s
            )
        except Exception as e:
            raise RouteUnavailable(
                f"Could not calculate route {start.short_name} -> {end.short_name}: {e}"
            ) from e
        if result is None:
            raise RouteUnavailable(f"No drivable route {start.short_name} -> {end.short_name}")
        return result

    async def _resolve(self, lng: float, lat: float) -> Place:
        at = Coordinates(lat=lat, lng=lng)
        try:
            place = await asyncio.wait_for(self.geocoder.reverse(at), self.timeout_s)
        except Exception as e:
            raise ResolutionSkipped(f"reverse geocoding {lat:.4f},{lng:.4f} failed: {e}") from e
        if place is None:
            raise ResolutionSkipped(f"no place near {lat:.4f},{lng:.4f}")
        return place

    async def _try_resolve(self, lng: float, lat: float) -> Optional[Place]:
        try:
            return await self._resolve(lng, lat)
        except ResolutionSkipped as e:
            log.warning("%s", e)
            return None

    async def plan(self, origin: Place, destination: Place, sample_interval_minutes: int) -> List[RouteStep]:
        params = RoutePlanParams(
            origin=origin, destination=destination, sample_interval_minutes=sample_interval_minutes
        )
        return await self.plan_params(params)

    async def plan_params(self, params: RoutePlanParams) -> List[RouteStep]:
        route = await self.directions_between(params.origin, params.destination)
        total_hours = route.duration_hours
        interval = params.sample_interval_hours

        offsets = sample_offsets(total_hours, interval)
        points = [interpolate_along(route.path, off / total_hours) for off in offsets]
        # resolutions are independent; dedup below runs in route order
        places = await asyncio.gather(*(self._try_resolve(lng, lat) for lng, lat in points))

        steps = [RouteStep(place=params.origin, time_offset_hours=0.0)]
        for offset, place in zip(offsets, places):
            if place is None:
                continue
            if place.short_name == steps[-1].place.short_name:
                continue
            steps.append(RouteStep(place=place, time_offset_hours=offset))

        # the destination replaces a last sample that resolved to the same place
        if len(steps) > 1 and steps[-1].place.short_name == params.destination.short_name:
            steps.pop()
        final_offset = max(round(total_hours, 1), steps[-1].time_offset_hours)
        steps.append(RouteStep(place=params.destination, time_offset_hours=final_offset))
        log.info(
            "planned %s -> %s: %.2fh, %d stops (%d samples)",
            params.origin.short_name, params.destination.short_name,
            total_hours, len(steps), len(offsets),
        )
        return steps


def format_time_offset(hours: float) -> str:
    if hours == 0:
        return "Start"
    h = math.floor(hours)
    m = round((hours - h) * 60)
    if m == 60:
        h, m = h + 1, 0
    if h == 0:
        return f"+{m}m"
    if m == 0:
        return f"+{h}h"
    return f"+{h}h {m}m"


def format_total_time(hours: float) -> str:
    h = math.floor(hours)
    m = round((hours - h) * 60)
    if m == 60:
        h, m = h + 1, 0
    if h == 0:
        return f"{m} min"
    if m == 0:
        return f"{h} hr"
    return f"{h} hr {m} min"
