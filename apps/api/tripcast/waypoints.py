from __future__ import annotations

import logging
from typing import List, Sequence

from tripcast.models import Place, RouteStep
from tripcast.planner import RoutePlanner

log = logging.getLogger(__name__)


def merge_step(route: Sequence[RouteStep], step: RouteStep) -> List[RouteStep]:
    """Place `step` by time offset; on a tie the existing steps stay first."""
    merged = [*route, step]
    # sorted() is stable, so equal offsets keep insertion order
    return sorted(merged, key=lambda s: s.time_offset_hours)


class WaypointInserter:
    """Add a manual stop to an existing route.

    The new step is timed by a fresh driving estimate from the origin. The
    returned route carries no weather for the new stop; the caller re-enriches.
    """

    def __init__(self, planner: RoutePlanner):
        self.planner = planner

    async def waypoint_step(self, origin: Place, new_place: Place) -> RouteStep:
        leg = await self.planner.directions_between(origin, new_place)
        step = RouteStep(
            place=new_place,
            time_offset_hours=leg.duration_hours,
            is_manual_waypoint=True,
        )
        log.info("manual stop %s at +%.2fh", new_place.short_name, step.time_offset_hours)
        return step

    async def insert(self, route: Sequence[RouteStep], origin: Place, new_place: Place) -> List[RouteStep]:
        return merge_step(route, await self.waypoint_step(origin, new_place))
