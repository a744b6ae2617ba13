"""Refresh Coordinator: keep the enriched route in step with the departure time.

Every enrichment request gets a sequence number. Only the result of the
newest issued request is adopted; anything older is dropped on arrival.
Continuous time-scrub input is thresholded and debounced so a slider drag
produces one request for its final position. Planning and waypoint insertion
follow the same rule through a plan generation: a plan or stop that resolves
after a newer route was adopted is dropped.
"""
from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime, timedelta
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence, Set, Tuple

import pytz

from tripcast.errors import StaleResultDiscarded
from tripcast.models import Place, RoutePlanParams, RouteStep
from tripcast.planner import RoutePlanner
from tripcast.waypoints import WaypointInserter, merge_step

DEBOUNCE_SECONDS = float(os.environ.get("TRIPCAST_DEBOUNCE_SECONDS", "0.15"))
SCRUB_THRESHOLD_HOURS = float(os.environ.get("TRIPCAST_SCRUB_THRESHOLD_HOURS", "0.25"))
MAX_SCRUB_HOURS = 36.0

Enricher = Callable[[Sequence[RouteStep], datetime], Awaitable[List[RouteStep]]]
Listener = Callable[[List[RouteStep]], Awaitable[None]]

log = logging.getLogger(__name__)


class CoordinatorState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"


class RefreshCoordinator:
    def __init__(
        self,
        enrich: Enricher,
        departure: Optional[datetime] = None,
        on_update: Optional[Listener] = None,
        inserter: Optional[WaypointInserter] = None,
        debounce_s: float = DEBOUNCE_SECONDS,
        scrub_threshold_h: float = SCRUB_THRESHOLD_HOURS,
        max_scrub_h: float = MAX_SCRUB_HOURS,
    ):
        self._enrich = enrich
        self._on_update = on_update
        self._inserter = inserter
        self.debounce_s = debounce_s
        self.scrub_threshold_h = scrub_threshold_h
        self.max_scrub_h = max_scrub_h

        self._base = _aware(departure) if departure else datetime.now(pytz.UTC)
        self._offset = 0.0
        self._issued_offset = 0.0

        self._planned: Tuple[RouteStep, ...] = ()   # structure to enrich
        self._route: Tuple[RouteStep, ...] = ()     # last adopted result
        self._plan_gen = 0
        self._seq = 0
        self._pending: Optional[int] = None
        self._debounce: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()

    # ---------- read side ----------
    @property
    def route(self) -> Tuple[RouteStep, ...]:
        return self._route

    @property
    def departure(self) -> datetime:
        return self._base + timedelta(hours=self._offset)

    @property
    def offset_hours(self) -> float:
        return self._offset

    @property
    def state(self) -> CoordinatorState:
        return CoordinatorState.PENDING if self._pending is not None else CoordinatorState.IDLE

    @property
    def pending_request(self) -> Optional[int]:
        return self._pending

    # ---------- discrete changes ----------
    async def load(self, steps: Sequence[RouteStep], departure: Optional[datetime] = None) -> Tuple[RouteStep, ...]:
        """Adopt a freshly planned route (and optionally a new departure time)."""
        self._plan_gen += 1
        self._planned = tuple(steps)
        if departure is not None:
            self._reset_departure(departure)
        return await self._discrete()

    async def plan(
        self, planner: RoutePlanner, params: RoutePlanParams, departure: Optional[datetime] = None
    ) -> Tuple[RouteStep, ...]:
        """Plan a route and load it unless a newer route was started meanwhile."""
        self._plan_gen += 1
        gen = self._plan_gen
        steps = await planner.plan_params(params)
        if gen != self._plan_gen:
            log.debug("dropping plan %s -> %s: %s", params.origin.short_name,
                      params.destination.short_name, StaleResultDiscarded(gen, self._plan_gen))
            return self._route
        return await self.load(steps, departure)

    async def set_departure(self, departure: datetime) -> Tuple[RouteStep, ...]:
        self._reset_departure(departure)
        return await self._discrete()

    async def insert_waypoint(self, place: Place) -> Tuple[RouteStep, ...]:
        if self._inserter is None:
            raise RuntimeError("coordinator has no waypoint inserter")
        if not self._planned:
            raise RuntimeError("no route loaded")
        gen = self._plan_gen
        step = await self._inserter.waypoint_step(self._planned[0].place, place)
        if gen != self._plan_gen:
            log.debug("dropping stop %s: %s", place.short_name, StaleResultDiscarded(gen, self._plan_gen))
            return self._route
        self._planned = tuple(merge_step(self._planned, step))
        return await self._discrete()

    def _reset_departure(self, departure: datetime) -> None:
        self._base = _aware(departure)
        self._offset = 0.0

    async def _discrete(self) -> Tuple[RouteStep, ...]:
        self._cancel_debounce()
        task = self._issue()
        if task is not None:
            await task
        return self._route

    # ---------- continuous changes ----------
    def scrub(self, offset_hours: float) -> bool:
        """Move the departure by `offset_hours` from the base time.

        Returns True when a refresh was scheduled.
        """
        self._offset = max(-self.max_scrub_h, min(self.max_scrub_h, float(offset_hours)))
        self._cancel_debounce()
        if not self._planned:
            return False
        if abs(self._offset - self._issued_offset) < self.scrub_threshold_h:
            return False
        self._debounce = asyncio.create_task(self._fire_after_debounce())
        return True

    async def _fire_after_debounce(self) -> None:
        await asyncio.sleep(self.debounce_s)
        self._debounce = None
        self._issue()

    def _cancel_debounce(self) -> None:
        if self._debounce is not None:
            self._debounce.cancel()
            self._debounce = None

    # ---------- requests ----------
    def _issue(self) -> Optional[asyncio.Task]:
        if not self._planned:
            return None
        self._seq += 1
        seq = self._seq
        self._pending = seq
        self._issued_offset = self._offset
        log.debug("enrichment #%d at %s", seq, self.departure.isoformat())
        task = asyncio.create_task(self._run(seq, self._planned, self.departure))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _run(self, seq: int, steps: Tuple[RouteStep, ...], departure: datetime) -> None:
        try:
            result = await self._enrich(steps, departure)
        except Exception:
            log.exception("enrichment #%d failed", seq)
            if seq == self._seq:
                self._pending = None
            return
        try:
            self._apply(seq, result)
        except StaleResultDiscarded as e:
            log.debug("dropping stale enrichment: %s", e)
            return
        if self._on_update is not None:
            try:
                await self._on_update(list(self._route))
            except Exception:
                log.exception("route listener failed for #%d", seq)

    def _apply(self, seq: int, result: Sequence[RouteStep]) -> None:
        if seq != self._seq:
            raise StaleResultDiscarded(seq, self._seq)
        self._route = tuple(result)
        self._pending = None

    async def wait_idle(self) -> None:
        """Wait until no debounce timer or enrichment is outstanding."""
        while self._debounce is not None or self._inflight:
            if self._debounce is not None:
                try:
                    await self._debounce
                except asyncio.CancelledError:
                    pass
            if self._inflight:
                await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def close(self) -> None:
        self._cancel_debounce()
        for task in list(self._inflight):
            task.cancel()
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else pytz.UTC.localize(dt)
