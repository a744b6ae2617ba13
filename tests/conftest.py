from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
import pytest
import pytz

from tripcast.models import Alert, Coordinates, Place, RouteStep
from tripcast.providers import (
    AlertsProvider,
    DirectionsProvider,
    DirectionsResult,
    ForecastBundle,
    ForecastProvider,
    ReverseGeocoder,
)

T0 = pytz.UTC.localize(datetime(2026, 10, 19, 0, 0))


def place(name: str, lat: float = 40.0, lng: float = -100.0) -> Place:
    return Place(short_name=name, display_name=f"{name}, Somewhere", coordinates=Coordinates(lat=lat, lng=lng))


def hourly_frame(hours: int = 16 * 24, start: datetime = T0, **columns) -> pd.DataFrame:
    idx = pd.date_range(start, periods=hours, freq="h")
    base = {
        "temp_c": np.full(hours, 10.0),
        "weather_code": np.zeros(hours),
        "precip_prob": np.zeros(hours),
        "rain_mm": np.zeros(hours),
        "snow_cm": np.zeros(hours),
        "wind_kmh": np.full(hours, 12.0),
    }
    for name, values in columns.items():
        base[name] = np.asarray(values, dtype=float)
    return pd.DataFrame(base, index=idx)


class FakeDirections(DirectionsProvider):
    name = "fake-directions"

    def __init__(self, result: Optional[DirectionsResult] = None, by_end: Optional[Dict[Tuple[float, float], DirectionsResult]] = None):
        self.result = result
        self.by_end = by_end or {}
        self.calls: List[Tuple[Coordinates, Coordinates]] = []

    async def route(self, start, end):
        self.calls.append((start, end))
        return self.by_end.get((end.lat, end.lng), self.result)


class FakeGeocoder(ReverseGeocoder):
    name = "fake-geocoder"

    def __init__(self, resolve):
        self.resolve = resolve
        self.calls: List[Coordinates] = []

    async def reverse(self, at):
        self.calls.append(at)
        result = self.resolve(at)
        if isinstance(result, Exception):
            raise result
        return result


class FakeForecast(ForecastProvider):
    name = "fake-forecast"

    def __init__(self, frame: pd.DataFrame | None = None, elevation_m: float = 250.0, fail_for: Tuple[str, ...] = (), delay: float = 0.0):
        self.frame = frame if frame is not None else hourly_frame()
        self.elevation_m = elevation_m
        self.fail_for = fail_for
        self.delay = delay
        self.calls: List[Coordinates] = []

    async def fetch(self, at):
        self.calls.append(at)
        if self.delay:
            await asyncio.sleep(self.delay)
        if (at.lat, at.lng) in self.fail_for:
            raise RuntimeError("forecast backend down")
        return ForecastBundle(df_hourly=self.frame, elevation_m=self.elevation_m)


class FakeAlerts(AlertsProvider):
    name = "fake-alerts"

    def __init__(self, alerts: Optional[List[Alert]] = None, fail: bool = False):
        self.alerts = alerts or []
        self.fail = fail
        self.calls: List[Coordinates] = []

    async def active(self, at):
        self.calls.append(at)
        if self.fail:
            raise RuntimeError("alerts backend down")
        return list(self.alerts)


@pytest.fixture
def three_steps() -> List[RouteStep]:
    return [
        RouteStep(place=place("Denver", 39.74, -104.99), time_offset_hours=0.0),
        RouteStep(place=place("Limon", 39.26, -103.69), time_offset_hours=1.5),
        RouteStep(place=place("Goodland", 39.35, -101.71), time_offset_hours=3.0),
    ]
