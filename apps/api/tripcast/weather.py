from __future__ import annotations

import os
import math
import asyncio
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import pytz

from tripcast.errors import AlertsUnavailable, ForecastUnavailable
from tripcast.models import (
    Accumulation,
    Alert,
    Coordinates,
    PrecipitationChance,
    RouteStep,
    WeatherSnapshot,
)
from tripcast.providers import AlertsProvider, ForecastBundle, ForecastProvider

SNOW_TEMP_THRESHOLD_C = float(os.environ.get("TRIPCAST_SNOW_TEMP_THRESHOLD_C", "2.0"))
TIMEOUT_SECONDS = float(os.environ.get("TRIPCAST_PROVIDER_TIMEOUT_SECONDS", "20"))
ENRICH_CONCURRENCY = int(os.environ.get("TRIPCAST_ENRICH_CONCURRENCY", "8"))

EARLIER_OFFSETS = (-4, -8, -12)
LATER_OFFSETS = (4, 8, 12)
ACCUMULATION_WINDOWS = (1, 2, 4, 12)

log = logging.getLogger(__name__)

# ---------- WMO weather codes ----------
WEATHER_DESCRIPTIONS = {
    0: "Clear sky",
    1: "Mainly clear",
    2: "Partly cloudy",
    3: "Overcast",
    45: "Fog",
    48: "Depositing rime fog",
    51: "Light drizzle",
    53: "Moderate drizzle",
    55: "Dense drizzle",
    56: "Light freezing drizzle",
    57: "Dense freezing drizzle",
    61: "Slight rain",
    63: "Moderate rain",
    65: "Heavy rain",
    66: "Light freezing rain",
    67: "Heavy freezing rain",
    71: "Slight snow",
    73: "Moderate snow",
    75: "Heavy snow",
    77: "Snow grains",
    80: "Slight rain showers",
    81: "Moderate rain showers",
    82: "Violent rain showers",
    85: "Slight snow showers",
    86: "Heavy snow showers",
    95: "Thunderstorm",
    96: "Thunderstorm with slight hail",
    99: "Thunderstorm with heavy hail",
}

# inclusive code ranges, first match wins
_CONDITIONS = [
    (0, 0, "clear"),
    (1, 2, "partly-cloudy"),
    (3, 3, "cloudy"),
    (45, 48, "fog"),
    (51, 55, "drizzle"),
    (56, 67, "rain"),
    (71, 77, "snow"),
    (80, 82, "rain"),
    (85, 86, "snow"),
    (95, 99, "thunderstorm"),
]

def weather_condition(code: int) -> str:
    for lo, hi, name in _CONDITIONS:
        if lo <= code <= hi:
            return name
    return "cloudy"

def weather_description(code: int) -> str:
    return WEATHER_DESCRIPTIONS.get(code, "Unknown")

# ---------- Precipitation ----------
def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))

def split_precipitation(
    precip_prob: float,
    rain_mm: float,
    snow_cm: float,
    temp_c: float,
    snow_threshold_c: float = SNOW_TEMP_THRESHOLD_C,
) -> Tuple[int, int]:
    """Attribute a precipitation probability to (rain, snow).

    With both amounts forecast the probability is split by amount. With no
    amounts yet (long lead times) the air temperature decides.
    """
    if not precip_prob or not precip_prob > 0:
        return 0, 0
    p = float(precip_prob)
    if snow_cm > 0 and rain_mm == 0:
        return 0, _round_half_up(p)
    if rain_mm > 0 and snow_cm == 0:
        return _round_half_up(p), 0
    if rain_mm > 0 and snow_cm > 0:
        total = rain_mm + snow_cm
        return _round_half_up(p * rain_mm / total), _round_half_up(p * snow_cm / total)
    if temp_c <= snow_threshold_c:
        return 0, _round_half_up(p)
    return _round_half_up(p), 0

def locate_hour(index: pd.DatetimeIndex, when: datetime) -> Optional[int]:
    """Position of the first hourly timestamp at or after `when` truncated to the hour."""
    target = pd.Timestamp(when)
    if target.tzinfo is None:
        target = target.tz_localize(pytz.UTC)
    if index.tz is not None:
        target = target.tz_convert(index.tz)
    target = target.floor("h")
    pos = int(index.searchsorted(target, side="left"))
    if pos >= len(index):
        return None
    return pos

def _row_chance(df: pd.DataFrame, pos: int, snow_threshold_c: float) -> Tuple[int, int]:
    if pos < 0 or pos >= len(df):
        return 0, 0
    row = df.iloc[pos]
    temp = row["temp_c"]
    return split_precipitation(
        row["precip_prob"],
        row["rain_mm"],
        row["snow_cm"],
        temp if not np.isnan(temp) else math.inf,
        snow_threshold_c,
    )

def accumulate(df: pd.DataFrame, pos: int, window_hours: int) -> Accumulation:
    lo = max(0, pos - window_hours)
    win = df.iloc[lo:pos]
    return Accumulation(
        window_hours=window_hours,
        rain_mm=round(float(win["rain_mm"].sum()), 1),
        snow_cm=round(float(win["snow_cm"].sum()), 1),
    )

def build_snapshot(
    bundle: ForecastBundle,
    arrival: datetime,
    snow_threshold_c: float = SNOW_TEMP_THRESHOLD_C,
) -> WeatherSnapshot:
    df = bundle.df_hourly
    pos = locate_hour(df.index, arrival)
    if pos is None:
        raise ForecastUnavailable(f"arrival {arrival.isoformat()} is beyond the forecast horizon")

    row = df.iloc[pos]
    if np.isnan(row["temp_c"]) or np.isnan(row["weather_code"]):
        raise ForecastUnavailable(f"forecast has no value for {df.index[pos]}")

    code = int(row["weather_code"])
    rain_p, snow_p = _row_chance(df, pos, snow_threshold_c)

    def chances(offsets: Sequence[int]) -> List[PrecipitationChance]:
        out = []
        for off in offsets:
            r, s = _row_chance(df, pos + off, snow_threshold_c)
            out.append(PrecipitationChance(offset_hours=off, rain_probability=r, snow_probability=s))
        return out

    wind = row["wind_kmh"]
    return WeatherSnapshot(
        temperature_c=float(row["temp_c"]),
        weather_code=code,
        condition=weather_condition(code),
        description=weather_description(code),
        wind_speed_kmh=float(wind) if not np.isnan(wind) else 0.0,
        elevation_m=bundle.elevation_m,
        rain_probability=rain_p,
        snow_probability=snow_p,
        earlier=chances(EARLIER_OFFSETS),
        later=chances(LATER_OFFSETS),
        accumulations=[accumulate(df, pos, w) for w in ACCUMULATION_WINDOWS],
    )

# ---------- Attributor ----------
def arrival_time(departure: datetime, offset_hours: float) -> datetime:
    if departure.tzinfo is None:
        departure = pytz.UTC.localize(departure)
    return departure + timedelta(hours=offset_hours)

class WeatherAttributor:
    """Attach a weather snapshot and active alerts to every step of a route."""

    def __init__(
        self,
        forecast: ForecastProvider,
        alerts: AlertsProvider,
        timeout_s: float = TIMEOUT_SECONDS,
        concurrency: int = ENRICH_CONCURRENCY,
        snow_threshold_c: float = SNOW_TEMP_THRESHOLD_C,
    ):
        self.forecast = forecast
        self.alerts = alerts
        self.timeout_s = timeout_s
        self.concurrency = max(1, concurrency)
        self.snow_threshold_c = snow_threshold_c

    async def weather_for(self, at: Coordinates, arrival: datetime) -> WeatherSnapshot:
        try:
            bundle = await asyncio.wait_for(self.forecast.fetch(at), self.timeout_s)
        except ForecastUnavailable:
            raise
        except Exception as e:
            raise ForecastUnavailable(f"forecast fetch failed: {e!r}") from e
        return build_snapshot(bundle, arrival, self.snow_threshold_c)

    async def alerts_for(self, at: Coordinates) -> List[Alert]:
        try:
            return await asyncio.wait_for(self.alerts.active(at), self.timeout_s)
        except AlertsUnavailable:
            raise
        except Exception as e:
            raise AlertsUnavailable(f"alerts fetch failed: {e!r}") from e

    async def _weather_or_none(self, step: RouteStep, arrival: datetime) -> Optional[WeatherSnapshot]:
        c = step.place.coordinates
        try:
            return await self.weather_for(c, arrival)
        except ForecastUnavailable as e:
            log.warning("no weather for %s (%.4f,%.4f): %s", step.place.short_name, c.lat, c.lng, e)
            return None

    async def _alerts_or_none(self, step: RouteStep) -> Optional[List[Alert]]:
        c = step.place.coordinates
        try:
            return await self.alerts_for(c)
        except AlertsUnavailable as e:
            log.warning("no alerts for %s (%.4f,%.4f): %s", step.place.short_name, c.lat, c.lng, e)
            return None

    async def enrich_step(self, step: RouteStep, departure: datetime) -> RouteStep:
        arrival = arrival_time(departure, step.time_offset_hours)
        weather, alerts = await asyncio.gather(
            self._weather_or_none(step, arrival),
            self._alerts_or_none(step),
        )
        return step.model_copy(update={"arrival_time": arrival, "weather": weather, "alerts": alerts})

    async def enrich(self, steps: Sequence[RouteStep], departure: datetime) -> List[RouteStep]:
        """Enrich every step concurrently; the result keeps the input order."""
        sem = asyncio.Semaphore(self.concurrency)

        async def one(step: RouteStep) -> RouteStep:
            async with sem:
                return await self.enrich_step(step, departure)

        enriched = await asyncio.gather(*(one(s) for s in steps))
        missing = sum(1 for s in enriched if s.weather is None)
        if missing:
            log.info("enriched %d steps, %d without weather", len(enriched), missing)
        return list(enriched)
