from __future__ import annotations

import os
import logging
from typing import Optional, Dict, Any

import httpx
import pandas as pd
import pytz

from tripcast import cache
from tripcast.errors import ForecastUnavailable
from tripcast.models import Coordinates
from tripcast.providers import FORECAST_COLUMNS, ForecastBundle, ForecastProvider

OPEN_METEO_URL = "https://api.open-meteo.com/v1/forecast"
FORECAST_DAYS = 16
TIMEOUT_SECONDS = float(os.environ.get("TRIPCAST_PROVIDER_TIMEOUT_SECONDS", "20"))

# Open-Meteo variable -> internal column
HOURLY_VARIABLES = {
    "temperature_2m": "temp_c",
    "weather_code": "weather_code",
    "precipitation_probability": "precip_prob",
    "rain": "rain_mm",
    "snowfall": "snow_cm",
    "wind_speed_10m": "wind_kmh",
}

log = logging.getLogger(__name__)


def parse_hourly(payload: Dict[str, Any]) -> ForecastBundle:
    """Turn an Open-Meteo forecast response into an hourly UTC frame."""
    hourly = payload.get("hourly") or {}
    times = hourly.get("time") or []
    if not times:
        raise ForecastUnavailable("Open-Meteo response has no hourly series")

    idx = pd.DatetimeIndex(pd.to_datetime(times))
    if idx.tz is None:
        idx = idx.tz_localize(pytz.UTC)
    else:
        idx = idx.tz_convert(pytz.UTC)

    df = pd.DataFrame(index=idx)
    for src, col in HOURLY_VARIABLES.items():
        values = hourly.get(src)
        if values is None or len(values) != len(idx):
            raise ForecastUnavailable(f"Open-Meteo response missing hourly {src}")
        df[col] = pd.to_numeric(pd.Series(values, index=idx), errors="coerce")

    # Amount-type columns missing for a given hour mean "nothing forecast".
    df[["precip_prob", "rain_mm", "snow_cm"]] = df[["precip_prob", "rain_mm", "snow_cm"]].fillna(0.0)
    df = df[FORECAST_COLUMNS].sort_index()

    meta = {
        "provider": "Open-Meteo",
        "n_hours": int(df.shape[0]),
        "latitude": payload.get("latitude"),
        "longitude": payload.get("longitude"),
    }
    return ForecastBundle(df_hourly=df, elevation_m=float(payload.get("elevation") or 0.0), meta=meta)


class OpenMeteoForecast(ForecastProvider):
    name = "open-meteo"

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport

    async def fetch(self, at: Coordinates) -> ForecastBundle:
        cache_key = cache.point_key("forecast:v1", at)
        cached = cache.load(cache_key)
        if cached:
            return parse_hourly(cached)

        params = {
            "latitude": f"{at.lat:.4f}",
            "longitude": f"{at.lng:.4f}",
            "hourly": ",".join(HOURLY_VARIABLES),
            "forecast_days": str(FORECAST_DAYS),
            "timezone": "GMT",
        }
        async with httpx.AsyncClient(timeout=TIMEOUT_SECONDS, transport=self._transport) as client:
            r = await client.get(OPEN_METEO_URL, params=params)
        if r.status_code != 200:
            raise ForecastUnavailable(f"Open-Meteo forecast failed: {r.status_code} {r.text[:200]}")
        payload = r.json()
        bundle = parse_hourly(payload)
        cache.store(cache_key, payload)
        return bundle
