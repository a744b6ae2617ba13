from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Tuple
import pandas as pd

from tripcast.models import Alert, Coordinates, Place

FORECAST_COLUMNS = ["temp_c", "weather_code", "precip_prob", "rain_mm", "snow_cm", "wind_kmh"]

@dataclass
class DirectionsResult:
    path: List[Tuple[float, float]]   # (lng, lat) vertices
    duration_s: float
    distance_m: float

    @property
    def duration_hours(self) -> float:
        return self.duration_s / 3600.0

@dataclass
class ForecastBundle:
    df_hourly: pd.DataFrame   # index: UTC hourly timestamps; columns: FORECAST_COLUMNS
    elevation_m: float
    meta: Dict[str, Any] = field(default_factory=dict)

# Provider interfaces
class DirectionsProvider:
    name: str
    async def route(self, start: Coordinates, end: Coordinates) -> Optional[DirectionsResult]:
        """Driving route between two points, or None when no route exists."""
        raise NotImplementedError

class ReverseGeocoder:
    name: str
    async def reverse(self, at: Coordinates) -> Optional[Place]:
        """Nearest named place, or None when nothing was found."""
        raise NotImplementedError

class ForecastProvider:
    name: str
    async def fetch(self, at: Coordinates) -> ForecastBundle:
        raise NotImplementedError

class AlertsProvider:
    name: str
    async def active(self, at: Coordinates) -> List[Alert]:
        raise NotImplementedError

# NOTE:
# - Mapbox serves directions and reverse geocoding, Open-Meteo the 16-day
#   hourly forecast, NOAA/NWS api.weather.gov the active alerts.
# - Any of them can be swapped by implementing the matching interface above.
