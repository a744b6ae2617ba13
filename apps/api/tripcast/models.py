from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------- Places ----------
class Coordinates(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)

class Place(BaseModel):
    """A named location; produced only by geocoding or reverse geocoding."""
    model_config = ConfigDict(extra="forbid", frozen=True)
    short_name: str
    display_name: str
    coordinates: Coordinates

# ---------- Alerts ----------
class Severity(str, Enum):
    EXTREME = "Extreme"
    SEVERE = "Severe"
    MODERATE = "Moderate"
    MINOR = "Minor"
    UNKNOWN = "Unknown"

    @property
    def rank(self) -> int:
        return list(Severity).index(self)

    @classmethod
    def parse(cls, value: Optional[str]) -> "Severity":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN

class Alert(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)
    id: str
    event_name: str
    severity: Severity = Severity.UNKNOWN
    urgency: str = "Unknown"
    headline: str = ""
    description: str = ""
    instruction: str = ""
    expires_at: datetime

    def is_relevant_at(self, when: datetime) -> bool:
        return self.expires_at > when

# ---------- Weather ----------
class PrecipitationChance(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)
    offset_hours: int  # relative to arrival; negative = before
    rain_probability: int = Field(..., ge=0, le=100)
    snow_probability: int = Field(..., ge=0, le=100)

class Accumulation(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)
    window_hours: int
    rain_mm: float
    snow_cm: float

class WeatherSnapshot(BaseModel):
    """Multi-horizon weather profile for one step, metric units throughout."""
    model_config = ConfigDict(extra="forbid", frozen=True)
    temperature_c: float
    weather_code: int
    condition: str
    description: str
    wind_speed_kmh: float
    elevation_m: float
    rain_probability: int
    snow_probability: int
    earlier: List[PrecipitationChance] = []
    later: List[PrecipitationChance] = []
    accumulations: List[Accumulation] = []

    def accumulation(self, window_hours: int) -> Optional[Accumulation]:
        for acc in self.accumulations:
            if acc.window_hours == window_hours:
                return acc
        return None

    def chance_at(self, offset_hours: int) -> Optional[PrecipitationChance]:
        for c in [*self.earlier, *self.later]:
            if c.offset_hours == offset_hours:
                return c
        return None

# ---------- Route ----------
class RouteStep(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)
    place: Place
    time_offset_hours: float = Field(..., ge=0)
    arrival_time: Optional[datetime] = None
    weather: Optional[WeatherSnapshot] = None
    alerts: Optional[List[Alert]] = None
    is_manual_waypoint: bool = False

    def relevant_alerts(self) -> List[Alert]:
        # re-evaluated on every call; arrival time moves with the departure time
        if not self.alerts:
            return []
        if self.arrival_time is None:
            return list(self.alerts)
        return [a for a in self.alerts if a.is_relevant_at(self.arrival_time)]

class RoutePlanParams(BaseModel):
    model_config = ConfigDict(extra="forbid")
    origin: Place
    destination: Place
    sample_interval_minutes: int = Field(default=120, ge=15, le=480)

    @property
    def sample_interval_hours(self) -> float:
        return self.sample_interval_minutes / 60.0
