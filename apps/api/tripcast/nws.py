"""Active hazard alerts from NOAA/NWS api.weather.gov.

The NWS only publishes alerts for US territory, so points outside a handful
of coarse bounding boxes are answered locally with an empty list.
"""
from __future__ import annotations

import os
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Dict, Any

import httpx
import pytz
from dateutil import parser as dtparse

from tripcast.errors import AlertsUnavailable
from tripcast.models import Alert, Coordinates, Severity
from tripcast.providers import AlertsProvider

NWS_ALERTS_URL = "https://api.weather.gov/alerts/active"
USER_AGENT = os.environ.get("TRIPCAST_NWS_USER_AGENT", "(tripcast, contact@example.com)")
TIMEOUT_SECONDS = float(os.environ.get("TRIPCAST_PROVIDER_TIMEOUT_SECONDS", "20"))

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class BoundingBox:
    name: str
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def contains(self, lat: float, lng: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lng <= lng <= self.max_lng


COVERAGE = [
    BoundingBox("conus", 24.0, 49.0, -125.0, -66.0),
    BoundingBox("alaska", 51.0, 72.0, -180.0, -130.0),
    BoundingBox("hawaii", 18.0, 23.0, -161.0, -154.0),
]


def in_coverage(lat: float, lng: float, boxes: List[BoundingBox] = COVERAGE) -> bool:
    return any(b.contains(lat, lng) for b in boxes)


def _utcnow() -> datetime:
    return datetime.now(pytz.UTC)


def parse_alerts(payload: Dict[str, Any], now: datetime) -> List[Alert]:
    """Map GeoJSON alert features, drop expired ones, most severe first."""
    out: List[Alert] = []
    for feat in payload.get("features") or []:
        props = feat.get("properties") or {}
        expires = props.get("expires") or props.get("ends")
        if not expires:
            continue
        try:
            expires_at = dtparse.isoparse(expires)
        except ValueError:
            log.debug("skipping alert %s with bad expiry %r", feat.get("id"), expires)
            continue
        if expires_at.tzinfo is None:
            expires_at = pytz.UTC.localize(expires_at)
        if expires_at <= now:
            continue
        out.append(Alert(
            id=str(feat.get("id") or props.get("id") or ""),
            event_name=props.get("event") or "Weather Alert",
            severity=Severity.parse(props.get("severity")),
            urgency=props.get("urgency") or "Unknown",
            headline=props.get("headline") or "",
            description=props.get("description") or "",
            instruction=props.get("instruction") or "",
            expires_at=expires_at,
        ))
    # stable: equal severities keep feed order
    out.sort(key=lambda a: a.severity.rank)
    return out


class NWSAlerts(AlertsProvider):
    name = "nws-alerts"

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._transport = transport
        self._clock = clock

    async def active(self, at: Coordinates) -> List[Alert]:
        if not in_coverage(at.lat, at.lng):
            return []

        headers = {"User-Agent": USER_AGENT, "Accept": "application/geo+json"}
        params = {"point": f"{at.lat:.4f},{at.lng:.4f}"}
        async with httpx.AsyncClient(timeout=TIMEOUT_SECONDS, headers=headers, transport=self._transport) as client:
            r = await client.get(NWS_ALERTS_URL, params=params)
        if r.status_code != 200:
            raise AlertsUnavailable(f"NWS alerts failed: {r.status_code} {r.text[:200]}")
        return parse_alerts(r.json(), now=self._clock())
