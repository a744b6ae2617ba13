from __future__ import annotations

import os
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Literal, Set

import pytz
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from fastapi import Depends, FastAPI, HTTPException, Header, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, ConfigDict, ValidationError

from tripcast import auth, logging_config
from tripcast.coordinator import RefreshCoordinator
from tripcast.errors import RouteUnavailable
from tripcast.mapbox import MapboxDirections, MapboxReverseGeocoder
from tripcast.models import Place, RoutePlanParams, RouteStep
from tripcast.nws import NWSAlerts
from tripcast.open_meteo import OpenMeteoForecast
from tripcast.planner import RoutePlanner, format_total_time
from tripcast.waypoints import WaypointInserter
from tripcast.weather import WeatherAttributor

APP_NAME = "Tripcast API"

logging_config.configure()
log = logging.getLogger(__name__)

app = FastAPI(title=APP_NAME, version="0.4.0")

# Rate limiting (in-memory by default; use REDIS by setting TRIPCAST_REDIS_URL)
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[os.environ.get("TRIPCAST_RATE_LIMIT", "60/minute")],
    storage_uri=os.environ.get("TRIPCAST_REDIS_URL") or "memory://",
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

cors = os.environ.get("TRIPCAST_CORS_ORIGINS")
origins = [o.strip() for o in cors.split(",")] if cors else ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------- Services ----------
@dataclass
class Services:
    planner: RoutePlanner
    attributor: WeatherAttributor
    inserter: WaypointInserter

_services: Services | None = None

def get_services() -> Services:
    global _services
    if _services is None:
        planner = RoutePlanner(MapboxDirections(), MapboxReverseGeocoder())
        _services = Services(
            planner=planner,
            attributor=WeatherAttributor(OpenMeteoForecast(), NWSAlerts()),
            inserter=WaypointInserter(planner),
        )
    return _services

# ---------- Models ----------
class RouteRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    origin: Place
    destination: Place
    sample_interval_minutes: int = Field(default=120, ge=15, le=480)
    departure_time: Optional[datetime] = None

class EnrichRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    steps: List[RouteStep] = Field(..., min_length=1)
    departure_time: datetime

class WaypointRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    steps: List[RouteStep] = Field(..., min_length=1)
    origin: Place
    place: Place
    departure_time: datetime

class RouteResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")
    departure_time: datetime
    total_time: str
    steps: List[RouteStep]

# live session messages
class LiveRoute(BaseModel):
    type: Literal["route"]
    origin: Place
    destination: Place
    sample_interval_minutes: int = Field(default=120, ge=15, le=480)
    departure_time: Optional[datetime] = None

class LiveDeparture(BaseModel):
    type: Literal["departure"]
    departure_time: datetime

class LiveScrub(BaseModel):
    type: Literal["scrub"]
    offset_hours: float

class LiveWaypoint(BaseModel):
    type: Literal["waypoint"]
    place: Place

LIVE_MESSAGES = {"route": LiveRoute, "departure": LiveDeparture, "scrub": LiveScrub, "waypoint": LiveWaypoint}

# ---------- Helpers ----------
def _departure(dt: Optional[datetime]) -> datetime:
    if dt is None:
        return datetime.now(pytz.UTC)
    return dt if dt.tzinfo is not None else pytz.UTC.localize(dt)

def _response(steps: List[RouteStep], departure: datetime) -> RouteResponse:
    return RouteResponse(
        departure_time=departure,
        total_time=format_total_time(steps[-1].time_offset_hours) if steps else "0 min",
        steps=steps,
    )

# ---------- Endpoints ----------
@app.get("/health")
def health():
    return {"ok": True, "name": APP_NAME, "version": app.version}

@app.post("/v1/route", response_model=RouteResponse)
@limiter.limit(os.environ.get("TRIPCAST_RATE_LIMIT_ROUTE", "30/minute"))
async def plan_route(
    request: Request,
    req: RouteRequest,
    services: Services = Depends(get_services),
    principal: auth.Principal = Depends(auth.require_principal),
):
    log.info("route %s -> %s for %s", req.origin.short_name, req.destination.short_name, principal.sub)
    params = RoutePlanParams(
        origin=req.origin, destination=req.destination, sample_interval_minutes=req.sample_interval_minutes
    )
    try:
        steps = await services.planner.plan_params(params)
    except RouteUnavailable as e:
        log.info("route unavailable: %s", e)
        raise HTTPException(status_code=404, detail=str(e))

    departure = _departure(req.departure_time)
    enriched = await services.attributor.enrich(steps, departure)
    return _response(enriched, departure)

@app.post("/v1/route/enrich", response_model=RouteResponse)
@limiter.limit(os.environ.get("TRIPCAST_RATE_LIMIT_ENRICH", "60/minute"))
async def enrich_route(
    request: Request,
    req: EnrichRequest,
    services: Services = Depends(get_services),
    principal: auth.Principal = Depends(auth.require_principal),
):
    departure = _departure(req.departure_time)
    enriched = await services.attributor.enrich(req.steps, departure)
    return _response(enriched, departure)

@app.post("/v1/route/waypoints", response_model=RouteResponse)
@limiter.limit(os.environ.get("TRIPCAST_RATE_LIMIT_ROUTE", "30/minute"))
async def add_waypoint(
    request: Request,
    req: WaypointRequest,
    services: Services = Depends(get_services),
    principal: auth.Principal = Depends(auth.require_principal),
):
    try:
        steps = await services.inserter.insert(req.steps, req.origin, req.place)
    except RouteUnavailable as e:
        log.info("waypoint unreachable: %s", e)
        raise HTTPException(status_code=404, detail=str(e))
    departure = _departure(req.departure_time)
    enriched = await services.attributor.enrich(steps, departure)
    return _response(enriched, departure)

@app.websocket("/v1/route/live")
async def live_route(ws: WebSocket, services: Services = Depends(get_services)):
    try:
        auth.authenticate(ws.headers.get("x-api-key"), ws.headers.get("authorization"))
    except HTTPException:
        await ws.close(code=1008)
        return
    await ws.accept()

    async def push(steps: List[RouteStep]) -> None:
        await ws.send_json({
            "type": "route",
            "offset_hours": coordinator.offset_hours,
            "total_time": format_total_time(steps[-1].time_offset_hours) if steps else "0 min",
            "steps": [s.model_dump(mode="json") for s in steps],
        })

    coordinator = RefreshCoordinator(
        services.attributor.enrich, on_update=push, inserter=services.inserter
    )
    tasks: Set[asyncio.Task] = set()

    async def guarded(coro) -> None:
        try:
            await coro
        except RouteUnavailable as e:
            await ws.send_json({"type": "error", "status": 404, "detail": str(e)})
        except RuntimeError as e:
            await ws.send_json({"type": "error", "status": 409, "detail": str(e)})
        except Exception:
            log.exception("live session request failed")
            await ws.send_json({"type": "error", "status": 500, "detail": "internal error"})

    def spawn(coro) -> None:
        task = asyncio.create_task(guarded(coro))
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    async def plan_and_load(msg: LiveRoute) -> None:
        params = RoutePlanParams(
            origin=msg.origin, destination=msg.destination, sample_interval_minutes=msg.sample_interval_minutes
        )
        await coordinator.plan(services.planner, params, _departure(msg.departure_time))

    try:
        while True:
            raw = await ws.receive_json()
            model = LIVE_MESSAGES.get(raw.get("type") if isinstance(raw, dict) else None)
            if model is None:
                await ws.send_json({"type": "error", "status": 400, "detail": "unknown message type"})
                continue
            try:
                msg = model.model_validate(raw)
            except ValidationError as e:
                await ws.send_json({"type": "error", "status": 422, "detail": str(e)})
                continue

            if isinstance(msg, LiveScrub):
                coordinator.scrub(msg.offset_hours)
            elif isinstance(msg, LiveDeparture):
                spawn(coordinator.set_departure(_departure(msg.departure_time)))
            elif isinstance(msg, LiveWaypoint):
                spawn(coordinator.insert_waypoint(msg.place))
            else:
                spawn(plan_and_load(msg))
    except WebSocketDisconnect:
        log.debug("live session closed")
    finally:
        pending = list(tasks)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        await coordinator.close()

@app.post("/v1/token")
@limiter.limit("10/minute")
def issue_token(request: Request, sub: str, x_api_key: str | None = Header(default=None, alias="X-API-Key")):
    # For development / internal use. Protect by API key.
    if not auth.API_KEY or x_api_key != auth.API_KEY:
        raise HTTPException(status_code=401, detail="Unauthorized")
    try:
        return {"token": auth.mint_token(sub=sub)}
    except RuntimeError as e:
        raise HTTPException(status_code=503, detail=str(e))
