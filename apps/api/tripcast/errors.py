from __future__ import annotations


class TripcastError(Exception):
    """Base class for every error raised by the route pipeline."""


class RouteUnavailable(TripcastError):
    """No drivable path exists between the requested places."""


class ResolutionSkipped(TripcastError):
    """A sampled route point could not be resolved to a named place."""


class ForecastUnavailable(TripcastError):
    """The forecast for one step could not be fetched or does not reach its arrival time."""


class AlertsUnavailable(TripcastError):
    """Active alerts for one step could not be fetched."""


class StaleResultDiscarded(TripcastError):
    """A result arrived after a newer request superseded it."""

    def __init__(self, seq: int, newest: int):
        super().__init__(f"result #{seq} superseded by request #{newest}")
        self.seq = seq
        self.newest = newest
