from __future__ import annotations

from typing import Sequence, Tuple

import numpy as np

EARTH_RADIUS_KM = 6371.0

LngLat = Tuple[float, float]  # GeoJSON order

def haversine_km(lat1, lng1, lat2, lng2):
    """Great-circle distance on a spherical earth; accepts scalars or numpy arrays."""
    phi1 = np.radians(lat1)
    phi2 = np.radians(lat2)
    d_phi = np.radians(np.asarray(lat2) - np.asarray(lat1))
    d_lambda = np.radians(np.asarray(lng2) - np.asarray(lng1))
    a = np.sin(d_phi / 2.0) ** 2 + np.cos(phi1) * np.cos(phi2) * np.sin(d_lambda / 2.0) ** 2
    c = 2.0 * np.arctan2(np.sqrt(a), np.sqrt(1.0 - a))
    return EARTH_RADIUS_KM * c

def cumulative_distances_km(path: Sequence[LngLat]) -> np.ndarray:
    """Running great-circle distance at each vertex; first entry is 0."""
    pts = np.asarray(path, dtype=float).reshape(-1, 2)
    if pts.shape[0] < 2:
        return np.zeros(pts.shape[0])
    seg = haversine_km(pts[:-1, 1], pts[:-1, 0], pts[1:, 1], pts[1:, 0])
    return np.concatenate([[0.0], np.cumsum(seg)])

def interpolate_along(path: Sequence[LngLat], fraction: float) -> LngLat:
    """Point at `fraction` of the path's great-circle length.

    The fraction is clamped to [0, 1]. Within a segment the position is a
    straight line in lng/lat space, which is close enough for the short
    segments between polyline vertices.
    """
    if not path:
        raise ValueError("path must contain at least one vertex")
    first = (float(path[0][0]), float(path[0][1]))
    last = (float(path[-1][0]), float(path[-1][1]))
    if fraction <= 0:
        return first
    if fraction >= 1:
        return last

    cum = cumulative_distances_km(path)
    total = float(cum[-1]) if cum.size else 0.0
    if total <= 0.0:
        return first

    target = total * fraction
    # first vertex whose cumulative distance reaches the target
    i = int(np.searchsorted(cum, target, side="left"))
    if i <= 0:
        return first
    if i >= len(cum):
        return last

    seg_start = cum[i - 1]
    seg_len = cum[i] - seg_start
    t = (target - seg_start) / seg_len if seg_len > 0 else 0.0

    x0, y0 = path[i - 1]
    x1, y1 = path[i]
    return (float(x0 + (x1 - x0) * t), float(y0 + (y1 - y0) * t))
