import math

import pytest

from tripcast.geometry import cumulative_distances_km, haversine_km, interpolate_along

PATH = [(-104.99, 39.74), (-104.0, 39.5), (-103.0, 39.3), (-101.7, 39.35)]


def test_endpoints_are_exact():
    assert interpolate_along(PATH, 0.0) == PATH[0]
    assert interpolate_along(PATH, 1.0) == PATH[-1]


@pytest.mark.parametrize("f, expected", [(-0.5, PATH[0]), (-1e-9, PATH[0]), (1.0001, PATH[-1]), (7, PATH[-1])])
def test_fraction_is_clamped(f, expected):
    assert interpolate_along(PATH, f) == expected


@pytest.mark.parametrize("f", [0.1, 0.25, 0.5, 0.9])
def test_two_vertex_path_point_lies_on_segment(f):
    a, b = (-100.0, 40.0), (-99.0, 40.5)
    lng, lat = interpolate_along([a, b], f)
    # on the straight segment in coordinate space
    assert lng == pytest.approx(a[0] + (b[0] - a[0]) * f)
    assert lat == pytest.approx(a[1] + (b[1] - a[1]) * f)
    # and roughly at the same fraction of the great-circle length
    total = haversine_km(a[1], a[0], b[1], b[0])
    part = haversine_km(a[1], a[0], lat, lng)
    assert part / total == pytest.approx(f, abs=0.01)


def test_interpolation_follows_distance_not_vertex_count():
    # a long first segment and many tiny ones after it
    path = [(0.0, 0.0), (10.0, 0.0)] + [(10.0 + 0.01 * i, 0.0) for i in range(1, 11)]
    lng, lat = interpolate_along(path, 0.5)
    assert lat == pytest.approx(0.0)
    assert lng == pytest.approx(5.05, abs=0.01)


def test_degenerate_paths_do_not_divide_by_zero():
    assert interpolate_along([(5.0, 6.0)], 0.5) == (5.0, 6.0)
    assert interpolate_along([(5.0, 6.0), (5.0, 6.0), (5.0, 6.0)], 0.3) == (5.0, 6.0)


def test_empty_path_is_rejected():
    with pytest.raises(ValueError):
        interpolate_along([], 0.5)


def test_cumulative_distances_are_monotonic():
    cum = cumulative_distances_km(PATH)
    assert cum[0] == 0.0
    assert all(b >= a for a, b in zip(cum, cum[1:]))


def test_haversine_one_degree_of_latitude():
    assert haversine_km(0.0, 0.0, 1.0, 0.0) == pytest.approx(6371.0 * math.pi / 180.0)
