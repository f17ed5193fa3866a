"""Synthetic GPS fixes for local runs and load tests."""

from __future__ import annotations

import math
import random
from collections.abc import Iterator

from fencewatch.geofence import EARTH_RADIUS_KM
from fencewatch.models._base import utcnow
from fencewatch.models.gps import GpsFix


def random_points_in_radius(
    center_latitude: float,
    center_longitude: float,
    radius_km: float,
    count: int,
    *,
    rng: random.Random | None = None,
) -> list[tuple[float, float]]:
    """Return ``count`` uniformly distributed ``(latitude, longitude)`` points.

    Points are drawn on a flat disc around the centre, with the east-west
    offset stretched by ``1 / cos(latitude)``. Good enough for radii of a
    few hundred kilometres away from the poles.
    """
    if radius_km < 0:
        raise ValueError("radius_km must not be negative")
    rng = rng or random.Random()
    radius_rad = radius_km / EARTH_RADIUS_KM
    lon_scale = math.cos(math.radians(center_latitude))
    points: list[tuple[float, float]] = []
    for _ in range(count):
        w = radius_rad * math.sqrt(rng.random())
        t = 2 * math.pi * rng.random()
        dx = w * math.cos(t) / lon_scale
        dy = w * math.sin(t)
        points.append((center_latitude + math.degrees(dy), center_longitude + math.degrees(dx)))
    return points


def random_vehicle_id(rng: random.Random | None = None) -> str:
    """Zero-padded four digit id, ``0001`` to ``9999``."""
    rng = rng or random.Random()
    return f"{rng.randint(1, 9999):04d}"


def synthetic_fixes(
    center_latitude: float,
    center_longitude: float,
    radius_km: float,
    count: int,
    *,
    vehicle_ids: list[str] | None = None,
    rng: random.Random | None = None,
) -> Iterator[GpsFix]:
    """Yield fixes scattered around a centre, cycling through ``vehicle_ids``."""
    rng = rng or random.Random()
    ids = vehicle_ids or [random_vehicle_id(rng)]
    points = random_points_in_radius(center_latitude, center_longitude, radius_km, count, rng=rng)
    for index, (latitude, longitude) in enumerate(points):
        yield GpsFix(
            vehicle_id=ids[index % len(ids)],
            latitude=latitude,
            longitude=longitude,
            event_timestamp=utcnow(),
        )
