"""Geofence boundaries.

A geofence answers one question: is ``(longitude, latitude)`` inside the
permitted area? Implementations are pure and safe to share between
concurrent consumers.
"""

from __future__ import annotations

import json
import math
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from shapely.geometry import Point, Polygon, shape
from shapely.geometry.base import BaseGeometry
from shapely.validation import make_valid

from fencewatch.config import FenceWatchConfig
from fencewatch.exceptions import FenceWatchConfigError, InvalidFixError

EARTH_RADIUS_KM = 6371.0


class Geofence(Protocol):
    def is_inside(self, longitude: float, latitude: float) -> bool: ...


def _check_coordinates(longitude: float, latitude: float) -> None:
    if not (math.isfinite(longitude) and math.isfinite(latitude)):
        raise InvalidFixError(f"Non-finite coordinates ({longitude}, {latitude})")
    if not -90.0 <= latitude <= 90.0 or not -180.0 <= longitude <= 180.0:
        raise InvalidFixError(f"Coordinates out of range ({longitude}, {latitude})")


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = phi2 - phi1
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(min(1.0, a)))


@dataclass(frozen=True, slots=True)
class CircleGeofence:
    """Circular boundary defined by centre + radius. The rim counts as inside."""

    center_latitude: float
    center_longitude: float
    radius_km: float

    def __post_init__(self) -> None:
        if self.radius_km <= 0:
            raise FenceWatchConfigError(f"Geofence radius must be positive, got {self.radius_km}")
        try:
            _check_coordinates(self.center_longitude, self.center_latitude)
        except InvalidFixError as exc:
            raise FenceWatchConfigError(f"Invalid geofence centre: {exc}") from exc

    def distance_km(self, longitude: float, latitude: float) -> float:
        return haversine_km(self.center_latitude, self.center_longitude, latitude, longitude)

    def is_inside(self, longitude: float, latitude: float) -> bool:
        _check_coordinates(longitude, latitude)
        return self.distance_km(longitude, latitude) <= self.radius_km


@dataclass(frozen=True)
class PolygonGeofence:
    """Polygon boundary in ``(longitude, latitude)`` order (GeoJSON order).

    Points on the boundary line count as inside.
    """

    polygon: BaseGeometry

    def __post_init__(self) -> None:
        if self.polygon.is_empty:
            raise FenceWatchConfigError("Geofence polygon is empty")

    @classmethod
    def from_vertices(cls, vertices: Sequence[tuple[float, float]]) -> PolygonGeofence:
        if len(vertices) < 3:
            raise FenceWatchConfigError("Geofence polygon needs at least three vertices")
        polygon = Polygon(vertices)
        if not polygon.is_valid:
            polygon = make_valid(polygon)
        return cls(polygon=polygon)

    @classmethod
    def from_geojson(cls, data: dict[str, Any]) -> PolygonGeofence:
        """Accept a Polygon/MultiPolygon geometry, Feature or single-feature collection."""
        geometry: Any = data
        if data.get("type") == "FeatureCollection":
            features = data.get("features") or []
            if len(features) != 1:
                raise FenceWatchConfigError("Geofence FeatureCollection must hold exactly one feature")
            geometry = features[0]
        if geometry.get("type") == "Feature":
            geometry = geometry.get("geometry") or {}
        if geometry.get("type") not in ("Polygon", "MultiPolygon"):
            raise FenceWatchConfigError(f"Unsupported geofence geometry {geometry.get('type')!r}")
        polygon = shape(geometry)
        if not polygon.is_valid:
            polygon = make_valid(polygon)
        return cls(polygon=polygon)

    @classmethod
    def from_file(cls, path: Path) -> PolygonGeofence:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise FenceWatchConfigError(f"Cannot read geofence polygon {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise FenceWatchConfigError(f"Geofence file {path} is not a GeoJSON object")
        return cls.from_geojson(data)

    def is_inside(self, longitude: float, latitude: float) -> bool:
        _check_coordinates(longitude, latitude)
        return bool(self.polygon.covers(Point(longitude, latitude)))


def load_geofence(config: FenceWatchConfig) -> Geofence:
    """Build the boundary selected by *config*."""
    if config.geofence_polygon_path is not None:
        return PolygonGeofence.from_file(config.geofence_polygon_path)
    latitude, longitude = config.geofence_center
    return CircleGeofence(
        center_latitude=latitude,
        center_longitude=longitude,
        radius_km=config.geofence_radius_km,
    )
