from __future__ import annotations

import json
from pathlib import Path

import pytest

from fencewatch.config import DEFAULT_GEOFENCE_CENTER, FenceWatchConfig
from fencewatch.exceptions import FenceWatchConfigError, InvalidFixError
from fencewatch.geofence import CircleGeofence, PolygonGeofence, haversine_km, load_geofence

_LAT, _LON = DEFAULT_GEOFENCE_CENTER


def test_haversine_known_distance() -> None:
    # Ottawa to Montreal, roughly 166 km.
    assert haversine_km(45.4215, -75.6972, 45.5017, -73.5673) == pytest.approx(166.0, abs=2.0)


def test_circle_contains_centre_and_rejects_far_point() -> None:
    fence = CircleGeofence(_LAT, _LON, 20.0)
    assert fence.is_inside(_LON, _LAT)
    assert not fence.is_inside(50.0, 50.0)


def test_circle_rim_counts_as_inside() -> None:
    fence = CircleGeofence(0.0, 0.0, 10.0)
    # Move due north by exactly the radius.
    lat_on_rim = 10.0 / 6371.0 * 180.0 / 3.141592653589793
    assert fence.distance_km(0.0, lat_on_rim) == pytest.approx(10.0)
    assert fence.is_inside(0.0, lat_on_rim - 1e-9)
    assert not fence.is_inside(0.0, lat_on_rim + 1e-6)


def test_circle_argument_order_is_longitude_first() -> None:
    fence = CircleGeofence(45.0, -75.0, 5.0)
    assert fence.is_inside(-75.0, 45.0)
    with pytest.raises(InvalidFixError):
        fence.is_inside(45.0, -75.0 - 100)


def test_circle_rejects_bad_configuration() -> None:
    with pytest.raises(FenceWatchConfigError):
        CircleGeofence(_LAT, _LON, 0.0)
    with pytest.raises(FenceWatchConfigError):
        CircleGeofence(120.0, _LON, 5.0)


@pytest.mark.parametrize(("lon", "lat"), [(float("nan"), 0.0), (0.0, 95.0), (181.0, 0.0)])
def test_circle_rejects_invalid_coordinates(lon: float, lat: float) -> None:
    with pytest.raises(InvalidFixError):
        CircleGeofence(0.0, 0.0, 10.0).is_inside(lon, lat)


def test_polygon_from_vertices_covers_boundary() -> None:
    fence = PolygonGeofence.from_vertices([(0.0, 0.0), (10.0, 0.0), (10.0, 10.0), (0.0, 10.0)])
    assert fence.is_inside(5.0, 5.0)
    assert fence.is_inside(10.0, 5.0)
    assert not fence.is_inside(11.0, 5.0)


def test_polygon_needs_three_vertices() -> None:
    with pytest.raises(FenceWatchConfigError):
        PolygonGeofence.from_vertices([(0.0, 0.0), (1.0, 1.0)])


def test_polygon_from_feature_collection() -> None:
    data = {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "properties": {},
                "geometry": {
                    "type": "Polygon",
                    "coordinates": [[[-76.0, 45.0], [-75.0, 45.0], [-75.0, 46.0], [-76.0, 46.0], [-76.0, 45.0]]],
                },
            }
        ],
    }
    fence = PolygonGeofence.from_geojson(data)
    assert fence.is_inside(-75.5, 45.5)
    assert not fence.is_inside(-74.5, 45.5)


def test_polygon_rejects_unsupported_geometry() -> None:
    with pytest.raises(FenceWatchConfigError):
        PolygonGeofence.from_geojson({"type": "Point", "coordinates": [0, 0]})


def test_load_geofence_defaults_to_circle() -> None:
    fence = load_geofence(FenceWatchConfig())
    assert isinstance(fence, CircleGeofence)
    assert fence.radius_km == 20.0


def test_load_geofence_reads_polygon_file(tmp_path: Path) -> None:
    path = tmp_path / "fence.geojson"
    path.write_text(
        json.dumps({"type": "Polygon", "coordinates": [[[0, 0], [4, 0], [4, 4], [0, 4], [0, 0]]]}),
        encoding="utf-8",
    )
    fence = load_geofence(FenceWatchConfig(geofence_polygon_path=path))
    assert isinstance(fence, PolygonGeofence)
    assert fence.is_inside(2.0, 2.0)


def test_load_geofence_reports_unreadable_file(tmp_path: Path) -> None:
    with pytest.raises(FenceWatchConfigError):
        load_geofence(FenceWatchConfig(geofence_polygon_path=tmp_path / "missing.geojson"))
