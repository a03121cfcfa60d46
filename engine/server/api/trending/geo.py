"""Great-circle distance and the two radius-search strategies.

Both strategies run the final ``distance <= radius`` test through
``haversine_km_many`` so that, for the same catalog and query, they return
the same set of videos. The indexed strategy only narrows the rows that reach
that test.
"""
from __future__ import annotations

import logging
import math
from typing import Any, Callable, Iterable

import numpy as np

EARTH_RADIUS_KM = 6371.0

# Outward padding (degrees) on index boxes so float rounding never drops a
# point lying exactly on the radius.
_BOX_PADDING_DEG = 1e-9

BoundingBox = tuple[float, float, float, float]


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Return the spherical-earth distance between two points in kilometers."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = (
        math.sin(d_phi / 2.0) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    )
    a = min(max(a, 0.0), 1.0)
    return 2.0 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def haversine_km_many(
    latitude: float, longitude: float, lats: np.ndarray, lons: np.ndarray
) -> np.ndarray:
    """Vectorized ``haversine_km`` from one origin to many points."""
    lats = np.asarray(lats, dtype=np.float64)
    lons = np.asarray(lons, dtype=np.float64)
    phi1 = math.radians(latitude)
    phi2 = np.radians(lats)
    d_phi = np.radians(lats - latitude)
    d_lambda = np.radians(lons - longitude)
    a = np.sin(d_phi / 2.0) ** 2 + math.cos(phi1) * np.cos(phi2) * np.sin(d_lambda / 2.0) ** 2
    a = np.clip(a, 0.0, 1.0)
    return 2.0 * EARTH_RADIUS_KM * np.arcsin(np.sqrt(a))


def bounding_boxes(latitude: float, longitude: float, radius_km: float) -> list[BoundingBox]:
    """Return (min_lat, max_lat, min_lon, max_lon) boxes covering the radius circle.

    The box is split in two when it crosses the antimeridian and spans every
    longitude when the circle reaches a pole.
    """
    angular = radius_km / EARTH_RADIUS_KM
    lat_rad = math.radians(latitude)
    min_lat = lat_rad - angular
    max_lat = lat_rad + angular

    if min_lat <= -math.pi / 2 or max_lat >= math.pi / 2:
        return [
            (
                max(math.degrees(min_lat), -90.0) - _BOX_PADDING_DEG,
                min(math.degrees(max_lat), 90.0) + _BOX_PADDING_DEG,
                -180.0,
                180.0,
            )
        ]

    d_lon = math.asin(min(math.sin(angular) / math.cos(lat_rad), 1.0))
    min_lat_deg = math.degrees(min_lat) - _BOX_PADDING_DEG
    max_lat_deg = math.degrees(max_lat) + _BOX_PADDING_DEG
    min_lon_deg = longitude - math.degrees(d_lon) - _BOX_PADDING_DEG
    max_lon_deg = longitude + math.degrees(d_lon) + _BOX_PADDING_DEG

    if min_lon_deg < -180.0:
        return [
            (min_lat_deg, max_lat_deg, min_lon_deg + 360.0, 180.0),
            (min_lat_deg, max_lat_deg, -180.0, max_lon_deg),
        ]
    if max_lon_deg > 180.0:
        return [
            (min_lat_deg, max_lat_deg, min_lon_deg, 180.0),
            (min_lat_deg, max_lat_deg, -180.0, max_lon_deg - 360.0),
        ]
    return [(min_lat_deg, max_lat_deg, min_lon_deg, max_lon_deg)]


def filter_within_radius(
    latitude: float,
    longitude: float,
    radius_km: float,
    rows: Iterable[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Keep rows whose coordinates lie within ``radius_km`` of the origin."""
    located: list[dict[str, Any]] = []
    lats: list[float] = []
    lons: list[float] = []
    for row in rows:
        try:
            lat = float(row["latitude"])
            lon = float(row["longitude"])
        except (KeyError, TypeError, ValueError):
            logging.warning(
                "[geo] skip unlocated video_id=%s", row.get("video_id") if isinstance(row, dict) else None
            )
            continue
        located.append(row)
        lats.append(lat)
        lons.append(lon)
    if not located:
        return []
    distances = haversine_km_many(latitude, longitude, np.array(lats), np.array(lons))
    mask = distances <= radius_km
    return [row for row, inside in zip(located, mask.tolist()) if inside]


class ExhaustiveSpatialSearcher:
    """Linear scan over every located video."""
    name = "exhaustive"

    def __init__(self, fetch_located_videos: Callable[[], list[dict[str, Any]]]) -> None:
        """Initialize the instance."""
        self._fetch_located_videos = fetch_located_videos

    def find_within_radius(
        self, latitude: float, longitude: float, radius_km: float
    ) -> list[dict[str, Any]]:
        """Handle find within radius."""
        rows = self._fetch_located_videos()
        matched = filter_within_radius(latitude, longitude, radius_km, rows)
        logging.debug(
            "[geo] strategy=exhaustive scanned=%d matched=%d", len(rows), len(matched)
        )
        return matched


class IndexedSpatialSearcher:
    """Bounding-box lookup through the location index, refined by exact distance."""
    name = "indexed"

    def __init__(
        self, fetch_videos_in_boxes: Callable[[list[BoundingBox]], list[dict[str, Any]]]
    ) -> None:
        """Initialize the instance."""
        self._fetch_videos_in_boxes = fetch_videos_in_boxes

    def find_within_radius(
        self, latitude: float, longitude: float, radius_km: float
    ) -> list[dict[str, Any]]:
        """Handle find within radius."""
        boxes = bounding_boxes(latitude, longitude, radius_km)
        rows = self._fetch_videos_in_boxes(boxes)
        matched = filter_within_radius(latitude, longitude, radius_km, rows)
        logging.debug(
            "[geo] strategy=indexed boxes=%d box_hits=%d matched=%d",
            len(boxes),
            len(rows),
            len(matched),
        )
        return matched
