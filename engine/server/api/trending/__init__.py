"""Provide trending runtime helpers."""

from __future__ import annotations

from typing import Any, Protocol


class SpatialSearcher(Protocol):
    """Radius lookup over geo-tagged videos."""
    name: str

    def find_within_radius(
        self,
        latitude: float,
        longitude: float,
        radius_km: float,
    ) -> list[dict[str, Any]]:
        """Return every located video within ``radius_km`` (order unspecified)."""
        raise NotImplementedError
