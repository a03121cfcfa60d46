"""Local trending endpoint handler.

Validates query bounds here so the engine can trust its inputs, then
returns the ranked list with per-item score breakdowns.
"""
from __future__ import annotations

import logging
import math
import sqlite3
from dataclasses import dataclass
from typing import Any

from data.time import now_ms
from http_utils import respond_json
from server_config import (
    DEFAULT_TRENDING_DAYS,
    DEFAULT_TRENDING_LIMIT,
    DEFAULT_TRENDING_RADIUS_KM,
    MAX_TRENDING_DAYS,
    MAX_TRENDING_LIMIT,
    MAX_TRENDING_RADIUS_KM,
    MIN_TRENDING_DAYS,
    MIN_TRENDING_LIMIT,
)


@dataclass(frozen=True)
class TrendingQuery:
    """Validated local trending request."""
    latitude: float
    longitude: float
    radius_km: float
    limit: int
    days: int


def _first(params: dict[str, list[str]], *names: str) -> str | None:
    for name in names:
        values = params.get(name)
        if values and values[0].strip():
            return values[0].strip()
    return None


def _parse_float(raw: str | None, name: str, default: float | None) -> float:
    if raw is None:
        if default is None:
            raise ValueError(f"{name} is required")
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number") from exc
    if not math.isfinite(value):
        raise ValueError(f"{name} must be a finite number")
    return value


def _parse_int(raw: str | None, name: str, default: int) -> int:
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc


def parse_trending_query(params: dict[str, list[str]]) -> TrendingQuery:
    """Parse and bound-check query params; raises ValueError on bad input."""
    latitude = _parse_float(_first(params, "latitude", "lat"), "latitude", None)
    longitude = _parse_float(_first(params, "longitude", "lon"), "longitude", None)
    radius_km = _parse_float(
        _first(params, "radiusKm", "radius_km"), "radiusKm", DEFAULT_TRENDING_RADIUS_KM
    )
    limit = _parse_int(_first(params, "limit"), "limit", DEFAULT_TRENDING_LIMIT)
    days = _parse_int(_first(params, "days"), "days", DEFAULT_TRENDING_DAYS)

    if not -90.0 <= latitude <= 90.0:
        raise ValueError("latitude must be between -90 and 90")
    if not -180.0 <= longitude <= 180.0:
        raise ValueError("longitude must be between -180 and 180")
    if not 0.0 < radius_km <= MAX_TRENDING_RADIUS_KM:
        raise ValueError(f"radiusKm must be greater than 0 and at most {MAX_TRENDING_RADIUS_KM:g}")
    if not MIN_TRENDING_LIMIT <= limit <= MAX_TRENDING_LIMIT:
        raise ValueError(f"limit must be between {MIN_TRENDING_LIMIT} and {MAX_TRENDING_LIMIT}")
    if not MIN_TRENDING_DAYS <= days <= MAX_TRENDING_DAYS:
        raise ValueError(f"days must be between {MIN_TRENDING_DAYS} and {MAX_TRENDING_DAYS}")
    return TrendingQuery(latitude, longitude, radius_km, limit, days)


def handle_trending_request(handler: Any, server: Any, params: dict[str, list[str]]) -> bool:
    """Serve GET /api/trending/local."""
    try:
        query = parse_trending_query(params)
    except ValueError as exc:
        respond_json(handler, 400, {"error": str(exc)})
        return True

    try:
        ranked = server.trending_engine.rank_trending(
            query.latitude,
            query.longitude,
            query.radius_km,
            query.limit,
            query.days,
        )
    except sqlite3.Error as exc:
        logging.error("[trending] storage failure error=%s", type(exc).__name__)
        respond_json(handler, 500, {"error": "Storage failure"})
        return True

    respond_json(
        handler,
        200,
        {
            "generatedAt": now_ms(),
            "strategy": server.trending_engine.strategy_name,
            "query": {
                "latitude": query.latitude,
                "longitude": query.longitude,
                "radiusKm": query.radius_km,
                "limit": query.limit,
                "days": query.days,
            },
            "total": len(ranked),
            "rows": [item.to_payload() for item in ranked],
        },
    )
    return True
