"""Provide builder runtime helpers."""

from __future__ import annotations

# Trending wiring.
#
# This module centralizes:
# - selection of the spatial search strategy (indexed vs exhaustive), once,
# - binding of SQLite reads/writes to the shared connection and its lock,
# - construction of the trending engine and the popular ETL.
#
# It does not run queries itself; it only composes dependencies.


import sqlite3
import threading
from typing import Any, Callable, Sequence, TypeVar

from data.popular_snapshots import PopularitySnapshot, publish_snapshot
from data.videos import fetch_located_videos, fetch_videos_in_boxes
from data.view_events import fetch_view_events_since
from trending import SpatialSearcher
from trending.engine import TrendingEngineDeps, TrendingQueryEngine
from trending.etl import PopularEtlDeps, PopularEtlSettings, PopularVideoETL
from trending.geo import BoundingBox, ExhaustiveSpatialSearcher, IndexedSpatialSearcher

SPATIAL_STRATEGIES = ("indexed", "exhaustive")

T = TypeVar("T")


def _locked(lock: threading.Lock, fn: Callable[..., T]) -> Callable[..., T]:
    """Wrap a connection-bound callable so every call holds the db lock."""
    def call(*args: Any) -> T:
        with lock:
            return fn(*args)

    return call


def build_spatial_searcher(
    strategy: str, db: sqlite3.Connection, db_lock: threading.Lock
) -> SpatialSearcher:
    """Return the searcher for a configured strategy name."""
    selected = (strategy or "").strip().lower()
    if selected == "indexed":
        def fetch_boxes(boxes: list[BoundingBox]) -> list[dict[str, Any]]:
            return fetch_videos_in_boxes(db, boxes)

        return IndexedSpatialSearcher(_locked(db_lock, fetch_boxes))
    if selected == "exhaustive":
        def fetch_all() -> list[dict[str, Any]]:
            return fetch_located_videos(db)

        return ExhaustiveSpatialSearcher(_locked(db_lock, fetch_all))
    raise ValueError(
        f"Unknown spatial strategy {strategy!r}; expected one of {', '.join(SPATIAL_STRATEGIES)}"
    )


def build_trending_engine(
    db: sqlite3.Connection,
    db_lock: threading.Lock,
    strategy: str,
    now_fn: Callable[[], int] | None = None,
) -> TrendingQueryEngine:
    """Compose the trending engine over the shared connection."""
    def fetch_events(since_ms: int, video_ids: Sequence[str] | None) -> list[dict[str, Any]]:
        return fetch_view_events_since(db, since_ms, video_ids)

    deps = TrendingEngineDeps(
        searcher=build_spatial_searcher(strategy, db, db_lock),
        fetch_view_events_since=_locked(db_lock, fetch_events),
    )
    if now_fn is None:
        return TrendingQueryEngine(deps)
    return TrendingQueryEngine(deps, now_fn=now_fn)


def build_popular_etl(
    db: sqlite3.Connection,
    db_lock: threading.Lock,
    settings: PopularEtlSettings,
    now_fn: Callable[[], int] | None = None,
) -> PopularVideoETL:
    """Compose the popular ETL over the shared connection."""
    def fetch_events(since_ms: int) -> list[dict[str, Any]]:
        return fetch_view_events_since(db, since_ms)

    def publish(
        computed_at: int, ranked: Sequence[tuple[str, float]], window_days: int
    ) -> PopularitySnapshot:
        return publish_snapshot(db, computed_at, ranked, window_days)

    deps = PopularEtlDeps(
        fetch_view_events_since=_locked(db_lock, fetch_events),
        publish_snapshot=_locked(db_lock, publish),
    )
    if now_fn is None:
        return PopularVideoETL(deps, settings)
    return PopularVideoETL(deps, settings, now_fn=now_fn)
