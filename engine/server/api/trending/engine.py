"""Local trending query: geo filter, enrich with views, score, rank.

Flow per request:
- find candidates within the radius through the configured searcher
- order candidates by ``video_id`` so equal scores keep a stable order
- load in-window view events for the candidates in one read
- score each candidate; a candidate that fails is logged and dropped
- sort by total score (stable), truncate to ``limit``, assign ranks 1..N
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Callable, Sequence

from data.time import DAY_MS, now_ms
from trending import SpatialSearcher
from trending.geo import haversine_km
from trending.scoring import ScoreBreakdown, score_popularity


@dataclass(frozen=True)
class RankedVideo:
    """One row of a local trending response."""
    rank: int
    video: dict[str, Any]
    total_score: float
    distance_km: float
    breakdown: ScoreBreakdown

    def to_payload(self) -> dict[str, Any]:
        return {
            "rank": self.rank,
            "video": self.video,
            "popularity_score": self.total_score,
            "distance_km": self.distance_km,
            "metrics": self.breakdown.to_payload(),
        }


@dataclass(frozen=True)
class TrendingEngineDeps:
    """Collaborators injected by server wiring."""
    searcher: SpatialSearcher
    fetch_view_events_since: Callable[[int, Sequence[str] | None], list[dict[str, Any]]]


class TrendingQueryEngine:
    """Rank nearby videos by the four-part popularity score."""

    def __init__(
        self,
        deps: TrendingEngineDeps,
        now_fn: Callable[[], int] = now_ms,
    ) -> None:
        """Initialize the instance."""
        self.deps = deps
        self._now_fn = now_fn

    @property
    def strategy_name(self) -> str:
        return self.deps.searcher.name

    def rank_trending(
        self,
        latitude: float,
        longitude: float,
        radius_km: float,
        limit: int,
        days: int,
        now_ms_value: int | None = None,
    ) -> list[RankedVideo]:
        """Return up to ``limit`` ranked videos near (latitude, longitude).

        Bounds are the caller's job. Storage failures propagate; per-video
        failures do not.
        """
        if now_ms_value is None:
            now_ms_value = self._now_fn()
        started = perf_counter()

        candidates = self.deps.searcher.find_within_radius(latitude, longitude, radius_km)
        if not candidates:
            logging.info(
                "[trending] candidates=0 radius_km=%s strategy=%s",
                radius_km,
                self.strategy_name,
            )
            return []
        candidates = sorted(candidates, key=lambda row: str(row.get("video_id")))

        since = now_ms_value - int(days) * DAY_MS
        video_ids = [str(row.get("video_id")) for row in candidates]
        events = self.deps.fetch_view_events_since(since, video_ids)
        views_by_video: dict[str, list[int]] = defaultdict(list)
        for event in events:
            views_by_video[str(event["video_id"])].append(event["viewed_at"])

        logging.info(
            "[trending] candidates=%d events=%d radius_km=%s days=%d strategy=%s",
            len(candidates),
            len(events),
            radius_km,
            days,
            self.strategy_name,
        )

        scored: list[tuple[float, float, dict[str, Any], ScoreBreakdown]] = []
        dropped = 0
        for video in candidates:
            video_id = str(video.get("video_id"))
            try:
                distance = haversine_km(
                    latitude, longitude, float(video["latitude"]), float(video["longitude"])
                )
                total, breakdown = score_popularity(
                    video, views_by_video.get(video_id, []), now_ms_value
                )
            except (KeyError, TypeError, ValueError, OverflowError) as exc:
                dropped += 1
                logging.warning(
                    "[trending] skip video_id=%s error=%s", video_id, type(exc).__name__
                )
                continue
            scored.append((total, distance, video, breakdown))

        scored.sort(key=lambda item: item[0], reverse=True)
        ranked = [
            RankedVideo(
                rank=index + 1,
                video=video,
                total_score=total,
                distance_km=distance,
                breakdown=breakdown,
            )
            for index, (total, distance, video, breakdown) in enumerate(scored[: max(int(limit), 0)])
        ]
        logging.info(
            "[trending] done count=%d scored=%d dropped=%d ms=%d",
            len(ranked),
            len(scored),
            dropped,
            int((perf_counter() - started) * 1000),
        )
        return ranked
