"""Four-part popularity score for local trending.

Each part is capped on its own (views 40, likes 30, engagement 20, recency
10) and the total is their plain sum, so the result always lies in
[0, 100]. The function is pure: identical inputs give identical scores.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable

from data.time import calendar_days_between, whole_days_between

VIEW_SCORE_CAP = 40.0
LIKE_SCORE_CAP = 30.0
ENGAGEMENT_SCORE_CAP = 20.0
RECENCY_SCORE_CAP = 10.0

# Per-view weight loses 0.1 per calendar day, floored at 0.1.
VIEW_DECAY_PER_DAY = 0.1
MIN_VIEW_WEIGHT = 0.1


@dataclass(frozen=True)
class ScoreBreakdown:
    """Sub-scores plus the raw metrics they were derived from."""
    view_score: float
    like_score: float
    engagement_score: float
    recency_score: float
    total_views: int
    total_likes: int
    engagement_rate: float
    age_in_days: int

    @property
    def total(self) -> float:
        return self.view_score + self.like_score + self.engagement_score + self.recency_score

    def to_payload(self) -> dict[str, Any]:
        return {
            "view_score": self.view_score,
            "like_score": self.like_score,
            "engagement_score": self.engagement_score,
            "recency_score": self.recency_score,
            "total_views": self.total_views,
            "total_likes": self.total_likes,
            "engagement_rate": self.engagement_rate,
            "age_in_days": self.age_in_days,
        }


def view_weight(viewed_at: int, now_ms_value: int) -> float:
    """Return the recency weight of one view."""
    days_ago = max(calendar_days_between(int(viewed_at), now_ms_value), 0)
    return max(MIN_VIEW_WEIGHT, 1.0 - VIEW_DECAY_PER_DAY * days_ago)


def view_score(window_views: Iterable[int], now_ms_value: int) -> float:
    """Handle view score."""
    weighted = sum(view_weight(viewed_at, now_ms_value) for viewed_at in window_views)
    if weighted <= 0:
        return 0.0
    return min(VIEW_SCORE_CAP, 10.0 * math.log10(1.0 + weighted))


def like_score(like_count: int) -> float:
    """Handle like score."""
    if like_count <= 0:
        return 0.0
    return min(LIKE_SCORE_CAP, 10.0 * math.log10(1.0 + like_count))


def engagement_rate(like_count: int, window_view_count: int) -> float:
    """Return likes per hundred in-window views (0 without views)."""
    if window_view_count <= 0:
        return 0.0
    return like_count * 100.0 / window_view_count


def engagement_score(rate: float) -> float:
    """Handle engagement score."""
    return min(ENGAGEMENT_SCORE_CAP, max(rate, 0.0))


def recency_score(age_in_days: int) -> float:
    """Full marks under one day old, then one point lost per day."""
    if age_in_days < 1:
        return RECENCY_SCORE_CAP
    return max(0.0, RECENCY_SCORE_CAP - age_in_days)


def score_popularity(
    video: dict[str, Any],
    window_views: list[int],
    now_ms_value: int,
) -> tuple[float, ScoreBreakdown]:
    """Score one video from its counters and the view timestamps in the window.

    Raises KeyError/TypeError/ValueError on a malformed video row.
    """
    like_count = max(int(video["like_count"] or 0), 0)
    created_at = int(video["created_at"])
    views = [int(viewed_at) for viewed_at in window_views]

    age_in_days = whole_days_between(created_at, now_ms_value)
    rate = engagement_rate(like_count, len(views))
    breakdown = ScoreBreakdown(
        view_score=view_score(views, now_ms_value),
        like_score=like_score(like_count),
        engagement_score=engagement_score(rate),
        recency_score=recency_score(age_in_days),
        total_views=len(views),
        total_likes=like_count,
        engagement_rate=rate,
        age_in_days=age_in_days,
    )
    return breakdown.total, breakdown
