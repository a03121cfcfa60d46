"""Day-weighted popularity aggregation used by the popular ETL job.

This decay (linear, today = window + 1) is deliberately separate from the
per-request view score in ``trending.scoring``.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import date
from typing import Any, Iterable

from data.time import utc_date

DEFAULT_WINDOW_DAYS = 7
DEFAULT_TOP_K = 3
# A snapshot never holds more than this many videos.
MAX_TOP_K = 3


def day_weight(days_ago: int, window_days: int = DEFAULT_WINDOW_DAYS) -> int:
    """Return the multiplier for views seen ``days_ago`` calendar days back.

    With the default 7-day window this is ``8 - days_ago``: today weighs 8,
    seven days ago weighs 1, older days weigh 0. A custom window keeps the
    same shape (``window_days + 1 - days_ago``) so the oldest day in the
    window still weighs 1.
    """
    return max(0, window_days + 1 - max(int(days_ago), 0))


def aggregate_day_weighted_scores(
    events: Iterable[dict[str, Any]],
    now_ms_value: int,
    window_days: int = DEFAULT_WINDOW_DAYS,
) -> dict[str, float]:
    """Sum ``views_on_day * day_weight(days_ago)`` per video."""
    per_day: dict[str, dict[date, int]] = defaultdict(lambda: defaultdict(int))
    for event in events:
        per_day[str(event["video_id"])][utc_date(int(event["viewed_at"]))] += 1

    today = utc_date(now_ms_value)
    scores: dict[str, float] = {}
    for video_id, counts in per_day.items():
        total = 0.0
        for day, count in counts.items():
            weight = day_weight((today - day).days, window_days)
            if weight > 0:
                total += count * weight
        scores[video_id] = total
    return scores


def select_top(scores: dict[str, float], k: int = DEFAULT_TOP_K) -> list[tuple[str, float]]:
    """Return up to ``k`` (video_id, score) pairs, best first, ties by id.

    ``k`` is capped at ``MAX_TOP_K``.
    """
    k = min(k, MAX_TOP_K)
    if k <= 0:
        return []
    ranked = sorted(
        ((video_id, score) for video_id, score in scores.items() if score > 0),
        key=lambda item: (-item[1], item[0]),
    )
    return ranked[:k]
