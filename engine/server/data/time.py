"""Timestamp helpers shared by scoring, ETL and storage code.

All persisted timestamps are UTC epoch milliseconds. Calendar-day math is
done on UTC dates.
"""
from __future__ import annotations

from datetime import date, datetime, timezone

DAY_MS = 86_400_000


def now_ms() -> int:
    """Return current UTC timestamp in milliseconds."""
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def utc_date(ts_ms: int) -> date:
    """Return the UTC calendar date of an epoch-ms timestamp."""
    return datetime.fromtimestamp(int(ts_ms) / 1000.0, tz=timezone.utc).date()


def calendar_days_between(earlier_ms: int, later_ms: int) -> int:
    """Count calendar-date boundaries crossed between two timestamps."""
    return (utc_date(later_ms) - utc_date(earlier_ms)).days


def whole_days_between(earlier_ms: int, later_ms: int) -> int:
    """Count complete 24h periods elapsed, never negative."""
    return max(int(later_ms) - int(earlier_ms), 0) // DAY_MS


def format_ms(ts_ms: int) -> str:
    """Render an epoch-ms timestamp as an ISO-8601 UTC string."""
    return datetime.fromtimestamp(int(ts_ms) / 1000.0, tz=timezone.utc).isoformat(
        timespec="seconds"
    )
