"""Popular-video ETL: trailing-window aggregation into a top-K snapshot.

Runs are serialized by a single lock, so a manual trigger that arrives while
the scheduled run is in flight waits for it instead of racing on the current
snapshot pointer. Any failure before the publish commits leaves the previous
snapshot current.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from time import perf_counter
from typing import Any, Callable, Sequence

from data.popular_snapshots import PopularitySnapshot
from data.popularity import (
    DEFAULT_TOP_K,
    DEFAULT_WINDOW_DAYS,
    aggregate_day_weighted_scores,
    select_top,
)
from data.time import DAY_MS, now_ms


@dataclass(frozen=True)
class PopularEtlSettings:
    """Window, result size and daily schedule for the ETL."""
    window_days: int = DEFAULT_WINDOW_DAYS
    top_k: int = DEFAULT_TOP_K
    schedule_hour_utc: int = 2
    schedule_minute_utc: int = 0


@dataclass(frozen=True)
class PopularEtlDeps:
    """Storage callables injected by server wiring."""
    fetch_view_events_since: Callable[[int], list[dict[str, Any]]]
    publish_snapshot: Callable[[int, Sequence[tuple[str, float]], int], PopularitySnapshot]


@dataclass(frozen=True)
class EtlRunResult:
    """Outcome of one ETL pass."""
    ok: bool
    trigger: str
    started_at: int
    snapshot: PopularitySnapshot | None = None
    events: int = 0
    scored_videos: int = 0
    error: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "trigger": self.trigger,
            "started_at": self.started_at,
            "events": self.events,
            "scored_videos": self.scored_videos,
            "snapshot": self.snapshot.to_payload() if self.snapshot is not None else None,
            "error": self.error,
        }


class PopularVideoETL:
    """Extract view events, weight them per day, publish the top list."""

    def __init__(
        self,
        deps: PopularEtlDeps,
        settings: PopularEtlSettings | None = None,
        now_fn: Callable[[], int] = now_ms,
    ) -> None:
        """Initialize the instance."""
        self.deps = deps
        self.settings = settings or PopularEtlSettings()
        self._now_fn = now_fn
        self._run_lock = threading.Lock()
        self.last_result: EtlRunResult | None = None

    def run(self, trigger: str = "scheduled") -> EtlRunResult:
        """Run one full pass; never raises."""
        with self._run_lock:
            result = self._run_locked(trigger)
            self.last_result = result
            return result

    def run_now(self) -> EtlRunResult:
        """Manual trigger; same computation as the scheduled path."""
        logging.info("[popular-etl] manual trigger")
        return self.run(trigger="manual")

    def _run_locked(self, trigger: str) -> EtlRunResult:
        started_at = self._now_fn()
        started = perf_counter()
        window_days = self.settings.window_days
        logging.info("[popular-etl] run start trigger=%s window_days=%d", trigger, window_days)
        events: list[dict[str, Any]] = []
        scores: dict[str, float] = {}
        try:
            events = self.deps.fetch_view_events_since(started_at - window_days * DAY_MS)
            scores = aggregate_day_weighted_scores(events, started_at, window_days)
            top = select_top(scores, self.settings.top_k)
            snapshot = self.deps.publish_snapshot(started_at, top, window_days)
        except Exception as exc:
            logging.exception(
                "[popular-etl] run failed trigger=%s events=%d error=%s",
                trigger,
                len(events),
                type(exc).__name__,
            )
            return EtlRunResult(
                ok=False,
                trigger=trigger,
                started_at=started_at,
                events=len(events),
                scored_videos=len(scores),
                error=str(exc) or type(exc).__name__,
            )

        logging.info(
            "[popular-etl] run ok trigger=%s events=%d scored=%d snapshot=%d top=%s ms=%d",
            trigger,
            len(events),
            len(scores),
            snapshot.snapshot_id,
            ",".join(f"{entry.video_id}:{entry.score:g}" for entry in snapshot.entries) or "-",
            int((perf_counter() - started) * 1000),
        )
        return EtlRunResult(
            ok=True,
            trigger=trigger,
            started_at=started_at,
            snapshot=snapshot,
            events=len(events),
            scored_videos=len(scores),
        )


def seconds_until_next_run(now_ms_value: int, hour_utc: int, minute_utc: int) -> float:
    """Return the delay until the next daily (hour, minute) UTC slot."""
    now = datetime.fromtimestamp(now_ms_value / 1000.0, tz=timezone.utc)
    target = now.replace(hour=hour_utc, minute=minute_utc, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


class PopularEtlScheduler:
    """Daemon thread firing the ETL once a day."""

    def __init__(self, etl: PopularVideoETL, now_fn: Callable[[], int] = now_ms) -> None:
        """Initialize the instance."""
        self.etl = etl
        self._now_fn = now_fn
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, name="popular-etl-scheduler", daemon=True
        )
        self._thread.start()
        logging.info(
            "[popular-etl] scheduler started at=%02d:%02dZ",
            self.etl.settings.schedule_hour_utc,
            self.etl.settings.schedule_minute_utc,
        )

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def next_delay_seconds(self) -> float:
        return seconds_until_next_run(
            self._now_fn(),
            self.etl.settings.schedule_hour_utc,
            self.etl.settings.schedule_minute_utc,
        )

    def _loop(self) -> None:
        while not self._stop.is_set():
            delay = self.next_delay_seconds()
            logging.info("[popular-etl] next run in seconds=%d", int(delay))
            if self._stop.wait(delay):
                break
            self.etl.run(trigger="scheduled")
