"""Tests for the popular-video ETL, snapshot publication and scheduling."""

from __future__ import annotations

import shutil
import sqlite3
import sys
import tempfile
import threading
import unittest
from datetime import datetime, timezone
from pathlib import Path


API_DIR = Path(__file__).resolve().parents[1]
SERVER_DIR = API_DIR.parent
if str(SERVER_DIR) not in sys.path:
    sys.path.insert(0, str(SERVER_DIR))
if str(API_DIR) not in sys.path:
    sys.path.insert(0, str(API_DIR))

from data.db import connect_db, ensure_engine_schema  # noqa: E402
from data.popular_snapshots import (  # noqa: E402
    fetch_latest_snapshot,
    fetch_top_popular,
    list_snapshots,
    publish_snapshot,
)
from data.popularity import aggregate_day_weighted_scores, day_weight, select_top  # noqa: E402
from data.time import DAY_MS  # noqa: E402
from data.videos import upsert_video  # noqa: E402
from data.view_events import fetch_view_events_since, record_view_event  # noqa: E402
from trending.builder import build_popular_etl  # noqa: E402
from trending.etl import (  # noqa: E402
    PopularEtlDeps,
    PopularEtlScheduler,
    PopularEtlSettings,
    PopularVideoETL,
    seconds_until_next_run,
)

# 2023-11-14T22:13:20Z
NOW = 1_700_000_000_000
HOUR_MS = 3_600_000


def _seed(conn: sqlite3.Connection) -> None:
    """Five videos with distinct view histories."""
    for index in range(5):
        upsert_video(conn, {"video_id": f"v{index}", "created_at": NOW - 30 * DAY_MS}, commit=False)
    views = {
        "v0": [NOW - HOUR_MS] * 3,
        "v1": [NOW - HOUR_MS] * 2 + [NOW - 3 * DAY_MS],
        "v2": [NOW - 6 * DAY_MS] * 4,
        "v3": [NOW - 7 * DAY_MS],
        "v4": [NOW - 9 * DAY_MS] * 50,
    }
    for video_id, stamps in views.items():
        for stamp in stamps:
            record_view_event(conn, video_id, viewed_at=stamp, commit=False)
    conn.commit()


class DayWeightedAggregationTests(unittest.TestCase):
    """Validate the day-weighted sum and top selection."""

    def test_day_weight_table(self) -> None:
        self.assertEqual(day_weight(0), 8)
        self.assertEqual(day_weight(1), 7)
        self.assertEqual(day_weight(7), 1)
        self.assertEqual(day_weight(8), 0)
        self.assertEqual(day_weight(30), 0)

    def test_aggregate_groups_by_calendar_day(self) -> None:
        events = [
            {"video_id": "a", "viewed_at": NOW - HOUR_MS},
            {"video_id": "a", "viewed_at": NOW - 2 * HOUR_MS},
            {"video_id": "a", "viewed_at": NOW - 3 * DAY_MS},
            {"video_id": "b", "viewed_at": NOW - 12 * DAY_MS},
        ]
        scores = aggregate_day_weighted_scores(events, NOW)
        self.assertEqual(scores["a"], 2 * 8 + 1 * 5)
        self.assertEqual(scores["b"], 0.0)

    def test_select_top_orders_and_breaks_ties_by_id(self) -> None:
        scores = {"c": 5.0, "a": 5.0, "b": 9.0, "d": 1.0, "z": 0.0}
        self.assertEqual(select_top(scores, 3), [("b", 9.0), ("a", 5.0), ("c", 5.0)])
        self.assertEqual(select_top({"z": 0.0}), [])
        self.assertEqual(select_top(scores, 0), [])

    def test_select_top_never_exceeds_three(self) -> None:
        scores = {"a": 4.0, "b": 3.0, "c": 2.0, "d": 1.0}
        self.assertEqual(len(select_top(scores, 10)), 3)

    def test_custom_window_keeps_oldest_day_at_weight_one(self) -> None:
        self.assertEqual(day_weight(0, 3), 4)
        self.assertEqual(day_weight(3, 3), 1)
        self.assertEqual(day_weight(4, 3), 0)


class PopularEtlRunTests(unittest.TestCase):
    """Run the ETL over an in-memory catalog."""

    def setUp(self) -> None:
        self.db = connect_db(":memory:")
        ensure_engine_schema(self.db)
        _seed(self.db)
        self.lock = threading.Lock()

    def tearDown(self) -> None:
        self.db.close()

    def _etl(self) -> PopularVideoETL:
        return build_popular_etl(self.db, self.lock, PopularEtlSettings(), now_fn=lambda: NOW)

    def test_run_publishes_top_three(self) -> None:
        result = self._etl().run()
        self.assertTrue(result.ok)
        # v0 = 3*8, v1 = 2*8 + 5, v2 = 4*2, v3 = 1*1, v4 out of window.
        self.assertEqual(
            [(entry.video_id, entry.score) for entry in result.snapshot.entries],
            [("v0", 24.0), ("v1", 21.0), ("v2", 8.0)],
        )
        latest = fetch_latest_snapshot(self.db)
        self.assertEqual(latest.snapshot_id, result.snapshot.snapshot_id)
        self.assertEqual([entry.rank for entry in latest.entries], [1, 2, 3])

    def test_top_popular_joins_catalog_rows(self) -> None:
        self.assertEqual(fetch_top_popular(self.db), [])
        self._etl().run()
        rows = fetch_top_popular(self.db)
        self.assertEqual([row["rank"] for row in rows], [1, 2, 3])
        self.assertEqual(rows[0]["video"]["video_id"], "v0")
        self.assertEqual(rows[0]["popularity_score"], 24.0)
        self.assertEqual(rows[0]["pipeline_run_at"], NOW)

    def test_top_popular_skips_vanished_videos(self) -> None:
        self._etl().run()
        self.db.execute("DELETE FROM videos WHERE video_id = 'v1'")
        self.db.commit()
        rows = fetch_top_popular(self.db)
        self.assertEqual([(row["rank"], row["video"]["video_id"]) for row in rows], [(1, "v0"), (3, "v2")])

    def test_manual_and_scheduled_runs_match(self) -> None:
        etl = self._etl()
        scheduled = etl.run(trigger="scheduled")
        manual = etl.run_now()
        self.assertEqual(manual.trigger, "manual")
        self.assertEqual(scheduled.snapshot.entries, manual.snapshot.entries)
        self.assertNotEqual(scheduled.snapshot.snapshot_id, manual.snapshot.snapshot_id)
        self.assertIs(etl.last_result, manual)

    def test_failed_publish_keeps_previous_snapshot(self) -> None:
        self._etl().run()
        before = fetch_latest_snapshot(self.db)

        def failing_publish(computed_at, ranked, window_days):
            raise sqlite3.OperationalError("disk I/O error")

        etl = PopularVideoETL(
            PopularEtlDeps(
                fetch_view_events_since=lambda since: fetch_view_events_since(self.db, since),
                publish_snapshot=failing_publish,
            ),
            now_fn=lambda: NOW + DAY_MS,
        )
        with self.assertLogs(level="ERROR"):
            result = etl.run()
        self.assertFalse(result.ok)
        self.assertIsNone(result.snapshot)
        self.assertIn("disk I/O error", result.error)
        self.assertEqual(fetch_latest_snapshot(self.db), before)

    def test_failed_extract_is_reported(self) -> None:
        def failing_fetch(since):
            raise sqlite3.OperationalError("no such table: video_views")

        etl = PopularVideoETL(
            PopularEtlDeps(fetch_view_events_since=failing_fetch, publish_snapshot=lambda *a: None)
        )
        with self.assertLogs(level="ERROR"):
            result = etl.run_now()
        self.assertFalse(result.ok)
        self.assertEqual(result.to_payload()["snapshot"], None)

    def test_publish_rolls_back_on_bad_entry(self) -> None:
        self._etl().run()
        before = fetch_latest_snapshot(self.db)
        with self.assertRaises(TypeError):
            publish_snapshot(self.db, NOW + 1, [("v0", 1.0), ("v1", None)], 7)
        self.assertEqual(fetch_latest_snapshot(self.db), before)
        self.assertEqual(len(list_snapshots(self.db, 10)), 1)

    def test_history_flags_only_latest(self) -> None:
        etl = self._etl()
        etl.run()
        etl.run()
        history = list_snapshots(self.db, 5)
        self.assertEqual(len(history), 2)
        self.assertEqual([snapshot.is_latest for snapshot in history], [True, False])


class SnapshotConcurrencyTests(unittest.TestCase):
    """Readers never observe a missing or partial snapshot while the ETL publishes."""

    def setUp(self) -> None:
        self.tmpdir = tempfile.mkdtemp()
        self.db_path = Path(self.tmpdir) / "trending.db"
        conn = connect_db(self.db_path)
        ensure_engine_schema(conn)
        _seed(conn)
        conn.close()

    def tearDown(self) -> None:
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_reader_always_sees_a_complete_snapshot(self) -> None:
        writer_db = connect_db(self.db_path)
        reader_db = connect_db(self.db_path)
        etl = build_popular_etl(writer_db, threading.Lock(), PopularEtlSettings(), now_fn=lambda: NOW)
        self.assertTrue(etl.run().ok)

        done = threading.Event()
        observed: list[int] = []
        failures: list[str] = []

        def write() -> None:
            try:
                for _ in range(40):
                    if not etl.run().ok:
                        failures.append("run failed")
            finally:
                done.set()

        def read() -> None:
            while not done.is_set():
                snapshot = fetch_latest_snapshot(reader_db)
                if snapshot is None:
                    failures.append("missing snapshot")
                    continue
                if len(snapshot.entries) != 3:
                    failures.append(f"partial snapshot {len(snapshot.entries)}")
                observed.append(snapshot.snapshot_id)

        writer = threading.Thread(target=write)
        reader = threading.Thread(target=read)
        reader.start()
        writer.start()
        writer.join(60)
        reader.join(60)
        writer_db.close()
        reader_db.close()

        self.assertEqual(failures, [])
        self.assertTrue(observed)
        self.assertEqual(observed, sorted(observed))


class SchedulerTests(unittest.TestCase):
    """Validate the daily fire time and thread lifecycle."""

    @staticmethod
    def _ms(hour: int, minute: int = 0) -> int:
        moment = datetime(2024, 3, 10, hour, minute, tzinfo=timezone.utc)
        return int(moment.timestamp() * 1000)

    def test_delay_before_slot_is_same_day(self) -> None:
        self.assertEqual(seconds_until_next_run(self._ms(1), 2, 0), 3600.0)

    def test_delay_at_or_after_slot_rolls_to_next_day(self) -> None:
        self.assertEqual(seconds_until_next_run(self._ms(2), 2, 0), 86400.0)
        self.assertEqual(seconds_until_next_run(self._ms(3, 30), 2, 0), 81000.0)

    def test_start_and_stop_without_firing(self) -> None:
        calls: list[str] = []
        etl = PopularVideoETL(
            PopularEtlDeps(
                fetch_view_events_since=lambda since: calls.append("fetch") or [],
                publish_snapshot=lambda *args: None,
            ),
            now_fn=lambda: self._ms(1),
        )
        scheduler = PopularEtlScheduler(etl, now_fn=lambda: self._ms(1))
        self.assertEqual(scheduler.next_delay_seconds(), 3600.0)
        scheduler.start()
        scheduler.stop(timeout=5.0)
        self.assertEqual(calls, [])
        self.assertIsNone(etl.last_result)


if __name__ == "__main__":
    unittest.main()
