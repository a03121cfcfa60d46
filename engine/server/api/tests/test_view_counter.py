"""Tests for view tracking and the atomic view counter."""

from __future__ import annotations

import shutil
import sys
import tempfile
import threading
import unittest
from pathlib import Path


API_DIR = Path(__file__).resolve().parents[1]
SERVER_DIR = API_DIR.parent
if str(SERVER_DIR) not in sys.path:
    sys.path.insert(0, str(SERVER_DIR))

from data.db import connect_db, ensure_engine_schema  # noqa: E402
from data.videos import fetch_view_count, increment_view_count, upsert_video  # noqa: E402
from data.view_events import fetch_view_events_since, track_video_view  # noqa: E402

NOW = 1_700_000_000_000


class ViewCounterConcurrencyTests(unittest.TestCase):
    """Concurrent increments from separate connections are never lost."""

    def setUp(self) -> None:
        self.tmpdir = tempfile.mkdtemp()
        self.db_path = Path(self.tmpdir) / "trending.db"
        conn = connect_db(self.db_path)
        ensure_engine_schema(conn)
        upsert_video(conn, {"video_id": "hot", "created_at": NOW})
        conn.close()

    def tearDown(self) -> None:
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_fifty_threads_ten_increments(self) -> None:
        errors: list[BaseException] = []
        barrier = threading.Barrier(50)

        def worker() -> None:
            conn = connect_db(self.db_path)
            try:
                barrier.wait()
                for _ in range(10):
                    increment_view_count(conn, "hot")
            except BaseException as exc:  # noqa: BLE001
                errors.append(exc)
            finally:
                conn.close()

        threads = [threading.Thread(target=worker) for _ in range(50)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        conn = connect_db(self.db_path)
        try:
            self.assertEqual(fetch_view_count(conn, "hot"), 500)
        finally:
            conn.close()


class TrackVideoViewTests(unittest.TestCase):
    """Validate the event + counter write path."""

    def setUp(self) -> None:
        self.db = connect_db(":memory:")
        ensure_engine_schema(self.db)
        upsert_video(self.db, {"video_id": "v1", "created_at": NOW, "view_count": 4})

    def tearDown(self) -> None:
        self.db.close()

    def test_tracking_appends_event_and_bumps_counter(self) -> None:
        result = track_video_view(
            self.db, "v1", actor_id="u1", ip_address="10.0.0.1", user_agent="ua", viewed_at=NOW
        )
        self.assertTrue(result["ok"])
        self.assertEqual(result["video_id"], "v1")
        self.assertEqual(fetch_view_count(self.db, "v1"), 5)
        events = fetch_view_events_since(self.db, NOW)
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0]["event_id"], result["event_id"])
        self.assertEqual(events[0]["actor_id"], "u1")

    def test_unknown_video_writes_nothing(self) -> None:
        with self.assertRaises(LookupError):
            track_video_view(self.db, "missing", viewed_at=NOW)
        self.assertEqual(fetch_view_events_since(self.db, 0), [])
        self.assertIsNone(fetch_view_count(self.db, "missing"))

    def test_increment_reports_missing_video(self) -> None:
        self.assertFalse(increment_view_count(self.db, "missing"))
        self.assertTrue(increment_view_count(self.db, "v1"))
        self.assertEqual(fetch_view_count(self.db, "v1"), 5)

    def test_events_filter_by_video_and_time(self) -> None:
        upsert_video(self.db, {"video_id": "v2", "created_at": NOW})
        track_video_view(self.db, "v1", viewed_at=NOW - 10)
        track_video_view(self.db, "v2", viewed_at=NOW)
        track_video_view(self.db, "v1", viewed_at=NOW + 10)
        self.assertEqual(
            [event["viewed_at"] for event in fetch_view_events_since(self.db, NOW, ["v1"])],
            [NOW + 10],
        )
        self.assertEqual(len(fetch_view_events_since(self.db, NOW - 10, ["v1", "v2"])), 3)
        self.assertEqual(fetch_view_events_since(self.db, 0, []), [])


if __name__ == "__main__":
    unittest.main()
