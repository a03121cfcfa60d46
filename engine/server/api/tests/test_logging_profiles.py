"""Tests for structured trending-server logging helpers."""

from __future__ import annotations

import io
import json
import logging
import sys
import unittest
from pathlib import Path


API_DIR = Path(__file__).resolve().parents[1]
if str(API_DIR) not in sys.path:
    sys.path.insert(0, str(API_DIR))

from logging_profiles import (  # noqa: E402
    EngineJsonFormatter,
    normalize_log_mode,
    payload_visible_in_mode,
)
from request_context import clear_request_context, fetch_request_id, set_request_id  # noqa: E402


class EngineJsonFormatterTests(unittest.TestCase):
    """Validate JSON log formatting and mode-tag behavior."""

    def tearDown(self) -> None:
        """Clear request-local context after each test."""
        clear_request_context()

    def _format_record(self, level: int, message: str) -> dict[str, object]:
        """Format one log record into a structured JSON payload."""
        formatter = EngineJsonFormatter()
        record = logging.LogRecord(
            name="test",
            level=level,
            pathname=__file__,
            lineno=1,
            msg=message,
            args=(),
            exc_info=None,
        )
        return json.loads(formatter.format(record))

    def test_trending_done_is_focused(self) -> None:
        payload = self._format_record(
            logging.INFO, "[trending] done count=10 scored=14 dropped=1 ms=3"
        )
        self.assertEqual(payload["event"], "trending.request_done")
        self.assertIn("focused", payload["modes"])
        self.assertEqual(payload["context"]["dropped"], "1")

    def test_trending_candidates_is_verbose_only(self) -> None:
        payload = self._format_record(
            logging.INFO, "[trending] candidates=14 events=120 radius_km=50.0 days=7 strategy=indexed"
        )
        self.assertEqual(payload["event"], "trending.candidates")
        self.assertFalse(payload_visible_in_mode(payload, "focused"))
        self.assertTrue(payload_visible_in_mode(payload, "verbose"))

    def test_warning_is_visible_in_all_modes(self) -> None:
        payload = self._format_record(logging.WARNING, "[trending] skip video_id=v9 error=KeyError")
        self.assertEqual(payload["event"], "trending.info")
        self.assertEqual(payload["modes"], ["focused", "verbose"])
        self.assertTrue(payload_visible_in_mode(payload, "focused"))

    def test_rate_limit_rejection_is_focused(self) -> None:
        payload = self._format_record(
            logging.INFO, "[rate-limit] rejected scope=comments count=60 max=60"
        )
        self.assertEqual(payload["event"], "rate_limit.rejected")
        self.assertEqual(payload["context"]["scope"], "comments")

    def test_unprefixed_message_falls_back(self) -> None:
        payload = self._format_record(logging.INFO, "plain message")
        self.assertEqual(payload["event"], "trending_server.log")
        self.assertEqual(payload["modes"], ["verbose"])

    def test_request_id_is_extracted_from_message_prefix(self) -> None:
        payload = self._format_record(logging.INFO, "[trending][8cd3e9] start limit=10")
        self.assertEqual(payload["request_id"], "8cd3e9")

    def test_request_id_is_taken_from_request_context(self) -> None:
        set_request_id("7f33a0")
        payload = self._format_record(logging.INFO, "[views] tracked video_id=v1 event_id=4")
        self.assertEqual(payload["request_id"], "7f33a0")
        self.assertEqual(payload["event"], "views.tracked")

    def test_request_context_clears(self) -> None:
        set_request_id("abc")
        clear_request_context()
        self.assertIsNone(fetch_request_id())
        set_request_id("  ")
        self.assertIsNone(fetch_request_id())

    def test_service_lifecycle_drops_message(self) -> None:
        payload = self._format_record(
            logging.INFO,
            "[service] lifecycle state=start component=trending-server pid=123 host=127.0.0.1 port=7070",
        )
        self.assertEqual(payload["event"], "service.lifecycle")
        self.assertNotIn("message", payload)
        self.assertEqual(payload["context"]["component"], "trending-server")

    def test_mode_normalization_falls_back_to_verbose(self) -> None:
        self.assertEqual(normalize_log_mode("focused"), "focused")
        self.assertEqual(normalize_log_mode(""), "verbose")
        self.assertEqual(normalize_log_mode("unknown"), "verbose")

    def test_smoke_stream_contains_valid_json_events_with_modes(self) -> None:
        """Emit a mini request-flow stream and validate JSON + expected mode tags."""
        stream = io.StringIO()
        logger = logging.getLogger("test.trending.json")
        logger.handlers.clear()
        logger.setLevel(logging.INFO)
        logger.propagate = False
        handler = logging.StreamHandler(stream)
        handler.setFormatter(EngineJsonFormatter())
        logger.addHandler(handler)

        set_request_id("abc123")
        logger.info("[trending] done count=3 scored=3 dropped=0 ms=2")
        logger.info("[popular-etl] run ok trigger=manual events=40 scored=7 snapshot=3 top=v1:24 ms=5")
        logger.info("[rate-limit] rejected scope=login count=6 max=5")
        logger.info("[access] ip=127.0.0.1 method=GET url=http://127.0.0.1:7070/api/popular/top3 status=200 bytes=-")

        events = []
        for line in stream.getvalue().splitlines():
            payload = json.loads(line)
            events.append(payload["event"])
            self.assertIn("ts", payload)
            self.assertEqual(payload["request_id"], "abc123")
            self.assertTrue(payload_visible_in_mode(payload, "focused"))

        self.assertEqual(
            set(events),
            {"trending.request_done", "popular_etl.run_ok", "rate_limit.rejected", "access"},
        )


if __name__ == "__main__":
    unittest.main()
