"""Provide db runtime helpers."""

from __future__ import annotations

import sqlite3
from pathlib import Path

from data.popular_snapshots import ensure_popular_snapshot_schema
from data.videos import ensure_video_schema
from data.view_events import ensure_view_event_schema

# Seconds a writer waits on a locked database before raising.
DEFAULT_BUSY_TIMEOUT_SECONDS = 30.0


def connect_db(path: Path | str, timeout: float = DEFAULT_BUSY_TIMEOUT_SECONDS) -> sqlite3.Connection:
    """Open the engine database for shared reads and writes."""
    target = path.as_posix() if isinstance(path, Path) else str(path)
    conn = sqlite3.connect(target, check_same_thread=False, timeout=timeout)
    conn.row_factory = sqlite3.Row
    if target != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL")
    return conn


def ensure_engine_schema(conn: sqlite3.Connection) -> None:
    """Create every table, index and trigger the engine reads or writes."""
    ensure_video_schema(conn)
    ensure_view_event_schema(conn)
    ensure_popular_snapshot_schema(conn)
