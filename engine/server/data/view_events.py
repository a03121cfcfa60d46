"""Append-only view event log.

Rows are written by view tracking and read by both the per-request scorer and
the popular ETL. Nothing in the engine updates or deletes them.
"""
from __future__ import annotations

import sqlite3
from typing import Any, Sequence

from data.time import now_ms
from data.videos import increment_view_count

# Keeps IN (...) lists under SQLite's host parameter limit.
_ID_CHUNK_SIZE = 500


def ensure_view_event_schema(conn: sqlite3.Connection) -> None:
    """Create the view events table and its read indexes if missing."""
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS video_views (
          event_id INTEGER PRIMARY KEY AUTOINCREMENT,
          video_id TEXT NOT NULL,
          viewed_at INTEGER NOT NULL,
          actor_id TEXT,
          ip_address TEXT,
          user_agent TEXT
        );
        CREATE INDEX IF NOT EXISTS video_views_viewed_at_idx
          ON video_views (viewed_at);
        CREATE INDEX IF NOT EXISTS video_views_video_idx
          ON video_views (video_id, viewed_at);
        """
    )
    conn.commit()


def record_view_event(
    conn: sqlite3.Connection,
    video_id: str,
    viewed_at: int | None = None,
    actor_id: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    commit: bool = True,
) -> int:
    """Append one view event and return its id."""
    cursor = conn.execute(
        """
        INSERT INTO video_views (video_id, viewed_at, actor_id, ip_address, user_agent)
        VALUES (?, ?, ?, ?, ?)
        """,
        (
            str(video_id),
            int(viewed_at if viewed_at is not None else now_ms()),
            actor_id,
            ip_address,
            user_agent,
        ),
    )
    if commit:
        conn.commit()
    return int(cursor.lastrowid)


def track_video_view(
    conn: sqlite3.Connection,
    video_id: str,
    actor_id: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    viewed_at: int | None = None,
) -> dict[str, Any]:
    """Record a view event and bump the counter in one transaction.

    Raises LookupError when the video is not in the catalog; nothing is
    written in that case.
    """
    try:
        if not increment_view_count(conn, video_id, commit=False):
            conn.rollback()
            raise LookupError(f"Video not found: {video_id}")
        event_id = record_view_event(
            conn,
            video_id,
            viewed_at=viewed_at,
            actor_id=actor_id,
            ip_address=ip_address,
            user_agent=user_agent,
            commit=False,
        )
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise
    return {"ok": True, "event_id": event_id, "video_id": str(video_id)}


def fetch_view_events_since(
    conn: sqlite3.Connection,
    since_ms: int,
    video_ids: Sequence[str] | None = None,
) -> list[dict[str, Any]]:
    """Return view events with ``viewed_at >= since_ms``, optionally for some videos."""
    if video_ids is None:
        query = conn.execute(
            """
            SELECT event_id, video_id, viewed_at, actor_id
            FROM video_views
            WHERE viewed_at >= ?
            ORDER BY event_id
            """,
            (int(since_ms),),
        )
        return [_event_row(row) for row in query]

    ids = [str(video_id) for video_id in video_ids]
    events: list[dict[str, Any]] = []
    for start in range(0, len(ids), _ID_CHUNK_SIZE):
        chunk = ids[start : start + _ID_CHUNK_SIZE]
        placeholders = ", ".join("?" for _ in chunk)
        query = conn.execute(
            f"""
            SELECT event_id, video_id, viewed_at, actor_id
            FROM video_views
            WHERE viewed_at >= ? AND video_id IN ({placeholders})
            ORDER BY event_id
            """,
            [int(since_ms), *chunk],
        )
        events.extend(_event_row(row) for row in query)
    return events


def _event_row(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "event_id": row["event_id"],
        "video_id": row["video_id"],
        "viewed_at": row["viewed_at"],
        "actor_id": row["actor_id"],
    }
