"""Append-only log of popular-video snapshots with a single current pointer.

Each ETL run appends a snapshot and its ranked entries, then swaps the
pointer row, all inside one transaction. Readers resolve "latest" through the
pointer in a single statement, so they see either the previous or the new
snapshot and never an intermediate state.
"""
from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Any, Sequence

from data.time import format_ms

_POINTER_ID = 1


@dataclass(frozen=True)
class SnapshotEntry:
    """One ranked row of a snapshot."""
    rank: int
    video_id: str
    score: float


@dataclass(frozen=True)
class PopularitySnapshot:
    """Immutable result of one ETL run."""
    snapshot_id: int
    computed_at: int
    window_days: int
    entries: tuple[SnapshotEntry, ...]
    is_latest: bool

    def to_payload(self) -> dict[str, Any]:
        return {
            "snapshot_id": self.snapshot_id,
            "computed_at": self.computed_at,
            "computed_at_iso": format_ms(self.computed_at),
            "window_days": self.window_days,
            "is_latest": self.is_latest,
            "entries": [
                {"rank": entry.rank, "video_id": entry.video_id, "score": entry.score}
                for entry in self.entries
            ],
        }


def ensure_popular_snapshot_schema(conn: sqlite3.Connection) -> None:
    """Create snapshot log, entry and pointer tables if missing."""
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS popular_snapshots (
          snapshot_id INTEGER PRIMARY KEY AUTOINCREMENT,
          computed_at INTEGER NOT NULL,
          window_days INTEGER NOT NULL
        );

        CREATE TABLE IF NOT EXISTS popular_snapshot_entries (
          snapshot_id INTEGER NOT NULL REFERENCES popular_snapshots (snapshot_id),
          rank INTEGER NOT NULL,
          video_id TEXT NOT NULL,
          score REAL NOT NULL,
          PRIMARY KEY (snapshot_id, rank)
        );

        CREATE TABLE IF NOT EXISTS popular_snapshot_pointer (
          pointer_id INTEGER PRIMARY KEY CHECK (pointer_id = 1),
          snapshot_id INTEGER NOT NULL REFERENCES popular_snapshots (snapshot_id),
          updated_at INTEGER NOT NULL
        );
        """
    )
    conn.commit()


def publish_snapshot(
    conn: sqlite3.Connection,
    computed_at: int,
    ranked: Sequence[tuple[str, float]],
    window_days: int,
) -> PopularitySnapshot:
    """Append a snapshot and make it current atomically.

    On any error the transaction is rolled back and the previous pointer
    stays in place.
    """
    with conn:
        cursor = conn.execute(
            "INSERT INTO popular_snapshots (computed_at, window_days) VALUES (?, ?)",
            (int(computed_at), int(window_days)),
        )
        snapshot_id = int(cursor.lastrowid)
        entries = tuple(
            SnapshotEntry(rank=index + 1, video_id=str(video_id), score=float(score))
            for index, (video_id, score) in enumerate(ranked)
        )
        conn.executemany(
            """
            INSERT INTO popular_snapshot_entries (snapshot_id, rank, video_id, score)
            VALUES (?, ?, ?, ?)
            """,
            [(snapshot_id, entry.rank, entry.video_id, entry.score) for entry in entries],
        )
        conn.execute(
            """
            INSERT INTO popular_snapshot_pointer (pointer_id, snapshot_id, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(pointer_id) DO UPDATE SET
              snapshot_id = excluded.snapshot_id,
              updated_at = excluded.updated_at
            """,
            (_POINTER_ID, snapshot_id, int(computed_at)),
        )
    return PopularitySnapshot(
        snapshot_id=snapshot_id,
        computed_at=int(computed_at),
        window_days=int(window_days),
        entries=entries,
        is_latest=True,
    )


def fetch_latest_snapshot(conn: sqlite3.Connection) -> PopularitySnapshot | None:
    """Return the snapshot the pointer references, or None before the first run."""
    rows = conn.execute(
        """
        SELECT s.snapshot_id, s.computed_at, s.window_days,
               e.rank, e.video_id, e.score
        FROM popular_snapshot_pointer p
        JOIN popular_snapshots s ON s.snapshot_id = p.snapshot_id
        LEFT JOIN popular_snapshot_entries e ON e.snapshot_id = s.snapshot_id
        WHERE p.pointer_id = ?
        ORDER BY e.rank
        """,
        (_POINTER_ID,),
    ).fetchall()
    if not rows:
        return None
    first = rows[0]
    entries = tuple(
        SnapshotEntry(rank=int(row["rank"]), video_id=row["video_id"], score=float(row["score"]))
        for row in rows
        if row["rank"] is not None
    )
    return PopularitySnapshot(
        snapshot_id=int(first["snapshot_id"]),
        computed_at=int(first["computed_at"]),
        window_days=int(first["window_days"]),
        entries=entries,
        is_latest=True,
    )


def list_snapshots(conn: sqlite3.Connection, limit: int = 10) -> list[PopularitySnapshot]:
    """Return recent snapshots, newest first, each flagged against the pointer."""
    header_rows = conn.execute(
        """
        SELECT s.snapshot_id, s.computed_at, s.window_days,
               (p.snapshot_id IS NOT NULL) AS is_latest
        FROM popular_snapshots s
        LEFT JOIN popular_snapshot_pointer p ON p.snapshot_id = s.snapshot_id
        ORDER BY s.snapshot_id DESC
        LIMIT ?
        """,
        (int(limit),),
    ).fetchall()
    snapshots: list[PopularitySnapshot] = []
    for header in header_rows:
        entry_rows = conn.execute(
            """
            SELECT rank, video_id, score FROM popular_snapshot_entries
            WHERE snapshot_id = ? ORDER BY rank
            """,
            (header["snapshot_id"],),
        ).fetchall()
        snapshots.append(
            PopularitySnapshot(
                snapshot_id=int(header["snapshot_id"]),
                computed_at=int(header["computed_at"]),
                window_days=int(header["window_days"]),
                entries=tuple(
                    SnapshotEntry(int(row["rank"]), row["video_id"], float(row["score"]))
                    for row in entry_rows
                ),
                is_latest=bool(header["is_latest"]),
            )
        )
    return snapshots


def fetch_top_popular(conn: sqlite3.Connection) -> list[dict[str, Any]]:
    """Return the latest top list joined with catalog rows.

    Entries whose video is no longer in the catalog are skipped.
    """
    rows = conn.execute(
        """
        SELECT s.computed_at, e.rank, e.score,
               v.video_id, v.title, v.latitude, v.longitude, v.created_at,
               v.duration, v.view_count, v.like_count
        FROM popular_snapshot_pointer p
        JOIN popular_snapshots s ON s.snapshot_id = p.snapshot_id
        JOIN popular_snapshot_entries e ON e.snapshot_id = s.snapshot_id
        JOIN videos v ON v.video_id = e.video_id
        WHERE p.pointer_id = ?
        ORDER BY e.rank
        """,
        (_POINTER_ID,),
    ).fetchall()
    return [
        {
            "rank": int(row["rank"]),
            "popularity_score": float(row["score"]),
            "pipeline_run_at": int(row["computed_at"]),
            "video": {
                "video_id": row["video_id"],
                "title": row["title"],
                "latitude": row["latitude"],
                "longitude": row["longitude"],
                "created_at": row["created_at"],
                "duration": row["duration"],
                "view_count": row["view_count"],
                "like_count": row["like_count"],
            },
        }
        for row in rows
    ]
