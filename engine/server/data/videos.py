"""Video catalog reads, location index and the atomic view counter.

The catalog itself is owned by the upload/account side of the product; the
engine only reads rows and bumps ``view_count``. ``upsert_video`` exists for
catalog sync and test seeding.
"""
from __future__ import annotations

import sqlite3
from typing import Any, Iterable

VIDEO_COLUMNS = (
    "video_id",
    "title",
    "latitude",
    "longitude",
    "created_at",
    "duration",
    "view_count",
    "like_count",
)


def ensure_video_schema(conn: sqlite3.Connection) -> None:
    """Create the videos table plus the R*Tree location index and its triggers."""
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS videos (
          video_id TEXT PRIMARY KEY,
          title TEXT,
          latitude REAL,
          longitude REAL,
          created_at INTEGER NOT NULL,
          duration INTEGER,
          view_count INTEGER NOT NULL DEFAULT 0 CHECK (view_count >= 0),
          like_count INTEGER NOT NULL DEFAULT 0 CHECK (like_count >= 0)
        );

        CREATE VIRTUAL TABLE IF NOT EXISTS video_locations USING rtree(
          id,
          min_lat, max_lat,
          min_lon, max_lon
        );

        CREATE TRIGGER IF NOT EXISTS videos_location_insert
        AFTER INSERT ON videos
        WHEN new.latitude IS NOT NULL AND new.longitude IS NOT NULL
        BEGIN
          INSERT INTO video_locations (id, min_lat, max_lat, min_lon, max_lon)
          VALUES (new.rowid, new.latitude, new.latitude, new.longitude, new.longitude);
        END;

        CREATE TRIGGER IF NOT EXISTS videos_location_update
        AFTER UPDATE OF latitude, longitude ON videos
        BEGIN
          DELETE FROM video_locations WHERE id = old.rowid;
          INSERT INTO video_locations (id, min_lat, max_lat, min_lon, max_lon)
          SELECT new.rowid, new.latitude, new.latitude, new.longitude, new.longitude
          WHERE new.latitude IS NOT NULL AND new.longitude IS NOT NULL;
        END;

        CREATE TRIGGER IF NOT EXISTS videos_location_delete
        AFTER DELETE ON videos
        BEGIN
          DELETE FROM video_locations WHERE id = old.rowid;
        END;
        """
    )
    rebuild_location_index(conn)
    conn.commit()


def rebuild_location_index(conn: sqlite3.Connection) -> int:
    """Backfill index entries for located videos inserted before the triggers existed."""
    cursor = conn.execute(
        """
        INSERT INTO video_locations (id, min_lat, max_lat, min_lon, max_lon)
        SELECT v.rowid, v.latitude, v.latitude, v.longitude, v.longitude
        FROM videos v
        WHERE v.latitude IS NOT NULL
          AND v.longitude IS NOT NULL
          AND v.rowid NOT IN (SELECT id FROM video_locations)
        """
    )
    return int(cursor.rowcount or 0)


def upsert_video(conn: sqlite3.Connection, video: dict[str, Any], commit: bool = True) -> None:
    """Insert or refresh one catalog row (counters included)."""
    conn.execute(
        """
        INSERT INTO videos (
          video_id, title, latitude, longitude, created_at, duration, view_count, like_count
        ) VALUES (
          :video_id, :title, :latitude, :longitude, :created_at, :duration, :view_count, :like_count
        )
        ON CONFLICT(video_id) DO UPDATE SET
          title = excluded.title,
          latitude = excluded.latitude,
          longitude = excluded.longitude,
          created_at = excluded.created_at,
          duration = excluded.duration,
          view_count = excluded.view_count,
          like_count = excluded.like_count
        """,
        {
            "video_id": str(video["video_id"]),
            "title": video.get("title"),
            "latitude": video.get("latitude"),
            "longitude": video.get("longitude"),
            "created_at": int(video["created_at"]),
            "duration": video.get("duration"),
            "view_count": int(video.get("view_count") or 0),
            "like_count": int(video.get("like_count") or 0),
        },
    )
    if commit:
        conn.commit()


def fetch_located_videos(conn: sqlite3.Connection) -> list[dict[str, Any]]:
    """Return every video that carries both coordinates."""
    query = conn.execute(
        f"""
        SELECT {", ".join(VIDEO_COLUMNS)}
        FROM videos
        WHERE latitude IS NOT NULL AND longitude IS NOT NULL
        """
    )
    return [_video_row(row) for row in query]


def fetch_videos_in_boxes(
    conn: sqlite3.Connection,
    boxes: Iterable[tuple[float, float, float, float]],
) -> list[dict[str, Any]]:
    """Return videos whose location index entry overlaps any (min_lat, max_lat, min_lon, max_lon) box."""
    seen: set[str] = set()
    rows: list[dict[str, Any]] = []
    for min_lat, max_lat, min_lon, max_lon in boxes:
        query = conn.execute(
            """
            SELECT v.video_id, v.title, v.latitude, v.longitude, v.created_at,
                   v.duration, v.view_count, v.like_count
            FROM video_locations l
            JOIN videos v ON v.rowid = l.id
            WHERE l.max_lat >= ? AND l.min_lat <= ?
              AND l.max_lon >= ? AND l.min_lon <= ?
            """,
            (min_lat, max_lat, min_lon, max_lon),
        )
        for row in query:
            if row["video_id"] in seen:
                continue
            seen.add(row["video_id"])
            rows.append(_video_row(row))
    return rows


def increment_view_count(
    conn: sqlite3.Connection, video_id: str, commit: bool = True
) -> bool:
    """Bump the persistent view counter by one in a single UPDATE.

    Returns False when the video does not exist.
    """
    cursor = conn.execute(
        "UPDATE videos SET view_count = view_count + 1 WHERE video_id = ?",
        (str(video_id),),
    )
    if commit:
        conn.commit()
    return int(cursor.rowcount or 0) > 0


def fetch_view_count(conn: sqlite3.Connection, video_id: str) -> int | None:
    """Return the stored view counter, or None for an unknown video."""
    row = conn.execute(
        "SELECT view_count FROM videos WHERE video_id = ?", (str(video_id),)
    ).fetchone()
    if row is None:
        return None
    return int(row["view_count"])


def _video_row(row: sqlite3.Row) -> dict[str, Any]:
    return {column: row[column] for column in VIDEO_COLUMNS}
