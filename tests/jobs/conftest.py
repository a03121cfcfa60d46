import subprocess
import sys
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parent.parent.parent
SERVER_DIR = ROOT_DIR / "engine" / "server"
JOB_SCRIPT = SERVER_DIR / "db" / "jobs" / "run-popular-etl.py"

if str(SERVER_DIR) not in sys.path:
    sys.path.insert(0, str(SERVER_DIR))

from data.db import connect_db, ensure_engine_schema  # noqa: E402
from data.time import DAY_MS, now_ms  # noqa: E402
from data.videos import upsert_video  # noqa: E402
from data.view_events import record_view_event  # noqa: E402


@pytest.fixture
def seeded_db(tmp_path):
    """
    Creates a trending DB with three videos and recent views.
    """
    db_path = tmp_path / "trending.db"
    conn = connect_db(db_path)
    ensure_engine_schema(conn)
    now = now_ms()
    for video_id in ("a", "b", "c", "d"):
        upsert_video(conn, {"video_id": video_id, "created_at": now - 5 * DAY_MS}, commit=False)
    views = {"a": 1, "b": 5, "c": 3}
    for video_id, count in views.items():
        for _ in range(count):
            record_view_event(conn, video_id, viewed_at=now - 60_000, commit=False)
    conn.commit()
    conn.close()
    return db_path


class JobRunner:
    def run(self, *args, check=True):
        cmd = [sys.executable, str(JOB_SCRIPT)] + [str(arg) for arg in args]
        result = subprocess.run(cmd, capture_output=True, text=True, encoding="utf-8")
        if check and result.returncode != 0:
            pytest.fail(
                f"Job failed with code {result.returncode}: {' '.join(cmd)}\n"
                f"STDOUT:\n{result.stdout}\nSTDERR:\n{result.stderr}"
            )
        return result


@pytest.fixture
def job():
    return JobRunner()
