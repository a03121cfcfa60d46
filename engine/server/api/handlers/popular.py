"""Popular snapshot read and manual ETL trigger handlers."""
from __future__ import annotations

import logging
import sqlite3
from typing import Any

from data.popular_snapshots import fetch_top_popular
from http_utils import respond_json


def handle_popular_top(handler: Any, server: Any) -> bool:
    """Serve GET /api/popular/top3 from the current snapshot."""
    try:
        with server.db_lock:
            rows = fetch_top_popular(server.db)
    except sqlite3.Error as exc:
        logging.error("[popular] storage failure error=%s", type(exc).__name__)
        respond_json(handler, 500, {"error": "Storage failure"})
        return True
    respond_json(handler, 200, {"total": len(rows), "rows": rows})
    return True


def handle_popular_etl_run(handler: Any, server: Any) -> bool:
    """Run the popular ETL now; reports only success or failure."""
    result = server.popular_etl.run_now()
    if not result.ok:
        # Details are already in the [popular-etl] run failed log line.
        respond_json(handler, 500, {"ok": False, "error": "Popular ETL run failed"})
        return True
    respond_json(handler, 200, result.to_payload())
    return True
