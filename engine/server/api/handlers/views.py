"""View tracking handler: append a view event and bump the counter."""
from __future__ import annotations

import logging
import sqlite3
from typing import Any

from data.view_events import track_video_view
from http_utils import client_ip, read_json_body, respond_json


def handle_track_view(handler: Any, server: Any, video_id: str) -> bool:
    """Serve POST /api/videos/{id}/view."""
    try:
        body = read_json_body(handler)
    except ValueError as exc:
        respond_json(handler, 400, {"error": str(exc)})
        return True

    actor_id = body.get("actor_id")
    if actor_id is not None and not isinstance(actor_id, str):
        respond_json(handler, 400, {"error": "actor_id must be a string"})
        return True

    try:
        with server.db_lock:
            result = track_video_view(
                server.db,
                video_id,
                actor_id=actor_id,
                ip_address=client_ip(handler),
                user_agent=handler.headers.get("User-Agent"),
            )
    except LookupError as exc:
        respond_json(handler, 404, {"error": str(exc)})
        return True
    except sqlite3.Error as exc:
        logging.error("[views] storage failure video_id=%s error=%s", video_id, type(exc).__name__)
        respond_json(handler, 500, {"error": "Storage failure"})
        return True

    logging.info("[views] tracked video_id=%s event_id=%s", video_id, result["event_id"])
    respond_json(handler, 200, result)
    return True
