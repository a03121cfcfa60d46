"""HTTP and request utilities for the trending server."""
from __future__ import annotations

import errno
import json
from http.server import BaseHTTPRequestHandler
from typing import Any

from server_config import DEFAULT_JSON_BODY_LIMIT


def _is_client_disconnect_error(exc: OSError) -> bool:
    """Return True when the client socket closes during response write."""
    return exc.errno in {errno.EPIPE, errno.ECONNRESET}


def _finish_response(handler: BaseHTTPRequestHandler, body: bytes = b"") -> bool:
    """Flush headers and body, suppressing expected client disconnect errors."""
    try:
        handler.end_headers()
        if body:
            handler.wfile.write(body)
    except OSError as exc:
        if _is_client_disconnect_error(exc):
            return False
        raise
    return True


def respond_json(
    handler: BaseHTTPRequestHandler,
    status: int,
    payload: dict[str, Any],
    headers: dict[str, str] | None = None,
) -> bool:
    """Send a JSON response."""
    body = json.dumps(payload, indent=2).encode("utf-8")
    handler.send_response(status)
    handler.send_header("content-type", "application/json; charset=utf-8")
    handler.send_header("content-length", str(len(body)))
    for name, value in (headers or {}).items():
        handler.send_header(name, value)
    return _finish_response(handler, body)


def read_json_body(
    handler: BaseHTTPRequestHandler, limit: int = DEFAULT_JSON_BODY_LIMIT
) -> dict[str, Any]:
    """Read and parse a JSON object body; an empty body is ``{}``."""
    length = handler.headers.get("content-length")
    try:
        size = int(length or "0")
    except ValueError as exc:
        raise ValueError("Invalid content-length") from exc
    if size <= 0:
        return {}
    if size > limit:
        raise ValueError("Invalid JSON body")
    raw = handler.rfile.read(size).decode("utf-8")
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("Invalid JSON body") from exc
    if isinstance(parsed, dict):
        return parsed
    raise ValueError("Invalid JSON body")


def client_ip(handler: BaseHTTPRequestHandler) -> str:
    """Resolve client IP behind reverse proxy headers when available."""
    forwarded_for = (handler.headers.get("X-Forwarded-For") or "").strip()
    if forwarded_for:
        first = forwarded_for.split(",", 1)[0].strip()
        if first:
            return first
    real_ip = (handler.headers.get("X-Real-IP") or "").strip()
    if real_ip:
        return real_ip
    if getattr(handler, "client_address", None):
        return handler.client_address[0]
    return "unknown"
