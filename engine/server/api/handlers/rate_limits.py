"""Internal rate-limit endpoints for the account and comment services.

Routes (POST, JSON body ``{"key": "..."}``):
- /internal/rate-limits/{scope}/check: 429 when the key is at its limit, records nothing.
- /internal/rate-limits/{scope}/acquire: check and record in one step.
- /internal/rate-limits/{scope}/record: register an action unconditionally.
- /internal/rate-limits/{scope}/reset: forget the key (successful login).

``scope`` is ``login`` (fixed window per IP) or ``comments`` (rolling window
per user).
"""
from __future__ import annotations

from typing import Any

from http_utils import read_json_body, respond_json
from rate_limits import RateLimitExceeded

RATE_LIMIT_ACTIONS = ("check", "acquire", "record", "reset")


def parse_rate_limit_path(path: str) -> tuple[str, str] | None:
    """Return (scope, action) for /internal/rate-limits/{scope}/{action}."""
    prefix = "/internal/rate-limits/"
    if not path.startswith(prefix):
        return None
    parts = path[len(prefix):].strip("/").split("/")
    if len(parts) != 2 or not all(parts):
        return None
    return parts[0], parts[1]


def _respond_exceeded(handler: Any, exc: RateLimitExceeded) -> None:
    respond_json(
        handler,
        429,
        exc.to_payload(),
        headers={"retry-after": str(exc.retry_after_seconds)},
    )


def handle_rate_limit_request(handler: Any, server: Any, scope: str, action: str) -> bool:
    """Dispatch one internal rate-limit call."""
    try:
        limiter = server.rate_limits.limiter(scope)
    except ValueError as exc:
        respond_json(handler, 404, {"error": str(exc)})
        return True
    if action not in RATE_LIMIT_ACTIONS:
        respond_json(handler, 404, {"error": f"Unknown rate limit action: {action}"})
        return True

    try:
        body = read_json_body(handler)
    except ValueError as exc:
        respond_json(handler, 400, {"error": str(exc)})
        return True
    key = body.get("key")
    if not isinstance(key, str) or not key.strip():
        respond_json(handler, 400, {"error": "Missing key"})
        return True
    key = key.strip()

    if action == "reset":
        limiter.reset(key)
        respond_json(handler, 200, {"ok": True, "scope": scope})
        return True
    if action == "record":
        limiter.record(key)
    elif action == "check":
        try:
            limiter.check(key)
        except RateLimitExceeded as exc:
            _respond_exceeded(handler, exc)
            return True
    elif not limiter.try_acquire(key):
        try:
            limiter.check(key)
        except RateLimitExceeded as exc:
            _respond_exceeded(handler, exc)
            return True
        # Window rolled over between the two calls.
        respond_json(handler, 429, {"error": "Rate limit exceeded", "scope": scope})
        return True

    respond_json(
        handler,
        200,
        {
            "ok": True,
            "scope": scope,
            "current_count": limiter.current_count(key),
            "remaining": limiter.remaining(key),
        },
    )
    return True
