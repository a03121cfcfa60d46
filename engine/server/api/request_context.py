"""Provide request context runtime helpers."""

import threading

_REQUEST_CONTEXT = threading.local()


def set_request_id(request_id: str | None) -> None:
    """Store request id in thread-local context for logging correlation."""
    value = (request_id or "").strip()
    if value:
        _REQUEST_CONTEXT.request_id = value
        return
    if hasattr(_REQUEST_CONTEXT, "request_id"):
        delattr(_REQUEST_CONTEXT, "request_id")


def fetch_request_id() -> str | None:
    """Return the current request id from thread-local context when set."""
    value = getattr(_REQUEST_CONTEXT, "request_id", None)
    if not isinstance(value, str) or not value:
        return None
    return value


def clear_request_context() -> None:
    """Drop the request id once the response has been sent."""
    if hasattr(_REQUEST_CONTEXT, "request_id"):
        delattr(_REQUEST_CONTEXT, "request_id")
