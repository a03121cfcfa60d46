"""Provide structured trending-server logging helpers with mode-tagged JSON events."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from request_context import fetch_request_id


SUPPORTED_LOG_MODES = ("focused", "verbose")
_ALL_MODES = list(SUPPORTED_LOG_MODES)
_PREFIX_RE = re.compile(r"^\[(?P<scope>[^\]]+)\]\s*(?P<body>.*)$")
_REQUEST_PREFIX_RE = re.compile(r"^\[[^\]]+\]\[(?P<request_id>[^\]]+)\]")
_LEADING_BLOCKS_RE = re.compile(r"^(?:\[[^\]]+\])+\s*")


@dataclass(frozen=True)
class _EventRule:
    """Map a message needle to stable event and view modes."""

    needle: str
    event: str
    modes: tuple[str, ...]


_EVENT_RULES = (
    _EventRule("[access]", "access", ("focused", "verbose")),
    _EventRule("[service] lifecycle", "service.lifecycle", ("focused", "verbose")),
    _EventRule("[trending] candidates=", "trending.candidates", ("verbose",)),
    _EventRule("[trending] done count=", "trending.request_done", ("focused", "verbose")),
    _EventRule("[popular-etl] run ok", "popular_etl.run_ok", ("focused", "verbose")),
    _EventRule("[popular-etl] run start", "popular_etl.run_start", ("verbose",)),
    _EventRule("[rate-limit] rejected", "rate_limit.rejected", ("focused", "verbose")),
    _EventRule("[views] tracked", "views.tracked", ("verbose",)),
)


def normalize_log_mode(mode: str | None) -> str:
    """Normalize mode names and fail safely to ``verbose``."""
    raw = (mode or "").strip().lower()
    if raw in SUPPORTED_LOG_MODES:
        return raw
    return "verbose"


def payload_visible_in_mode(payload: dict[str, Any], mode: str | None) -> bool:
    """Return True when a structured log payload should be visible in mode."""
    selected = normalize_log_mode(mode)
    level = str(payload.get("level") or "").upper()
    if level in {"WARNING", "ERROR", "CRITICAL"}:
        return True
    modes = payload.get("modes")
    if not isinstance(modes, list) or not modes:
        return selected == "verbose"
    return selected in modes


def _extract_request_id(record: logging.LogRecord, message: str) -> str | None:
    """Resolve request id from record extras, message prefix, or request context."""
    from_extra = getattr(record, "request_id", None)
    if isinstance(from_extra, str) and from_extra.strip():
        return from_extra.strip()

    matched = _REQUEST_PREFIX_RE.match(message)
    if matched:
        value = matched.group("request_id").strip()
        if value:
            return value

    return fetch_request_id()


def _extract_fields(message: str) -> dict[str, str]:
    """Extract best-effort ``key=value`` tokens from message text."""
    cleaned = _LEADING_BLOCKS_RE.sub("", message).strip()
    if not cleaned:
        return {}

    fields: dict[str, str] = {}
    for token in cleaned.split():
        if "=" not in token:
            continue
        key, value = token.split("=", 1)
        key = key.strip()
        value = value.strip().strip(",")
        if not key:
            continue
        fields[key] = value
    return fields


def _derive_event_name(message: str) -> str:
    """Derive a fallback event name from message prefix."""
    matched = _PREFIX_RE.match(message)
    if not matched:
        return "trending_server.log"
    scope = matched.group("scope").strip().lower().replace("-", "_")
    if not scope:
        return "trending_server.log"
    return f"{scope}.info"


def _classify_event(message: str, levelno: int) -> tuple[str, list[str]]:
    """Classify a log event and assign target viewing modes."""
    if levelno >= logging.WARNING:
        return _derive_event_name(message), _ALL_MODES

    for rule in _EVENT_RULES:
        if rule.needle in message:
            return rule.event, list(rule.modes)

    return _derive_event_name(message), ["verbose"]


class EngineJsonFormatter(logging.Formatter):
    """Render log records as JSON objects with mode tags."""

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON line."""
        message = record.getMessage()
        event, modes = _classify_event(message, record.levelno)
        request_id = _extract_request_id(record, message)
        fields = _extract_fields(message)

        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "event": event,
            "message": message,
            "modes": modes,
        }
        if request_id:
            payload["request_id"] = request_id
        if event == "service.lifecycle":
            payload.pop("message", None)
            payload["context"] = fields
        elif fields:
            payload["context"] = fields
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, separators=(",", ":"))


def configure_engine_logging(profile: str) -> str:
    """Configure root logger with JSON formatter and return normalized mode hint."""
    selected = normalize_log_mode(profile)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(logging.INFO)

    handler = logging.StreamHandler()
    handler.setLevel(logging.INFO)
    handler.setFormatter(EngineJsonFormatter())
    root_logger.addHandler(handler)
    return selected
