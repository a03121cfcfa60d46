#!/usr/bin/env python3
"""Local trending API server.

This module wires the SQLite catalog, the spatial search strategy, the
trending engine, the popular ETL (with its daily scheduler) and the rate
limiters into HTTP handlers.
"""
import argparse
import logging
import os
import sqlite3
import sys
import threading
import uuid
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, unquote, urlparse

script_dir = Path(__file__).resolve().parent
server_dir = script_dir.parent
if str(server_dir) not in sys.path:
    # Allow imports from engine/server when running this module directly.
    sys.path.insert(0, str(server_dir))

from server_config import (
    COMMENT_RATE_LIMIT_MAX_ACTIONS,
    COMMENT_RATE_LIMIT_WINDOW_SECONDS,
    DEFAULT_DB_PATH,
    DEFAULT_POPULAR_ETL_SCHEDULER,
    DEFAULT_SERVER_HOST,
    DEFAULT_SERVER_PORT,
    DEFAULT_SPATIAL_STRATEGY,
    DEFAULT_TRENDING_LOG_PROFILE,
    DEV_SERVER_PORT,
    LOGIN_RATE_LIMIT_MAX_ATTEMPTS,
    LOGIN_RATE_LIMIT_WINDOW_SECONDS,
    POPULAR_ETL_SCHEDULE_HOUR_UTC,
    POPULAR_ETL_SCHEDULE_MINUTE_UTC,
    POPULAR_ETL_TOP_K,
    POPULAR_ETL_WINDOW_DAYS,
)
from logging_profiles import configure_engine_logging
from data.db import connect_db, ensure_engine_schema
from handlers.popular import handle_popular_etl_run, handle_popular_top
from handlers.rate_limits import handle_rate_limit_request, parse_rate_limit_path
from handlers.trending import handle_trending_request
from handlers.views import handle_track_view
from http_utils import client_ip, respond_json
from rate_limits import RateLimitService
from request_context import clear_request_context, set_request_id
from trending.builder import SPATIAL_STRATEGIES, build_popular_etl, build_trending_engine
from trending.engine import TrendingQueryEngine
from trending.etl import PopularEtlScheduler, PopularEtlSettings, PopularVideoETL


def _parse_port(value: str) -> int:
    """Handle parse port."""
    port = int(value)
    if port < 1 or port > 65535:
        raise argparse.ArgumentTypeError("port must be in range 1..65535")
    return port


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Handle parse args."""
    parser = argparse.ArgumentParser(
        description="Run the local trending API server.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--dev",
        action="store_true",
        help=f"Bind port {DEV_SERVER_PORT} and skip the ETL scheduler unless overridden.",
    )
    parser.add_argument("--host", default=DEFAULT_SERVER_HOST, help="Host/interface to bind.")
    parser.add_argument(
        "--port",
        type=_parse_port,
        default=None,
        help=f"TCP port (default {DEFAULT_SERVER_PORT}, or {DEV_SERVER_PORT} with --dev).",
    )
    parser.add_argument(
        "--db",
        default=DEFAULT_DB_PATH,
        help="SQLite database path, relative to the repo root unless absolute.",
    )
    parser.add_argument(
        "--spatial-strategy",
        choices=SPATIAL_STRATEGIES,
        default=DEFAULT_SPATIAL_STRATEGY,
        help="Radius search implementation, chosen once at startup.",
    )
    parser.add_argument(
        "--log-profile",
        default=DEFAULT_TRENDING_LOG_PROFILE,
        help="Log view mode hint (focused or verbose).",
    )
    scheduler_group = parser.add_mutually_exclusive_group()
    scheduler_group.add_argument(
        "--scheduler",
        dest="scheduler",
        action="store_true",
        help="Run the popular ETL daily at the configured UTC time.",
    )
    scheduler_group.add_argument(
        "--no-scheduler",
        dest="scheduler",
        action="store_false",
        help="Disable the daily popular ETL (manual trigger still works).",
    )
    parser.set_defaults(scheduler=None)
    return parser.parse_args(argv)


class TrendingServer(ThreadingHTTPServer):
    """Threaded HTTP server with the shared DB handle and services."""

    daemon_threads = True

    def __init__(
        self,
        server_address: tuple[str, int],
        handler_class: type[BaseHTTPRequestHandler],
        db: sqlite3.Connection,
        db_lock: threading.Lock,
        trending_engine: TrendingQueryEngine,
        popular_etl: PopularVideoETL,
        rate_limits: RateLimitService,
        scheduler: PopularEtlScheduler | None = None,
    ) -> None:
        """Initialize the instance."""
        super().__init__(server_address, handler_class)
        self.db = db
        self.db_lock = db_lock
        self.trending_engine = trending_engine
        self.popular_etl = popular_etl
        self.rate_limits = rate_limits
        self.scheduler = scheduler


def _extract_view_video_id(path: str) -> str | None:
    """Return {id} for /api/videos/{id}/view."""
    prefix = "/api/videos/"
    suffix = "/view"
    if not path.startswith(prefix) or not path.endswith(suffix):
        return None
    raw = path[len(prefix): -len(suffix)]
    if not raw or "/" in raw:
        return None
    return unquote(raw)


class TrendingHandler(BaseHTTPRequestHandler):
    """HTTP handler for trending, popular, view and rate-limit endpoints."""

    def _get_full_url(self) -> str:
        """Build absolute URL from forwarded headers and request path."""
        host = self.headers.get("Host", "").strip()
        if not host:
            return self.path
        proto = self.headers.get("X-Forwarded-Proto", "http").split(",", 1)[0].strip() or "http"
        return f"{proto}://{host}{self.path}"

    def log_message(self, format: str, *args: Any) -> None:
        """Emit structured access logs with real client IP and full URL."""
        status = args[1] if len(args) > 1 else "-"
        size = args[2] if len(args) > 2 else "-"
        logging.info(
            "[access] ip=%s method=%s url=%s status=%s bytes=%s",
            client_ip(self),
            self.command or "-",
            self._get_full_url(),
            status,
            size,
        )

    def _dispatch(self, route: Any) -> None:
        """Run one route with a request id bound for log correlation."""
        request_id = (self.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex[:8]
        set_request_id(request_id)
        try:
            route()
        finally:
            clear_request_context()

    def do_GET(self) -> None:  # noqa: N802
        """Handle health, trending and popular reads."""
        self._dispatch(self._route_get)

    def do_POST(self) -> None:  # noqa: N802
        """Handle view tracking, ETL trigger and internal rate limits."""
        self._dispatch(self._route_post)

    def _route_get(self) -> None:
        url = urlparse(self.path)
        if url.path == "/api/health":
            respond_json(
                self,
                200,
                {"ok": True, "spatialStrategy": self.server.trending_engine.strategy_name},
            )
            return
        if url.path == "/api/trending/local":
            handle_trending_request(self, self.server, parse_qs(url.query))
            return
        if url.path == "/api/popular/top3":
            handle_popular_top(self, self.server)
            return
        respond_json(self, 404, {"error": "Not found"})

    def _route_post(self) -> None:
        url = urlparse(self.path)
        if url.path == "/api/popular/etl/run":
            handle_popular_etl_run(self, self.server)
            return
        video_id = _extract_view_video_id(url.path)
        if video_id is not None:
            handle_track_view(self, self.server, video_id)
            return
        rate_limit_route = parse_rate_limit_path(url.path)
        if rate_limit_route is not None:
            scope, action = rate_limit_route
            handle_rate_limit_request(self, self.server, scope, action)
            return
        respond_json(self, 404, {"error": "Not found"})


def main(argv: list[str] | None = None) -> None:
    """Run the trending server."""
    args = parse_args(argv)
    host = args.host
    default_port = DEV_SERVER_PORT if args.dev else DEFAULT_SERVER_PORT
    port = args.port if args.port is not None else default_port
    if args.scheduler is None:
        scheduler_enabled = False if args.dev else DEFAULT_POPULAR_ETL_SCHEDULER
    else:
        scheduler_enabled = bool(args.scheduler)

    active_log_profile = configure_engine_logging(args.log_profile)

    repo_root = script_dir.parents[2]
    db_path = Path(args.db)
    if not db_path.is_absolute():
        db_path = (repo_root / db_path).resolve()
    db_path.parent.mkdir(parents=True, exist_ok=True)

    db = connect_db(db_path)
    ensure_engine_schema(db)
    db_lock = threading.Lock()

    trending_engine = build_trending_engine(db, db_lock, args.spatial_strategy)
    etl_settings = PopularEtlSettings(
        window_days=POPULAR_ETL_WINDOW_DAYS,
        top_k=POPULAR_ETL_TOP_K,
        schedule_hour_utc=POPULAR_ETL_SCHEDULE_HOUR_UTC,
        schedule_minute_utc=POPULAR_ETL_SCHEDULE_MINUTE_UTC,
    )
    popular_etl = build_popular_etl(db, db_lock, etl_settings)
    scheduler = PopularEtlScheduler(popular_etl) if scheduler_enabled else None
    rate_limits = RateLimitService(
        LOGIN_RATE_LIMIT_MAX_ATTEMPTS,
        LOGIN_RATE_LIMIT_WINDOW_SECONDS,
        COMMENT_RATE_LIMIT_MAX_ACTIONS,
        COMMENT_RATE_LIMIT_WINDOW_SECONDS,
    )

    server = TrendingServer(
        (host, port),
        TrendingHandler,
        db,
        db_lock,
        trending_engine,
        popular_etl,
        rate_limits,
        scheduler,
    )

    logging.info(
        "[service] lifecycle state=start component=trending-server pid=%d host=%s port=%d",
        os.getpid(),
        host,
        port,
    )
    logging.info("[trending-server] log_mode_hint=%s", active_log_profile)
    logging.info(
        "[trending-server] db=%s strategy=%s scheduler=%s",
        db_path,
        trending_engine.strategy_name,
        "on" if scheduler is not None else "off",
    )
    if scheduler is not None:
        scheduler.start()
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logging.info("[service] lifecycle state=stop component=trending-server")
    finally:
        if scheduler is not None:
            scheduler.stop()
        server.server_close()
        db.close()


if __name__ == "__main__":
    main()
