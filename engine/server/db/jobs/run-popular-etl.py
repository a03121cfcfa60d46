#!/usr/bin/env python3
"""Run one popular-video ETL pass against the trending DB and publish a snapshot."""
import argparse
import json
import logging
import sys
import threading
from pathlib import Path

script_dir = Path(__file__).resolve().parent
server_dir = script_dir.parents[1]
repo_root = script_dir.parents[3]
for path in (server_dir, server_dir / "api"):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from data.db import connect_db, ensure_engine_schema
from data.popular_snapshots import list_snapshots
from data.popularity import MAX_TOP_K
from server_config import DEFAULT_DB_PATH, POPULAR_ETL_TOP_K, POPULAR_ETL_WINDOW_DAYS
from trending.builder import build_popular_etl
from trending.etl import PopularEtlSettings


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Aggregate recent views and publish the popular top list.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--db",
        default=DEFAULT_DB_PATH,
        metavar="PATH",
        help="Path to database, relative to the repo root unless absolute.",
    )
    parser.add_argument(
        "--window-days",
        type=int,
        default=POPULAR_ETL_WINDOW_DAYS,
        metavar="N",
        help="Trailing window of view events to aggregate.",
    )
    parser.add_argument(
        "--top-k",
        type=int,
        default=POPULAR_ETL_TOP_K,
        metavar="N",
        help="Number of videos kept in the snapshot.",
    )
    parser.add_argument(
        "--history",
        type=int,
        default=0,
        metavar="N",
        help="Also print the last N snapshots after the run.",
    )
    args = parser.parse_args(argv)
    if args.window_days < 1:
        parser.error("--window-days must be >= 1")
    if not 1 <= args.top_k <= MAX_TOP_K:
        parser.error(f"--top-k must be between 1 and {MAX_TOP_K}")
    return args


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

    db_path = Path(args.db)
    if not db_path.is_absolute():
        db_path = (repo_root / db_path).resolve()
    conn = connect_db(db_path)
    try:
        ensure_engine_schema(conn)
        settings = PopularEtlSettings(window_days=args.window_days, top_k=args.top_k)
        etl = build_popular_etl(conn, threading.Lock(), settings)
        result = etl.run_now()
        print(json.dumps(result.to_payload(), indent=2))
        if args.history > 0:
            history = [snapshot.to_payload() for snapshot in list_snapshots(conn, args.history)]
            print(json.dumps({"history": history}, indent=2))
    finally:
        conn.close()
    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
