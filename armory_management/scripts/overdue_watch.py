#!/usr/bin/env python3
"""Poll active allocations and log the ones in the warning window or overdue."""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from services.overdue_service import OVERDUE_POLL_SECONDS, scan_active_allocations  # noqa: E402

LOGGER = logging.getLogger("armory.overdue.watch")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Report allocations that are close to or past the hold limit.")
    parser.add_argument(
        "--db-url",
        default=os.environ.get("ARMORY_DB_URL", "").strip(),
        help="SQLAlchemy DB URL; defaults to ARMORY_DB_URL env var.",
    )
    parser.add_argument("--user-id", type=int, default=None, help="Only check this user's allocations.")
    parser.add_argument(
        "--interval",
        type=int,
        default=OVERDUE_POLL_SECONDS,
        help="Seconds between scans (ARMORY_OVERDUE_POLL_SECONDS).",
    )
    parser.add_argument("--once", action="store_true", help="Run a single scan and exit.")
    return parser


def run_scan(session_factory, user_id: int | None = None) -> list[dict]:
    with session_factory() as db:
        flagged = scan_active_allocations(db, user_id=user_id)
    for item in flagged:
        LOGGER.warning(
            "%s allocation_id=%s user_id=%s weapon=%s elapsed_minutes=%s minutes_remaining=%s",
            item["type"].upper(),
            item["allocationID"],
            item["userID"],
            item["serialNumber"],
            item["elapsedMinutes"],
            item["minutesRemaining"],
        )
    LOGGER.info("Scan finished flagged=%s", len(flagged))
    return flagged


def main() -> int:
    load_dotenv()
    parser = _build_parser()
    args = parser.parse_args()
    if not args.db_url:
        parser.error("Missing DB URL. Set ARMORY_DB_URL or pass --db-url.")
    if args.interval < 1:
        parser.error("--interval must be >= 1")

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    engine = create_engine(args.db_url, pool_pre_ping=True, future=True)
    session_factory = sessionmaker(bind=engine, expire_on_commit=False, future=True)

    try:
        while True:
            try:
                run_scan(session_factory, args.user_id)
            except OperationalError:
                LOGGER.exception("Overdue scan skipped, storage unavailable")
            if args.once:
                return 0
            time.sleep(args.interval)
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
