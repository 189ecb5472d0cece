#!/usr/bin/env python3
"""Run one Salesforce sync outside the web server.

Usage:
    python scripts/run_sync.py
    python scripts/run_sync.py --sqlite-path ./opportunities.db
    python scripts/run_sync.py --no-isolate

Reads DATABASE_URL and SALESFORCE_* settings from the environment or .env.
Exits non-zero if the sync fails. Intended for cron/one-off use; the server
itself never syncs on a schedule.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))

import structlog  # noqa: E402

from src.dealboard.api.middleware.logging import configure_structlog  # noqa: E402
from src.dealboard.config import get_settings  # noqa: E402
from src.dealboard.core.errors import DealboardError  # noqa: E402
from src.dealboard.main import build_services  # noqa: E402
from src.dealboard.store.adapter import create_store  # noqa: E402

logger = structlog.get_logger(__name__)


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    overrides: dict = {}
    if args.sqlite_path:
        overrides.update(DATABASE_URL="", SQLITE_PATH=args.sqlite_path)
    if args.no_isolate:
        overrides["SYNC_ISOLATE_RECORD_FAILURES"] = False
    if overrides:
        settings = settings.model_copy(update=overrides)

    store = await create_store(settings)
    services = build_services(settings, store)
    try:
        summary = await services.sync_orchestrator.run_sync()
    except DealboardError as exc:
        logger.error("run_sync.failed", error=str(exc))
        return 1
    finally:
        await services.aclose()

    logger.info("run_sync.complete", count=summary.count, failed=summary.failed)
    print(f"Synced {summary.count} opportunities ({summary.failed} failed)")
    return 0 if summary.count or not summary.failed else 1


def main() -> None:
    parser = argparse.ArgumentParser(description="Run one Salesforce opportunity sync")
    parser.add_argument("--sqlite-path", help="Sync into this SQLite file instead of DATABASE_URL")
    parser.add_argument(
        "--no-isolate",
        action="store_true",
        help="Abort on the first record that fails to upsert",
    )
    args = parser.parse_args()

    configure_structlog()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
