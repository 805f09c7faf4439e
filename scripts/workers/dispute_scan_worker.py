#!/usr/bin/env python3
"""
Dispute scan worker: runs the deadline/inactivity scan outside the API process.

Environment:
  - SQLALCHEMY_DATABASE_URL or DB_URL (from app config)
  - DISPUTE_SCAN_INTERVAL_SECONDS (default from app config, 300)
  - DISPUTE_SCAN_ONCE=1 to run a single cycle and exit (cron style)

Set DISPUTE_SCAN_ENABLED=false on API instances when this worker runs so
only one scanner is active. Running two is still safe: transitions are
compare-and-set on the ticket version, so a ticket moves at most once.
"""
from __future__ import annotations

import asyncio
import logging
import os
import sys

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", "backend")))

from app.core.config import settings  # noqa: E402
from app.core.observability import setup_logging  # noqa: E402
from app.database import SessionLocal  # noqa: E402
from app.services.dispute_scheduler import scan_disputes  # noqa: E402
from app.utils import background_worker  # noqa: E402
from app.utils.notifications import alert_scheduler_failure, build_default_dispatcher  # noqa: E402

logger = logging.getLogger("dispute_scan_worker")


async def run_once(dispatcher) -> dict:
    return await asyncio.to_thread(scan_disputes, SessionLocal, None, dispatcher)


async def main() -> None:
    setup_logging()
    interval = int(os.getenv("DISPUTE_SCAN_INTERVAL_SECONDS") or settings.DISPUTE_SCAN_INTERVAL_SECONDS)
    once = os.getenv("DISPUTE_SCAN_ONCE", "0").strip().lower() in {"1", "true", "yes"}
    dispatcher = build_default_dispatcher()
    logger.info("dispute_scan_worker_start interval_s=%s once=%s", interval, once)
    while True:
        try:
            summary = await run_once(dispatcher)
            logger.info("dispute_scan_worker_cycle %s", summary)
        except Exception as exc:
            # Keep going; the next cycle retries
            alert_scheduler_failure(exc)
        if once:
            break
        await asyncio.sleep(interval)
    # Let queued notifications drain before exiting
    background_worker.shutdown(wait=True)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
