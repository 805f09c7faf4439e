"""Periodic scan that drives disputes forward when nobody else does.

Two timers exist: the accused's response deadline (open tickets only) and the
inactivity window (open and escalated tickets). Inactivity wins when both
have passed. Each ticket is handled in its own short-lived session; one bad
ticket is logged and skipped, never allowed to stop the cycle.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from .. import models
from ..crud import crud_dispute
from ..database import SessionLocal
from ..utils.clock import utcnow
from ..utils.notifications import NotificationDispatcher
from . import dispute_service
from .dispute_state_machine import DisputeAction

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


def scan_disputes(
    session_factory: SessionFactory = SessionLocal,
    now: Optional[datetime] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> dict:
    """Run one scan cycle and return a summary of what happened.

    Running the scan twice for the same ``now`` is harmless: the second run
    finds nothing due.
    """
    now = now or utcnow()
    results = {"scanned": 0, "auto_escalated": 0, "auto_closed": 0, "failed": 0}

    try:
        with session_factory() as db:
            ticket_ids = crud_dispute.list_ticket_ids_by_status(db, models.SCANNED_STATUSES)
    except Exception as exc:
        # Store unavailable: skip this cycle, the next one retries
        logger.error("dispute_scan_skipped reason=store_unavailable err=%s", exc)
        results["failed"] = -1
        return results

    for ticket_id in ticket_ids:
        results["scanned"] += 1
        try:
            with session_factory() as db:
                applied = dispute_service.apply_automatic_transition(
                    db, ticket_id, now, dispatcher=dispatcher
                )
        except Exception as exc:
            results["failed"] += 1
            logger.exception("dispute_scan_ticket_failed ticket=%s err=%s", ticket_id, exc)
            continue
        if applied is DisputeAction.DEADLINE_EXPIRED:
            results["auto_escalated"] += 1
        elif applied is DisputeAction.INACTIVITY_EXPIRED:
            results["auto_closed"] += 1

    logger.info(
        "dispute_scan_complete scanned=%s auto_escalated=%s auto_closed=%s failed=%s",
        results["scanned"],
        results["auto_escalated"],
        results["auto_closed"],
        results["failed"],
    )
    return results
