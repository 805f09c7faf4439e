"""Durable storage for dispute tickets.

Tickets are only ever written through :func:`create_ticket` and
:func:`compare_and_set`; the latter is a conditional UPDATE keyed on the
ticket version, which is the whole per-ticket concurrency discipline.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import models

logger = logging.getLogger(__name__)


def create_ticket(
    db: Session,
    *,
    booking_id: str,
    property_id: str,
    reporter_id: str,
    accused_id: str,
    reporter_role: models.PartyRole,
    title: str,
    description: str,
    severity: models.DisputeSeverity,
    claim_amount: Decimal,
    initial_evidence: Sequence[str],
    created_at: datetime,
    deadline: datetime,
) -> models.DisputeTicket:
    ticket = models.DisputeTicket(
        booking_id=booking_id,
        property_id=property_id,
        reporter_id=reporter_id,
        accused_id=accused_id,
        reporter_role=reporter_role,
        status=models.DisputeStatus.OPEN,
        title=title,
        description=description,
        severity=severity,
        claim_amount=claim_amount,
        initial_evidence=list(initial_evidence),
        deadline=deadline,
        last_activity_at=created_at,
        created_at=created_at,
        updated_at=created_at,
        version=1,
    )
    db.add(ticket)
    db.commit()
    db.refresh(ticket)
    return ticket


def get_ticket(db: Session, ticket_id: int) -> Optional[models.DisputeTicket]:
    """Load a ticket, always overwriting whatever the session had cached."""
    return (
        db.query(models.DisputeTicket)
        .execution_options(populate_existing=True)
        .filter(models.DisputeTicket.id == ticket_id)
        .first()
    )


def list_tickets_for_party(db: Session, user_id: str) -> List[models.DisputeTicket]:
    return (
        db.query(models.DisputeTicket)
        .filter(
            or_(
                models.DisputeTicket.reporter_id == user_id,
                models.DisputeTicket.accused_id == user_id,
            )
        )
        .order_by(models.DisputeTicket.created_at.desc(), models.DisputeTicket.id.desc())
        .all()
    )


def list_tickets_by_status(
    db: Session, statuses: Iterable[models.DisputeStatus]
) -> List[models.DisputeTicket]:
    return (
        db.query(models.DisputeTicket)
        .filter(models.DisputeTicket.status.in_(list(statuses)))
        .order_by(models.DisputeTicket.updated_at.desc(), models.DisputeTicket.id.desc())
        .all()
    )


def list_ticket_ids_by_status(
    db: Session, statuses: Iterable[models.DisputeStatus]
) -> List[int]:
    rows = (
        db.query(models.DisputeTicket.id)
        .filter(models.DisputeTicket.status.in_(list(statuses)))
        .order_by(models.DisputeTicket.id.asc())
        .all()
    )
    return [int(r[0]) for r in rows]


def compare_and_set(
    db: Session,
    ticket_id: int,
    expected_version: int,
    changes: Dict[str, Any],
    in_transaction: Optional[Callable[[int], None]] = None,
) -> bool:
    """Apply ``changes`` only if the stored version still equals ``expected_version``.

    Bumps the version by one. ``in_transaction`` runs after the version check
    has passed and before commit, receiving the new version; the transcript
    uses it so an entry and the status change land in the same commit.
    Returns False (and rolls back) when another writer got there first.
    """
    new_version = expected_version + 1
    values = dict(changes)
    values["version"] = new_version
    try:
        matched = (
            db.query(models.DisputeTicket)
            .filter(
                models.DisputeTicket.id == ticket_id,
                models.DisputeTicket.version == expected_version,
            )
            .update(values, synchronize_session=False)
        )
        if matched != 1:
            db.rollback()
            logger.info(
                "dispute_version_conflict ticket=%s expected_version=%s",
                ticket_id,
                expected_version,
            )
            return False
        if in_transaction is not None:
            in_transaction(new_version)
        db.commit()
    except IntegrityError:
        # Another writer claimed the same transcript slot
        db.rollback()
        logger.info(
            "dispute_version_conflict ticket=%s expected_version=%s (integrity)",
            ticket_id,
            expected_version,
        )
        return False
    except Exception:
        db.rollback()
        raise
    return True
