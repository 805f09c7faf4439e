from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from .. import models
from . import crud_dispute


@dataclass(frozen=True)
class LedgerEntry:
    """A transcript entry waiting to be appended."""

    sender_role: models.SenderRole
    message: str = ""
    sender_id: Optional[str] = None
    attachments: tuple[str, ...] = field(default_factory=tuple)


def append(
    db: Session,
    ticket_id: int,
    entry: LedgerEntry,
    expected_version: int,
    now: datetime,
    changes: Optional[Dict[str, Any]] = None,
) -> bool:
    """Append ``entry`` to the ticket transcript in the same write as ``changes``.

    The entry's ``seq`` is the ticket version the append produces, and its
    ``created_at`` never runs behind the newest entry already recorded.
    Returns False on a version conflict; nothing is written in that case.
    """

    def _insert(new_version: int) -> None:
        latest = latest_created_at(db, ticket_id)
        created_at = now if latest is None or now >= latest else latest
        db.add(
            models.DisputeMessage(
                ticket_id=ticket_id,
                seq=new_version,
                sender_id=entry.sender_id,
                sender_role=entry.sender_role,
                message=entry.message,
                attachments=list(entry.attachments),
                created_at=created_at,
            )
        )
        db.flush()

    return crud_dispute.compare_and_set(
        db,
        ticket_id,
        expected_version,
        changes or {},
        in_transaction=_insert,
    )


def get_transcript(
    db: Session,
    ticket_id: int,
    after_seq: Optional[int] = None,
    limit: Optional[int] = None,
) -> List[models.DisputeMessage]:
    query = db.query(models.DisputeMessage).filter(models.DisputeMessage.ticket_id == ticket_id)
    if after_seq is not None:
        query = query.filter(models.DisputeMessage.seq > after_seq)
    query = query.order_by(models.DisputeMessage.seq.asc())
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def latest_created_at(db: Session, ticket_id: int) -> Optional[datetime]:
    return (
        db.query(func.max(models.DisputeMessage.created_at))
        .filter(models.DisputeMessage.ticket_id == ticket_id)
        .scalar()
    )


def has_message_from(db: Session, ticket_id: int, sender_id: str) -> bool:
    row = (
        db.query(models.DisputeMessage.id)
        .filter(
            models.DisputeMessage.ticket_id == ticket_id,
            models.DisputeMessage.sender_id == sender_id,
        )
        .first()
    )
    return row is not None
