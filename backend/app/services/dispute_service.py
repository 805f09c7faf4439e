"""Verb-level surface of the dispute engine.

Every mutating call follows the same path: resolve the caller's role, plan
the transition against the ticket as loaded, write it with a version check,
and on success hand the event to the notification dispatcher. A lost
version race reloads the ticket and plans again, a bounded number of times.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Callable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from .. import models
from ..core.config import settings
from ..crud import crud_dispute, crud_dispute_message
from ..notifications.intents.dispute import notify_dispute_filed, notify_dispute_mutation
from ..utils.clock import utcnow
from ..utils.errors import Conflict, Forbidden, InvalidTransition, NotFound, ValidationError
from ..utils.notifications import NotificationDispatcher
from . import dispute_state_machine as state_machine
from .attachment_store import AttachmentStore, AttachmentUpload, UploadContext, upload_attachments
from .dispute_access import Identity, TicketRole, resolve_role
from .dispute_state_machine import DisputeAction, Mutation

logger = logging.getLogger(__name__)

_NOT_FOUND_MESSAGE = "Dispute not found"


@dataclass(frozen=True)
class ActionPayload:
    message: str = ""
    files: Sequence[AttachmentUpload] = field(default_factory=tuple)
    resolution: Optional[str] = None


def _inactivity_window() -> timedelta:
    return timedelta(days=settings.DISPUTE_INACTIVITY_DAYS)


def file_ticket(
    db: Session,
    *,
    reporter_id: str,
    accused_id: str,
    reporter_role: models.PartyRole | str,
    title: str,
    description: str,
    claim_amount: Decimal | int | float | str = 0,
    evidence: Sequence[str] = (),
    booking_id: str,
    property_id: str,
    severity: models.DisputeSeverity | str = models.DisputeSeverity.HIGH,
    dispatcher: Optional[NotificationDispatcher] = None,
    now: Optional[datetime] = None,
) -> models.DisputeTicket:
    """Open a dispute. The 48h response deadline is fixed here, once."""
    errors: dict[str, str] = {}
    reporter_id = (reporter_id or "").strip()
    accused_id = (accused_id or "").strip()
    if not reporter_id:
        errors["reporter_id"] = "required"
    if not accused_id:
        errors["accused_id"] = "required"
    if reporter_id and reporter_id == accused_id:
        errors["accused_id"] = "must differ from reporter"
    if not (booking_id or "").strip():
        errors["booking_id"] = "required"
    if not (property_id or "").strip():
        errors["property_id"] = "required"

    title = (title or "").strip()
    description = (description or "").strip()
    if not title:
        errors["title"] = "required"
    elif len(title) > 200:
        errors["title"] = "too_long"
    if not description:
        errors["description"] = "required"

    party_role: Optional[models.PartyRole] = None
    try:
        party_role = models.PartyRole(reporter_role)
    except ValueError:
        errors["reporter_role"] = "must be landlord or renter"

    level: Optional[models.DisputeSeverity] = None
    try:
        level = models.DisputeSeverity(severity)
    except ValueError:
        errors["severity"] = "must be high or critical"

    amount = Decimal(0)
    try:
        amount = Decimal(str(claim_amount if claim_amount is not None else 0))
        if not amount.is_finite() or amount < 0:
            errors["claim_amount"] = "must be zero or positive"
    except InvalidOperation:
        errors["claim_amount"] = "invalid"

    urls = [str(u).strip() for u in (evidence or [])]
    if any(not u for u in urls):
        errors["evidence"] = "empty reference"

    if errors:
        raise ValidationError("Invalid dispute", errors)

    created_at = now or utcnow()
    ticket = crud_dispute.create_ticket(
        db,
        booking_id=booking_id.strip(),
        property_id=property_id.strip(),
        reporter_id=reporter_id,
        accused_id=accused_id,
        reporter_role=party_role,
        title=title,
        description=description,
        severity=level,
        claim_amount=amount,
        initial_evidence=urls,
        created_at=created_at,
        deadline=state_machine.compute_deadline(created_at, settings.DISPUTE_RESPONSE_WINDOW_HOURS),
    )
    logger.info(
        "dispute_filed ticket=%s booking=%s reporter=%s accused=%s severity=%s",
        ticket.id,
        ticket.booking_id,
        reporter_id,
        accused_id,
        level.value,
    )
    if dispatcher is not None:
        notify_dispute_filed(dispatcher, ticket)
    return ticket


def _require_identity(identity: Optional[Identity]) -> Identity:
    if identity is None or not (identity.id or "").strip():
        raise ValidationError("Caller identity is required", {"identity": "required"})
    return identity


def _load(
    db: Session,
    ticket_id: int,
    identity: Optional[Identity],
    privileged: bool = False,
) -> Tuple[models.DisputeTicket, TicketRole]:
    identity = _require_identity(identity)
    ticket = crud_dispute.get_ticket(db, ticket_id)
    if ticket is None:
        raise NotFound(_NOT_FOUND_MESSAGE, {"ticket_id": "not_found"})
    role = resolve_role(identity, ticket, privileged=privileged)
    if role is TicketRole.UNAUTHORIZED:
        # Same answer as a missing ticket: strangers learn nothing
        raise NotFound(_NOT_FOUND_MESSAGE, {"ticket_id": "not_found"})
    return ticket, role


def get_ticket(
    db: Session, ticket_id: int, identity: Optional[Identity]
) -> Tuple[models.DisputeTicket, TicketRole]:
    return _load(db, ticket_id, identity)


def get_transcript(
    db: Session,
    ticket_id: int,
    identity: Optional[Identity],
    after_seq: Optional[int] = None,
    limit: Optional[int] = None,
) -> List[models.DisputeMessage]:
    ticket, _ = _load(db, ticket_id, identity)
    return crud_dispute_message.get_transcript(db, ticket.id, after_seq=after_seq, limit=limit)


def list_tickets(
    db: Session,
    identity: Optional[Identity],
    include_admin_queue: bool = False,
) -> List[models.DisputeTicket]:
    """Tickets the caller is a party to, plus the admin queue when asked for."""
    identity = _require_identity(identity)
    tickets = crud_dispute.list_tickets_for_party(db, identity.id)
    if include_admin_queue:
        if not identity.is_admin:
            raise Forbidden("Only admins can list the review queue", {"scope": "admin_only"})
        seen = {t.id for t in tickets}
        queue = crud_dispute.list_tickets_by_status(db, models.ADMIN_QUEUE_STATUSES)
        tickets.extend(t for t in queue if t.id not in seen)
    return tickets


def _parse_action(action: DisputeAction | str) -> DisputeAction:
    try:
        parsed = DisputeAction(action)
    except ValueError:
        parsed = None
    if parsed is None or parsed not in state_machine.CALLER_ACTIONS:
        raise ValidationError(f"Unknown action {action!r}", {"action": "invalid"})
    return parsed


def act(
    db: Session,
    ticket_id: int,
    identity: Optional[Identity],
    action: DisputeAction | str,
    payload: Optional[ActionPayload] = None,
    *,
    attachment_store: Optional[AttachmentStore] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
    now: Optional[datetime] = None,
) -> models.DisputeTicket:
    """Apply a caller action; either it lands atomically or nothing changes."""
    parsed = _parse_action(action)
    payload = payload or ActionPayload()
    ticket, role = _load(db, ticket_id, identity, privileged=parsed in state_machine.PRIVILEGED_ACTIONS)
    # Guard before any upload so a doomed request never touches storage
    state_machine.check(ticket.status, role, parsed)

    attachments: List[str] = []
    if parsed is DisputeAction.SEND_MESSAGE:
        files = list(payload.files or ())
        if not (payload.message or "").strip() and not files:
            raise ValidationError(
                "Message must include text or at least one attachment",
                {"message": "required"},
            )
        if len(files) > settings.DISPUTE_MAX_ATTACHMENTS:
            raise ValidationError(
                f"At most {settings.DISPUTE_MAX_ATTACHMENTS} attachments per message",
                {"files": "too_many"},
            )
        if files:
            if attachment_store is None:
                logger.warning(
                    "dispute_attachments_dropped ticket=%s count=%s reason=no_store",
                    ticket.id,
                    len(files),
                )
            else:
                attachments = upload_attachments(
                    attachment_store,
                    files,
                    UploadContext(ticket_id=ticket.id, uploader_id=identity.id),
                    timeout=settings.DISPUTE_ATTACHMENT_UPLOAD_TIMEOUT,
                )

    result = _apply(
        db,
        ticket,
        role,
        parsed,
        actor_id=identity.id,
        message=payload.message,
        attachments=attachments,
        resolution=payload.resolution,
        dispatcher=dispatcher,
        now=now,
    )
    # Caller actions never decline
    return result[0]


def _apply(
    db: Session,
    ticket: models.DisputeTicket,
    role: TicketRole,
    action: DisputeAction,
    *,
    actor_id: Optional[str],
    message: str = "",
    attachments: Sequence[str] = (),
    resolution: Optional[str] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
    now: Optional[datetime] = None,
    still_due: Optional[Callable[[models.DisputeTicket], bool]] = None,
) -> Optional[Tuple[models.DisputeTicket, Mutation]]:
    """Plan and write ``action``, reloading and re-planning on version conflicts.

    Returns None only when ``still_due`` says a reloaded ticket no longer
    qualifies (automatic transitions).
    """
    attempts = settings.DISPUTE_MAX_WRITE_ATTEMPTS
    for attempt in range(1, attempts + 1):
        if attempt > 1 and still_due is not None and not still_due(ticket):
            return None
        current = now or utcnow()
        mutation = state_machine.plan(
            ticket,
            role,
            action,
            current,
            sender_id=actor_id,
            message=message,
            attachments=attachments,
            resolution=resolution,
            inactivity_days=settings.DISPUTE_INACTIVITY_DAYS,
        )
        expected_version = ticket.version
        if mutation.entry is not None:
            applied = crud_dispute_message.append(
                db, ticket.id, mutation.entry, expected_version, current, mutation.changes
            )
        else:
            applied = crud_dispute.compare_and_set(db, ticket.id, expected_version, mutation.changes)

        reloaded = crud_dispute.get_ticket(db, ticket.id)
        if reloaded is None:
            raise NotFound(_NOT_FOUND_MESSAGE, {"ticket_id": "not_found"})
        ticket = reloaded
        if applied:
            logger.info(
                "dispute_transition ticket=%s action=%s role=%s from=%s to=%s version=%s attempt=%s",
                ticket.id,
                action.value,
                role.value,
                mutation.from_status.value,
                mutation.to_status.value,
                ticket.version,
                attempt,
            )
            if dispatcher is not None:
                notify_dispute_mutation(dispatcher, ticket, mutation, actor_id)
            return ticket, mutation

    logger.warning(
        "dispute_conflict_exhausted ticket=%s action=%s attempts=%s",
        ticket.id,
        action.value,
        attempts,
    )
    raise Conflict(
        "Dispute was modified concurrently; reload and try again",
        {"version": str(ticket.version)},
    )


def apply_automatic_transition(
    db: Session,
    ticket_id: int,
    now: datetime,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> Optional[DisputeAction]:
    """Apply whichever timer transition the ticket is due for, if any.

    Safe to call any number of times: a ticket that already moved on is
    rejected by the state machine's status guard and reported as a no-op.
    """
    ticket = crud_dispute.get_ticket(db, ticket_id)
    if ticket is None:
        return None

    def _due(t: models.DisputeTicket) -> Optional[DisputeAction]:
        return state_machine.due_automatic_action(
            t,
            now,
            lambda: crud_dispute_message.has_message_from(db, t.id, t.accused_id),
            _inactivity_window(),
        )

    action = _due(ticket)
    if action is None:
        return None
    try:
        result = _apply(
            db,
            ticket,
            TicketRole.SYSTEM,
            action,
            actor_id=None,
            dispatcher=dispatcher,
            now=now,
            still_due=lambda t: _due(t) is action,
        )
    except InvalidTransition:
        logger.info("dispute_auto_skip ticket=%s action=%s reason=status_changed", ticket_id, action.value)
        return None
    return action if result is not None else None
