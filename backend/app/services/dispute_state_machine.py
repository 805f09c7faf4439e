"""Dispute ticket transitions.

The table below is the single source of truth for which role may do what
from which status. Nothing here touches the database: :func:`plan` turns a
request into a :class:`Mutation` that the service writes with a
version-checked update.

    open        send_message        reporter, accused           -> open
    escalated   send_message        reporter, accused, admin    -> escalated
    open        escalate            reporter                    -> escalated
    open        close               reporter                    -> resolved
    escalated   start_review        admin                       -> under_review
    escalated   admin_resolve       admin                       -> resolved
    under_review admin_resolve      admin                       -> resolved
    open        deadline_expired    system                      -> escalated
    open        inactivity_expired  system                      -> closed
    escalated   inactivity_expired  system                      -> closed
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, FrozenSet, Optional, Sequence

from .. import models
from ..crud.crud_dispute_message import LedgerEntry
from ..utils.errors import Forbidden, InvalidTransition, ValidationError
from .dispute_access import TicketRole, sender_role_for


class DisputeAction(str, enum.Enum):
    SEND_MESSAGE = "send_message"
    ESCALATE = "escalate"
    CLOSE = "close"
    START_REVIEW = "start_review"
    ADMIN_RESOLVE = "admin_resolve"
    DEADLINE_EXPIRED = "deadline_expired"
    INACTIVITY_EXPIRED = "inactivity_expired"


CALLER_ACTIONS = frozenset(
    {
        DisputeAction.SEND_MESSAGE,
        DisputeAction.ESCALATE,
        DisputeAction.CLOSE,
        DisputeAction.START_REVIEW,
        DisputeAction.ADMIN_RESOLVE,
    }
)
PRIVILEGED_ACTIONS = frozenset({DisputeAction.START_REVIEW, DisputeAction.ADMIN_RESOLVE})
AUTOMATIC_ACTIONS = frozenset({DisputeAction.DEADLINE_EXPIRED, DisputeAction.INACTIVITY_EXPIRED})

ESCALATED_NOTE = "escalated by reporter: waiting for admin review"
REVIEW_STARTED_NOTE = "under review: an administrator is reviewing this dispute"
AUTO_ESCALATED_NOTE = "auto-escalated: no response by deadline"


def auto_closed_note(inactivity_days: int) -> str:
    return f"auto-closed: {inactivity_days} days inactivity"


@dataclass(frozen=True)
class Rule:
    roles: FrozenSet[TicketRole]
    # None keeps the current status
    target: Optional[models.DisputeStatus] = None


_S = models.DisputeStatus
_R = TicketRole

RULES: Dict[DisputeAction, Dict[models.DisputeStatus, Rule]] = {
    DisputeAction.SEND_MESSAGE: {
        _S.OPEN: Rule(frozenset({_R.REPORTER, _R.ACCUSED})),
        _S.ESCALATED: Rule(frozenset({_R.REPORTER, _R.ACCUSED, _R.ADMIN})),
    },
    DisputeAction.ESCALATE: {
        _S.OPEN: Rule(frozenset({_R.REPORTER}), _S.ESCALATED),
    },
    DisputeAction.CLOSE: {
        _S.OPEN: Rule(frozenset({_R.REPORTER}), _S.RESOLVED),
    },
    DisputeAction.START_REVIEW: {
        _S.ESCALATED: Rule(frozenset({_R.ADMIN}), _S.UNDER_REVIEW),
    },
    DisputeAction.ADMIN_RESOLVE: {
        _S.ESCALATED: Rule(frozenset({_R.ADMIN}), _S.RESOLVED),
        _S.UNDER_REVIEW: Rule(frozenset({_R.ADMIN}), _S.RESOLVED),
    },
    DisputeAction.DEADLINE_EXPIRED: {
        _S.OPEN: Rule(frozenset({_R.SYSTEM}), _S.ESCALATED),
    },
    DisputeAction.INACTIVITY_EXPIRED: {
        _S.OPEN: Rule(frozenset({_R.SYSTEM}), _S.CLOSED),
        _S.ESCALATED: Rule(frozenset({_R.SYSTEM}), _S.CLOSED),
    },
}


@dataclass(frozen=True)
class Mutation:
    action: DisputeAction
    from_status: models.DisputeStatus
    to_status: models.DisputeStatus
    changes: Dict[str, Any] = field(default_factory=dict)
    entry: Optional[LedgerEntry] = None

    @property
    def changes_status(self) -> bool:
        return self.from_status is not self.to_status


def check(status: models.DisputeStatus | str, role: TicketRole, action: DisputeAction) -> Rule:
    """Raise unless ``role`` may perform ``action`` while the ticket is in ``status``."""
    status = models.DisputeStatus(status)
    if status.is_terminal:
        raise InvalidTransition(
            f"Dispute is {status.value}; no further changes are allowed",
            {"status": status.value},
        )
    rule = RULES.get(action, {}).get(status)
    if rule is None:
        raise InvalidTransition(
            f"{action.value} is not available while the dispute is {status.value}",
            {"action": action.value, "status": status.value},
        )
    if role not in rule.roles:
        raise Forbidden(
            f"{role.value} may not {action.value} this dispute",
            {"action": action.value},
        )
    return rule


def plan(
    ticket: models.DisputeTicket,
    role: TicketRole,
    action: DisputeAction,
    now: datetime,
    *,
    sender_id: Optional[str] = None,
    message: str = "",
    attachments: Sequence[str] = (),
    resolution: Optional[str] = None,
    inactivity_days: int = 7,
) -> Mutation:
    """Validate ``action`` against the ticket as loaded and describe the write."""
    from_status = models.DisputeStatus(ticket.status)
    rule = check(from_status, role, action)
    to_status = rule.target or from_status

    changes: Dict[str, Any] = {}
    if to_status is not from_status:
        changes["status"] = to_status
    # Scanner transitions leave the inactivity clock alone
    if action not in AUTOMATIC_ACTIONS:
        changes["last_activity_at"] = now

    entry: Optional[LedgerEntry] = None
    if action is DisputeAction.SEND_MESSAGE:
        text = message or ""
        if not text.strip() and not attachments:
            raise ValidationError(
                "Message must include text or at least one attachment",
                {"message": "required"},
            )
        entry = LedgerEntry(
            sender_role=sender_role_for(role, ticket),
            sender_id=sender_id,
            message=text,
            attachments=tuple(attachments),
        )
    elif action is DisputeAction.ESCALATE:
        entry = _system_note(ESCALATED_NOTE)
    elif action is DisputeAction.START_REVIEW:
        entry = _system_note(REVIEW_STARTED_NOTE)
    elif action is DisputeAction.ADMIN_RESOLVE:
        changes["resolution"] = (resolution or "").strip() or None
    elif action is DisputeAction.DEADLINE_EXPIRED:
        entry = _system_note(AUTO_ESCALATED_NOTE)
    elif action is DisputeAction.INACTIVITY_EXPIRED:
        entry = _system_note(auto_closed_note(inactivity_days))

    return Mutation(
        action=action,
        from_status=from_status,
        to_status=to_status,
        changes=changes,
        entry=entry,
    )


def _system_note(text: str) -> LedgerEntry:
    return LedgerEntry(sender_role=models.SenderRole.SYSTEM, message=text)


def compute_deadline(created_at: datetime, response_window_hours: int) -> datetime:
    return created_at + timedelta(hours=response_window_hours)


def due_automatic_action(
    ticket: models.DisputeTicket,
    now: datetime,
    accused_has_responded: Callable[[], bool],
    inactivity: timedelta,
) -> Optional[DisputeAction]:
    """Which automatic transition, if any, the ticket is eligible for at ``now``.

    Inactivity wins over the response deadline. ``accused_has_responded`` is
    only consulted when the deadline check actually needs it.
    """
    status = models.DisputeStatus(ticket.status)
    if status not in models.SCANNED_STATUSES:
        return None
    if now >= ticket.last_activity_at + inactivity:
        return DisputeAction.INACTIVITY_EXPIRED
    if status is models.DisputeStatus.OPEN and now >= ticket.deadline and not accused_has_responded():
        return DisputeAction.DEADLINE_EXPIRED
    return None
