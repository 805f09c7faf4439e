from __future__ import annotations

import logging
from typing import List, Optional

from app import models
from app.core.config import settings
from app.services.dispute_state_machine import DisputeAction, Mutation
from app.utils.notifications import DisputeEvent, NotificationDispatcher

logger = logging.getLogger(__name__)

_EVENT_FOR_ACTION = {
    DisputeAction.SEND_MESSAGE: DisputeEvent.MESSAGE_POSTED,
    DisputeAction.ESCALATE: DisputeEvent.ESCALATED,
    DisputeAction.CLOSE: DisputeEvent.RESOLVED,
    DisputeAction.START_REVIEW: DisputeEvent.REVIEW_STARTED,
    DisputeAction.ADMIN_RESOLVE: DisputeEvent.RESOLVED,
    DisputeAction.DEADLINE_EXPIRED: DisputeEvent.AUTO_ESCALATED,
    DisputeAction.INACTIVITY_EXPIRED: DisputeEvent.AUTO_CLOSED,
}


def _admins() -> str:
    return settings.ADMIN_NOTIFICATION_RECIPIENT


def recipients_for(
    ticket: models.DisputeTicket,
    mutation: Mutation,
    actor_id: Optional[str],
) -> List[str]:
    """Who hears about ``mutation``; the actor never notifies themselves."""
    parties = [ticket.reporter_id, ticket.accused_id]
    action = mutation.action
    if action is DisputeAction.SEND_MESSAGE:
        recipients = list(parties)
        # Admins follow the conversation once it has been escalated
        if mutation.to_status is models.DisputeStatus.ESCALATED:
            recipients.append(_admins())
    elif action in (DisputeAction.ESCALATE, DisputeAction.DEADLINE_EXPIRED):
        recipients = parties + [_admins()]
    else:
        recipients = list(parties)
    return [r for r in recipients if r and r != actor_id]


def notify_dispute_filed(dispatcher: NotificationDispatcher, ticket: models.DisputeTicket) -> None:
    dispatcher.notify(ticket.id, DisputeEvent.FILED, [ticket.accused_id])


def notify_dispute_mutation(
    dispatcher: NotificationDispatcher,
    ticket: models.DisputeTicket,
    mutation: Mutation,
    actor_id: Optional[str],
) -> None:
    event = _EVENT_FOR_ACTION[mutation.action]
    recipients = recipients_for(ticket, mutation, actor_id)
    logger.debug(
        "dispute_intent ticket=%s kind=%s recipients=%s", ticket.id, event.value, recipients
    )
    dispatcher.notify(ticket.id, event, recipients)
