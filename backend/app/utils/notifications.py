"""Fan-out of dispute notification intents.

The engine never talks to SMS or email providers directly. It hands a
:class:`NotificationIntent` to each configured delivery channel on the
background worker; delivery problems are logged and dead-lettered there and
never flow back into ticket state.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import asdict, dataclass
from typing import Callable, Iterable, List, Optional, Sequence

import httpx

from . import background_worker
from ..core.config import settings

logger = logging.getLogger(__name__)


class DisputeEvent(str, enum.Enum):
    FILED = "dispute_filed"
    MESSAGE_POSTED = "dispute_message_posted"
    ESCALATED = "dispute_escalated"
    AUTO_ESCALATED = "dispute_auto_escalated"
    REVIEW_STARTED = "dispute_review_started"
    RESOLVED = "dispute_resolved"
    AUTO_CLOSED = "dispute_auto_closed"


@dataclass(frozen=True)
class NotificationIntent:
    ticket_id: int
    event_kind: DisputeEvent
    recipients: tuple[str, ...]

    def as_payload(self) -> dict:
        data = asdict(self)
        data["event_kind"] = self.event_kind.value
        data["recipients"] = list(self.recipients)
        return data


DeliveryChannel = Callable[[NotificationIntent], None]
Enqueue = Callable[..., object]


def alert_scheduler_failure(exc: Exception) -> None:
    """Emit an error log when a background scheduler run fails."""
    logger.exception("Scheduler run failed: %s", exc)


def log_channel(intent: NotificationIntent) -> None:
    """Default channel: record the intent in the application log."""
    logger.info(
        "dispute_notification ticket=%s kind=%s recipients=%s",
        intent.ticket_id,
        intent.event_kind.value,
        ",".join(intent.recipients),
    )


class WebhookChannel:
    """POST intents as JSON to the notification service that owns delivery."""

    def __init__(self, url: str, timeout: float = 5.0) -> None:
        self.url = url
        self.timeout = timeout

    def __call__(self, intent: NotificationIntent) -> None:
        resp = httpx.post(self.url, json=intent.as_payload(), timeout=self.timeout)
        resp.raise_for_status()


class NotificationDispatcher:
    def __init__(
        self,
        channels: Optional[Sequence[DeliveryChannel]] = None,
        enqueue: Enqueue = background_worker.enqueue,
        retries: int = 3,
    ) -> None:
        self.channels: List[DeliveryChannel] = list(channels) if channels is not None else [log_channel]
        self._enqueue = enqueue
        self.retries = retries

    def notify(self, ticket_id: int, event_kind: DisputeEvent, recipients: Iterable[str]) -> None:
        """Fire-and-forget: schedule delivery of one intent on every channel."""
        unique = tuple(dict.fromkeys(r for r in recipients if r))
        if not unique:
            return
        intent = NotificationIntent(ticket_id=ticket_id, event_kind=event_kind, recipients=unique)
        for channel in self.channels:
            try:
                self._enqueue(channel, intent, retries=self.retries)
            except Exception as exc:
                logger.warning(
                    "dispute_notification_enqueue_failed ticket=%s kind=%s err=%s",
                    ticket_id,
                    event_kind.value,
                    exc,
                )


def build_default_dispatcher() -> NotificationDispatcher:
    channels: List[DeliveryChannel] = [log_channel]
    if settings.NOTIFICATION_WEBHOOK_URL:
        channels.append(WebhookChannel(settings.NOTIFICATION_WEBHOOK_URL))
    return NotificationDispatcher(channels)
