from .dispute import (
    DisputeTicket,
    DisputeStatus,
    DisputeSeverity,
    PartyRole,
    TERMINAL_STATUSES,
    SCANNED_STATUSES,
    ADMIN_QUEUE_STATUSES,
)
from .dispute_message import DisputeMessage, SenderRole

__all__ = [
    "DisputeTicket",
    "DisputeStatus",
    "DisputeSeverity",
    "PartyRole",
    "TERMINAL_STATUSES",
    "SCANNED_STATUSES",
    "ADMIN_QUEUE_STATUSES",
    "DisputeMessage",
    "SenderRole",
]
