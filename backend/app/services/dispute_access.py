"""Per-request role resolution for dispute tickets."""

from __future__ import annotations

import enum
from dataclasses import dataclass

from .. import models


@dataclass(frozen=True)
class Identity:
    """Authenticated caller as handed to us by the session resolver."""

    id: str
    is_admin: bool = False


class TicketRole(str, enum.Enum):
    REPORTER = "reporter"
    ACCUSED = "accused"
    ADMIN = "admin"
    UNAUTHORIZED = "unauthorized"
    # Automatic transitions driven by the deadline scanner
    SYSTEM = "system"


def resolve_role(
    identity: Identity | None,
    ticket: models.DisputeTicket,
    privileged: bool = False,
) -> TicketRole:
    """Return the caller's role on ``ticket``.

    Never stored: the same identity is the reporter on one ticket and the
    accused on another. For privileged actions an admin identity resolves to
    ``admin`` even when it is also a party to the ticket.
    """
    if identity is None or not identity.id:
        return TicketRole.UNAUTHORIZED
    if privileged and identity.is_admin:
        return TicketRole.ADMIN
    if identity.id == ticket.reporter_id:
        return TicketRole.REPORTER
    if identity.id == ticket.accused_id:
        return TicketRole.ACCUSED
    if identity.is_admin:
        return TicketRole.ADMIN
    return TicketRole.UNAUTHORIZED


def sender_role_for(role: TicketRole, ticket: models.DisputeTicket) -> models.SenderRole:
    """Map a resolved ticket role to the role recorded on transcript entries."""
    if role is TicketRole.REPORTER:
        return models.SenderRole(models.PartyRole(ticket.reporter_role).value)
    if role is TicketRole.ACCUSED:
        return models.SenderRole(ticket.accused_role.value)
    if role is TicketRole.ADMIN:
        return models.SenderRole.ADMIN
    if role is TicketRole.SYSTEM:
        return models.SenderRole.SYSTEM
    raise ValueError(f"role {role.value} cannot author transcript entries")
