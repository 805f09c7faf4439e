import enum

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    event,
)

from ..database import Base
from ..utils.clock import utcnow
from ..utils.errors import ImmutableRecordError


class SenderRole(str, enum.Enum):
    """Role recorded on a transcript entry at the moment it was accepted."""

    LANDLORD = "landlord"
    RENTER = "renter"
    ADMIN = "admin"
    # Transition notes written by the engine itself
    SYSTEM = "system"


class DisputeMessage(Base):
    __tablename__ = "dispute_messages"
    __table_args__ = (
        # seq is the ticket version produced by the append, so one row per version
        UniqueConstraint("ticket_id", "seq", name="uq_dispute_messages_ticket_seq"),
    )

    id = Column(Integer, primary_key=True, index=True)
    ticket_id = Column(Integer, ForeignKey("disputes.id"), nullable=False, index=True)
    seq = Column(Integer, nullable=False)
    sender_id = Column(String, nullable=True)
    sender_role = Column(
        Enum(SenderRole, name="disputesenderrole", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    message = Column(Text, nullable=False, default="")
    attachments = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    @property
    def is_system(self) -> bool:
        return SenderRole(self.sender_role) is SenderRole.SYSTEM

    def __repr__(self) -> str:
        return f"<DisputeMessage ticket={self.ticket_id} seq={self.seq} role={self.sender_role}>"


# The transcript is append-only: the ORM refuses to rewrite or drop entries.
@event.listens_for(DisputeMessage, "before_update")
def _reject_ledger_update(mapper, connection, target):  # noqa: ANN001
    raise ImmutableRecordError(
        f"dispute message ticket={target.ticket_id} seq={target.seq} is immutable"
    )


@event.listens_for(DisputeMessage, "before_delete")
def _reject_ledger_delete(mapper, connection, target):  # noqa: ANN001
    raise ImmutableRecordError(
        f"dispute message ticket={target.ticket_id} seq={target.seq} cannot be deleted"
    )
