import enum

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    event,
)
from sqlalchemy.orm import relationship

from .base import BaseModel
from ..utils.errors import ImmutableRecordError


class DisputeStatus(str, enum.Enum):
    OPEN = "open"
    ESCALATED = "escalated"
    UNDER_REVIEW = "under_review"
    RESOLVED = "resolved"
    CLOSED = "closed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({DisputeStatus.RESOLVED, DisputeStatus.CLOSED})
# Statuses the deadline scanner re-evaluates every cycle
SCANNED_STATUSES = (DisputeStatus.OPEN, DisputeStatus.ESCALATED)
# Statuses an admin works from the resolution-center queue
ADMIN_QUEUE_STATUSES = (DisputeStatus.ESCALATED, DisputeStatus.UNDER_REVIEW)


class PartyRole(str, enum.Enum):
    """Role a party plays in the underlying booking."""

    LANDLORD = "landlord"
    RENTER = "renter"

    def counterpart(self) -> "PartyRole":
        return PartyRole.RENTER if self is PartyRole.LANDLORD else PartyRole.LANDLORD


class DisputeSeverity(str, enum.Enum):
    # Only major issues are filed as disputes
    HIGH = "high"
    CRITICAL = "critical"


def _values(enum_cls):
    return [e.value for e in enum_cls]


class DisputeTicket(BaseModel):
    __tablename__ = "disputes"
    __table_args__ = (
        Index("ix_disputes_status_activity", "status", "last_activity_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(String, nullable=False, index=True)
    property_id = Column(String, nullable=False)
    reporter_id = Column(String, nullable=False, index=True)
    accused_id = Column(String, nullable=False, index=True)
    reporter_role = Column(
        Enum(PartyRole, name="disputepartyrole", values_callable=_values),
        nullable=False,
    )
    status = Column(
        Enum(DisputeStatus, name="disputestatus", values_callable=_values),
        nullable=False,
        default=DisputeStatus.OPEN,
    )
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    severity = Column(
        Enum(DisputeSeverity, name="disputeseverity", values_callable=_values),
        nullable=False,
        default=DisputeSeverity.HIGH,
    )
    claim_amount = Column(Numeric(12, 2), nullable=False, default=0)
    resolution = Column(Text, nullable=True)
    initial_evidence = Column(JSON, nullable=False, default=list)
    # created_at + response window; written once at filing
    deadline = Column(DateTime, nullable=False)
    last_activity_at = Column(DateTime, nullable=False)
    version = Column(Integer, nullable=False, default=1)

    chat_logs = relationship(
        "DisputeMessage",
        order_by="DisputeMessage.seq",
        viewonly=True,
        lazy="selectin",
    )

    @property
    def accused_role(self) -> PartyRole:
        return PartyRole(self.reporter_role).counterpart()

    @property
    def is_terminal(self) -> bool:
        return DisputeStatus(self.status).is_terminal

    def __repr__(self) -> str:
        return f"<DisputeTicket id={self.id} status={self.status} v={self.version}>"


@event.listens_for(DisputeTicket, "before_delete")
def _reject_ticket_delete(mapper, connection, target):  # noqa: ANN001
    raise ImmutableRecordError(f"dispute {target.id} cannot be deleted")
