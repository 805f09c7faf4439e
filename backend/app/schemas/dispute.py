from typing import Any, List, Optional
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field, field_validator, model_validator

from ..models.dispute import DisputeSeverity, DisputeStatus, PartyRole
from ..models.dispute_message import SenderRole


class DisputeCreate(BaseModel):
    booking_id: str
    property_id: str
    accused_id: str
    reporter_role: PartyRole
    title: str = Field(..., max_length=200)
    description: str
    severity: DisputeSeverity = DisputeSeverity.HIGH
    claim_amount: Decimal = Decimal(0)
    evidence: List[str] = Field(default_factory=list)

    @field_validator("title", "description", "booking_id", "property_id", "accused_id")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("claim_amount")
    @classmethod
    def non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("claim_amount must be zero or positive")
        return v


class DisputeActionIn(BaseModel):
    action: str
    message: Optional[str] = None
    resolution: Optional[str] = None

    @model_validator(mode="after")
    def message_for_send(cls, values: "DisputeActionIn") -> "DisputeActionIn":
        if values.action == "send_message" and not (values.message or "").strip():
            # Attachments only travel through the multipart messages endpoint
            raise ValueError("send_message requires a message")
        return values


class DisputeMessageResponse(BaseModel):
    id: int
    ticket_id: int
    seq: int
    sender_id: Optional[str] = None
    sender_role: SenderRole
    message: str
    attachments: List[str] = Field(default_factory=list)
    created_at: datetime

    @field_validator("attachments", mode="before")
    @classmethod
    def none_to_list(cls, v: Any) -> Any:
        return v or []

    model_config = {"from_attributes": True}


class DisputeSummary(BaseModel):
    id: int
    booking_id: str
    title: str
    status: DisputeStatus
    severity: DisputeSeverity
    reporter_id: str
    accused_id: str
    deadline: datetime
    last_activity_at: datetime
    created_at: datetime

    model_config = {"from_attributes": True}


class DisputeResponse(BaseModel):
    """Full ticket as seen by one caller; ``viewer_role`` is computed per request."""

    id: int
    booking_id: str
    property_id: str
    reporter_id: str
    accused_id: str
    reporter_role: PartyRole
    accused_role: PartyRole
    status: DisputeStatus
    severity: DisputeSeverity
    title: str
    description: str
    claim_amount: Decimal
    initial_evidence: List[str] = Field(default_factory=list)
    resolution: Optional[str] = None
    deadline: datetime
    last_activity_at: datetime
    created_at: datetime
    version: int
    viewer_role: Optional[str] = None
    chat_logs: List[DisputeMessageResponse] = Field(default_factory=list)

    @field_validator("initial_evidence", mode="before")
    @classmethod
    def none_to_list(cls, v: Any) -> Any:
        return v or []

    model_config = {"from_attributes": True}
