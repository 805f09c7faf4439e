from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.orm import Session
from typing import List, Literal, Optional
import logging

from ..core.config import settings
from ..database import get_db
from ..models.dispute import DisputeTicket
from ..schemas.dispute import (
    DisputeActionIn,
    DisputeCreate,
    DisputeMessageResponse,
    DisputeResponse,
    DisputeSummary,
)
from ..services import dispute_service
from ..services.attachment_store import AttachmentStore, AttachmentUpload
from ..services.dispute_access import Identity, TicketRole, resolve_role
from ..services.dispute_service import ActionPayload
from ..services.dispute_state_machine import PRIVILEGED_ACTIONS, DisputeAction
from ..utils.errors import error_response
from ..utils.notifications import NotificationDispatcher
from .dependencies import get_attachment_store, get_current_identity, get_dispatcher

router = APIRouter(tags=["disputes"])

logger = logging.getLogger(__name__)


def _view(ticket: DisputeTicket, role: TicketRole) -> DisputeResponse:
    return DisputeResponse.model_validate(ticket).model_copy(update={"viewer_role": role.value})


@router.post("/disputes", response_model=DisputeResponse, status_code=status.HTTP_201_CREATED)
def file_dispute(
    payload: DisputeCreate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Open a dispute against the other party of a booking."""
    ticket = dispute_service.file_ticket(
        db,
        reporter_id=identity.id,
        accused_id=payload.accused_id,
        reporter_role=payload.reporter_role,
        title=payload.title,
        description=payload.description,
        claim_amount=payload.claim_amount,
        evidence=payload.evidence,
        booking_id=payload.booking_id,
        property_id=payload.property_id,
        severity=payload.severity,
        dispatcher=dispatcher,
    )
    return _view(ticket, TicketRole.REPORTER)


@router.get("/disputes", response_model=List[DisputeSummary])
def list_disputes(
    scope: Literal["mine", "admin_queue"] = Query("mine"),
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    return dispute_service.list_tickets(db, identity, include_admin_queue=scope == "admin_queue")


@router.get("/disputes/{ticket_id}", response_model=DisputeResponse)
def read_dispute(
    ticket_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    ticket, role = dispute_service.get_ticket(db, ticket_id, identity)
    return _view(ticket, role)


@router.get("/disputes/{ticket_id}/messages", response_model=List[DisputeMessageResponse])
def read_dispute_messages(
    ticket_id: int,
    after_seq: Optional[int] = Query(None, ge=0),
    limit: Optional[int] = Query(None, ge=1, le=500),
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    """Transcript in ``seq`` order; ``after_seq`` fetches only newer entries."""
    return dispute_service.get_transcript(db, ticket_id, identity, after_seq=after_seq, limit=limit)


@router.post(
    "/disputes/{ticket_id}/messages",
    response_model=DisputeResponse,
    status_code=status.HTTP_201_CREATED,
)
def post_dispute_message(
    ticket_id: int,
    message: str = Form(""),
    files: List[UploadFile] = File(default=[]),
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    store: AttachmentStore = Depends(get_attachment_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    uploads: List[AttachmentUpload] = []
    limit = settings.DISPUTE_MAX_ATTACHMENT_BYTES
    for f in files:
        # Never buffer more than one byte past the limit
        data = f.file.read(limit + 1)
        if len(data) > limit:
            raise error_response(
                "Attachment too large",
                {"files": f"{f.filename or 'attachment'} exceeds {limit} bytes"},
                status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            )
        uploads.append(
            AttachmentUpload(
                filename=f.filename or "attachment",
                content_type=f.content_type,
                data=data,
            )
        )
    ticket = dispute_service.act(
        db,
        ticket_id,
        identity,
        DisputeAction.SEND_MESSAGE,
        ActionPayload(message=message, files=uploads),
        attachment_store=store,
        dispatcher=dispatcher,
    )
    return _view(ticket, resolve_role(identity, ticket))


@router.post("/disputes/{ticket_id}/actions", response_model=DisputeResponse)
def perform_dispute_action(
    ticket_id: int,
    payload: DisputeActionIn,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Escalate, close, start review, resolve, or post a text-only message."""
    ticket = dispute_service.act(
        db,
        ticket_id,
        identity,
        payload.action,
        ActionPayload(message=payload.message or "", resolution=payload.resolution),
        dispatcher=dispatcher,
    )
    privileged = payload.action in {a.value for a in PRIVILEGED_ACTIONS}
    return _view(ticket, resolve_role(identity, ticket, privileged=privileged))
