from datetime import timedelta
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from app.crud import crud_dispute, crud_dispute_message
from app.models import DisputeStatus, SenderRole
from app.services import dispute_service
from app.services.dispute_access import Identity
from app.services.dispute_scheduler import scan_disputes
from app.services.dispute_service import ActionPayload
from app.utils.notifications import DisputeEvent
from dispute_helpers import ACCUSED, ADMIN, REPORTER, T0, hours

WEEK = timedelta(days=7)


def _status(db, ticket_id):
    return crud_dispute.get_ticket(db, ticket_id).status


def test_deadline_auto_escalates_once(file_dispute, db, session_factory, dispatcher, sent):
    # Scenario A
    ticket = file_dispute()
    summary = scan_disputes(session_factory, now=T0 + hours(49), dispatcher=dispatcher)
    assert summary == {"scanned": 1, "auto_escalated": 1, "auto_closed": 0, "failed": 0}
    assert _status(db, ticket.id) is DisputeStatus.ESCALATED
    log = crud_dispute_message.get_transcript(db, ticket.id)
    assert [(m.sender_role, m.message) for m in log] == [
        (SenderRole.SYSTEM, "auto-escalated: no response by deadline")
    ]
    assert sent[-1].event_kind is DisputeEvent.AUTO_ESCALATED
    assert set(sent[-1].recipients) == {REPORTER.id, ACCUSED.id, "admins"}

    again = scan_disputes(session_factory, now=T0 + hours(50), dispatcher=dispatcher)
    assert again["auto_escalated"] == 0
    after = crud_dispute.get_ticket(db, ticket.id)
    assert after.status is DisputeStatus.ESCALATED
    assert after.version == 2
    assert len(crud_dispute_message.get_transcript(db, ticket.id)) == 1


def test_nothing_due_before_deadline(file_dispute, db, session_factory):
    ticket = file_dispute()
    summary = scan_disputes(session_factory, now=T0 + hours(47))
    assert summary["scanned"] == 1
    assert _status(db, ticket.id) is DisputeStatus.OPEN
    assert crud_dispute.get_ticket(db, ticket.id).version == 1


def test_accused_response_prevents_escalation(file_dispute, db, session_factory):
    ticket = file_dispute()
    dispute_service.act(
        db, ticket.id, ACCUSED, "send_message", ActionPayload(message="On it"), now=T0 + hours(10)
    )
    scan_disputes(session_factory, now=T0 + hours(49))
    assert _status(db, ticket.id) is DisputeStatus.OPEN


def test_reporter_message_does_not_count_as_response(file_dispute, db, session_factory):
    ticket = file_dispute()
    dispute_service.act(
        db, ticket.id, REPORTER, "send_message", ActionPayload(message="Any update?"), now=T0 + hours(10)
    )
    scan_disputes(session_factory, now=T0 + hours(49))
    assert _status(db, ticket.id) is DisputeStatus.ESCALATED


def test_inactivity_closes_open_ticket(file_dispute, db, session_factory, dispatcher, sent):
    # Scenario B
    ticket = file_dispute()
    dispute_service.act(
        db, ticket.id, ACCUSED, "send_message", ActionPayload(message="Let's talk"), now=T0 + hours(2)
    )
    summary = scan_disputes(session_factory, now=T0 + WEEK + hours(2) + timedelta(minutes=1), dispatcher=dispatcher)
    assert summary["auto_closed"] == 1
    assert _status(db, ticket.id) is DisputeStatus.CLOSED
    assert crud_dispute_message.get_transcript(db, ticket.id)[-1].message == "auto-closed: 7 days inactivity"
    assert sent[-1].event_kind is DisputeEvent.AUTO_CLOSED


def test_auto_escalated_ticket_still_closes_after_inactivity(file_dispute, db, session_factory):
    ticket = file_dispute()
    dispute_service.act(
        db, ticket.id, REPORTER, "send_message", ActionPayload(message="Hello?"), now=T0 + hours(2)
    )
    scan_disputes(session_factory, now=T0 + hours(49))
    assert _status(db, ticket.id) is DisputeStatus.ESCALATED
    # The automatic escalation is not party activity
    scan_disputes(session_factory, now=T0 + WEEK + hours(1))
    assert _status(db, ticket.id) is DisputeStatus.ESCALATED
    scan_disputes(session_factory, now=T0 + WEEK + hours(2) + timedelta(minutes=1))
    assert _status(db, ticket.id) is DisputeStatus.CLOSED


def test_inactivity_takes_precedence_over_deadline(file_dispute, db, session_factory):
    ticket = file_dispute()
    summary = scan_disputes(session_factory, now=T0 + WEEK + hours(1))
    assert summary["auto_closed"] == 1
    assert summary["auto_escalated"] == 0
    assert _status(db, ticket.id) is DisputeStatus.CLOSED


def test_under_review_and_terminal_tickets_are_left_alone(file_dispute, db, session_factory):
    reviewed = file_dispute()
    dispute_service.act(db, reviewed.id, REPORTER, "escalate", now=T0 + hours(1))
    dispute_service.act(db, reviewed.id, ADMIN, "start_review", now=T0 + hours(2))
    closed = file_dispute(reporter_id="renter-2", accused_id="landlord-2")
    dispute_service.act(db, closed.id, Identity(id="renter-2"), "close", now=T0 + hours(1))

    summary = scan_disputes(session_factory, now=T0 + WEEK * 3)
    assert summary["scanned"] == 0
    assert _status(db, reviewed.id) is DisputeStatus.UNDER_REVIEW
    assert _status(db, closed.id) is DisputeStatus.RESOLVED


def test_failing_ticket_does_not_stop_the_cycle(file_dispute, db, session_factory):
    first = file_dispute()
    second = file_dispute(reporter_id="renter-2", accused_id="landlord-2")
    original = dispute_service.apply_automatic_transition

    def flaky(session, ticket_id, now, dispatcher=None):
        if ticket_id == first.id:
            raise RuntimeError("boom")
        return original(session, ticket_id, now, dispatcher=dispatcher)

    with patch.object(dispute_service, "apply_automatic_transition", side_effect=flaky):
        summary = scan_disputes(session_factory, now=T0 + hours(49))
    assert summary["failed"] == 1
    assert summary["auto_escalated"] == 1
    assert _status(db, first.id) is DisputeStatus.OPEN
    assert _status(db, second.id) is DisputeStatus.ESCALATED

    # Still eligible on the next cycle
    scan_disputes(session_factory, now=T0 + hours(50))
    assert _status(db, first.id) is DisputeStatus.ESCALATED


def test_store_unavailable_skips_cycle(session_factory):
    with patch.object(
        crud_dispute,
        "list_ticket_ids_by_status",
        side_effect=OperationalError("SELECT", {}, Exception("db down")),
    ):
        summary = scan_disputes(session_factory, now=T0)
    assert summary["scanned"] == 0
    assert summary["failed"] == -1
