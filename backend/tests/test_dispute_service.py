import pytest
from datetime import timedelta
from decimal import Decimal

from app import models
from app.models import DisputeStatus
from app.services import dispute_service
from app.services.dispute_access import Identity, TicketRole
from app.services.dispute_service import ActionPayload
from app.services.dispute_state_machine import DisputeAction
from app.utils.errors import Forbidden, InvalidTransition, NotFound, ValidationError
from app.utils.notifications import DisputeEvent
from dispute_helpers import ACCUSED, ADMIN, REPORTER, STRANGER, T0, FakeAttachmentStore, hours, make_upload


def say(db, ticket, who, text, at, dispatcher=None, **kw):
    return dispute_service.act(
        db, ticket.id, who, DisputeAction.SEND_MESSAGE, ActionPayload(message=text, **kw),
        dispatcher=dispatcher, now=at,
    )


class TestFileTicket:
    def test_new_ticket_defaults(self, file_dispute, sent):
        ticket = file_dispute()
        assert ticket.status is DisputeStatus.OPEN
        assert ticket.version == 1
        assert ticket.deadline == T0 + hours(48)
        assert ticket.last_activity_at == T0
        assert ticket.created_at == T0
        assert ticket.claim_amount == Decimal("250.00")
        assert ticket.initial_evidence == ["https://media.example.com/checkout-photo.jpg"]
        assert ticket.reporter_role is models.PartyRole.RENTER
        assert ticket.accused_role is models.PartyRole.LANDLORD
        assert ticket.chat_logs == []
        assert [(i.event_kind, i.recipients) for i in sent] == [(DisputeEvent.FILED, (ACCUSED.id,))]

    @pytest.mark.parametrize(
        "overrides,field",
        [
            ({"accused_id": REPORTER.id}, "accused_id"),
            ({"reporter_id": ""}, "reporter_id"),
            ({"accused_id": "  "}, "accused_id"),
            ({"booking_id": ""}, "booking_id"),
            ({"title": "   "}, "title"),
            ({"title": "x" * 201}, "title"),
            ({"description": ""}, "description"),
            ({"claim_amount": "-1"}, "claim_amount"),
            ({"claim_amount": "lots"}, "claim_amount"),
            ({"reporter_role": "agent"}, "reporter_role"),
            ({"severity": "low"}, "severity"),
            ({"evidence": ["ok", ""]}, "evidence"),
        ],
    )
    def test_validation(self, file_dispute, db, overrides, field):
        with pytest.raises(ValidationError) as exc:
            file_dispute(**overrides)
        assert field in exc.value.field_errors
        assert db.query(models.DisputeTicket).count() == 0


class TestReadAccess:
    def test_stranger_gets_not_found(self, file_dispute, db):
        # Scenario E
        ticket = file_dispute()
        with pytest.raises(NotFound) as exc:
            dispute_service.get_ticket(db, ticket.id, STRANGER)
        with pytest.raises(NotFound) as missing:
            dispute_service.get_ticket(db, 9999, STRANGER)
        # Indistinguishable from a ticket that does not exist
        assert exc.value.message == missing.value.message

    @pytest.mark.parametrize("identity", [None, Identity(id="  ")])
    def test_missing_identity_is_a_validation_error(self, file_dispute, db, identity):
        ticket = file_dispute()
        calls = [
            lambda: dispute_service.get_ticket(db, ticket.id, identity),
            lambda: dispute_service.get_transcript(db, ticket.id, identity),
            lambda: dispute_service.act(db, ticket.id, identity, "escalate"),
            lambda: dispute_service.list_tickets(db, identity),
        ]
        for call in calls:
            with pytest.raises(ValidationError) as exc:
                call()
            assert exc.value.field_errors == {"identity": "required"}
        assert dispute_service.get_ticket(db, ticket.id, REPORTER)[0].version == 1

    def test_roles_on_read(self, file_dispute, db):
        ticket = file_dispute()
        assert dispute_service.get_ticket(db, ticket.id, REPORTER)[1] is TicketRole.REPORTER
        assert dispute_service.get_ticket(db, ticket.id, ACCUSED)[1] is TicketRole.ACCUSED
        assert dispute_service.get_ticket(db, ticket.id, ADMIN)[1] is TicketRole.ADMIN

    def test_stranger_cannot_read_transcript(self, file_dispute, db):
        ticket = file_dispute()
        with pytest.raises(NotFound):
            dispute_service.get_transcript(db, ticket.id, STRANGER)

    def test_list_is_party_scoped(self, file_dispute, db):
        mine = file_dispute()
        other = file_dispute(reporter_id="renter-2", accused_id="landlord-2", now=T0 + hours(1))
        against_me = file_dispute(
            reporter_id=ACCUSED.id, accused_id=REPORTER.id, reporter_role="landlord", now=T0 + hours(2)
        )
        ids = [t.id for t in dispute_service.list_tickets(db, REPORTER)]
        assert ids == [against_me.id, mine.id]
        assert other.id not in ids

    def test_admin_queue(self, file_dispute, db):
        quiet = file_dispute()
        loud = file_dispute(reporter_id="renter-2", accused_id="landlord-2")
        dispute_service.act(db, loud.id, Identity(id="renter-2"), "escalate", now=T0 + hours(1))
        queue = dispute_service.list_tickets(db, ADMIN, include_admin_queue=True)
        assert [t.id for t in queue] == [loud.id]
        assert quiet.id not in [t.id for t in queue]

    def test_admin_queue_requires_admin(self, db):
        with pytest.raises(Forbidden):
            dispute_service.list_tickets(db, REPORTER, include_admin_queue=True)


class TestActions:
    def test_messages_bump_version_and_activity(self, file_dispute, db, dispatcher, sent):
        ticket = file_dispute()
        ticket = say(db, ticket, ACCUSED, "The carpet was ruined.", T0 + hours(2), dispatcher)
        assert ticket.version == 2
        assert ticket.last_activity_at == T0 + hours(2)
        assert ticket.status is DisputeStatus.OPEN
        entry = ticket.chat_logs[-1]
        assert (entry.seq, entry.sender_id, entry.sender_role) == (2, ACCUSED.id, models.SenderRole.LANDLORD)
        assert sent[-1].event_kind is DisputeEvent.MESSAGE_POSTED
        assert sent[-1].recipients == (REPORTER.id,)

    def test_reporter_close_then_accused_message(self, file_dispute, db):
        # Scenario C
        ticket = file_dispute()
        ticket = dispute_service.act(db, ticket.id, REPORTER, "close", now=T0 + hours(1))
        assert ticket.status is DisputeStatus.RESOLVED
        with pytest.raises(InvalidTransition):
            say(db, ticket, ACCUSED, "wait", T0 + hours(2))
        assert dispute_service.get_ticket(db, ticket.id, ACCUSED)[0].version == 2

    def test_accused_cannot_escalate(self, file_dispute, db):
        ticket = file_dispute()
        with pytest.raises(Forbidden):
            dispute_service.act(db, ticket.id, ACCUSED, "escalate", now=T0)

    def test_stranger_action_is_not_found(self, file_dispute, db):
        ticket = file_dispute()
        with pytest.raises(NotFound):
            say(db, ticket, STRANGER, "hi", T0)

    def test_callers_cannot_fire_timer_actions(self, file_dispute, db):
        ticket = file_dispute()
        with pytest.raises(ValidationError):
            dispute_service.act(db, ticket.id, REPORTER, "deadline_expired", now=T0)
        with pytest.raises(ValidationError):
            dispute_service.act(db, ticket.id, REPORTER, "reopen", now=T0)

    def test_escalation_and_admin_review_flow(self, file_dispute, db, dispatcher, sent):
        ticket = file_dispute()
        ticket = dispute_service.act(db, ticket.id, REPORTER, "escalate", dispatcher=dispatcher, now=T0 + hours(1))
        assert ticket.status is DisputeStatus.ESCALATED
        assert ticket.chat_logs[-1].message == "escalated by reporter: waiting for admin review"
        assert set(sent[-1].recipients) == {ACCUSED.id, "admins"}

        ticket = say(db, ticket, ADMIN, "Please upload the lease.", T0 + hours(2), dispatcher)
        assert ticket.chat_logs[-1].sender_role is models.SenderRole.ADMIN

        ticket = dispute_service.act(db, ticket.id, ADMIN, "start_review", dispatcher=dispatcher, now=T0 + hours(3))
        assert ticket.status is DisputeStatus.UNDER_REVIEW
        with pytest.raises(InvalidTransition):
            say(db, ticket, REPORTER, "anything new?", T0 + hours(4))

        ticket = dispute_service.act(
            db,
            ticket.id,
            ADMIN,
            "admin_resolve",
            ActionPayload(resolution="Refund half of the deposit"),
            dispatcher=dispatcher,
            now=T0 + hours(5),
        )
        assert ticket.status is DisputeStatus.RESOLVED
        assert ticket.resolution == "Refund half of the deposit"
        assert sent[-1].event_kind is DisputeEvent.RESOLVED
        assert set(sent[-1].recipients) == {REPORTER.id, ACCUSED.id}
        assert [m.seq for m in ticket.chat_logs] == [2, 3, 4]

    def test_admin_who_is_a_party_can_still_resolve(self, file_dispute, db):
        admin_reporter = Identity(id=REPORTER.id, is_admin=True)
        ticket = file_dispute()
        dispute_service.act(db, ticket.id, admin_reporter, "escalate", now=T0 + hours(1))
        ticket = dispute_service.act(db, ticket.id, admin_reporter, "admin_resolve", now=T0 + hours(2))
        assert ticket.status is DisputeStatus.RESOLVED

    def test_too_many_attachments(self, file_dispute, db):
        ticket = file_dispute()
        files = [make_upload(f"{i}.jpg") for i in range(6)]
        store = FakeAttachmentStore()
        with pytest.raises(ValidationError):
            dispute_service.act(
                db, ticket.id, REPORTER, "send_message", ActionPayload(files=files),
                attachment_store=store, now=T0,
            )
        assert store.uploaded == []

    def test_doomed_message_never_uploads(self, file_dispute, db):
        ticket = file_dispute()
        dispute_service.act(db, ticket.id, REPORTER, "close", now=T0)
        store = FakeAttachmentStore()
        with pytest.raises(InvalidTransition):
            dispute_service.act(
                db, ticket.id, REPORTER, "send_message",
                ActionPayload(message="late", files=[make_upload()]),
                attachment_store=store, now=T0 + hours(1),
            )
        assert store.uploaded == []


class TestAttachmentDegradation:
    def test_failed_upload_keeps_text(self, file_dispute, db):
        # Scenario D, first half
        ticket = file_dispute()
        store = FakeAttachmentStore(fail=["receipt.pdf"])
        ticket = dispute_service.act(
            db, ticket.id, REPORTER, "send_message",
            ActionPayload(message="Receipt attached", files=[make_upload("receipt.pdf")]),
            attachment_store=store, now=T0 + hours(1),
        )
        entry = ticket.chat_logs[-1]
        assert entry.message == "Receipt attached"
        assert entry.attachments == []

    def test_failed_upload_keeps_original_text_verbatim(self, file_dispute, db):
        ticket = file_dispute()
        text = "  Receipt below:\n  - plumber call-out  \n"
        ticket = dispute_service.act(
            db, ticket.id, REPORTER, "send_message",
            ActionPayload(message=text, files=[make_upload("receipt.pdf")]),
            attachment_store=FakeAttachmentStore(fail=["receipt.pdf"]), now=T0 + hours(1),
        )
        assert ticket.chat_logs[-1].message == text
        assert ticket.chat_logs[-1].attachments == []

    def test_failed_upload_without_text(self, file_dispute, db):
        # Scenario D, second half
        ticket = file_dispute()
        store = FakeAttachmentStore(fail=["receipt.pdf"])
        with pytest.raises(ValidationError):
            dispute_service.act(
                db, ticket.id, REPORTER, "send_message",
                ActionPayload(message="", files=[make_upload("receipt.pdf")]),
                attachment_store=store, now=T0 + hours(1),
            )
        assert dispute_service.get_ticket(db, ticket.id, REPORTER)[0].version == 1

    def test_partial_upload_keeps_successes_in_order(self, file_dispute, db):
        ticket = file_dispute()
        store = FakeAttachmentStore(fail=["b.jpg"])
        ticket = dispute_service.act(
            db, ticket.id, ACCUSED, "send_message",
            ActionPayload(files=[make_upload("a.jpg"), make_upload("b.jpg"), make_upload("c.jpg")]),
            attachment_store=store, now=T0 + hours(1),
        )
        urls = ticket.chat_logs[-1].attachments
        assert [u.rsplit("/", 1)[-1] for u in urls] == ["a.jpg", "c.jpg"]


def test_full_view_never_leaks_to_strangers_after_changes(file_dispute, db):
    ticket = file_dispute()
    say(db, ticket, REPORTER, "hello", T0 + timedelta(minutes=5))
    with pytest.raises(NotFound):
        dispute_service.get_ticket(db, ticket.id, Identity(id="landlord-2"))
