"""Tests for the document lifecycle: drafts, send, void, delete and listing."""

import pytest

from esign.db.models import DocumentStatus, ESignField, ESignRecipient, FieldType, RecipientStatus
from esign.models.esign_requests import RecipientInput, RecipientUpdate
from esign.services.esign_exceptions import (
    DocumentClosed,
    NotFound,
    PreconditionFailed,
    ValidationError,
)
from esign.services.messenger.notifier import NotificationEvent

from conftest import audit_actions, cc_recipient, entries, fill_and_sign, signers_of


class TestCreateDocument:
    def test_creates_draft_and_uploads_original(self, service, storage):
        document = service.create_document(
            title="  Seller Disclosure  ",
            file_content=b"%PDF-1.4 disclosure",
            file_name="disclosure.pdf",
            owner_email="dana.agent@bridgerealty.com",
            deal_id="deal-7",
            recipients=[RecipientInput(name="Sam Seller", email="sam@example.com", signer_type="seller")],
        )

        assert document.status == DocumentStatus.DRAFT.value
        assert document.title == "Seller Disclosure"
        assert storage.blobs[document.original_file_url] == b"%PDF-1.4 disclosure"
        assert document.total_signers == 1
        assert document.signed_count == 0
        assert document.recipients[0].signing_order == 1
        assert document.recipients[0].signer_type == "seller"
        assert audit_actions(service, document.id) == ["document_created", "recipient_added"]

    @pytest.mark.parametrize("kwargs", [
        {"title": "   "},
        {"file_content": b""},
        {"file_name": ""},
        {"signing_mode": "round-robin"},
    ])
    def test_rejects_bad_input(self, service, storage, kwargs):
        args = {"title": "Lease", "file_content": b"%PDF", "file_name": "lease.pdf"}
        args.update(kwargs)
        with pytest.raises(ValidationError):
            service.create_document(**args)
        assert storage.blobs == {}


class TestDraftEditing:
    def test_update_document(self, service, make_document):
        doc_id = make_document(signers=1, send=False)

        document = service.update_document(doc_id, title="Counter Offer #2", signing_mode="sequential")

        assert document.title == "Counter Offer #2"
        assert document.signing_mode == "sequential"
        assert service.get_audit_trail(doc_id, action="document_updated")[0].action_details == {
            "title": "Counter Offer #2",
            "signing_mode": "sequential",
        }

    def test_update_after_send(self, service, make_document):
        doc_id = make_document(signers=1)
        with pytest.raises(PreconditionFailed):
            service.update_document(doc_id, title="Too late")

    def test_add_recipient_defaults_to_end_of_order(self, service, make_document):
        doc_id = make_document(signers=2, send=False)

        recipient = service.add_recipient(doc_id, RecipientInput(name="Lender", email="loans@bank.example.com"))

        assert recipient.signing_order == 3
        assert service.get_document(doc_id).total_signers == 3

    def test_add_cc_does_not_count_as_signer(self, service, make_document):
        doc_id = make_document(signers=2, send=False)
        service.add_recipient(doc_id, cc_recipient())
        assert service.get_document(doc_id).total_signers == 2

    def test_remove_recipient_drops_their_fields(self, service, db, make_document):
        doc_id = make_document(signers=2, send=False)
        alice, bob = signers_of(service, doc_id)
        bob_id = bob.id

        service.remove_recipient(doc_id, bob_id)

        document = service.get_document(doc_id)
        assert [r.id for r in document.recipients] == [alice.id]
        assert document.total_signers == 1
        assert db.query(ESignField).filter(ESignField.recipient_id == bob_id).count() == 0
        assert db.query(ESignRecipient).filter(ESignRecipient.id == bob_id).first() is None
        removed = service.get_audit_trail(doc_id, action="recipient_removed")[0]
        assert removed.action_details["fields_removed"] == 1

    def test_remove_unknown_recipient(self, service, make_document):
        doc_id = make_document(signers=1, send=False)
        with pytest.raises(NotFound):
            service.remove_recipient(doc_id, 9999)

    def test_delete_draft_keeps_audit_ledger(self, service, db, make_document):
        doc_id = make_document(signers=2, send=False)

        service.delete_document(doc_id)

        with pytest.raises(NotFound):
            service.get_document(doc_id)
        assert db.query(ESignRecipient).filter(ESignRecipient.document_id == doc_id).count() == 0
        assert entries(db, doc_id)[-1].action == "document_deleted"
        assert service.verify_audit_chain(doc_id)["valid"] is True

    def test_delete_draft_removes_stored_original(self, service, storage, make_document):
        doc_id = make_document(signers=1, send=False)
        url = service.get_document(doc_id).original_file_url
        assert url in storage.blobs

        service.delete_document(doc_id)

        assert url not in storage.blobs

    def test_delete_sent_document(self, service, storage, make_document):
        doc_id = make_document(signers=1)
        url = service.get_document(doc_id).original_file_url
        with pytest.raises(PreconditionFailed):
            service.delete_document(doc_id)
        assert url in storage.blobs


class TestUpdateRecipient:
    def test_fix_email_keeps_fields(self, service, make_document):
        doc_id = make_document(signers=2, send=False)
        alice, _ = signers_of(service, doc_id)
        field_ids = [f.id for f in alice.fields]

        updated = service.update_recipient(
            doc_id, alice.id, RecipientUpdate(email="alice.buyer@example.com", signer_type="buyer")
        )

        assert updated.email == "alice.buyer@example.com"
        assert updated.signer_type == "buyer"
        assert [f.id for f in updated.fields] == field_ids
        entry = service.get_audit_trail(doc_id, action="recipient_updated")[0]
        assert entry.recipient_id == alice.id
        assert entry.action_details["email"] == {"from": "signer1@example.com", "to": "alice.buyer@example.com"}

    def test_role_change_recounts_signers(self, service, make_document):
        doc_id = make_document(signers=1, send=False)
        lender = service.add_recipient(doc_id, RecipientInput(name="Lender", email="loans@bank.example.com"))
        escrow = service.add_recipient(doc_id, cc_recipient())
        assert service.get_document(doc_id).total_signers == 2

        service.update_recipient(doc_id, lender.id, RecipientUpdate(role="viewer"))
        assert service.get_document(doc_id).total_signers == 1

        service.update_recipient(doc_id, escrow.id, RecipientUpdate(role="signer"))
        assert service.get_document(doc_id).total_signers == 2

    def test_signer_with_fields_keeps_signer_role(self, service, make_document):
        doc_id = make_document(signers=1, send=False)
        signer = signers_of(service, doc_id)[0]

        with pytest.raises(PreconditionFailed, match="owns 1 field"):
            service.update_recipient(doc_id, signer.id, RecipientUpdate(role="cc"))

        assert signer.role == "signer"
        assert "recipient_updated" not in audit_actions(service, doc_id)

    def test_unchanged_values_are_not_audited(self, service, make_document):
        doc_id = make_document(signers=1, send=False)
        signer = signers_of(service, doc_id)[0]

        service.update_recipient(doc_id, signer.id, RecipientUpdate(name="Signer 1"))

        assert "recipient_updated" not in audit_actions(service, doc_id)

    def test_name_cannot_be_cleared(self, service, make_document):
        doc_id = make_document(signers=1, send=False)
        signer = signers_of(service, doc_id)[0]
        with pytest.raises(ValidationError):
            service.update_recipient(doc_id, signer.id, RecipientUpdate(name=None))

    def test_unknown_recipient(self, service, make_document):
        doc_id = make_document(signers=1, send=False)
        with pytest.raises(NotFound):
            service.update_recipient(doc_id, 9999, RecipientUpdate(name="Nobody"))

    def test_locked_after_send(self, service, make_document):
        doc_id = make_document(signers=1)
        signer = signers_of(service, doc_id)[0]
        with pytest.raises(PreconditionFailed):
            service.update_recipient(doc_id, signer.id, RecipientUpdate(email="other@example.com"))
        assert signer.email == "signer1@example.com"


class TestSendDocument:
    def test_send_issues_links(self, service, make_document, notifier, clock):
        doc_id = make_document(signers=2, extra_recipients=[cc_recipient()])
        document = service.get_document(doc_id)

        assert document.status == DocumentStatus.PENDING.value
        assert document.sent_at == clock.now
        assert document.total_signers == 2
        assert len({r.access_token for r in document.recipients}) == 3
        for signer in document.signers:
            assert signer.status == RecipientStatus.SENT.value
            assert notifier.events_for(signer.email) == [NotificationEvent.SIGNING_REQUEST]
        assert notifier.events_for("escrow@titleco.com") == [NotificationEvent.DOCUMENT_SHARED]

    def test_signing_request_payload(self, service, make_document, notifier):
        doc_id = make_document(signers=1)
        signer = signers_of(service, doc_id)[0]

        _, event, payload = notifier.sent[0]
        assert event == NotificationEvent.SIGNING_REQUEST
        assert payload["document_title"] == "Purchase Agreement - 12 Harbor Lane"
        assert payload["sender_name"] == "Dana Agent"
        assert payload["signing_link"].endswith(f"/sign/{doc_id}?token={signer.access_token}")
        assert payload["expires_at"] == "April 01, 2026"

    def test_send_without_signers(self, service):
        document = service.create_document(
            title="Notice", file_content=b"%PDF", file_name="notice.pdf", recipients=[cc_recipient()],
        )
        with pytest.raises(PreconditionFailed):
            service.send_document(document.id)
        assert service.get_document(document.id).status == DocumentStatus.DRAFT.value

    def test_send_twice(self, service, make_document, notifier):
        doc_id = make_document(signers=1)
        sent_before = len(notifier.sent)
        with pytest.raises(PreconditionFailed):
            service.send_document(doc_id)
        assert len(notifier.sent) == sent_before

    def test_signing_mode_can_be_chosen_at_send(self, service, make_document):
        doc_id = make_document(signers=2, send=False)

        service.send_document(doc_id, signing_mode="sequential")

        document = service.get_document(doc_id)
        assert document.signing_mode == "sequential"
        assert [s.status for s in signers_of(service, doc_id)] == ["sent", "pending"]

    def test_signer_without_fields_can_still_sign(self, service, make_document):
        doc_id = make_document(signers=1, send=False)
        service.add_recipient(doc_id, RecipientInput(name="Witness", email="witness@example.com"))
        service.send_document(doc_id)
        witness = signers_of(service, doc_id)[1]

        service.view(doc_id, witness.access_token)
        service.sign(witness.id, witness.access_token)
        assert witness.status == RecipientStatus.SIGNED.value


class TestVoidDocument:
    def test_reason_is_required(self, service, make_document):
        doc_id = make_document(signers=1)
        with pytest.raises(ValidationError):
            service.void_document(doc_id, "")
        assert service.get_document(doc_id).status == DocumentStatus.PENDING.value

    def test_void_draft_notifies_nobody(self, service, make_document, notifier):
        doc_id = make_document(signers=1, send=False)

        document = service.void_document(doc_id, "duplicate upload")

        assert document.status == DocumentStatus.VOIDED.value
        assert notifier.sent == []

    def test_void_in_progress(self, service, make_document):
        doc_id = make_document(signers=2)
        fill_and_sign(service, signers_of(service, doc_id)[0])

        service.void_document(doc_id, "buyer walked away")
        assert service.get_document(doc_id).status == DocumentStatus.VOIDED.value

    def test_void_completed_document(self, service, make_document):
        doc_id = make_document(signers=1)
        fill_and_sign(service, signers_of(service, doc_id)[0])

        with pytest.raises(DocumentClosed):
            service.void_document(doc_id, "too late")
        assert service.get_document(doc_id).status == DocumentStatus.COMPLETED.value

    def test_closed_document_rejects_draft_edits(self, service, make_document):
        doc_id = make_document(signers=1)
        signer = signers_of(service, doc_id)[0]
        service.void_document(doc_id, "wrong buyer")

        with pytest.raises(DocumentClosed):
            service.place_field(doc_id, signer.id, FieldType.TEXT, position=(0, 0))
        with pytest.raises(DocumentClosed):
            service.resend_invitation(signer.id)


class TestListDocuments:
    def test_filters(self, service, make_document):
        draft_id = make_document(signers=1, send=False)
        sent_id = make_document(signers=1)

        assert [d.id for d in service.list_documents(status="draft")] == [draft_id]
        assert [d.id for d in service.list_documents(status="pending")] == [sent_id]
        assert {d.id for d in service.list_documents(created_by="user-42")} == {draft_id, sent_id}
        assert service.list_documents(created_by="someone-else") == []

    def test_unknown_status(self, service):
        with pytest.raises(ValidationError):
            service.list_documents(status="archived")
