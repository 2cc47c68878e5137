"""Tests for field placement and field values."""

import pytest

from esign.db.models import ESignField, FieldType, RecipientStatus
from esign.services.esign_exceptions import (
    AlreadySigned,
    NotFound,
    PreconditionFailed,
    TokenInvalid,
    ValidationError,
)

from conftest import SIGNATURE_IMAGE, audit_actions, cc_recipient, fill_and_sign, signers_of


class TestPlaceField:
    def test_default_sizes(self, service, make_document):
        doc_id = make_document(signers=1, send=False)
        signer = signers_of(service, doc_id)[0]

        text = service.place_field(doc_id, signer.id, FieldType.TEXT, position=(10, 10))
        box = service.place_field(doc_id, signer.id, FieldType.CHECKBOX, position=(10, 80))

        assert (text.width, text.height) == (200.0, 50.0)
        assert (box.width, box.height) == (30.0, 30.0)
        assert "field_placed" in audit_actions(service, doc_id)

    def test_explicit_size_and_dropdown_options(self, service, make_document):
        doc_id = make_document(signers=1, send=False)
        signer = signers_of(service, doc_id)[0]

        field = service.place_field(
            doc_id, signer.id, FieldType.DROPDOWN, page=2, position=(5, 5), size=(120, 24),
            options=["Cash", "Conventional"], label="Financing",
        )

        assert field.page == 2
        assert (field.width, field.height) == (120.0, 24.0)
        assert field.options == ["Cash", "Conventional"]

    def test_dropdown_without_options_rejected(self, service, make_document):
        doc_id = make_document(signers=1, send=False)
        signer = signers_of(service, doc_id)[0]
        with pytest.raises(ValidationError):
            service.place_field(doc_id, signer.id, FieldType.DROPDOWN, position=(0, 0))

    def test_options_on_non_dropdown_rejected(self, service, make_document):
        doc_id = make_document(signers=1, send=False)
        signer = signers_of(service, doc_id)[0]
        with pytest.raises(ValidationError):
            service.place_field(doc_id, signer.id, FieldType.TEXT, position=(0, 0), options=["a"])

    @pytest.mark.parametrize("page,position,size", [
        (0, (0, 0), None),
        (1, (-1, 0), None),
        (1, (0, -5), None),
        (1, (0, 0), (0, 10)),
        (1, (0, 0), (10, -1)),
    ])
    def test_bad_geometry_rejected(self, service, make_document, page, position, size):
        doc_id = make_document(signers=1, send=False)
        signer = signers_of(service, doc_id)[0]
        with pytest.raises(ValidationError):
            service.place_field(doc_id, signer.id, FieldType.TEXT, page=page, position=position, size=size)

    def test_recipient_must_be_a_signer_on_the_document(self, service, make_document):
        doc_id = make_document(signers=1, extra_recipients=[cc_recipient()], send=False)
        other_doc = make_document(signers=1, send=False)
        cc = [r for r in service.get_document(doc_id).recipients if not r.is_signer][0]
        stranger = signers_of(service, other_doc)[0]

        with pytest.raises(ValidationError):
            service.place_field(doc_id, cc.id, FieldType.SIGNATURE, position=(0, 0))
        with pytest.raises(ValidationError):
            service.place_field(doc_id, stranger.id, FieldType.SIGNATURE, position=(0, 0))

    def test_fields_locked_after_send(self, service, make_document):
        doc_id = make_document(signers=1)
        signer = signers_of(service, doc_id)[0]
        field = signer.fields[0]

        with pytest.raises(PreconditionFailed):
            service.place_field(doc_id, signer.id, FieldType.TEXT, position=(0, 0))
        with pytest.raises(PreconditionFailed):
            service.update_field_layout(field.id, position=(10, 10))
        with pytest.raises(PreconditionFailed):
            service.remove_field(field.id)

    def test_move_resize_and_remove_in_draft(self, service, db, make_document):
        doc_id = make_document(signers=1, send=False)
        signer = signers_of(service, doc_id)[0]
        field_id = signer.fields[0].id

        moved = service.update_field_layout(field_id, position=(300, 400), size=(150, 40), label="Buyer signature")
        assert (moved.x, moved.y, moved.width, moved.height) == (300.0, 400.0, 150.0, 40.0)
        assert moved.label == "Buyer signature"

        service.remove_field(field_id)
        assert db.query(ESignField).filter(ESignField.id == field_id).first() is None
        assert audit_actions(service, doc_id)[-2:] == ["field_updated", "field_removed"]


class TestSetFieldValue:
    def test_fill_counts_as_first_view(self, service, make_document):
        doc_id = make_document(signers=2)
        signer = signers_of(service, doc_id)[0]
        field = signer.fields[0]

        service.set_field_value(field.id, signer.id, SIGNATURE_IMAGE, signer.access_token)

        assert signer.status == RecipientStatus.VIEWED.value
        assert signer.viewed_at is not None
        assert service.get_document(doc_id).status == "in_progress"
        assert field.value == SIGNATURE_IMAGE
        assert field.normalized_value == {"field_type": "signature", "image_ref": SIGNATURE_IMAGE}
        assert field.filled_at is not None
        actions = audit_actions(service, doc_id)
        assert actions[-3:] == ["recipient_viewed", "document_in_progress", "field_filled"]

    def test_other_recipients_field_is_rejected(self, service, make_document):
        doc_id = make_document(signers=2)
        alice, bob = signers_of(service, doc_id)
        bobs_field = bob.fields[0]

        with pytest.raises(ValidationError):
            service.set_field_value(bobs_field.id, alice.id, SIGNATURE_IMAGE, alice.access_token)
        assert bobs_field.value is None

    def test_wrong_token_rejected(self, service, make_document):
        doc_id = make_document(signers=2)
        alice, bob = signers_of(service, doc_id)

        with pytest.raises(TokenInvalid):
            service.set_field_value(alice.fields[0].id, alice.id, SIGNATURE_IMAGE, bob.access_token)

    def test_invalid_value_leaves_state_untouched(self, service, make_document):
        doc_id = make_document(signers=1)
        signer = signers_of(service, doc_id)[0]
        with pytest.raises(ValidationError):
            service.set_field_value(signer.fields[0].id, signer.id, "", signer.access_token)

        assert signer.status == RecipientStatus.SENT.value
        assert service.get_document(doc_id).status == "pending"
        assert "field_filled" not in audit_actions(service, doc_id)

    def test_after_signing_raises_already_signed(self, service, make_document):
        doc_id = make_document(signers=2)
        alice = signers_of(service, doc_id)[0]
        token = alice.access_token
        fill_and_sign(service, alice)

        with pytest.raises(AlreadySigned):
            service.set_field_value(alice.fields[0].id, alice.id, SIGNATURE_IMAGE, token)

    def test_unknown_field(self, service, make_document):
        doc_id = make_document(signers=1)
        signer = signers_of(service, doc_id)[0]
        with pytest.raises(NotFound):
            service.set_field_value(9999, signer.id, "x", signer.access_token)

    def test_clear_value(self, service, make_document):
        doc_id = make_document(signers=1)
        signer = signers_of(service, doc_id)[0]
        field = signer.fields[0]
        service.set_field_value(field.id, signer.id, SIGNATURE_IMAGE, signer.access_token)

        service.clear_field_value(field.id, signer.id, signer.access_token)

        assert field.value is None
        assert not service.is_recipient_complete(signer.id)
        assert audit_actions(service, doc_id)[-1] == "field_cleared"


def test_is_recipient_complete_ignores_optional_fields(service, make_document):
    doc_id = make_document(signers=1, send=False)
    signer = signers_of(service, doc_id)[0]
    service.place_field(doc_id, signer.id, FieldType.TEXT, position=(0, 0), required=False)
    service.send_document(doc_id)

    assert not service.is_recipient_complete(signer.id)
    service.set_field_value(signer.fields[0].id, signer.id, SIGNATURE_IMAGE, signer.access_token)
    assert service.is_recipient_complete(signer.id)
    assert len(service.get_recipient_fields(signer.id)) == 2
