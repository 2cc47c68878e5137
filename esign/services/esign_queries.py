"""Row loading helpers shared by the e-sign services.

State-changing operations load the document with ``SELECT ... FOR UPDATE``
and ``populate_existing`` so validation always runs against the latest
committed state, even when the session already holds the rows.
"""

from typing import Optional

from sqlalchemy.orm import Session

from esign.db.models import ESignDocument, ESignRecipient, ESignField
from esign.services.esign_exceptions import NotFound


def lock_document(db: Session, document_id: int) -> ESignDocument:
    document = (
        db.query(ESignDocument)
        .filter(ESignDocument.id == document_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not document:
        raise NotFound(f"Document {document_id} not found")
    return document


def get_document(db: Session, document_id: int) -> ESignDocument:
    document = db.query(ESignDocument).filter(ESignDocument.id == document_id).first()
    if not document:
        raise NotFound(f"Document {document_id} not found")
    return document


def lock_recipient(db: Session, recipient_id: int) -> ESignRecipient:
    recipient = (
        db.query(ESignRecipient)
        .filter(ESignRecipient.id == recipient_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not recipient:
        raise NotFound(f"Recipient {recipient_id} not found")
    return recipient


def lock_recipient_and_document(db: Session, recipient_id: int):
    """Lock a recipient's document first, then the recipient itself."""
    recipient = db.query(ESignRecipient).filter(ESignRecipient.id == recipient_id).first()
    if not recipient:
        raise NotFound(f"Recipient {recipient_id} not found")
    document = lock_document(db, recipient.document_id)
    recipient = lock_recipient(db, recipient_id)
    return recipient, document


def find_recipient_by_token(db: Session, document_id: int, access_token: str) -> Optional[ESignRecipient]:
    if not access_token:
        return None
    return (
        db.query(ESignRecipient)
        .filter(
            ESignRecipient.document_id == document_id,
            ESignRecipient.access_token == access_token,
        )
        .with_for_update()
        .populate_existing()
        .first()
    )


def lock_field(db: Session, field_id: int) -> ESignField:
    field = (
        db.query(ESignField)
        .filter(ESignField.id == field_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not field:
        raise NotFound(f"Field {field_id} not found")
    return field
