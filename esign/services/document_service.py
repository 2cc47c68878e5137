"""
Document lifecycle service.

Owns the draft editing surface (recipients, ordering, deletion) and the
document-level transitions: send, void and completion. Signer-driven
transitions (in_progress, declined) live in RecipientService.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from esign.db.models import (
    ESignDocument,
    ESignRecipient,
    ESignAuditAction,
    DocumentStatus,
    RecipientRole,
    RecipientStatus,
    SigningMode,
)
from esign.models.esign_requests import RecipientInput, RecipientUpdate
from esign.models.esign_state_machine import DocumentStateMachine
from esign.services.audit_service import ESignAuditService
from esign.services.esign_exceptions import NotFound, PreconditionFailed, ValidationError
from esign.services.esign_queries import get_document, lock_document
from esign.services.field_service import render_payload
from esign.services.file_storage_service import BlobStorageInterface
from esign.services.messenger.notifier import NotificationEvent, NotificationOutbox
from esign.services.recipient_service import RecipientService
from esign.services.render_service import RendererInterface
from esign.services.signing_order_service import SigningOrderCoordinator
from esign.utils.audit import ClientContext
from esign.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)


def _parse_signing_mode(signing_mode) -> SigningMode:
    try:
        return SigningMode(signing_mode)
    except ValueError:
        raise ValidationError(f"Unknown signing mode: {signing_mode}")


def _require_reason(reason: Optional[str], action: str) -> str:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError(f"A reason is required to {action}")
    return reason


class DocumentService:
    """Creates, edits, sends, voids and completes e-sign documents."""

    def __init__(
        self,
        db: Session,
        audit: ESignAuditService,
        coordinator: SigningOrderCoordinator,
        recipients: RecipientService,
        outbox: NotificationOutbox,
        storage: BlobStorageInterface,
        renderer: RendererInterface,
        clock: Optional[Clock] = None,
    ):
        self.db = db
        self.audit = audit
        self.coordinator = coordinator
        self.recipients = recipients
        self.outbox = outbox
        self.storage = storage
        self.renderer = renderer
        self.clock = clock or utcnow

    @staticmethod
    def _recount(document: ESignDocument) -> None:
        signers = document.signers
        document.total_signers = len(signers)
        document.signed_count = sum(1 for s in signers if s.status == RecipientStatus.SIGNED.value)

    # ------------------------------------------------------------------
    # Draft editing
    # ------------------------------------------------------------------

    def create_document(
        self,
        title: str,
        file_content: bytes,
        file_name: str,
        file_type: str = "application/pdf",
        owner_email: Optional[str] = None,
        owner_name: Optional[str] = None,
        created_by: Optional[str] = None,
        description: Optional[str] = None,
        signing_mode: SigningMode = SigningMode.PARALLEL,
        deal_id: Optional[str] = None,
        template_id: Optional[str] = None,
        recipients: Optional[List[RecipientInput]] = None,
        context: Optional[ClientContext] = None,
    ) -> ESignDocument:
        """
        Upload the original file and create a draft document.

        Args:
            title: Document title
            file_content: Original file bytes
            file_name: Declared file name
            file_type: MIME type of the original
            owner_email: Owner's email (receives completion and decline notices)
            owner_name: Owner's display name (shown as the sender)
            created_by: Owner's user id in the portal
            description: Optional description
            signing_mode: parallel or sequential
            deal_id: Optional linked deal
            template_id: Optional source template
            recipients: Initial recipients
            context: Actor and client metadata

        Returns:
            The new draft ESignDocument
        """
        title = (title or "").strip()
        if not title:
            raise ValidationError("Document title is required")
        if not file_content:
            raise ValidationError("Document file is empty")
        if not file_name:
            raise ValidationError("Document file name is required")
        mode = _parse_signing_mode(signing_mode)

        file_url = self.storage.upload(file_content, file_type, file_name)

        document = ESignDocument(
            title=title,
            description=description,
            status=DocumentStatus.DRAFT.value,
            signing_mode=mode.value,
            created_by=created_by,
            owner_email=owner_email,
            owner_name=owner_name,
            deal_id=deal_id,
            template_id=template_id,
            original_file_url=file_url,
            original_file_name=file_name,
            original_file_type=file_type,
            total_signers=0,
            signed_count=0,
        )
        self.db.add(document)
        self.db.flush()

        self.audit.record(
            document.id,
            ESignAuditAction.DOCUMENT_CREATED,
            context,
            details={"title": title, "file_name": file_name, "signing_mode": mode.value},
        )
        for recipient_input in recipients or []:
            self._attach_recipient(document, recipient_input, context)

        logger.info(f"Created e-sign document {document.id} '{title}' with {len(document.recipients)} recipient(s)")
        return document

    def update_document(
        self,
        document_id: int,
        title: Optional[str] = None,
        description: Optional[str] = None,
        signing_mode: Optional[SigningMode] = None,
        context: Optional[ClientContext] = None,
    ) -> ESignDocument:
        """Edit title, description or signing mode of a draft."""
        document = lock_document(self.db, document_id)
        DocumentStateMachine.ensure_draft(document.status)

        changes: Dict[str, Any] = {}
        if title is not None:
            title = title.strip()
            if not title:
                raise ValidationError("Document title cannot be blank")
            document.title = title
            changes["title"] = title
        if description is not None:
            document.description = description
            changes["description"] = description
        if signing_mode is not None:
            document.signing_mode = _parse_signing_mode(signing_mode).value
            changes["signing_mode"] = document.signing_mode

        if changes:
            self.audit.record(document.id, ESignAuditAction.DOCUMENT_UPDATED, context, details=changes)
        return document

    def _attach_recipient(
        self,
        document: ESignDocument,
        data: RecipientInput,
        context: Optional[ClientContext],
    ) -> ESignRecipient:
        signing_order = data.signing_order
        if signing_order is None:
            signing_order = max((r.signing_order for r in document.recipients), default=0) + 1

        recipient = ESignRecipient(
            document=document,
            name=data.name,
            email=str(data.email),
            role=data.role.value,
            signer_type=data.signer_type.value if data.signer_type else None,
            signing_order=signing_order,
            status=RecipientStatus.PENDING.value,
        )
        self.db.add(recipient)
        self._recount(document)
        self.db.flush()

        self.audit.record(
            document.id,
            ESignAuditAction.RECIPIENT_ADDED,
            context,
            recipient_id=recipient.id,
            details={"email": recipient.email, "role": recipient.role, "signing_order": signing_order},
        )
        return recipient

    def add_recipient(
        self,
        document_id: int,
        recipient: RecipientInput,
        context: Optional[ClientContext] = None,
    ) -> ESignRecipient:
        document = lock_document(self.db, document_id)
        DocumentStateMachine.ensure_draft(document.status)
        return self._attach_recipient(document, recipient, context)

    def update_recipient(
        self,
        document_id: int,
        recipient_id: int,
        changes: RecipientUpdate,
        context: Optional[ClientContext] = None,
    ) -> ESignRecipient:
        """
        Correct a recipient's name, email, role or signer type on a draft.

        Placed fields stay with the recipient.

        Raises:
            NotFound: If the recipient is not on the document
            ValidationError: If name, email or role is explicitly cleared
            PreconditionFailed: If a signer who owns fields would stop being a signer
        """
        document = lock_document(self.db, document_id)
        DocumentStateMachine.ensure_draft(document.status)

        recipient = next((r for r in document.recipients if r.id == recipient_id), None)
        if recipient is None:
            raise NotFound(f"Recipient {recipient_id} not found on document {document_id}")

        requested = changes.model_dump(exclude_unset=True)
        for required in ("name", "email", "role"):
            if required in requested and requested[required] is None:
                raise ValidationError(f"Recipient {required} cannot be cleared")

        role = requested.get("role")
        if role is not None and role != RecipientRole.SIGNER and recipient.is_signer and recipient.fields:
            raise PreconditionFailed(
                f"Recipient {recipient_id} owns {len(recipient.fields)} field(s); "
                "remove them before changing the role"
            )

        applied: Dict[str, Any] = {}
        for attribute, value in requested.items():
            stored = getattr(value, "value", value)
            if attribute == "email":
                stored = str(value)
            if getattr(recipient, attribute) != stored:
                applied[attribute] = {"from": getattr(recipient, attribute), "to": stored}
                setattr(recipient, attribute, stored)

        if applied:
            self._recount(document)
            self.audit.record(
                document.id,
                ESignAuditAction.RECIPIENT_UPDATED,
                context,
                recipient_id=recipient.id,
                details=applied,
            )
            logger.info(f"Updated recipient {recipient_id} on document {document_id}: {sorted(applied)}")
        return recipient

    def remove_recipient(
        self,
        document_id: int,
        recipient_id: int,
        context: Optional[ClientContext] = None,
    ) -> None:
        """Remove a recipient and their fields from a draft."""
        document = lock_document(self.db, document_id)
        DocumentStateMachine.ensure_draft(document.status)

        recipient = next((r for r in document.recipients if r.id == recipient_id), None)
        if recipient is None:
            raise NotFound(f"Recipient {recipient_id} not found on document {document_id}")

        owned_fields = list(recipient.fields)
        self.audit.record(
            document.id,
            ESignAuditAction.RECIPIENT_REMOVED,
            context,
            recipient_id=recipient.id,
            details={"email": recipient.email, "role": recipient.role, "fields_removed": len(owned_fields)},
        )
        for field in owned_fields:
            document.fields.remove(field)
        document.recipients.remove(recipient)
        self._recount(document)
        logger.info(f"Removed recipient {recipient_id} from document {document_id}")

    def reorder_recipients(
        self,
        document_id: int,
        recipient_ids: List[int],
        context: Optional[ClientContext] = None,
    ) -> ESignDocument:
        """Assign signing_order 1..n following the given recipient id order."""
        document = lock_document(self.db, document_id)
        DocumentStateMachine.ensure_draft(document.status)

        by_id = {r.id: r for r in document.recipients}
        if len(set(recipient_ids)) != len(recipient_ids):
            raise ValidationError("Recipient order contains duplicates")
        if set(recipient_ids) != set(by_id):
            raise ValidationError("Recipient order must list every recipient of the document exactly once")

        for position, recipient_id in enumerate(recipient_ids, start=1):
            by_id[recipient_id].signing_order = position

        self.audit.record(
            document.id,
            ESignAuditAction.RECIPIENTS_REORDERED,
            context,
            details={"order": list(recipient_ids)},
        )
        return document

    def delete_document(self, document_id: int, context: Optional[ClientContext] = None) -> List[str]:
        """
        Purge a draft document with its recipients and fields.

        The audit ledger is kept. Sent documents are voided instead.

        Returns:
            Storage URLs of the document's files, to be removed once the
            deletion has committed
        """
        document = lock_document(self.db, document_id)
        DocumentStateMachine.ensure_draft(document.status)

        self.audit.record(
            document.id,
            ESignAuditAction.DOCUMENT_DELETED,
            context,
            details={"title": document.title, "file_name": document.original_file_name},
        )
        blob_urls = [url for url in (document.original_file_url, document.signed_file_url) if url]
        self.db.delete(document)
        logger.info(f"Deleted draft document {document_id}")
        return blob_urls

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def send_document(
        self,
        document_id: int,
        signing_mode: Optional[SigningMode] = None,
        context: Optional[ClientContext] = None,
    ) -> ESignDocument:
        """
        Send a draft out for signature (draft -> pending).

        Every recipient gets a fresh token. Signers eligible under the signing
        mode move to sent and receive a signing request; cc and viewer
        recipients receive a read-only link.

        Raises:
            PreconditionFailed: If there is no signer, a field references a
                recipient outside the document, or the document was already sent
            DocumentClosed: If the document is closed
        """
        document = lock_document(self.db, document_id)
        DocumentStateMachine.ensure_draft(document.status)

        if signing_mode is not None:
            document.signing_mode = _parse_signing_mode(signing_mode).value

        if not document.signers:
            raise PreconditionFailed("A document needs at least one signer before it can be sent")
        recipient_ids = {r.id for r in document.recipients}
        for field in document.fields:
            if field.recipient_id not in recipient_ids:
                raise PreconditionFailed(f"Field {field.id} references a recipient that is not on this document")

        document.status = DocumentStateMachine.apply(document.status, DocumentStatus.PENDING).value
        document.sent_at = self.clock()
        self._recount(document)

        self.audit.record(
            document.id,
            ESignAuditAction.DOCUMENT_SENT,
            context,
            details={
                "signing_mode": document.signing_mode,
                "total_signers": document.total_signers,
                "shared_with": [r.email for r in document.recipients if not r.is_signer],
            },
        )

        activated = {r.id for r in self.coordinator.initial_activation(document)}
        for recipient in self.coordinator.ordered_signers(document):
            if recipient.id in activated:
                self.recipients.activate(recipient, document, context)
            else:
                self.recipients.issue_token(recipient)
        for recipient in document.recipients:
            if not recipient.is_signer:
                self.recipients.share(recipient, document)

        logger.info(
            f"Sent document {document.id} ({document.signing_mode}): "
            f"{len(activated)} of {document.total_signers} signer(s) activated"
        )
        return document

    def void_document(
        self,
        document_id: int,
        reason: str,
        context: Optional[ClientContext] = None,
    ) -> ESignDocument:
        """
        Void a document that is not yet closed; every link stops working.

        Raises:
            ValidationError: If no reason is given
            DocumentClosed: If the document is already completed, voided or declined
        """
        reason = _require_reason(reason, "void a document")
        document = lock_document(self.db, document_id)
        target = DocumentStateMachine.apply(document.status, DocumentStatus.VOIDED)

        notified = [r for r in document.recipients if r.sent_at is not None]

        document.status = target.value
        document.voided_at = self.clock()
        document.void_reason = reason
        self.recipients.revoke_tokens(document)
        self.audit.record(document.id, ESignAuditAction.DOCUMENT_VOIDED, context, details={"reason": reason})

        for recipient in notified:
            self.outbox.queue(
                recipient.email,
                NotificationEvent.VOIDED,
                self.recipients.notification_payload(recipient, document, reason=reason),
            )
        logger.info(f"Voided document {document.id}: {reason}")
        return document

    def check_completion(self, document_id: int, context: Optional[ClientContext] = None) -> ESignDocument:
        """
        Complete the document if every signer has signed.

        Idempotent: a completed document, or one still waiting on signers, is
        returned unchanged. The renderer is only called on the transition.

        Raises:
            RenderFailure: If the signed rendition could not be produced; the
                document stays in_progress and the check can be retried
        """
        document = lock_document(self.db, document_id)
        if DocumentStatus(document.status) != DocumentStatus.IN_PROGRESS:
            return document

        signers = document.signers
        if not signers or document.signed_count != document.total_signers:
            return document
        if any(s.status != RecipientStatus.SIGNED.value for s in signers):
            return document

        signed_file_url = self.renderer.render(document.original_file_url, render_payload(document.fields))

        document.status = DocumentStateMachine.apply(document.status, DocumentStatus.COMPLETED).value
        document.completed_at = self.clock()
        document.signed_file_url = signed_file_url
        self.audit.record(
            document.id,
            ESignAuditAction.DOCUMENT_COMPLETED,
            context,
            details={"signed_file_url": signed_file_url, "signed_count": document.signed_count},
        )

        completion = {"signed_file_url": signed_file_url}
        if document.owner_email:
            self.outbox.queue(
                document.owner_email,
                NotificationEvent.COMPLETED,
                {"document_id": document.id, "document_title": document.title,
                 "recipient_name": document.owner_name, **completion},
            )
        for recipient in document.recipients:
            self.outbox.queue(
                recipient.email,
                NotificationEvent.COMPLETED,
                self.recipients.notification_payload(recipient, document, **completion),
            )
        logger.info(f"Document {document.id} completed; signed file at {signed_file_url}")
        return document

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_document(self, document_id: int) -> ESignDocument:
        return get_document(self.db, document_id)

    def list_documents(
        self,
        created_by: Optional[str] = None,
        status: Optional[str] = None,
        deal_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[ESignDocument]:
        query = self.db.query(ESignDocument)
        if created_by:
            query = query.filter(ESignDocument.created_by == created_by)
        if status:
            try:
                query = query.filter(ESignDocument.status == DocumentStatus(status).value)
            except ValueError:
                raise ValidationError(f"Unknown document status: {status}")
        if deal_id:
            query = query.filter(ESignDocument.deal_id == deal_id)
        return query.order_by(ESignDocument.created_at.desc(), ESignDocument.id.desc()).offset(offset).limit(limit).all()
