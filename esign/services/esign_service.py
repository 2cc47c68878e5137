"""
E-sign workflow facade.

ESignService wires the component services to one database session and runs
every operation as a single transaction: validate, write state and audit
entries, commit. Notifications queued during the operation are sent only
after the commit succeeds.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from esign.db.models import ESignAuditLog, ESignDocument, ESignField, ESignRecipient, FieldType, SigningMode
from esign.models.esign_requests import RecipientInput, RecipientUpdate
from esign.services.audit_service import ESignAuditService
from esign.services.document_service import DocumentService
from esign.services.esign_exceptions import ConcurrentModification, RenderFailure
from esign.services.esign_queries import get_document
from esign.services.field_service import FieldService
from esign.services.file_storage_service import BlobStorageInterface, LocalFileStorage
from esign.services.messenger.notifier import ESignNotifier, NotificationOutbox, NotifierInterface
from esign.services.recipient_service import RecipientService
from esign.services.render_service import RendererInterface, create_renderer
from esign.services.signing_order_service import SigningOrderCoordinator
from esign.utils.audit import ClientContext
from esign.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ESignService:
    """Transactional entry point for the e-sign workflow."""

    def __init__(
        self,
        db: Session,
        storage: Optional[BlobStorageInterface] = None,
        renderer: Optional[RendererInterface] = None,
        notifier: Optional[NotifierInterface] = None,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize the e-sign service.

        Args:
            db: Database session
            storage: Blob storage (LocalFileStorage if None)
            renderer: Signed-document renderer (configured from settings if None)
            notifier: Outbound notifier (ESignNotifier if None)
            clock: Time source returning naive UTC datetimes
        """
        self.db = db
        self.clock = clock or utcnow
        self.storage = storage or LocalFileStorage()
        self.renderer = renderer or create_renderer(self.storage)
        self.outbox = NotificationOutbox(notifier or ESignNotifier())

        self.audit = ESignAuditService(db, clock=self.clock)
        self.coordinator = SigningOrderCoordinator()
        self.recipients = RecipientService(db, self.audit, self.coordinator, self.outbox, clock=self.clock)
        self.fields = FieldService(db, self.audit, self.recipients, clock=self.clock)
        self.documents = DocumentService(
            db,
            self.audit,
            self.coordinator,
            self.recipients,
            self.outbox,
            self.storage,
            self.renderer,
            clock=self.clock,
        )

    def _run(self, operation: str, func: Callable[[], T]) -> T:
        """
        Run an operation in its own transaction.

        Any exception rolls back and discards queued notifications. A
        StaleDataError (another writer bumped a row version) is retried once
        against fresh state, so the loser of a race fails with the error the
        new state implies.
        """
        for attempt in range(2):
            try:
                result = func()
                self.db.commit()
            except StaleDataError:
                self.db.rollback()
                self.outbox.clear()
                if attempt == 0:
                    logger.warning(f"{operation}: concurrent modification detected; re-validating")
                    continue
                raise ConcurrentModification(f"{operation} conflicted with a concurrent update; please retry")
            except Exception:
                self.db.rollback()
                self.outbox.clear()
                raise
            self.outbox.flush()
            return result

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def create_document(self, context: Optional[ClientContext] = None, **kwargs) -> ESignDocument:
        """Create a draft document. See DocumentService.create_document for arguments."""
        return self._run("create_document", lambda: self.documents.create_document(context=context, **kwargs))

    def update_document(
        self,
        document_id: int,
        title: Optional[str] = None,
        description: Optional[str] = None,
        signing_mode: Optional[SigningMode] = None,
        context: Optional[ClientContext] = None,
    ) -> ESignDocument:
        return self._run(
            "update_document",
            lambda: self.documents.update_document(document_id, title, description, signing_mode, context),
        )

    def get_document(self, document_id: int) -> ESignDocument:
        return get_document(self.db, document_id)

    def list_documents(self, **filters) -> List[ESignDocument]:
        return self.documents.list_documents(**filters)

    def send_document(
        self,
        document_id: int,
        signing_mode: Optional[SigningMode] = None,
        context: Optional[ClientContext] = None,
    ) -> ESignDocument:
        return self._run("send_document", lambda: self.documents.send_document(document_id, signing_mode, context))

    def void_document(self, document_id: int, reason: str, context: Optional[ClientContext] = None) -> ESignDocument:
        return self._run("void_document", lambda: self.documents.void_document(document_id, reason, context))

    def delete_document(self, document_id: int, context: Optional[ClientContext] = None) -> None:
        """Purge a draft, then remove its stored files once the deletion has committed."""
        blob_urls = self._run("delete_document", lambda: self.documents.delete_document(document_id, context))
        for url in blob_urls:
            try:
                self.storage.delete(url)
            except (OSError, ValueError) as e:
                logger.warning(f"Could not remove stored file {url} of deleted document {document_id}: {e}")

    def check_completion(self, document_id: int, context: Optional[ClientContext] = None) -> ESignDocument:
        """Complete a fully signed document; safe to call repeatedly."""
        return self._run("check_completion", lambda: self.documents.check_completion(document_id, context))

    # ------------------------------------------------------------------
    # Recipients (draft)
    # ------------------------------------------------------------------

    def add_recipient(
        self,
        document_id: int,
        recipient: RecipientInput,
        context: Optional[ClientContext] = None,
    ) -> ESignRecipient:
        return self._run("add_recipient", lambda: self.documents.add_recipient(document_id, recipient, context))

    def update_recipient(
        self,
        document_id: int,
        recipient_id: int,
        changes: RecipientUpdate,
        context: Optional[ClientContext] = None,
    ) -> ESignRecipient:
        return self._run(
            "update_recipient",
            lambda: self.documents.update_recipient(document_id, recipient_id, changes, context),
        )

    def remove_recipient(self, document_id: int, recipient_id: int, context: Optional[ClientContext] = None) -> None:
        self._run("remove_recipient", lambda: self.documents.remove_recipient(document_id, recipient_id, context))

    def reorder_recipients(
        self,
        document_id: int,
        recipient_ids: List[int],
        context: Optional[ClientContext] = None,
    ) -> ESignDocument:
        return self._run(
            "reorder_recipients",
            lambda: self.documents.reorder_recipients(document_id, recipient_ids, context),
        )

    def eligible_signers(self, document_id: int) -> List[ESignRecipient]:
        return self.coordinator.eligible_signers(get_document(self.db, document_id))

    # ------------------------------------------------------------------
    # Fields
    # ------------------------------------------------------------------

    def place_field(
        self,
        document_id: int,
        recipient_id: int,
        field_type: FieldType,
        page: int = 1,
        position: Tuple[float, float] = (0.0, 0.0),
        size: Optional[Tuple[float, float]] = None,
        required: bool = True,
        options: Optional[List[str]] = None,
        label: Optional[str] = None,
        placeholder: Optional[str] = None,
        context: Optional[ClientContext] = None,
    ) -> ESignField:
        return self._run(
            "place_field",
            lambda: self.fields.place_field(
                document_id, recipient_id, field_type, page, position, size,
                required, options, label, placeholder, context,
            ),
        )

    def update_field_layout(self, field_id: int, context: Optional[ClientContext] = None, **changes) -> ESignField:
        return self._run("update_field_layout", lambda: self.fields.update_field_layout(field_id, context=context, **changes))

    def remove_field(self, field_id: int, context: Optional[ClientContext] = None) -> None:
        self._run("remove_field", lambda: self.fields.remove_field(field_id, context))

    def get_recipient_fields(self, recipient_id: int) -> List[ESignField]:
        return self.fields.get_recipient_fields(recipient_id)

    def is_recipient_complete(self, recipient_id: int) -> bool:
        return self.fields.is_recipient_complete(recipient_id)

    def set_field_value(
        self,
        field_id: int,
        acting_recipient_id: int,
        raw_value: Any,
        access_token: str,
        context: Optional[ClientContext] = None,
    ) -> ESignField:
        return self._run(
            "set_field_value",
            lambda: self.fields.set_field_value(field_id, acting_recipient_id, raw_value, access_token, context),
        )

    def clear_field_value(
        self,
        field_id: int,
        acting_recipient_id: int,
        access_token: str,
        context: Optional[ClientContext] = None,
    ) -> ESignField:
        return self._run(
            "clear_field_value",
            lambda: self.fields.clear_field_value(field_id, acting_recipient_id, access_token, context),
        )

    # ------------------------------------------------------------------
    # Recipient actions (token-gated)
    # ------------------------------------------------------------------

    def authenticate(self, document_id: int, access_token: str) -> ESignRecipient:
        return self._run("authenticate", lambda: self.recipients.authenticate(document_id, access_token))

    def view(self, document_id: int, access_token: str, context: Optional[ClientContext] = None) -> Dict[str, Any]:
        return self._run("view", lambda: self.recipients.view(document_id, access_token, context))

    def sign(
        self,
        recipient_id: int,
        access_token: str,
        context: Optional[ClientContext] = None,
        field_values: Optional[Dict[int, Any]] = None,
    ) -> ESignRecipient:
        """
        Sign for a recipient, then try to complete the document.

        The signature commits on its own. A render failure during completion
        is logged and leaves the document in_progress; check_completion
        retries it.
        """
        def _sign():
            for field_id, raw_value in (field_values or {}).items():
                self.fields.set_field_value(int(field_id), recipient_id, raw_value, access_token, context)
            return self.recipients.sign(recipient_id, access_token, context)

        recipient = self._run("sign", _sign)
        document_id = recipient.document_id
        try:
            self.check_completion(document_id)
        except RenderFailure as e:
            logger.error(
                f"Document {document_id} is fully signed but rendering failed; "
                f"it stays in_progress until check_completion succeeds: {e}",
                exc_info=True,
            )
        return recipient

    def decline(
        self,
        recipient_id: int,
        access_token: str,
        reason: str,
        context: Optional[ClientContext] = None,
    ) -> ESignRecipient:
        return self._run("decline", lambda: self.recipients.decline(recipient_id, access_token, reason, context))

    def resend_invitation(self, recipient_id: int, context: Optional[ClientContext] = None) -> ESignRecipient:
        return self._run("resend_invitation", lambda: self.recipients.resend_invitation(recipient_id, context))

    def send_reminder(self, recipient_id: int, context: Optional[ClientContext] = None) -> ESignRecipient:
        return self._run("send_reminder", lambda: self.recipients.send_reminder(recipient_id, context))

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def get_audit_trail(self, document_id: int, **filters) -> List[ESignAuditLog]:
        return self.audit.get_audit_trail(document_id, **filters)

    def verify_audit_chain(self, document_id: int) -> Dict[str, Any]:
        return self.audit.verify_audit_chain(document_id)
