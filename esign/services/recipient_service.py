"""
Recipient workflow: access tokens, viewing, signing and declining.

Every token-gated call checks, in order: the document is still open, the
presented token is the recipient's current token, the token has not expired,
and only then the recipient's own status. Opening a link is read-only and
still works once the document is completed.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from esign.db.models import (
    ESignDocument,
    ESignRecipient,
    ESignAuditAction,
    DocumentStatus,
    RecipientStatus,
)
from esign.models.esign_state_machine import DocumentStateMachine, RecipientStateMachine
from esign.services.audit_service import ESignAuditService
from esign.services.esign_exceptions import (
    AlreadySigned,
    PreconditionFailed,
    TokenExpired,
    TokenInvalid,
    ValidationError,
)
from esign.services.esign_queries import (
    find_recipient_by_token,
    lock_document,
    lock_recipient_and_document,
)
from esign.services.field_service import missing_required_fields
from esign.services.messenger.notifier import NotificationEvent, NotificationOutbox
from esign.services.signing_order_service import SigningOrderCoordinator
from esign.utils.audit import ClientContext, SYSTEM_CONTEXT
from esign.utils.clock import Clock, utcnow
from esign.utils.tokens import AccessToken, generate_access_token, generate_signing_link, tokens_match

logger = logging.getLogger(__name__)


class RecipientService:
    """Moves recipients through pending -> sent -> viewed -> signed | declined."""

    def __init__(
        self,
        db: Session,
        audit: ESignAuditService,
        coordinator: SigningOrderCoordinator,
        outbox: NotificationOutbox,
        clock: Optional[Clock] = None,
    ):
        self.db = db
        self.audit = audit
        self.coordinator = coordinator
        self.outbox = outbox
        self.clock = clock or utcnow

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def issue_token(self, recipient: ESignRecipient) -> AccessToken:
        """Replace the recipient's token with a fresh one."""
        token = generate_access_token(self.clock())
        recipient.access_token = token.token
        recipient.token_expires_at = token.expires_at
        recipient.token_revoked_at = None
        return token

    @staticmethod
    def current_token(recipient: ESignRecipient) -> Optional[AccessToken]:
        if not recipient.access_token:
            return None
        return AccessToken(token=recipient.access_token, expires_at=recipient.token_expires_at)

    def revoke_tokens(self, document: ESignDocument) -> int:
        """Revoke every outstanding token on a document; returns how many were revoked."""
        now = self.clock()
        revoked = 0
        for recipient in document.recipients:
            if recipient.access_token:
                recipient.access_token = None
                recipient.token_revoked_at = now
                revoked += 1
        logger.info(f"Revoked {revoked} access token(s) on document {document.id}")
        return revoked

    def authorize(
        self,
        recipient: ESignRecipient,
        document: ESignDocument,
        access_token: str,
        read_only: bool = False,
    ) -> None:
        """
        Check that a presented token lets the recipient act on the document.

        A read-only call is allowed on a completed document; voided and
        declined documents stay closed to everyone.

        Raises:
            DocumentClosed: If the document is voided or declined, or is
                completed and the call would change it
            TokenInvalid: If the token is not the recipient's current token
            TokenExpired: If the token is past its expiry
        """
        if not (read_only and DocumentStatus(document.status) == DocumentStatus.COMPLETED):
            DocumentStateMachine.ensure_open(document.status)

        if recipient.document_id != document.id or not tokens_match(access_token, recipient.access_token):
            logger.warning(f"Rejected access token for recipient {recipient.id} on document {document.id}")
            raise TokenInvalid("Access token is not valid for this recipient")

        token = self.current_token(recipient)
        if token.is_expired(self.clock()):
            logger.warning(
                f"Rejected expired access token for recipient {recipient.id} "
                f"(expired {token.expires_at.isoformat()})"
            )
            raise TokenExpired(
                f"This signing link expired on {token.expires_at.isoformat()}; ask the sender for a new link"
            )

    def resolve_token(
        self,
        document_id: int,
        access_token: str,
        read_only: bool = False,
    ) -> Tuple[ESignRecipient, ESignDocument]:
        """Find and authorize the recipient a signing link belongs to."""
        document = lock_document(self.db, document_id)
        recipient = find_recipient_by_token(self.db, document_id, access_token)
        if recipient is None:
            if not (read_only and DocumentStatus(document.status) == DocumentStatus.COMPLETED):
                DocumentStateMachine.ensure_open(document.status)
            logger.warning(f"Rejected unknown access token for document {document_id}")
            raise TokenInvalid("Access token is not valid for this document")
        self.authorize(recipient, document, access_token, read_only=read_only)
        return recipient, document

    def authenticate(self, document_id: int, access_token: str) -> ESignRecipient:
        """Resolve a signing link to its recipient without changing any state."""
        recipient, _ = self.resolve_token(document_id, access_token)
        return recipient

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------

    def notification_payload(self, recipient: ESignRecipient, document: ESignDocument, **extra) -> Dict[str, Any]:
        payload = {
            "document_id": document.id,
            "document_title": document.title,
            "recipient_name": recipient.name,
            "sender_name": document.owner_name,
        }
        if recipient.access_token:
            payload["signing_link"] = generate_signing_link(document.id, recipient.access_token)
            payload["expires_at"] = recipient.token_expires_at.strftime("%B %d, %Y")
        payload.update(extra)
        return payload

    def activate(
        self,
        recipient: ESignRecipient,
        document: ESignDocument,
        context: Optional[ClientContext] = None,
    ) -> AccessToken:
        """Move a pending signer to sent with a fresh token and queue the signing request."""
        recipient.status = RecipientStateMachine.apply(recipient.status, RecipientStatus.SENT).value
        token = self.issue_token(recipient)
        recipient.sent_at = self.clock()

        self.audit.record(
            document.id,
            ESignAuditAction.RECIPIENT_SENT,
            context,
            recipient_id=recipient.id,
            details={
                "email": recipient.email,
                "signing_order": recipient.signing_order,
                "token_expires_at": token.expires_at.isoformat(),
            },
        )
        self.outbox.queue(
            recipient.email,
            NotificationEvent.SIGNING_REQUEST,
            self.notification_payload(recipient, document),
        )
        logger.info(f"Recipient {recipient.id} activated on document {document.id}")
        return token

    def share(self, recipient: ESignRecipient, document: ESignDocument) -> AccessToken:
        """Give a cc/viewer recipient a read-only link; their status stays pending."""
        token = self.issue_token(recipient)
        recipient.sent_at = self.clock()
        self.outbox.queue(
            recipient.email,
            NotificationEvent.DOCUMENT_SHARED,
            self.notification_payload(recipient, document),
        )
        return token

    def start_document(self, document: ESignDocument, context: Optional[ClientContext] = None) -> None:
        """pending -> in_progress on the first signer activity."""
        if DocumentStatus(document.status) == DocumentStatus.PENDING:
            document.status = DocumentStateMachine.apply(document.status, DocumentStatus.IN_PROGRESS).value
            self.audit.record(document.id, ESignAuditAction.DOCUMENT_IN_PROGRESS, context)
            logger.info(f"Document {document.id} is in progress")

    # ------------------------------------------------------------------
    # Recipient actions
    # ------------------------------------------------------------------

    @staticmethod
    def _actor(recipient: ESignRecipient, context: Optional[ClientContext]) -> ClientContext:
        return (context or SYSTEM_CONTEXT).as_actor(recipient.email, recipient.name)

    @staticmethod
    def _capture_client(recipient: ESignRecipient, actor: ClientContext) -> None:
        if actor.ip_address:
            recipient.ip_address = actor.ip_address
        if actor.user_agent:
            recipient.user_agent = actor.user_agent

    def mark_viewed(
        self,
        recipient: ESignRecipient,
        document: ESignDocument,
        context: Optional[ClientContext] = None,
        trigger: str = "opened",
    ) -> None:
        """
        Record that a recipient displayed the document.

        A signer in sent moves to viewed. A cc/viewer recipient keeps its
        status and only gets viewed_at, once. A signer still waiting for its
        turn is audited but otherwise unchanged.
        """
        actor = self._actor(recipient, context)
        now = self.clock()
        started = False

        if recipient.is_signer and recipient.status == RecipientStatus.SENT.value:
            recipient.status = RecipientStateMachine.apply(recipient.status, RecipientStatus.VIEWED).value
            recipient.viewed_at = now
            self._capture_client(recipient, actor)
            started = True
        elif not recipient.is_signer and recipient.viewed_at is None:
            recipient.viewed_at = now
            self._capture_client(recipient, actor)

        self.audit.record(
            document.id,
            ESignAuditAction.RECIPIENT_VIEWED,
            actor,
            recipient_id=recipient.id,
            details={"trigger": trigger, "role": recipient.role, "status": recipient.status},
        )
        if started:
            self.start_document(document, actor)

    def signing_session(self, recipient: ESignRecipient, document: ESignDocument) -> Dict[str, Any]:
        """What a signing link shows: the document, the recipient and their fields."""
        fields = recipient.fields if recipient.is_signer else document.fields
        is_complete = DocumentStatus(document.status) == DocumentStatus.COMPLETED
        return {
            "document": document.to_dict(),
            "recipient": recipient.to_dict(),
            "fields": [f.to_dict() for f in fields],
            "can_sign": not is_complete and self.coordinator.can_act(recipient),
            "read_only": is_complete or not recipient.is_signer,
            "is_complete": is_complete,
            "signed_file_url": document.signed_file_url if is_complete else None,
        }

    def view(self, document_id: int, access_token: str, context: Optional[ClientContext] = None) -> Dict[str, Any]:
        """
        Open a document through a signing link.

        A completed document can still be opened read-only; the view is
        audited and no status changes.

        Args:
            document_id: Document the link points to
            access_token: Token from the link
            context: Client metadata of the request

        Returns:
            Signing session dictionary (document, recipient, fields, can_sign)
        """
        recipient, document = self.resolve_token(document_id, access_token, read_only=True)
        self.mark_viewed(recipient, document, context)
        return self.signing_session(recipient, document)

    def sign(
        self,
        recipient_id: int,
        access_token: str,
        context: Optional[ClientContext] = None,
    ) -> ESignRecipient:
        """
        Finish signing for a recipient.

        Field values submitted with the request are written by the caller
        before this runs. The completion check is also the caller's job: it
        runs in its own transaction after this one commits.

        Raises:
            DocumentClosed, TokenInvalid, TokenExpired: From authorize()
            AlreadySigned: If the recipient has already signed
            PreconditionFailed: If the recipient is not active, has not opened
                the document, or has required fields left empty
        """
        recipient, document = lock_recipient_and_document(self.db, recipient_id)
        self.authorize(recipient, document, access_token)

        if not recipient.is_signer:
            raise PreconditionFailed(f"A {recipient.role} recipient does not sign")
        RecipientStateMachine.ensure_active(recipient.status)
        DocumentStateMachine.ensure_signable(document.status)
        if recipient.status == RecipientStatus.SENT.value:
            raise PreconditionFailed("The document must be opened before it can be signed")

        missing = missing_required_fields(recipient)
        if missing:
            names = ", ".join(f.label or f"{f.field_type} #{f.id}" for f in missing)
            raise PreconditionFailed(f"Required fields are not filled: {names}")

        actor = self._actor(recipient, context)
        recipient.status = RecipientStateMachine.apply(recipient.status, RecipientStatus.SIGNED).value
        recipient.signed_at = self.clock()
        self._capture_client(recipient, actor)

        document.signed_count = sum(1 for s in document.signers if s.status == RecipientStatus.SIGNED.value)
        self.start_document(document, actor)
        self.audit.record(
            document.id,
            ESignAuditAction.RECIPIENT_SIGNED,
            actor,
            recipient_id=recipient.id,
            details={"signed_count": document.signed_count, "total_signers": document.total_signers},
        )
        logger.info(
            f"Recipient {recipient.id} signed document {document.id} "
            f"({document.signed_count}/{document.total_signers})"
        )

        upcoming = self.coordinator.next_in_line(document)
        if upcoming is not None:
            self.activate(upcoming, document, SYSTEM_CONTEXT)

        return recipient

    def decline(
        self,
        recipient_id: int,
        access_token: str,
        reason: str,
        context: Optional[ClientContext] = None,
    ) -> ESignRecipient:
        """
        Decline to sign. The whole document is declined and every link revoked.

        Raises:
            ValidationError: If no reason is given
            DocumentClosed, TokenInvalid, TokenExpired: From authorize()
            AlreadySigned: If the recipient has already signed
            PreconditionFailed: If the recipient may not act yet
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A reason is required to decline")

        recipient, document = lock_recipient_and_document(self.db, recipient_id)
        self.authorize(recipient, document, access_token)

        if not recipient.is_signer:
            raise PreconditionFailed(f"A {recipient.role} recipient cannot decline")
        RecipientStateMachine.ensure_active(recipient.status)

        actor = self._actor(recipient, context)
        now = self.clock()

        recipient.status = RecipientStateMachine.apply(recipient.status, RecipientStatus.DECLINED).value
        recipient.declined_at = now
        recipient.decline_reason = reason
        self._capture_client(recipient, actor)
        self.audit.record(
            document.id,
            ESignAuditAction.RECIPIENT_DECLINED,
            actor,
            recipient_id=recipient.id,
            details={"reason": reason},
        )

        notify: List[ESignRecipient] = [
            r for r in document.recipients if r.id != recipient.id and r.sent_at is not None
        ]

        document.status = DocumentStateMachine.apply(document.status, DocumentStatus.DECLINED).value
        document.declined_at = now
        self.revoke_tokens(document)
        self.audit.record(
            document.id,
            ESignAuditAction.DOCUMENT_DECLINED,
            actor,
            recipient_id=recipient.id,
            details={"reason": reason},
        )
        logger.info(f"Document {document.id} declined by recipient {recipient.id}")

        extra = {"reason": reason, "declined_by": recipient.name}
        if document.owner_email:
            self.outbox.queue(
                document.owner_email,
                NotificationEvent.DECLINED,
                {"document_id": document.id, "document_title": document.title,
                 "recipient_name": document.owner_name, **extra},
            )
        for other in notify:
            self.outbox.queue(other.email, NotificationEvent.DECLINED, self.notification_payload(other, document, **extra))

        return recipient

    # ------------------------------------------------------------------
    # Owner actions on a recipient
    # ------------------------------------------------------------------

    def resend_invitation(self, recipient_id: int, context: Optional[ClientContext] = None) -> ESignRecipient:
        """
        Issue a new link with a fresh expiry; the recipient's status is unchanged.

        Raises:
            DocumentClosed: If the document is closed
            PreconditionFailed: If the document has not been sent
            AlreadySigned: If the recipient has already signed
        """
        recipient, document = lock_recipient_and_document(self.db, recipient_id)
        DocumentStateMachine.ensure_signable(document.status)
        if recipient.status == RecipientStatus.SIGNED.value:
            raise AlreadySigned("Recipient has already signed this document")

        previous = self.current_token(recipient)
        token = self.issue_token(recipient)
        self.audit.record(
            document.id,
            ESignAuditAction.TOKEN_REISSUED,
            context,
            recipient_id=recipient.id,
            details={
                "previous_expires_at": previous.expires_at.isoformat() if previous else None,
                "token_expires_at": token.expires_at.isoformat(),
            },
        )

        if not recipient.is_signer:
            if recipient.sent_at is None:
                recipient.sent_at = self.clock()
            event = NotificationEvent.DOCUMENT_SHARED
        elif RecipientStateMachine.is_active(recipient.status):
            event = NotificationEvent.SIGNING_REQUEST
        else:
            event = None
        if event is not None:
            self.outbox.queue(recipient.email, event, self.notification_payload(recipient, document))

        logger.info(f"Re-issued access token for recipient {recipient.id} on document {document.id}")
        return recipient

    def send_reminder(self, recipient_id: int, context: Optional[ClientContext] = None) -> ESignRecipient:
        """
        Remind an active signer to sign.

        Raises:
            TokenExpired: If the current link has expired (resend instead)
        """
        recipient, document = lock_recipient_and_document(self.db, recipient_id)
        DocumentStateMachine.ensure_signable(document.status)
        if not recipient.is_signer:
            raise PreconditionFailed(f"A {recipient.role} recipient has nothing to sign")
        RecipientStateMachine.ensure_active(recipient.status)

        token = self.current_token(recipient)
        if token is None or token.is_expired(self.clock()):
            raise TokenExpired("The recipient's link has expired; resend the invitation instead")

        self.audit.record(document.id, ESignAuditAction.REMINDER_SENT, context, recipient_id=recipient.id)
        self.outbox.queue(recipient.email, NotificationEvent.REMINDER, self.notification_payload(recipient, document))
        return recipient
