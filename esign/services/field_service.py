"""
Field placement and field values.

Fields are placed, moved and removed while the document is a draft. Once
the document is out for signature only the owning recipient can write a
field's value, and only while they are active with a live token.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from esign.db.models import ESignField, ESignRecipient, ESignAuditAction, FieldType, RecipientStatus
from esign.models.esign_state_machine import DocumentStateMachine, RecipientStateMachine
from esign.models.field_values import display_text, load_field_value, normalize_field_value, validate_dropdown_options
from esign.services.audit_service import ESignAuditService
from esign.services.esign_exceptions import NotFound, RenderFailure, ValidationError
from esign.services.esign_queries import lock_document, lock_field, lock_recipient_and_document
from esign.utils.audit import ClientContext, SYSTEM_CONTEXT
from esign.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)

DEFAULT_FIELD_SIZE = (200.0, 50.0)
CHECKBOX_FIELD_SIZE = (30.0, 30.0)

# Value types whose raw value is small enough to copy into the audit entry
_AUDITED_VALUE_TYPES = {FieldType.DATE, FieldType.TEXT, FieldType.CHECKBOX, FieldType.DROPDOWN}


def default_field_size(field_type: FieldType) -> Tuple[float, float]:
    return CHECKBOX_FIELD_SIZE if FieldType(field_type) == FieldType.CHECKBOX else DEFAULT_FIELD_SIZE


def missing_required_fields(recipient: ESignRecipient) -> List[ESignField]:
    """Required fields owned by the recipient that still have no value."""
    return [f for f in recipient.fields if f.required and f.value is None]


def render_payload(fields: List[ESignField]) -> List[Dict[str, Any]]:
    """
    Field placements as sent to the renderer, each with the text to print.

    Raises:
        RenderFailure: If a stored value no longer matches its field type
    """
    payload = []
    for field in fields:
        data = field.to_dict()
        try:
            data["display_value"] = display_text(load_field_value(field.normalized_value))
        except PydanticValidationError as e:
            raise RenderFailure(f"Stored value of field {field.id} is unreadable: {e}") from e
        payload.append(data)
    return payload


def _parse_field_type(field_type) -> FieldType:
    try:
        return FieldType(field_type)
    except ValueError:
        raise ValidationError(f"Unknown field type: {field_type}")


def _validate_geometry(page: int, x: float, y: float, width: float, height: float) -> None:
    if page is None or page < 1:
        raise ValidationError("Page numbers start at 1")
    if x is None or y is None or x < 0 or y < 0:
        raise ValidationError("Field position must be non-negative")
    if width is None or height is None or width <= 0 or height <= 0:
        raise ValidationError("Field width and height must be positive")


def _clean_options(field_type: FieldType, options: Optional[List[str]]) -> Optional[List[str]]:
    if field_type == FieldType.DROPDOWN:
        return validate_dropdown_options(options)
    if options:
        raise ValidationError(f"Options are only allowed on dropdown fields, not {field_type.value}")
    return None


class FieldService:
    """Places fields and records recipients' values."""

    def __init__(
        self,
        db: Session,
        audit: ESignAuditService,
        recipients,
        clock: Optional[Clock] = None,
    ):
        """
        Args:
            db: Database session
            audit: Audit ledger
            recipients: RecipientService used for token checks and the view transition
            clock: Time source (naive UTC)
        """
        self.db = db
        self.audit = audit
        self.recipients = recipients
        self.clock = clock or utcnow

    # ------------------------------------------------------------------
    # Draft editing
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
        """
        Place a field for a signer on a draft document.

        Args:
            document_id: Draft document
            recipient_id: Signer who will fill the field
            field_type: One of FieldType
            page: 1-based page number
            position: (x, y) of the top-left corner
            size: (width, height); defaults to 200x50, or 30x30 for checkboxes
            required: Whether the signer must fill the field before signing
            options: Allowed choices (dropdown only)
            label: Optional label
            placeholder: Optional placeholder text
            context: Actor and client metadata

        Returns:
            The new ESignField

        Raises:
            ValidationError: On bad type, geometry, options or recipient
            PreconditionFailed: If the document has been sent
            DocumentClosed: If the document is closed
        """
        kind = _parse_field_type(field_type)
        x, y = position
        width, height = size if size is not None else default_field_size(kind)
        _validate_geometry(page, x, y, width, height)
        cleaned_options = _clean_options(kind, options)

        document = lock_document(self.db, document_id)
        DocumentStateMachine.ensure_draft(document.status)

        recipient = next((r for r in document.recipients if r.id == recipient_id), None)
        if recipient is None:
            raise ValidationError(f"Recipient {recipient_id} is not on document {document_id}")
        if not recipient.is_signer:
            raise ValidationError(f"Fields can only be assigned to signers; recipient {recipient_id} is {recipient.role}")

        field = ESignField(
            document=document,
            recipient=recipient,
            field_type=kind.value,
            label=label,
            placeholder=placeholder,
            required=required,
            page=page,
            x=float(x),
            y=float(y),
            width=float(width),
            height=float(height),
            options=cleaned_options,
        )
        self.db.add(field)
        self.db.flush()

        self.audit.record(
            document.id,
            ESignAuditAction.FIELD_PLACED,
            context,
            recipient_id=recipient.id,
            details={"field_id": field.id, "field_type": kind.value, "page": page, "required": required},
        )
        logger.info(f"Placed {kind.value} field {field.id} for recipient {recipient.id} on document {document.id}")
        return field

    def update_field_layout(
        self,
        field_id: int,
        page: Optional[int] = None,
        position: Optional[Tuple[float, float]] = None,
        size: Optional[Tuple[float, float]] = None,
        required: Optional[bool] = None,
        options: Optional[List[str]] = None,
        label: Optional[str] = None,
        placeholder: Optional[str] = None,
        context: Optional[ClientContext] = None,
    ) -> ESignField:
        """Move, resize or relabel a field on a draft document."""
        field = lock_field(self.db, field_id)
        document = lock_document(self.db, field.document_id)
        DocumentStateMachine.ensure_draft(document.status)

        new_page = page if page is not None else field.page
        new_x, new_y = position if position is not None else (field.x, field.y)
        new_width, new_height = size if size is not None else (field.width, field.height)
        _validate_geometry(new_page, new_x, new_y, new_width, new_height)

        changes = {}
        if options is not None:
            field.options = _clean_options(FieldType(field.field_type), options)
            changes["options"] = field.options
        if page is not None:
            field.page = page
            changes["page"] = page
        if position is not None:
            field.x, field.y = float(new_x), float(new_y)
            changes["position"] = [field.x, field.y]
        if size is not None:
            field.width, field.height = float(new_width), float(new_height)
            changes["size"] = [field.width, field.height]
        if required is not None:
            field.required = required
            changes["required"] = required
        if label is not None:
            field.label = label
            changes["label"] = label
        if placeholder is not None:
            field.placeholder = placeholder
            changes["placeholder"] = placeholder

        self.audit.record(
            document.id,
            ESignAuditAction.FIELD_UPDATED,
            context,
            recipient_id=field.recipient_id,
            details={"field_id": field.id, "changes": changes},
        )
        return field

    def remove_field(self, field_id: int, context: Optional[ClientContext] = None) -> None:
        field = lock_field(self.db, field_id)
        document = lock_document(self.db, field.document_id)
        DocumentStateMachine.ensure_draft(document.status)

        self.audit.record(
            document.id,
            ESignAuditAction.FIELD_REMOVED,
            context,
            recipient_id=field.recipient_id,
            details={"field_id": field.id, "field_type": field.field_type},
        )
        self.db.delete(field)
        logger.info(f"Removed field {field_id} from document {document.id}")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_recipient_fields(self, recipient_id: int) -> List[ESignField]:
        recipient = self.db.query(ESignRecipient).filter(ESignRecipient.id == recipient_id).first()
        if not recipient:
            raise NotFound(f"Recipient {recipient_id} not found")
        return list(recipient.fields)

    def is_recipient_complete(self, recipient_id: int) -> bool:
        """True when every required field owned by the recipient has a value."""
        recipient = self.db.query(ESignRecipient).filter(ESignRecipient.id == recipient_id).first()
        if not recipient:
            raise NotFound(f"Recipient {recipient_id} not found")
        return not missing_required_fields(recipient)

    # ------------------------------------------------------------------
    # Signing-time writes
    # ------------------------------------------------------------------

    def _load_for_write(self, field_id: int, acting_recipient_id: int, access_token: str):
        field = self.db.query(ESignField).filter(ESignField.id == field_id).first()
        if not field:
            raise NotFound(f"Field {field_id} not found")
        if field.recipient_id != acting_recipient_id:
            logger.warning(f"Recipient {acting_recipient_id} tried to write field {field_id} owned by {field.recipient_id}")
            raise ValidationError("This field belongs to another recipient")

        recipient, document = lock_recipient_and_document(self.db, acting_recipient_id)
        field = lock_field(self.db, field_id)
        self.recipients.authorize(recipient, document, access_token)
        RecipientStateMachine.ensure_active(recipient.status)
        DocumentStateMachine.ensure_signable(document.status)
        return field, recipient, document

    def set_field_value(
        self,
        field_id: int,
        acting_recipient_id: int,
        raw_value: Any,
        access_token: str,
        context: Optional[ClientContext] = None,
    ) -> ESignField:
        """
        Write a recipient's value into one of their fields.

        A fill by a recipient who has not opened the document yet counts as the
        first view.

        Raises:
            ValidationError: If the field is not the recipient's or the value does not fit its type
            DocumentClosed: If the document is closed
            TokenInvalid, TokenExpired: If the token is not current or has expired
            AlreadySigned: If the recipient has already signed
            PreconditionFailed: If the recipient is not active
        """
        field, recipient, document = self._load_for_write(field_id, acting_recipient_id, access_token)
        kind = FieldType(field.field_type)
        normalized = normalize_field_value(kind, raw_value, field.options)

        if recipient.status == RecipientStatus.SENT.value:
            self.recipients.mark_viewed(recipient, document, context, trigger="field_filled")

        field.value = normalized.raw
        field.normalized_value = normalized.stored
        field.filled_at = self.clock()

        details = {"field_id": field.id, "field_type": kind.value, "label": field.label}
        if kind in _AUDITED_VALUE_TYPES:
            details["value"] = normalized.stored
        self.audit.record(
            document.id,
            ESignAuditAction.FIELD_FILLED,
            (context or SYSTEM_CONTEXT).as_actor(recipient.email, recipient.name),
            recipient_id=recipient.id,
            details=details,
        )
        return field

    def clear_field_value(
        self,
        field_id: int,
        acting_recipient_id: int,
        access_token: str,
        context: Optional[ClientContext] = None,
    ) -> ESignField:
        """Remove a recipient's value from one of their fields before they sign."""
        field, recipient, document = self._load_for_write(field_id, acting_recipient_id, access_token)

        if recipient.status == RecipientStatus.SENT.value:
            self.recipients.mark_viewed(recipient, document, context, trigger="field_cleared")

        field.value = None
        field.normalized_value = None
        field.filled_at = None

        self.audit.record(
            document.id,
            ESignAuditAction.FIELD_CLEARED,
            (context or SYSTEM_CONTEXT).as_actor(recipient.email, recipient.name),
            recipient_id=recipient.id,
            details={"field_id": field.id, "field_type": field.field_type},
        )
        return field
