"""SQLAlchemy models for Bridge eSign database."""

from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Boolean, Float, ForeignKey, JSON, UniqueConstraint, event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
import enum

from esign.db import Base

# JSONB on PostgreSQL, plain JSON everywhere else (SQLite in development and tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class DocumentStatus(str, enum.Enum):
    """Lifecycle states of an e-sign document."""
    DRAFT = "draft"
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    VOIDED = "voided"
    DECLINED = "declined"


class RecipientStatus(str, enum.Enum):
    """Progress states of a single recipient."""
    PENDING = "pending"
    SENT = "sent"
    VIEWED = "viewed"
    SIGNED = "signed"
    DECLINED = "declined"


class RecipientRole(str, enum.Enum):
    """What a recipient is asked to do with the document."""
    SIGNER = "signer"
    CC = "cc"
    VIEWER = "viewer"


class SignerType(str, enum.Enum):
    """Cosmetic grouping of signers; no behavioral effect."""
    BUYER = "buyer"
    SELLER = "seller"
    AGENT = "agent"
    ATTORNEY = "attorney"
    BROKER = "broker"
    OTHER = "other"


class SigningMode(str, enum.Enum):
    """Order in which signers are invited."""
    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"


class FieldType(str, enum.Enum):
    """Kinds of signable placements."""
    SIGNATURE = "signature"
    INITIALS = "initials"
    DATE = "date"
    TEXT = "text"
    CHECKBOX = "checkbox"
    DROPDOWN = "dropdown"


class ESignAuditAction(str, enum.Enum):
    """Auditable e-sign actions."""
    DOCUMENT_CREATED = "document_created"
    DOCUMENT_UPDATED = "document_updated"
    DOCUMENT_DELETED = "document_deleted"
    RECIPIENT_ADDED = "recipient_added"
    RECIPIENT_UPDATED = "recipient_updated"
    RECIPIENT_REMOVED = "recipient_removed"
    RECIPIENTS_REORDERED = "recipients_reordered"
    FIELD_PLACED = "field_placed"
    FIELD_UPDATED = "field_updated"
    FIELD_REMOVED = "field_removed"
    DOCUMENT_SENT = "document_sent"
    RECIPIENT_SENT = "recipient_sent"
    RECIPIENT_VIEWED = "recipient_viewed"
    FIELD_FILLED = "field_filled"
    FIELD_CLEARED = "field_cleared"
    RECIPIENT_SIGNED = "recipient_signed"
    RECIPIENT_DECLINED = "recipient_declined"
    TOKEN_REISSUED = "token_reissued"
    REMINDER_SENT = "reminder_sent"
    DOCUMENT_IN_PROGRESS = "document_in_progress"
    DOCUMENT_COMPLETED = "document_completed"
    DOCUMENT_VOIDED = "document_voided"
    DOCUMENT_DECLINED = "document_declined"


def _iso(value):
    return value.isoformat() if value else None


class ESignDocument(Base):
    """A signable file plus its recipients, fields and lifecycle status."""

    __tablename__ = "esign_documents"

    id = Column(Integer, primary_key=True, autoincrement=True)

    title = Column(String(500), nullable=False)

    description = Column(Text, nullable=True)

    status = Column(String(20), default=DocumentStatus.DRAFT.value, nullable=False, index=True)

    signing_mode = Column(String(20), default=SigningMode.PARALLEL.value, nullable=False)

    created_by = Column(String(255), nullable=True, index=True)

    owner_email = Column(String(255), nullable=True)

    owner_name = Column(String(255), nullable=True)

    deal_id = Column(String(255), nullable=True, index=True)

    template_id = Column(String(255), nullable=True)

    original_file_url = Column(Text, nullable=False)

    original_file_name = Column(String(500), nullable=False)

    original_file_type = Column(String(255), nullable=False)

    signed_file_url = Column(Text, nullable=True)

    total_signers = Column(Integer, default=0, nullable=False)

    signed_count = Column(Integer, default=0, nullable=False)

    void_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    sent_at = Column(DateTime, nullable=True)

    completed_at = Column(DateTime, nullable=True)

    voided_at = Column(DateTime, nullable=True)

    declined_at = Column(DateTime, nullable=True)

    version = Column(Integer, nullable=False)

    recipients = relationship(
        "ESignRecipient",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by=lambda: [ESignRecipient.signing_order, ESignRecipient.id],
    )
    fields = relationship(
        "ESignField",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by=lambda: [ESignField.page, ESignField.id],
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def signers(self):
        return [r for r in self.recipients if r.role == RecipientRole.SIGNER.value]

    def to_dict(self, include_relations: bool = False):
        """Convert model to dictionary."""
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "signing_mode": self.signing_mode,
            "created_by": self.created_by,
            "owner_email": self.owner_email,
            "owner_name": self.owner_name,
            "deal_id": self.deal_id,
            "template_id": self.template_id,
            "original_file_url": self.original_file_url,
            "original_file_name": self.original_file_name,
            "original_file_type": self.original_file_type,
            "signed_file_url": self.signed_file_url,
            "total_signers": self.total_signers,
            "signed_count": self.signed_count,
            "void_reason": self.void_reason,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "sent_at": _iso(self.sent_at),
            "completed_at": _iso(self.completed_at),
            "voided_at": _iso(self.voided_at),
            "declined_at": _iso(self.declined_at),
        }
        if include_relations:
            data["recipients"] = [r.to_dict() for r in self.recipients]
            data["fields"] = [f.to_dict() for f in self.fields]
        return data


class ESignRecipient(Base):
    """One party associated with a document."""

    __tablename__ = "esign_recipients"

    id = Column(Integer, primary_key=True, autoincrement=True)

    document_id = Column(Integer, ForeignKey("esign_documents.id"), nullable=False, index=True)

    name = Column(String(255), nullable=False)

    email = Column(String(255), nullable=False, index=True)

    role = Column(String(20), default=RecipientRole.SIGNER.value, nullable=False)

    signer_type = Column(String(20), nullable=True)

    signing_order = Column(Integer, default=1, nullable=False)

    status = Column(String(20), default=RecipientStatus.PENDING.value, nullable=False, index=True)

    access_token = Column(String(255), unique=True, nullable=True, index=True)

    token_expires_at = Column(DateTime, nullable=True)

    token_revoked_at = Column(DateTime, nullable=True)

    decline_reason = Column(Text, nullable=True)

    ip_address = Column(String(100), nullable=True)

    user_agent = Column(String(500), nullable=True)

    sent_at = Column(DateTime, nullable=True)

    viewed_at = Column(DateTime, nullable=True)

    signed_at = Column(DateTime, nullable=True)

    declined_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    version = Column(Integer, nullable=False)

    document = relationship("ESignDocument", back_populates="recipients")
    fields = relationship(
        "ESignField",
        back_populates="recipient",
        cascade="all, delete-orphan",
        order_by="ESignField.id",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_signer(self) -> bool:
        return self.role == RecipientRole.SIGNER.value

    def to_dict(self, include_token: bool = False):
        """Convert model to dictionary.

        The access token is a bearer credential and is left out unless the
        caller explicitly asks for it.
        """
        data = {
            "id": self.id,
            "document_id": self.document_id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "signer_type": self.signer_type,
            "signing_order": self.signing_order,
            "status": self.status,
            "token_expires_at": _iso(self.token_expires_at),
            "decline_reason": self.decline_reason,
            "sent_at": _iso(self.sent_at),
            "viewed_at": _iso(self.viewed_at),
            "signed_at": _iso(self.signed_at),
            "declined_at": _iso(self.declined_at),
        }
        if include_token:
            data["access_token"] = self.access_token
        return data


class ESignField(Base):
    """One signable placement on a page, owned by one recipient."""

    __tablename__ = "esign_fields"

    id = Column(Integer, primary_key=True, autoincrement=True)

    document_id = Column(Integer, ForeignKey("esign_documents.id"), nullable=False, index=True)

    recipient_id = Column(Integer, ForeignKey("esign_recipients.id"), nullable=False, index=True)

    field_type = Column(String(20), nullable=False)

    label = Column(String(255), nullable=True)

    placeholder = Column(String(255), nullable=True)

    required = Column(Boolean, default=True, nullable=False)

    page = Column(Integer, default=1, nullable=False)

    x = Column(Float, nullable=False)

    y = Column(Float, nullable=False)

    width = Column(Float, nullable=False)

    height = Column(Float, nullable=False)

    options = Column(JSONType, nullable=True)

    value = Column(Text, nullable=True)

    normalized_value = Column(JSONType, nullable=True)

    filled_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    document = relationship("ESignDocument", back_populates="fields")
    recipient = relationship("ESignRecipient", back_populates="fields")

    def to_dict(self):
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "document_id": self.document_id,
            "recipient_id": self.recipient_id,
            "field_type": self.field_type,
            "label": self.label,
            "placeholder": self.placeholder,
            "required": self.required,
            "page": self.page,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "options": self.options,
            "value": self.value,
            "normalized_value": self.normalized_value,
            "filled_at": _iso(self.filled_at),
        }


class ESignAuditLog(Base):
    """Append-only, hash-chained ledger of e-sign actions.

    document_id and recipient_id are plain indexed integers rather than
    foreign keys so the ledger outlives a purged draft.
    """

    __tablename__ = "esign_audit_log"
    __table_args__ = (
        UniqueConstraint("document_id", "sequence", name="uq_esign_audit_log_document_sequence"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)

    document_id = Column(Integer, nullable=False, index=True)

    recipient_id = Column(Integer, nullable=True, index=True)

    sequence = Column(Integer, nullable=False)

    action = Column(String(50), nullable=False, index=True)

    action_details = Column(JSONType, nullable=True)

    actor_email = Column(String(255), nullable=True)

    actor_name = Column(String(255), nullable=True)

    ip_address = Column(String(100), nullable=True)

    user_agent = Column(String(500), nullable=True)

    geolocation = Column(JSONType, nullable=True)

    occurred_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    previous_hash = Column(String(64), nullable=True)

    entry_hash = Column(String(64), nullable=False)

    def to_dict(self):
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "document_id": self.document_id,
            "recipient_id": self.recipient_id,
            "sequence": self.sequence,
            "action": self.action,
            "action_details": self.action_details,
            "actor_email": self.actor_email,
            "actor_name": self.actor_name,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "geolocation": self.geolocation,
            "occurred_at": _iso(self.occurred_at),
            "previous_hash": self.previous_hash,
            "entry_hash": self.entry_hash,
        }


class AuditLogImmutableError(RuntimeError):
    """Raised when code tries to rewrite or remove an audit entry."""


@event.listens_for(ESignAuditLog, "before_update")
def _reject_audit_update(mapper, connection, target):
    raise AuditLogImmutableError(f"Audit entry {target.id} is append-only and cannot be updated")


@event.listens_for(ESignAuditLog, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise AuditLogImmutableError(f"Audit entry {target.id} is append-only and cannot be deleted")
