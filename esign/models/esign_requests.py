"""Pydantic models for e-sign document, recipient and field input."""

from typing import List, Optional, Dict, Any
from pydantic import BaseModel, EmailStr, Field, field_validator

from esign.db.models import RecipientRole, SignerType, SigningMode, FieldType


class RecipientInput(BaseModel):
    """A party to add to a draft document."""
    name: str = Field(..., min_length=1, max_length=255, description="Recipient full name")
    email: EmailStr = Field(..., description="Recipient email address")
    role: RecipientRole = Field(default=RecipientRole.SIGNER, description="'signer', 'cc' or 'viewer'")
    signer_type: Optional[SignerType] = Field(None, description="Cosmetic grouping (buyer, seller, agent, ...)")
    signing_order: Optional[int] = Field(
        None, ge=1, description="Position in sequential signing (defaults to the end of the list)"
    )

    @field_validator("name")
    @classmethod
    def strip_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Recipient name cannot be blank")
        return v


class RecipientUpdate(BaseModel):
    """Corrections to a recipient of a draft; omitted attributes are left alone."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    role: Optional[RecipientRole] = None
    signer_type: Optional[SignerType] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v):
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("Recipient name cannot be blank")
        return v


class FieldPlacement(BaseModel):
    """Geometry and type of a field placed on the document."""
    recipient_id: int
    field_type: FieldType
    page: int = Field(default=1, description="1-based page number")
    x: float
    y: float
    width: Optional[float] = None
    height: Optional[float] = None
    required: bool = True
    options: Optional[List[str]] = None
    label: Optional[str] = Field(None, max_length=255)
    placeholder: Optional[str] = Field(None, max_length=255)


class FieldLayoutUpdate(BaseModel):
    """Move, resize or relabel a placed field."""
    page: Optional[int] = None
    x: Optional[float] = None
    y: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None
    required: Optional[bool] = None
    options: Optional[List[str]] = None
    label: Optional[str] = Field(None, max_length=255)
    placeholder: Optional[str] = Field(None, max_length=255)


class DocumentCreate(BaseModel):
    """New draft document with its original file (base64 encoded)."""
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    file_name: str = Field(..., min_length=1, max_length=500)
    file_type: str = Field(default="application/pdf", description="MIME type of the original file")
    file_content_base64: str = Field(..., description="Original file bytes, base64 encoded")
    signing_mode: SigningMode = SigningMode.PARALLEL
    owner_email: Optional[EmailStr] = None
    owner_name: Optional[str] = None
    created_by: Optional[str] = None
    deal_id: Optional[str] = None
    template_id: Optional[str] = None
    recipients: List[RecipientInput] = Field(default_factory=list)


class DocumentUpdate(BaseModel):
    """Editable attributes of a draft document."""
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    signing_mode: Optional[SigningMode] = None


class SendRequest(BaseModel):
    signing_mode: Optional[SigningMode] = None


class ReasonRequest(BaseModel):
    """Void or decline reason."""
    reason: str = Field(..., min_length=1, max_length=2000)


class ReorderRequest(BaseModel):
    recipient_ids: List[int] = Field(..., min_length=1)


class FieldValueRequest(BaseModel):
    value: Any = Field(..., description="Raw value as entered in the signing client")


class SignRequest(BaseModel):
    """Finish signing, optionally submitting remaining field values in bulk."""
    field_values: Optional[Dict[int, Any]] = None
