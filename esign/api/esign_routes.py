"""E-sign API routes: owner document management and token-based signing."""

import base64
import binascii
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from esign.db import get_db
from esign.models.esign_requests import (
    DocumentCreate,
    DocumentUpdate,
    FieldLayoutUpdate,
    FieldPlacement,
    FieldValueRequest,
    ReasonRequest,
    RecipientInput,
    RecipientUpdate,
    ReorderRequest,
    SendRequest,
    SignRequest,
)
from esign.services.esign_exceptions import (
    DocumentClosed,
    ESignError,
    NotFound,
    PreconditionFailed,
    RenderFailure,
    TokenExpired,
    TokenInvalid,
    ValidationError,
)
from esign.services.esign_service import ESignService
from esign.utils.audit import ClientContext, client_context_from_request
from esign.utils.tokens import generate_signing_link

logger = logging.getLogger(__name__)

esign_router = APIRouter(prefix="/api/esign", tags=["esign"])

# Most specific first: NotFound is a ValidationError, AlreadySigned a PreconditionFailed
_STATUS_BY_ERROR = [
    (NotFound, status.HTTP_404_NOT_FOUND),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (TokenInvalid, status.HTTP_401_UNAUTHORIZED),
    (PreconditionFailed, status.HTTP_409_CONFLICT),
    (TokenExpired, status.HTTP_410_GONE),
    (DocumentClosed, status.HTTP_410_GONE),
    (RenderFailure, status.HTTP_502_BAD_GATEWAY),
]


def to_http_exception(error: ESignError) -> HTTPException:
    """Map a workflow error to the HTTP response the signing client expects."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return HTTPException(
                status_code=status_code,
                detail={"error": type(error).__name__, "message": str(error)},
            )
    logger.error(f"Unmapped e-sign error: {error}", exc_info=True)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))


def get_esign_service(db: Session = Depends(get_db)) -> ESignService:
    """Dependency providing the e-sign service for a request."""
    return ESignService(db)


def get_owner_context(request: Request) -> ClientContext:
    """
    Audit context for owner endpoints.

    Owner authentication happens in the portal gateway, which forwards the
    signed-in user's identity in X-Actor-Email / X-Actor-Name.
    """
    return client_context_from_request(
        request,
        actor_email=request.headers.get("x-actor-email"),
        actor_name=request.headers.get("x-actor-name"),
    )


def get_signer_context(request: Request) -> ClientContext:
    """Audit context for token endpoints; the actor is filled in from the recipient."""
    return client_context_from_request(request)


def _recipient_with_link(recipient) -> dict:
    data = recipient.to_dict()
    if recipient.access_token:
        data["signing_link"] = generate_signing_link(recipient.document_id, recipient.access_token)
    return data


# ============================================================================
# Documents
# ============================================================================


@esign_router.post("/documents", status_code=status.HTTP_201_CREATED)
def create_document(
    request: DocumentCreate,
    service: ESignService = Depends(get_esign_service),
    context: ClientContext = Depends(get_owner_context),
):
    """Upload a file and create a draft document with its recipients."""
    try:
        content = base64.b64decode(request.file_content_base64, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="file_content_base64 is not valid base64")

    try:
        document = service.create_document(
            context=context,
            title=request.title,
            file_content=content,
            file_name=request.file_name,
            file_type=request.file_type,
            owner_email=str(request.owner_email) if request.owner_email else context.actor_email,
            owner_name=request.owner_name or context.actor_name,
            created_by=request.created_by,
            description=request.description,
            signing_mode=request.signing_mode,
            deal_id=request.deal_id,
            template_id=request.template_id,
            recipients=request.recipients,
        )
    except ESignError as e:
        raise to_http_exception(e)
    return document.to_dict(include_relations=True)


@esign_router.get("/documents")
def list_documents(
    created_by: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    deal_id: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    service: ESignService = Depends(get_esign_service),
):
    """List documents, newest first."""
    try:
        documents = service.list_documents(
            created_by=created_by, status=status_filter, deal_id=deal_id, limit=limit, offset=offset
        )
    except ESignError as e:
        raise to_http_exception(e)
    return {"documents": [d.to_dict() for d in documents], "count": len(documents)}


@esign_router.get("/documents/{document_id}")
def get_document(document_id: int, service: ESignService = Depends(get_esign_service)):
    try:
        document = service.get_document(document_id)
    except ESignError as e:
        raise to_http_exception(e)
    return document.to_dict(include_relations=True)


@esign_router.patch("/documents/{document_id}")
def update_document(
    document_id: int,
    request: DocumentUpdate,
    service: ESignService = Depends(get_esign_service),
    context: ClientContext = Depends(get_owner_context),
):
    try:
        document = service.update_document(
            document_id,
            title=request.title,
            description=request.description,
            signing_mode=request.signing_mode,
            context=context,
        )
    except ESignError as e:
        raise to_http_exception(e)
    return document.to_dict(include_relations=True)


@esign_router.delete("/documents/{document_id}")
def delete_document(
    document_id: int,
    service: ESignService = Depends(get_esign_service),
    context: ClientContext = Depends(get_owner_context),
):
    """Delete a draft. Sent documents must be voided instead."""
    try:
        service.delete_document(document_id, context=context)
    except ESignError as e:
        raise to_http_exception(e)
    return {"deleted": True, "document_id": document_id}


@esign_router.post("/documents/{document_id}/send")
def send_document(
    document_id: int,
    request: Optional[SendRequest] = None,
    service: ESignService = Depends(get_esign_service),
    context: ClientContext = Depends(get_owner_context),
):
    try:
        document = service.send_document(
            document_id,
            signing_mode=request.signing_mode if request else None,
            context=context,
        )
    except ESignError as e:
        raise to_http_exception(e)
    return document.to_dict(include_relations=True)


@esign_router.post("/documents/{document_id}/void")
def void_document(
    document_id: int,
    request: ReasonRequest,
    service: ESignService = Depends(get_esign_service),
    context: ClientContext = Depends(get_owner_context),
):
    try:
        document = service.void_document(document_id, request.reason, context=context)
    except ESignError as e:
        raise to_http_exception(e)
    return document.to_dict()


@esign_router.post("/documents/{document_id}/complete")
def check_completion(
    document_id: int,
    service: ESignService = Depends(get_esign_service),
    context: ClientContext = Depends(get_owner_context),
):
    """Retry completion of a fully signed document (e.g. after a render failure)."""
    try:
        document = service.check_completion(document_id, context=context)
    except ESignError as e:
        raise to_http_exception(e)
    return document.to_dict()


@esign_router.get("/documents/{document_id}/audit")
def get_audit_trail(
    document_id: int,
    action: Optional[str] = None,
    service: ESignService = Depends(get_esign_service),
):
    entries = service.get_audit_trail(document_id, action=action)
    return {"document_id": document_id, "entries": [e.to_dict() for e in entries]}


@esign_router.get("/documents/{document_id}/audit/verify")
def verify_audit_chain(document_id: int, service: ESignService = Depends(get_esign_service)):
    return service.verify_audit_chain(document_id)


# ============================================================================
# Recipients
# ============================================================================


@esign_router.post("/documents/{document_id}/recipients", status_code=status.HTTP_201_CREATED)
def add_recipient(
    document_id: int,
    request: RecipientInput,
    service: ESignService = Depends(get_esign_service),
    context: ClientContext = Depends(get_owner_context),
):
    try:
        recipient = service.add_recipient(document_id, request, context=context)
    except ESignError as e:
        raise to_http_exception(e)
    return recipient.to_dict()


@esign_router.patch("/documents/{document_id}/recipients/{recipient_id}")
def update_recipient(
    document_id: int,
    recipient_id: int,
    request: RecipientUpdate,
    service: ESignService = Depends(get_esign_service),
    context: ClientContext = Depends(get_owner_context),
):
    """Correct a recipient on a draft without losing their placed fields."""
    try:
        recipient = service.update_recipient(document_id, recipient_id, request, context=context)
    except ESignError as e:
        raise to_http_exception(e)
    return recipient.to_dict()


@esign_router.delete("/documents/{document_id}/recipients/{recipient_id}")
def remove_recipient(
    document_id: int,
    recipient_id: int,
    service: ESignService = Depends(get_esign_service),
    context: ClientContext = Depends(get_owner_context),
):
    try:
        service.remove_recipient(document_id, recipient_id, context=context)
    except ESignError as e:
        raise to_http_exception(e)
    return {"deleted": True, "recipient_id": recipient_id}


@esign_router.put("/documents/{document_id}/recipients/order")
def reorder_recipients(
    document_id: int,
    request: ReorderRequest,
    service: ESignService = Depends(get_esign_service),
    context: ClientContext = Depends(get_owner_context),
):
    try:
        document = service.reorder_recipients(document_id, request.recipient_ids, context=context)
    except ESignError as e:
        raise to_http_exception(e)
    return document.to_dict(include_relations=True)


@esign_router.post("/recipients/{recipient_id}/resend")
def resend_invitation(
    recipient_id: int,
    service: ESignService = Depends(get_esign_service),
    context: ClientContext = Depends(get_owner_context),
):
    """Issue a fresh signing link; the previous one stops working."""
    try:
        recipient = service.resend_invitation(recipient_id, context=context)
    except ESignError as e:
        raise to_http_exception(e)
    return _recipient_with_link(recipient)


@esign_router.post("/recipients/{recipient_id}/remind")
def send_reminder(
    recipient_id: int,
    service: ESignService = Depends(get_esign_service),
    context: ClientContext = Depends(get_owner_context),
):
    try:
        recipient = service.send_reminder(recipient_id, context=context)
    except ESignError as e:
        raise to_http_exception(e)
    return recipient.to_dict()


# ============================================================================
# Fields
# ============================================================================


@esign_router.post("/documents/{document_id}/fields", status_code=status.HTTP_201_CREATED)
def place_field(
    document_id: int,
    request: FieldPlacement,
    service: ESignService = Depends(get_esign_service),
    context: ClientContext = Depends(get_owner_context),
):
    size = (request.width, request.height) if request.width is not None and request.height is not None else None
    try:
        field = service.place_field(
            document_id,
            request.recipient_id,
            request.field_type,
            page=request.page,
            position=(request.x, request.y),
            size=size,
            required=request.required,
            options=request.options,
            label=request.label,
            placeholder=request.placeholder,
            context=context,
        )
    except ESignError as e:
        raise to_http_exception(e)
    return field.to_dict()


@esign_router.patch("/fields/{field_id}")
def update_field_layout(
    field_id: int,
    request: FieldLayoutUpdate,
    service: ESignService = Depends(get_esign_service),
    context: ClientContext = Depends(get_owner_context),
):
    changes = {}
    if request.page is not None:
        changes["page"] = request.page
    if request.x is not None or request.y is not None:
        if request.x is None or request.y is None:
            raise HTTPException(status_code=400, detail="x and y must be given together")
        changes["position"] = (request.x, request.y)
    if request.width is not None or request.height is not None:
        if request.width is None or request.height is None:
            raise HTTPException(status_code=400, detail="width and height must be given together")
        changes["size"] = (request.width, request.height)
    for name in ("required", "options", "label", "placeholder"):
        value = getattr(request, name)
        if value is not None:
            changes[name] = value

    try:
        field = service.update_field_layout(field_id, context=context, **changes)
    except ESignError as e:
        raise to_http_exception(e)
    return field.to_dict()


@esign_router.delete("/fields/{field_id}")
def remove_field(
    field_id: int,
    service: ESignService = Depends(get_esign_service),
    context: ClientContext = Depends(get_owner_context),
):
    try:
        service.remove_field(field_id, context=context)
    except ESignError as e:
        raise to_http_exception(e)
    return {"deleted": True, "field_id": field_id}


# ============================================================================
# Signing (token links)
# ============================================================================


@esign_router.get("/sign/{document_id}")
def open_signing_link(
    document_id: int,
    token: str = Query(..., min_length=1),
    service: ESignService = Depends(get_esign_service),
    context: ClientContext = Depends(get_signer_context),
):
    """Open a document through a signing link; the first open marks it viewed."""
    try:
        return service.view(document_id, token, context=context)
    except ESignError as e:
        raise to_http_exception(e)


@esign_router.put("/sign/{document_id}/fields/{field_id}")
def fill_field(
    document_id: int,
    field_id: int,
    request: FieldValueRequest,
    token: str = Query(..., min_length=1),
    service: ESignService = Depends(get_esign_service),
    context: ClientContext = Depends(get_signer_context),
):
    try:
        recipient = service.authenticate(document_id, token)
        field = service.set_field_value(field_id, recipient.id, request.value, token, context=context)
    except ESignError as e:
        raise to_http_exception(e)
    return field.to_dict()


@esign_router.delete("/sign/{document_id}/fields/{field_id}")
def clear_field(
    document_id: int,
    field_id: int,
    token: str = Query(..., min_length=1),
    service: ESignService = Depends(get_esign_service),
    context: ClientContext = Depends(get_signer_context),
):
    try:
        recipient = service.authenticate(document_id, token)
        field = service.clear_field_value(field_id, recipient.id, token, context=context)
    except ESignError as e:
        raise to_http_exception(e)
    return field.to_dict()


@esign_router.post("/sign/{document_id}")
def finish_signing(
    document_id: int,
    request: Optional[SignRequest] = None,
    token: str = Query(..., min_length=1),
    service: ESignService = Depends(get_esign_service),
    context: ClientContext = Depends(get_signer_context),
):
    """Sign the document, optionally submitting field values in the same request."""
    try:
        recipient = service.authenticate(document_id, token)
        recipient = service.sign(
            recipient.id,
            token,
            context=context,
            field_values=request.field_values if request else None,
        )
        document = service.get_document(document_id)
    except ESignError as e:
        raise to_http_exception(e)
    return {
        "success": True,
        "recipient": recipient.to_dict(),
        "document_status": document.status,
        "signed_count": document.signed_count,
        "total_signers": document.total_signers,
    }


@esign_router.post("/sign/{document_id}/decline")
def decline_signing(
    document_id: int,
    request: ReasonRequest,
    token: str = Query(..., min_length=1),
    service: ESignService = Depends(get_esign_service),
    context: ClientContext = Depends(get_signer_context),
):
    try:
        recipient = service.authenticate(document_id, token)
        recipient = service.decline(recipient.id, token, request.reason, context=context)
    except ESignError as e:
        raise to_http_exception(e)
    return {"success": True, "recipient": recipient.to_dict()}
