"""Shared fixtures for Bridge eSign tests."""

import os

# Configure before any esign module builds the engine or the messenger
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["MESSENGER_PROVIDER"] = "none"
os.environ["ESIGN_RENDER_URL"] = ""

from datetime import datetime, timedelta
from typing import List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from esign.db import Base
from esign.db import models  # noqa: F401 - needed for model registration
from esign.db.models import ESignAuditLog, ESignRecipient, FieldType, RecipientRole
from esign.models.esign_requests import RecipientInput
from esign.services.esign_exceptions import RenderFailure
from esign.services.esign_service import ESignService
from esign.services.file_storage_service import BlobStorageInterface
from esign.services.messenger.notifier import NotificationEvent, NotifierInterface
from esign.services.render_service import RendererInterface

SIGNATURE_IMAGE = "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="


class MutableClock:
    """Clock whose time only moves when a test says so."""

    def __init__(self, start: datetime = datetime(2026, 3, 2, 9, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeStorage(BlobStorageInterface):
    def __init__(self):
        self.blobs = {}
        self.uploads = 0

    def upload(self, content: bytes, content_type: str, filename: Optional[str] = None) -> str:
        self.uploads += 1
        url = f"memory://{self.uploads}/{filename or 'document'}"
        self.blobs[url] = content
        return url

    def read(self, url: str) -> bytes:
        return self.blobs[url]

    def delete(self, url: str) -> bool:
        return self.blobs.pop(url, None) is not None


class FakeRenderer(RendererInterface):
    def __init__(self):
        self.calls = []
        self.fail = False

    def render(self, document_url: str, fields: List[dict]) -> str:
        self.calls.append((document_url, fields))
        if self.fail:
            raise RenderFailure("render service unavailable")
        return f"memory://signed/{len(self.calls)}.pdf"


class FakeNotifier(NotifierInterface):
    def __init__(self):
        self.sent = []

    def notify(self, recipient_email: str, event: NotificationEvent, payload: dict) -> None:
        self.sent.append((recipient_email, NotificationEvent(event), payload))

    def events_for(self, email: str) -> List[NotificationEvent]:
        return [event for to, event, _ in self.sent if to == email]


@pytest.fixture
def engine():
    """In-memory SQLite engine with a fresh schema per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def clock():
    return MutableClock()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def service(db, storage, renderer, notifier, clock):
    return ESignService(db, storage=storage, renderer=renderer, notifier=notifier, clock=clock)


@pytest.fixture
def make_document(service):
    """
    Factory for documents with signers, one required signature field each.

    Returns the document id; the document is sent unless send=False.
    """
    def _make(
        signers: int = 2,
        signing_mode: str = "parallel",
        extra_recipients: Optional[List[RecipientInput]] = None,
        send: bool = True,
        signer_emails: Optional[List[str]] = None,
    ) -> int:
        emails = signer_emails or [f"signer{i + 1}@example.com" for i in range(signers)]
        recipients = [
            RecipientInput(name=f"Signer {i + 1}", email=email, signing_order=i + 1)
            for i, email in enumerate(emails)
        ]
        recipients.extend(extra_recipients or [])
        document = service.create_document(
            title="Purchase Agreement - 12 Harbor Lane",
            file_content=b"%PDF-1.4 purchase agreement",
            file_name="purchase_agreement.pdf",
            owner_email="dana.agent@bridgerealty.com",
            owner_name="Dana Agent",
            created_by="user-42",
            signing_mode=signing_mode,
            recipients=recipients,
        )
        for signer in list(document.signers):
            service.place_field(
                document.id,
                signer.id,
                FieldType.SIGNATURE,
                page=1,
                position=(72, 640),
                label=f"Signature of {signer.name}",
            )
        if send:
            service.send_document(document.id)
        return document.id

    return _make


def cc_recipient(email: str = "escrow@titleco.com") -> RecipientInput:
    return RecipientInput(name="Escrow Officer", email=email, role=RecipientRole.CC)


def signers_of(service: ESignService, document_id: int) -> List[ESignRecipient]:
    return service.coordinator.ordered_signers(service.get_document(document_id))


def audit_actions(service: ESignService, document_id: int) -> List[str]:
    return [entry.action for entry in service.get_audit_trail(document_id)]


def fill_and_sign(service: ESignService, recipient: ESignRecipient, value: str = SIGNATURE_IMAGE) -> None:
    token = recipient.access_token
    for field in list(recipient.fields):
        service.set_field_value(field.id, recipient.id, value, token)
    service.sign(recipient.id, token)


def entries(db, document_id: int) -> List[ESignAuditLog]:
    return (
        db.query(ESignAuditLog)
        .filter(ESignAuditLog.document_id == document_id)
        .order_by(ESignAuditLog.sequence)
        .all()
    )
