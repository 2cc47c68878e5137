"""
E-sign notifications.

ESignNotifier turns workflow events into messages and hands them to the
configured messenger. Delivery is best-effort: a failure is logged as a
NotifyFailure and never reaches the signing workflow.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

from esign.core.config import settings
from esign.services.esign_exceptions import NotifyFailure
from esign.services.messenger.email import MessengerInterface
from esign.services.messenger.factory import create_messenger

logger = logging.getLogger(__name__)

_UNSET = object()


class NotificationEvent(str, Enum):
    """Events recipients and owners are notified about."""
    SIGNING_REQUEST = "signing_request"
    DOCUMENT_SHARED = "document_shared"
    REMINDER = "reminder"
    COMPLETED = "completed"
    VOIDED = "voided"
    DECLINED = "declined"


class NotifierInterface(ABC):
    """Outbound notification collaborator."""

    @abstractmethod
    def notify(self, recipient_email: str, event: NotificationEvent, payload: Dict[str, Any]) -> None:
        """Deliver a notification. Must not raise for delivery problems."""
        pass


class ESignNotifier(NotifierInterface):
    """Notifier backed by a MessengerInterface (SMTP email by default)."""

    def __init__(self, messenger: Optional[MessengerInterface] = _UNSET, sender_name: Optional[str] = None):
        """
        Args:
            messenger: Messenger to deliver through (created from settings if omitted;
                       None disables delivery)
            sender_name: Fallback sender name when a document has no owner name
        """
        self.messenger = create_messenger() if messenger is _UNSET else messenger
        self.sender_name = sender_name or settings.ESIGN_SENDER_NAME
        self._background: Set["asyncio.Task"] = set()

    def compose(self, event: NotificationEvent, payload: Dict[str, Any]) -> Tuple[str, str, Optional[str]]:
        """
        Build subject, body and link for an event.

        Args:
            event: Notification event
            payload: document_title, recipient_name and optionally sender_name,
                     signing_link, expires_at, reason, signed_file_url

        Returns:
            Tuple of (subject, message, link)
        """
        event = NotificationEvent(event)
        title = payload.get("document_title", "your document")
        sender = payload.get("sender_name") or self.sender_name
        greeting = f"Hello {payload['recipient_name']},\n\n" if payload.get("recipient_name") else ""
        link = payload.get("signing_link")
        expires = payload.get("expires_at")
        expiry_note = f"\n\nThis link expires on {expires}." if expires else ""

        if event == NotificationEvent.SIGNING_REQUEST:
            subject = f'{sender} has sent you "{title}" to sign'
            message = f'{greeting}{sender} has sent you "{title}" for your signature.{expiry_note}'
        elif event == NotificationEvent.DOCUMENT_SHARED:
            subject = f'{sender} has shared "{title}" with you'
            message = f'{greeting}{sender} has shared "{title}" with you. No signature is required from you.{expiry_note}'
        elif event == NotificationEvent.REMINDER:
            subject = f'Reminder: Please sign "{title}"'
            message = f'{greeting}This is a friendly reminder that "{title}" is still waiting for your signature.{expiry_note}'
        elif event == NotificationEvent.COMPLETED:
            subject = f'"{title}" has been completed'
            message = f'{greeting}All parties have signed "{title}".'
            link = payload.get("signed_file_url") or link
        elif event == NotificationEvent.VOIDED:
            subject = f'"{title}" has been voided'
            message = f'{greeting}"{title}" has been voided by the sender and no longer requires your signature.'
            if payload.get("reason"):
                message += f"\n\nReason: {payload['reason']}"
            link = None
        else:
            subject = f'"{title}" has been declined'
            decliner = payload.get("declined_by", "A signer")
            message = f'{greeting}{decliner} declined to sign "{title}". The document is closed.'
            if payload.get("reason"):
                message += f"\n\nReason: {payload['reason']}"
            link = None

        return subject, message, link

    def notify(self, recipient_email: str, event: NotificationEvent, payload: Dict[str, Any]) -> None:
        if self.messenger is None:
            logger.warning(f"No messenger configured; skipping {NotificationEvent(event).value} notification to {recipient_email}")
            return
        subject, message, link = self.compose(event, payload)
        self._dispatch(self._deliver(recipient_email, subject, message, link))

    async def _deliver(self, recipient_email: str, subject: str, message: str, link: Optional[str]) -> None:
        sent = await self.messenger.send_message(recipient_email, subject, message, link)
        if not sent:
            raise NotifyFailure(f"Messenger could not deliver '{subject}' to {recipient_email}")

    def _dispatch(self, coro) -> None:
        """Schedule on the running loop if there is one, otherwise run to completion."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            task = loop.create_task(coro)
            self._background.add(task)
            task.add_done_callback(self._background.discard)
            task.add_done_callback(self._log_task_failure)
            return

        try:
            asyncio.run(coro)
        except NotifyFailure as e:
            logger.error(f"Notification failed: {e}")

    @staticmethod
    def _log_task_failure(task: "asyncio.Task") -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Notification failed: {error}")


class NotificationOutbox:
    """
    Notifications queued inside a transaction and sent after it commits.

    A rolled-back operation clears the outbox, so nobody is told about a
    transition that never happened.
    """

    def __init__(self, notifier: NotifierInterface):
        self.notifier = notifier
        self._pending: List[Tuple[str, NotificationEvent, Dict[str, Any]]] = []

    def queue(self, recipient_email: str, event: NotificationEvent, payload: Dict[str, Any]) -> None:
        self._pending.append((recipient_email, NotificationEvent(event), payload))

    @property
    def pending(self) -> List[Tuple[str, NotificationEvent, Dict[str, Any]]]:
        return list(self._pending)

    def clear(self) -> None:
        self._pending = []

    def flush(self) -> int:
        """Deliver every queued notification; returns how many were handed off."""
        pending, self._pending = self._pending, []
        delivered = 0
        for recipient_email, event, payload in pending:
            try:
                self.notifier.notify(recipient_email, event, payload)
                delivered += 1
            except Exception as e:
                failure = NotifyFailure(f"{event.value} to {recipient_email}: {e}")
                logger.error(f"Notification failed: {failure}", exc_info=True)
        return delivered
