"""Messenger package."""

from esign.services.messenger.email import MessengerInterface, EmailMessenger
from esign.services.messenger.factory import create_messenger
from esign.services.messenger.notifier import (
    NotificationEvent,
    NotifierInterface,
    ESignNotifier,
    NotificationOutbox,
)

__all__ = [
    "MessengerInterface",
    "EmailMessenger",
    "create_messenger",
    "NotificationEvent",
    "NotifierInterface",
    "ESignNotifier",
    "NotificationOutbox",
]
