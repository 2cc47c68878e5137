"""Messenger factory for creating configured messenger instances."""

import logging
from typing import Any, Dict, Optional

from esign.services.messenger.email import MessengerInterface, EmailMessenger
from esign.core.config import settings

logger = logging.getLogger(__name__)

_REQUIRED_EMAIL_SETTINGS = ("smtp_host", "smtp_port", "smtp_user", "smtp_password", "from_email")


def email_settings() -> Dict[str, Any]:
    """SMTP settings for the email messenger, read from configuration."""
    return {
        "smtp_host": settings.MESSENGER_EMAIL_SMTP_HOST,
        "smtp_port": settings.MESSENGER_EMAIL_SMTP_PORT,
        "smtp_user": settings.MESSENGER_EMAIL_SMTP_USER,
        "smtp_password": settings.get_secret_value("MESSENGER_EMAIL_SMTP_PASSWORD"),
        "from_email": settings.MESSENGER_EMAIL_FROM,
        "from_name": settings.ESIGN_SENDER_NAME,
    }


def create_messenger(
    provider: Optional[str] = None, config: Optional[Dict[str, Any]] = None
) -> Optional[MessengerInterface]:
    """Create configured messenger instance.

    Args:
        provider: Messenger provider ("email" or "none").
                  If None, uses MESSENGER_PROVIDER from config
        config: Optional overrides for individual email settings
                (smtp_host, smtp_port, smtp_user, smtp_password, from_email, from_name)

    Returns:
        MessengerInterface or None if provider not configured
    """
    if provider is None:
        provider = settings.MESSENGER_PROVIDER
    provider = str(getattr(provider, "value", provider)).lower()

    if provider == "none":
        logger.info("Notifications disabled (MESSENGER_PROVIDER=none)")
        return None
    if provider != "email":
        logger.warning(f"Unknown messenger provider: {provider}")
        return None

    options = email_settings()
    options.update(config or {})
    missing = [key for key in _REQUIRED_EMAIL_SETTINGS if not options.get(key)]
    if missing:
        logger.warning(f"Email messenger not configured: missing {', '.join(missing)}")
        return None

    messenger = EmailMessenger(
        options["smtp_host"],
        int(options["smtp_port"]),
        options["smtp_user"],
        options["smtp_password"],
        options["from_email"],
        options.get("from_name"),
    )
    is_valid, error = messenger.validate_config()
    if not is_valid:
        logger.error(f"Email messenger configuration invalid: {error}")
        return None
    return messenger
