"""Access token generation and signing-link utilities."""

import secrets
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from esign.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessToken:
    """A recipient's bearer credential and its absolute expiry.

    Re-issuing produces a new AccessToken; an existing one is never mutated.
    """
    token: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


def generate_access_token(
    now: datetime,
    expires_in_days: Optional[int] = None,
    token_bytes: Optional[int] = None,
) -> AccessToken:
    """Generate a random, unguessable access token.

    Args:
        now: Issue time (naive UTC)
        expires_in_days: Validity window (uses ESIGN_TOKEN_EXPIRY_DAYS if None)
        token_bytes: Entropy in bytes (uses ESIGN_TOKEN_BYTES if None)

    Returns:
        AccessToken value object
    """
    days = expires_in_days if expires_in_days is not None else settings.ESIGN_TOKEN_EXPIRY_DAYS
    nbytes = token_bytes if token_bytes is not None else settings.ESIGN_TOKEN_BYTES
    return AccessToken(
        token=secrets.token_urlsafe(nbytes),
        expires_at=now + timedelta(days=days),
    )


def tokens_match(presented: Optional[str], stored: Optional[str]) -> bool:
    """Constant-time comparison of a presented token against the stored one."""
    if not presented or not stored:
        return False
    return secrets.compare_digest(presented.encode(), stored.encode())


def generate_signing_link(document_id: int, token: str, base_url: Optional[str] = None) -> str:
    """Generate a full signing URL from a token.

    Args:
        document_id: Document the link opens
        token: Recipient access token
        base_url: Public site URL (uses ESIGN_PUBLIC_SITE_URL if None)

    Returns:
        Full signing URL
    """
    base = base_url or settings.ESIGN_PUBLIC_SITE_URL
    return f"{base.rstrip('/')}/sign/{document_id}?token={token}"
