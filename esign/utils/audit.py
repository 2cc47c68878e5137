"""
Audit context utilities for Bridge eSign.

Captures who performed an action and from where, so every ledger entry can
carry actor identity and client metadata even for token-based guest signers.
"""

import hashlib
import json
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

from fastapi import Request

MAX_USER_AGENT_LENGTH = 500


@dataclass(frozen=True)
class ClientContext:
    """Actor and client metadata recorded with an audit entry."""
    actor_email: Optional[str] = None
    actor_name: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    geolocation: Optional[Dict[str, Any]] = None

    def as_actor(self, email: Optional[str], name: Optional[str]) -> "ClientContext":
        """Same client, attributed to a specific actor."""
        return replace(self, actor_email=email, actor_name=name)


SYSTEM_CONTEXT = ClientContext(actor_email=None, actor_name="system")


def client_context_from_request(
    request: Optional[Request],
    actor_email: Optional[str] = None,
    actor_name: Optional[str] = None,
) -> ClientContext:
    """Build a ClientContext from an HTTP request.

    Args:
        request: The HTTP request (to extract IP and user agent).
        actor_email: Email of the acting user, if known.
        actor_name: Display name of the acting user, if known.

    Returns:
        The populated ClientContext.
    """
    ip_address = None
    user_agent = None
    geolocation = None

    if request:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            ip_address = forwarded.split(",")[0].strip()
        else:
            ip_address = request.client.host if request.client else None
        user_agent = request.headers.get("user-agent", "")[:MAX_USER_AGENT_LENGTH]
        country = request.headers.get("cf-ipcountry")
        if country:
            geolocation = {"country": country}

    return ClientContext(
        actor_email=actor_email,
        actor_name=actor_name,
        ip_address=ip_address,
        user_agent=user_agent,
        geolocation=geolocation,
    )


def compute_entry_hash(payload: dict) -> str:
    """Compute the chain hash of an audit entry.

    Args:
        payload: Canonical entry fields, including the previous entry's hash

    Returns:
        Hex-encoded SHA256 hash
    """
    payload_str = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(payload_str.encode("utf-8")).hexdigest()


__all__ = ["ClientContext", "SYSTEM_CONTEXT", "client_context_from_request", "compute_entry_hash"]
