"""Clock helpers.

Timestamps are stored as naive UTC datetimes. Services accept a ``clock``
callable so tests can move time forward past token expiry.
"""

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
