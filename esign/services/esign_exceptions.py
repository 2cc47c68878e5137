"""
Exceptions for e-sign workflow operations.

Each class is a distinct category callers can branch on: correct the input,
re-fetch state, request a new link, or stop because the document is closed.
"""


class ESignError(Exception):
    """Base exception for e-sign operations."""
    pass


class ValidationError(ESignError):
    """Malformed input; never mutates state."""
    pass


class NotFound(ValidationError):
    """A referenced document, recipient or field does not exist."""
    pass


class PreconditionFailed(ESignError):
    """Operation attempted against the wrong state."""
    pass


class AlreadySigned(PreconditionFailed):
    """The recipient has already signed."""
    pass


class ConcurrentModification(PreconditionFailed):
    """Another writer changed the same rows and the retry did not settle it."""
    pass


class TokenInvalid(ESignError):
    """The access token is unknown, superseded or revoked."""
    pass


class TokenExpired(ESignError):
    """The access token is past its expiry; a new link can be requested."""
    pass


class DocumentClosed(ESignError):
    """The document is completed, voided or declined."""
    pass


class RenderFailure(ESignError):
    """The external renderer could not produce the signed file."""
    pass


class NotifyFailure(ESignError):
    """A best-effort notification could not be delivered."""
    pass
