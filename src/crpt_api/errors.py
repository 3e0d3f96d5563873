"""Error types for document submission flows."""

from __future__ import annotations


class CrptAPIError(RuntimeError):
    """Base error for CRPT API operations."""


class ConfigurationError(CrptAPIError, ValueError):
    """Raised when a client or rate limit is configured with invalid values."""


class SerializationError(CrptAPIError):
    """Raised when a document cannot be encoded to the wire format."""


class TransportError(CrptAPIError):
    """Raised on network-level failures while sending a request."""


class HttpStatusError(CrptAPIError):
    """Raised when the registry answers with a non-2xx status."""

    def __init__(self, status_code: int, body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        message = f"unexpected status {status_code}"
        if body:
            message = f"{message}: {body}"
        super().__init__(message)


class InterruptedWait(CrptAPIError):
    """Raised when a caller is cancelled while waiting for a permit."""


class AcquireTimeoutError(InterruptedWait):
    """Raised when a permit does not become available within the wait timeout."""
