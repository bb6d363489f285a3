"""
Error taxonomy for relay polling.

The relay client raises these; the polling engine catches them at the cycle
boundary and turns them into status lines, backoff updates or skipped events.
"""

from typing import Optional


class MonitorError(Exception):
    """Base class for every error raised by the monitor."""


class TransportError(MonitorError):
    """Network failure or non-success HTTP response from the relay."""

    def __init__(self, status: Optional[int], message: str):
        super().__init__(message)
        self.status = status
        self.message = message

    def __str__(self) -> str:
        if self.status is None:
            return self.message
        return f"HTTP {self.status}: {self.message}"


class RateLimited(TransportError):
    """Relay answered 429 or reported Too Many Requests."""

    def __init__(self, message: str = "Too Many Requests", status: Optional[int] = 429):
        super().__init__(status, message)


class AuthRequired(TransportError):
    """Relay answered 401; the token needs an API key."""

    def __init__(self, message: str = "Authentication required", status: Optional[int] = 401):
        super().__init__(status, message)


class MalformedPayload(MonitorError):
    """Response body or event content could not be parsed."""


class ExtractionSkipped(MonitorError):
    """A single raw segment entry was unusable and was skipped."""
