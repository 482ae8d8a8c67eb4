"""Exception types shared across the export pipeline."""

from typing import Optional


class IncomeFetchError(Exception):
    """A single page request did not produce a usable result."""


class NetworkFailure(IncomeFetchError):
    """Connection-level failure: refused, reset, timed out or unreadable body."""

    def __init__(self, reason: str):
        super().__init__(f"Network failure: {reason}")
        self.reason = reason


class UpstreamError(IncomeFetchError):
    """The exchange answered with a non-2xx status or an unexpected payload."""

    def __init__(self, status: int, body: Optional[str] = None):
        message = f"Error {status}"
        if body:
            message = f"{message}: {body}"
        super().__init__(message)
        self.status = status
        self.body = body


class UsageError(Exception):
    """Invalid command line invocation."""


class ConfigurationError(Exception):
    """Settings could not be loaded or failed validation."""
