"""
Exception hierarchy for the stream adapter.

Only TransportError, ConfigurationError and ModelFetchError ever reach the
host. DecodeError is absorbed inside the stream decoder and CancellationError
ends a completion call silently.
"""

from __future__ import annotations


class AdapterError(Exception):
    """Base class for adapter errors."""


class TransportError(AdapterError):
    """Network failure or non-success HTTP status."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ConfigurationError(AdapterError):
    """Missing credential or invalid provider configuration."""


class DecodeError(AdapterError):
    """Malformed frame or payload in a response stream."""


class CancellationError(AdapterError):
    """The abort signal fired for a completion call."""

    def __init__(self, reason: str = "cancelled"):
        super().__init__(reason)
        self.reason = reason


class ModelFetchError(AdapterError):
    """The model list could not be fetched and no cached copy exists."""
