"""Root exception hierarchy shared by every shardstream connector."""

from __future__ import annotations


class ShardStreamError(Exception):
    """Root exception for the entire shardstream toolkit."""


class ConfigurationError(ShardStreamError):
    """Raised when a source cannot be set up because its configuration is invalid.

    Never retried: correctness cannot be established until the configuration
    (or the remote resource it names) is fixed.
    """


class InfrastructureError(ShardStreamError):
    """Base class for all infrastructure-related errors."""


class TransientError(InfrastructureError):
    """An infrastructure failure expected to clear on its own.

    Usage: raise from transport adapters for throttling or momentary
    unavailability. Callers retry these with backoff at the call site and
    never surface them to the application unless the retry ceiling is hit.
    """

    def __init__(self, message: str, *, code: str | None = None) -> None:
        self.code = code
        super().__init__(message)


class PersistenceError(InfrastructureError):
    """Base class for errors reading or writing durable state (e.g. checkpoints)."""
