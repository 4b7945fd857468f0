"""Primitives: exception hierarchy."""

from __future__ import annotations

from .exceptions import (
    ConfigurationError,
    InfrastructureError,
    PersistenceError,
    ShardStreamError,
    TransientError,
)

__all__ = [
    "ConfigurationError",
    "InfrastructureError",
    "PersistenceError",
    "ShardStreamError",
    "TransientError",
]
