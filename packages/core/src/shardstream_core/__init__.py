"""Shared primitives for shardstream connectors."""

from __future__ import annotations

from .instrumentation import (
    HookRegistration,
    HookRegistry,
    InstrumentationHook,
    get_hook_registry,
    set_hook_registry,
)
from .ports import IBackgroundWorker
from .primitives import (
    ConfigurationError,
    InfrastructureError,
    PersistenceError,
    ShardStreamError,
    TransientError,
)

__all__ = [
    "ConfigurationError",
    "HookRegistration",
    "HookRegistry",
    "IBackgroundWorker",
    "InfrastructureError",
    "InstrumentationHook",
    "PersistenceError",
    "ShardStreamError",
    "TransientError",
    "get_hook_registry",
    "set_hook_registry",
]
