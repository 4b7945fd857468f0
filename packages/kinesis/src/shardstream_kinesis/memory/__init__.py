"""In-memory adapters for testing and single-process use."""

from __future__ import annotations

from .coordinator import InMemorySourceCoordinator, SourceCheckpoint
from .output import CollectingOutput
from .stream import InMemoryStreamProxy

__all__ = [
    "CollectingOutput",
    "InMemorySourceCoordinator",
    "InMemoryStreamProxy",
    "SourceCheckpoint",
]
