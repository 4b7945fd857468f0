"""Shard assignment policies.

An assigner is a pure function of (split, current assignment, candidate
workers) to a worker id. It must not perform I/O or keep state between calls.
"""

from __future__ import annotations

import hashlib
from collections.abc import Callable, Mapping, Sequence, Set
from typing import Any, Protocol, runtime_checkable

from .model import ShardSplit

AssignmentView = Mapping[int, Set[str]]


@runtime_checkable
class IShardAssigner(Protocol):
    """Chooses the worker that will own a newly eligible split."""

    def assign(
        self,
        split: ShardSplit,
        assignments: AssignmentView,
        workers: Sequence[int],
    ) -> int:
        """Return one of ``workers``.

        Args:
            split: The split about to be assigned.
            assignments: Worker id to the split ids it currently owns.
            workers: Every registered worker id, in ascending order.
        """
        ...


class UniformShardAssigner:
    """Picks the worker with the fewest active splits, lowest id on ties."""

    def assign(
        self,
        split: ShardSplit,
        assignments: AssignmentView,
        workers: Sequence[int],
    ) -> int:
        del split
        if not workers:
            raise ValueError("No workers to assign to")
        return min(workers, key=lambda w: (len(assignments.get(w, ())), w))

    def __repr__(self) -> str:
        return "UniformShardAssigner()"


class HashShardAssigner:
    """Maps a shard id onto the sorted workers by SHA-256 modulo worker count.

    Deterministic across processes, unlike the builtin ``hash``.
    """

    def assign(
        self,
        split: ShardSplit,
        assignments: AssignmentView,
        workers: Sequence[int],
    ) -> int:
        del assignments
        if not workers:
            raise ValueError("No workers to assign to")
        ordered = sorted(workers)
        digest = hashlib.sha256(split.shard_id.encode()).hexdigest()
        return ordered[int(digest, 16) % len(ordered)]

    def __repr__(self) -> str:
        return "HashShardAssigner()"


class FunctionShardAssigner:
    """Adapts a plain ``(split, assignments, workers) -> int`` callable."""

    def __init__(
        self, func: Callable[[ShardSplit, AssignmentView, Sequence[int]], int]
    ) -> None:
        self._func = func

    def assign(
        self,
        split: ShardSplit,
        assignments: AssignmentView,
        workers: Sequence[int],
    ) -> int:
        return self._func(split, assignments, workers)

    def __repr__(self) -> str:
        name = getattr(self._func, "__name__", repr(self._func))
        return f"FunctionShardAssigner({name})"


class ShardAssignerFactory:
    """Assigners shipped with the connector."""

    UNIFORM = "uniform"
    HASH = "hash"

    @staticmethod
    def uniform() -> IShardAssigner:
        return UniformShardAssigner()

    @staticmethod
    def hash() -> IShardAssigner:
        return HashShardAssigner()


_BUILTIN: dict[str, Callable[[], IShardAssigner]] = {
    ShardAssignerFactory.UNIFORM: ShardAssignerFactory.uniform,
    ShardAssignerFactory.HASH: ShardAssignerFactory.hash,
}


def resolve_shard_assigner(value: Any) -> IShardAssigner:
    """Turn a configured assigner (name, instance or callable) into an assigner."""
    if isinstance(value, str):
        factory = _BUILTIN.get(value.strip().lower())
        if factory is None:
            raise ValueError(
                f"Unknown shard assigner {value!r}; expected one of {sorted(_BUILTIN)}"
            )
        return factory()
    if isinstance(value, IShardAssigner):
        return value
    if callable(value):
        return FunctionShardAssigner(value)
    raise TypeError(f"Cannot use {type(value).__name__} as a shard assigner")
