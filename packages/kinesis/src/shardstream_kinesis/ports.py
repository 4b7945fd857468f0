"""Protocols the runtime implements to connect the enumerator and its readers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .model import ShardSplit


@runtime_checkable
class ISplitEnumeratorContext(Protocol):
    """Outbound messages from the enumerator."""

    async def assign_split(self, worker_id: int, split: ShardSplit) -> None:
        """Deliver an "add split" message to ``worker_id``."""
        ...

    async def fail(self, error: BaseException) -> None:
        """Report an error that makes continuing unsafe; the job should stop."""
        ...


@runtime_checkable
class ISourceReaderContext(Protocol):
    """Outbound messages from a reader."""

    async def send_split_finished(
        self, worker_id: int, split_ids: Sequence[str]
    ) -> None:
        """Tell the enumerator these splits were drained to their shard end."""
        ...

    async def fail(self, error: BaseException) -> None:
        """Report an error that makes continuing unsafe; the job should stop."""
        ...
