"""Output that keeps every emitted record in memory."""

from __future__ import annotations

import asyncio
from typing import Generic, TypeVar

from ..model import SourceRecord

T = TypeVar("T")


class CollectingOutput(Generic[T]):
    def __init__(self) -> None:
        self.records: list[SourceRecord[T]] = []
        self._changed = asyncio.Event()

    async def collect(self, record: SourceRecord[T]) -> None:
        self.records.append(record)
        self._changed.set()

    @property
    def values(self) -> list[T]:
        return [r.value for r in self.records]

    def for_shard(self, shard_id: str) -> list[SourceRecord[T]]:
        return [r for r in self.records if r.shard_id == shard_id]

    async def wait_for(self, count: int, timeout: float = 5.0) -> None:
        """Wait until at least ``count`` records have been collected."""

        async def reached() -> None:
            while len(self.records) < count:
                self._changed.clear()
                await self._changed.wait()

        await asyncio.wait_for(reached(), timeout=timeout)

    def clear(self) -> None:
        self.records.clear()
