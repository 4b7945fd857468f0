"""PollingKinesisShardSplitReader — fetches record batches for a worker's splits."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from shardstream_core.instrumentation import get_hook_registry

from .config import DEFAULT_POLL_INTERVAL, MAX_RECORDS_PER_FETCH
from .exceptions import ExpiredIteratorError, StaleSplitPositionError
from .model import RawRecord, ShardSplit, StartingPosition
from .retry import RetryPolicy

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from .proxy import GetRecordsResult, IStreamProxy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordBatch:
    """Records fetched from one split in shard order.

    ``finished`` is set on the batch that reached the end of a closed shard.
    """

    split_id: str
    records: list[RawRecord] = field(default_factory=list)
    finished: bool = False
    millis_behind_latest: int | None = None


@dataclass
class _FetchCursor:
    split: ShardSplit
    # Position just after the last *fetched* record; used only to re-obtain
    # an iterator. The checkpointed position is tracked by the emitter.
    position: StartingPosition
    iterator: str | None = None
    next_poll_at: float = 0.0


class PollingKinesisShardSplitReader:
    """Round-robin poller over the splits owned by one worker.

    Each split is polled at most once per ``poll_interval``. The iterator is
    obtained once from the split position and then chained from each
    response. Throttling and transient faults are retried in place with
    ``retry_policy`` backoff without moving the position.
    """

    def __init__(
        self,
        proxy: IStreamProxy,
        *,
        max_records: int = MAX_RECORDS_PER_FETCH,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._proxy = proxy
        self._max_records = max_records
        self._poll_interval = poll_interval
        self._retry_policy = retry_policy or RetryPolicy()
        self._clock = clock
        self._cursors: dict[str, _FetchCursor] = {}
        self._order: deque[str] = deque()
        self._wakeup = asyncio.Event()

    @property
    def split_ids(self) -> list[str]:
        return list(self._order)

    def add_splits(self, splits: Iterable[ShardSplit]) -> None:
        for split in splits:
            if split.split_id in self._cursors:
                logger.warning("Split %s is already being polled", split.split_id)
                continue
            self._cursors[split.split_id] = _FetchCursor(
                split=split, position=split.starting_position
            )
            self._order.append(split.split_id)
            logger.debug(
                "Polling split %s from %s", split.split_id, split.starting_position
            )
        self._wakeup.set()

    def remove_split(self, split_id: str) -> None:
        if self._cursors.pop(split_id, None) is not None:
            self._order.remove(split_id)

    async def close(self) -> None:
        await self._proxy.close()

    async def fetch(self) -> RecordBatch | None:
        """Poll the next due split; return ``None`` if no split is due yet."""
        self._wakeup.clear()
        now = self._clock()
        for _ in range(len(self._order)):
            split_id = self._order[0]
            self._order.rotate(-1)
            cursor = self._cursors[split_id]
            if cursor.next_poll_at <= now:
                return await self._poll(cursor)
        return None

    async def wait_for_work(self, max_wait: float | None = None) -> None:
        """Park until a split is due, a split is added, or ``max_wait`` passes."""
        if self._cursors:
            earliest = min(c.next_poll_at for c in self._cursors.values())
            delay: float | None = max(0.0, earliest - self._clock())
            if max_wait is not None and delay is not None:
                delay = min(delay, max_wait)
        else:
            delay = max_wait
        if delay == 0:
            # Yield so a zero poll interval cannot starve the event loop.
            await asyncio.sleep(0)
            return
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._wakeup.wait(), timeout=delay)

    async def _poll(self, cursor: _FetchCursor) -> RecordBatch:
        split = cursor.split
        registry = get_hook_registry()
        result: GetRecordsResult = await registry.execute_all(
            f"kinesis.fetch.{split.shard_id}",
            {
                "kinesis.stream_arn": split.stream_arn,
                "kinesis.shard_id": split.shard_id,
                "kinesis.max_records": self._max_records,
            },
            lambda: self._get_records_with_retry(cursor),
        )
        cursor.next_poll_at = self._clock() + self._poll_interval
        if result.records:
            cursor.position = StartingPosition.after_sequence_number(
                result.records[-1].sequence_number
            )
        cursor.iterator = result.next_shard_iterator
        if result.is_shard_end:
            logger.info("Reached end of shard %s", split.shard_id)
            self.remove_split(split.split_id)
        return RecordBatch(
            split_id=split.split_id,
            records=list(result.records),
            finished=result.is_shard_end,
            millis_behind_latest=result.millis_behind_latest,
        )

    async def _get_records_with_retry(self, cursor: _FetchCursor) -> GetRecordsResult:
        return await self._retry_policy.run(
            lambda: self._get_records(cursor), label=f"shard {cursor.split.shard_id}"
        )

    async def _get_records(self, cursor: _FetchCursor) -> GetRecordsResult:
        split = cursor.split
        refreshed = False
        while True:
            if cursor.iterator is None:
                cursor.iterator = await self._proxy.get_shard_iterator(
                    split.stream_arn, split.shard_id, cursor.position
                )
            try:
                return await self._proxy.get_records(
                    split.stream_arn, cursor.iterator, self._max_records
                )
            except ExpiredIteratorError as e:
                if refreshed:
                    raise StaleSplitPositionError(split.shard_id, str(e)) from e
                refreshed = True
                cursor.iterator = None
                logger.info(
                    "Iterator for %s expired; re-requesting from %s",
                    split.shard_id,
                    cursor.position,
                )
