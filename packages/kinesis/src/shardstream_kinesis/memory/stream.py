"""In-memory stream with resharding and fault injection, for tests."""

from __future__ import annotations

import itertools
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from ..exceptions import (
    ExpiredIteratorError,
    StaleSplitPositionError,
    StreamConfigurationError,
    TransientStreamError,
)
from ..model import HashKeyRange, PositionKind, RawRecord, Shard, ShardStatus
from ..proxy import GetRecordsResult, IStreamProxy, ListShardsResult

if TYPE_CHECKING:
    from collections.abc import Callable

    from ..model import StartingPosition

MAX_HASH_KEY = 2**128 - 1


@dataclass
class _StoredShard:
    shard: Shard
    records: list[RawRecord] = field(default_factory=list)


class InMemoryStreamProxy(IStreamProxy):
    """A single fake stream behind the ``IStreamProxy`` port.

    Sequence numbers are decimal strings that increase across the whole
    stream. Shards are listed in creation order, ``page_size`` per page.
    ``throttle`` and ``fail_next`` queue errors for the next calls of an
    operation; ``expire_iterators`` invalidates every iterator handed out
    so far.
    """

    def __init__(
        self,
        stream_arn: str,
        *,
        page_size: int = 100,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.stream_arn = stream_arn
        self.page_size = page_size
        self.calls: Counter[str] = Counter()
        self.close_count = 0
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._shards: dict[str, _StoredShard] = {}
        self._next_sequence = 1
        self._shard_counter = itertools.count()
        self._iterators: dict[str, tuple[str, int]] = {}
        self._iterator_counter = itertools.count()
        self._injected: dict[str, list[Exception]] = {}

    # ── stream management ────────────────────────────────────────────

    def create_shard(
        self,
        shard_id: str | None = None,
        *,
        parent_shard_ids: tuple[str, ...] = (),
        hash_key_range: HashKeyRange | None = None,
    ) -> str:
        shard_id = shard_id or f"shardId-{next(self._shard_counter):012d}"
        if shard_id in self._shards:
            raise ValueError(f"shard {shard_id} already exists")
        self._shards[shard_id] = _StoredShard(
            Shard(
                shard_id=shard_id,
                parent_shard_ids=parent_shard_ids,
                hash_key_range=hash_key_range
                or HashKeyRange(start=0, end=MAX_HASH_KEY),
            )
        )
        return shard_id

    def put_record(
        self,
        shard_id: str,
        data: bytes,
        *,
        partition_key: str = "",
        sequence_number: int | None = None,
        arrival: datetime | None = None,
    ) -> str:
        stored = self._stored(shard_id)
        if stored.shard.is_closed:
            raise ValueError(f"shard {shard_id} is closed")
        if sequence_number is None:
            sequence_number = self._next_sequence
        elif sequence_number < self._next_sequence:
            raise ValueError(f"sequence number {sequence_number} is not increasing")
        self._next_sequence = sequence_number + 1
        record = RawRecord(
            sequence_number=str(sequence_number),
            data=data,
            partition_key=partition_key,
            approximate_arrival_timestamp=arrival or self._clock(),
        )
        stored.records.append(record)
        return record.sequence_number

    def close_shard(self, shard_id: str) -> None:
        stored = self._stored(shard_id)
        stored.shard = stored.shard.model_copy(update={"status": ShardStatus.CLOSED})

    def split_shard(
        self, shard_id: str, child_ids: tuple[str, str] | None = None
    ) -> tuple[str, str]:
        """Close ``shard_id`` and create two children splitting its hash range."""
        parent = self._stored(shard_id).shard
        self.close_shard(shard_id)
        key_range = parent.hash_key_range or HashKeyRange(start=0, end=MAX_HASH_KEY)
        middle = (key_range.start + key_range.end) // 2
        low, high = child_ids or (None, None)
        first = self.create_shard(
            low,
            parent_shard_ids=(shard_id,),
            hash_key_range=HashKeyRange(start=key_range.start, end=middle),
        )
        second = self.create_shard(
            high,
            parent_shard_ids=(shard_id,),
            hash_key_range=HashKeyRange(
                start=min(middle + 1, key_range.end), end=key_range.end
            ),
        )
        return first, second

    def merge_shards(
        self, shard_id: str, adjacent_shard_id: str, child_id: str | None = None
    ) -> str:
        """Close both shards and create one child covering both hash ranges."""
        ranges = [
            self._stored(s).shard.hash_key_range for s in (shard_id, adjacent_shard_id)
        ]
        self.close_shard(shard_id)
        self.close_shard(adjacent_shard_id)
        return self.create_shard(
            child_id,
            parent_shard_ids=(shard_id, adjacent_shard_id),
            hash_key_range=HashKeyRange(
                start=min(r.start for r in ranges if r is not None),
                end=max(r.end for r in ranges if r is not None),
            ),
        )

    def expire_shard(self, shard_id: str) -> None:
        """Drop a shard as if it had aged out of retention."""
        self._stored(shard_id)
        del self._shards[shard_id]

    def records(self, shard_id: str) -> list[RawRecord]:
        return list(self._stored(shard_id).records)

    # ── fault injection ──────────────────────────────────────────────

    def throttle(self, operation: str, times: int = 1) -> None:
        """Fail the next ``times`` calls of ``operation`` with a throttling error."""
        for _ in range(times):
            self.fail_next(
                operation,
                TransientStreamError(
                    "Rate exceeded", code="ProvisionedThroughputExceededException"
                ),
            )

    def fail_next(self, operation: str, error: Exception) -> None:
        self._injected.setdefault(operation, []).append(error)

    def expire_iterators(self) -> None:
        self._iterators.clear()

    # ── IStreamProxy ─────────────────────────────────────────────────

    async def list_shards(
        self, stream_arn: str, next_token: str | None = None
    ) -> ListShardsResult:
        self._enter("list_shards", stream_arn)
        offset = int(next_token) if next_token else 0
        listing = [s.shard for s in self._shards.values()]
        page = listing[offset : offset + self.page_size]
        end = offset + len(page)
        return ListShardsResult(
            shards=page, next_token=str(end) if end < len(listing) else None
        )

    async def get_shard_iterator(
        self, stream_arn: str, shard_id: str, position: StartingPosition
    ) -> str:
        self._enter("get_shard_iterator", stream_arn)
        stored = self._shards.get(shard_id)
        if stored is None:
            raise StaleSplitPositionError(shard_id, "shard not found")
        return self._issue(shard_id, self._resolve(stored, position))

    async def get_records(
        self, stream_arn: str, shard_iterator: str, max_records: int
    ) -> GetRecordsResult:
        self._enter("get_records", stream_arn)
        entry = self._iterators.pop(shard_iterator, None)
        if entry is None:
            raise ExpiredIteratorError(f"Iterator {shard_iterator} has expired")
        shard_id, index = entry
        stored = self._shards.get(shard_id)
        if stored is None:
            raise ExpiredIteratorError(f"Shard {shard_id} is no longer available")
        batch = stored.records[index : index + max_records]
        index += len(batch)
        remaining = len(stored.records) - index
        at_end = stored.shard.is_closed and remaining == 0
        return GetRecordsResult(
            records=batch,
            next_shard_iterator=None if at_end else self._issue(shard_id, index),
            millis_behind_latest=0 if remaining == 0 else 1000,
        )

    async def close(self) -> None:
        self.close_count += 1

    # ── internals ────────────────────────────────────────────────────

    def _stored(self, shard_id: str) -> _StoredShard:
        try:
            return self._shards[shard_id]
        except KeyError:
            raise KeyError(f"unknown shard {shard_id}") from None

    def _enter(self, operation: str, stream_arn: str) -> None:
        self.calls[operation] += 1
        queued = self._injected.get(operation)
        if queued:
            raise queued.pop(0)
        if stream_arn != self.stream_arn:
            raise StreamConfigurationError(f"Stream {stream_arn} not found")

    def _issue(self, shard_id: str, index: int) -> str:
        token = f"{shard_id}/{next(self._iterator_counter)}"
        self._iterators[token] = (shard_id, index)
        return token

    @staticmethod
    def _resolve(stored: _StoredShard, position: StartingPosition) -> int:
        records = stored.records
        if position.kind is PositionKind.TRIM_HORIZON:
            return 0
        if position.kind is PositionKind.LATEST:
            return len(records)
        if position.kind is PositionKind.SEQUENCE_NUMBER:
            try:
                after = int(str(position.value))
            except ValueError:
                raise StaleSplitPositionError(
                    stored.shard.shard_id, f"invalid sequence number {position.value!r}"
                ) from None
            return next(
                (i for i, r in enumerate(records) if int(r.sequence_number) > after),
                len(records),
            )
        if not isinstance(position.value, datetime):
            raise TypeError(f"Timestamp must be a datetime, got {position.value!r}")
        return next(
            (
                i
                for i, r in enumerate(records)
                if r.approximate_arrival_timestamp is not None
                and r.approximate_arrival_timestamp >= position.value
            ),
            len(records),
        )
