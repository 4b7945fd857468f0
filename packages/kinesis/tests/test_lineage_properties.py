"""Property-based checks of assignment order over arbitrary resharding histories."""

from __future__ import annotations

import asyncio

from hypothesis import given, settings
from hypothesis import strategies as st

from shardstream_kinesis.config import KinesisSourceConfig
from shardstream_kinesis.enumerator import KinesisStreamsSourceEnumerator
from shardstream_kinesis.memory import InMemoryStreamProxy
from shardstream_kinesis.model import ShardSplit

ARN = "arn:aws:kinesis:eu-west-1:123456789012:stream/orders"

reshard_ops = st.lists(
    st.tuples(
        st.sampled_from(["split", "merge"]), st.integers(min_value=0, max_value=50)
    ),
    max_size=12,
)


class LineageCheckingContext:
    """Fails the example if a child is assigned before all of its parents finished."""

    def __init__(self, known_ids: set[str]) -> None:
        self.known_ids = known_ids
        self.finished: set[str] = set()
        self.assigned: list[tuple[int, ShardSplit]] = []
        self.violations: list[str] = []

    async def assign_split(self, worker_id: int, split: ShardSplit) -> None:
        for parent in split.parent_shard_ids:
            if parent in self.known_ids and parent not in self.finished:
                self.violations.append(f"{split.shard_id} before {parent}")
        self.assigned.append((worker_id, split))

    async def fail(self, error: BaseException) -> None:
        raise AssertionError(f"unexpected failure: {error}")


def _build_stream(ops: list[tuple[str, int]]) -> InMemoryStreamProxy:
    stream = InMemoryStreamProxy(ARN)
    open_shards = [stream.create_shard(), stream.create_shard()]
    for op, index in ops:
        if op == "split" or len(open_shards) < 2:
            parent = open_shards.pop(index % len(open_shards))
            open_shards.extend(stream.split_shard(parent))
        else:
            i = index % (len(open_shards) - 1)
            left, right = open_shards[i], open_shards[i + 1]
            child = stream.merge_shards(left, right)
            open_shards[i : i + 2] = [child]
    return stream


async def _drain(
    ops: list[tuple[str, int]], workers: int, capacity: int | None
) -> None:
    stream = _build_stream(ops)
    listing = (await stream.list_shards(ARN)).shards
    known_ids = {s.shard_id for s in listing}
    context = LineageCheckingContext(known_ids)
    config = KinesisSourceConfig(
        stream_arn=ARN,
        initial_position="TRIM_HORIZON",
        max_splits_per_worker=capacity,
        shard_discovery_interval=3600,
    )
    enumerator = KinesisStreamsSourceEnumerator(context, config, stream)
    await enumerator.start()
    try:
        for worker_id in range(workers):
            await enumerator.on_worker_registered(worker_id)
        drained = 0
        # Finish splits in assignment order, as readers reaching shard end would.
        while drained < len(context.assigned):
            worker_id, split = context.assigned[drained]
            drained += 1
            context.finished.add(split.shard_id)
            await enumerator.on_split_finished(worker_id, [split.shard_id])

        assigned_ids = [split.shard_id for _, split in context.assigned]
        assert context.violations == []
        assert sorted(assigned_ids) == sorted(known_ids)
        assert len(assigned_ids) == len(set(assigned_ids))
        assert enumerator.finished_split_ids == known_ids
    finally:
        await enumerator.stop()


@settings(max_examples=60, deadline=None)
@given(
    ops=reshard_ops,
    workers=st.integers(min_value=1, max_value=4),
    capacity=st.one_of(st.none(), st.integers(min_value=1, max_value=3)),
)
def test_every_shard_assigned_once_and_never_before_parents(
    ops: list[tuple[str, int]], workers: int, capacity: int | None
) -> None:
    asyncio.run(_drain(ops, workers, capacity))
