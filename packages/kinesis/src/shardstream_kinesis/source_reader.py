"""KinesisStreamsSourceReader — per-worker fetch/emit loop."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Generic, TypeVar

from shardstream_core.instrumentation import get_hook_registry
from shardstream_core.ports.background_worker import IBackgroundWorker

from .model import ReaderCheckpoint, ShardSplit, ShardSplitState

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable

    from .emitter import ISourceOutput, KinesisStreamsRecordEmitter
    from .ports import ISourceReaderContext
    from .split_reader import PollingKinesisShardSplitReader, RecordBatch

logger = logging.getLogger(__name__)

T = TypeVar("T")


class KinesisStreamsSourceReader(IBackgroundWorker, Generic[T]):
    """Runs one worker: fetch a batch, emit it, report finished shards.

    Emission and split-finished notifications happen under the emit lock;
    ``snapshot_state`` takes the same lock, so a checkpoint always sees
    positions that match exactly the records handed downstream.
    """

    def __init__(
        self,
        worker_id: int,
        context: ISourceReaderContext,
        split_reader: PollingKinesisShardSplitReader,
        emitter: KinesisStreamsRecordEmitter[T],
        output: ISourceOutput[T],
        *,
        checkpoint: ReaderCheckpoint | None = None,
        idle_wait: float = 1.0,
    ) -> None:
        self.worker_id = worker_id
        self._context = context
        self._split_reader = split_reader
        self._emitter = emitter
        self._output = output
        self._idle_wait = idle_wait
        self._states: dict[str, ShardSplitState] = {}
        self._emit_lock = asyncio.Lock()
        self._running = False
        self._task: asyncio.Task[None] | None = None
        if checkpoint is not None:
            if checkpoint.worker_id != worker_id:
                raise ValueError(
                    f"Checkpoint of worker {checkpoint.worker_id} "
                    f"cannot restore worker {worker_id}"
                )
            self.add_splits(checkpoint.splits)
            logger.info(
                "Worker %d restored %d split(s)", worker_id, len(checkpoint.splits)
            )

    @property
    def split_ids(self) -> list[str]:
        return list(self._states)

    @property
    def is_running(self) -> bool:
        return self._running

    def add_splits(self, splits: Iterable[ShardSplit]) -> None:
        added = []
        for split in splits:
            if split.split_id in self._states:
                logger.warning(
                    "Worker %d already owns split %s", self.worker_id, split.split_id
                )
                continue
            self._states[split.split_id] = ShardSplitState(split)
            added.append(split)
        self._split_reader.add_splits(added)

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(
            "Worker %d started with %d split(s)", self.worker_id, len(self._states)
        )

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        await self._split_reader.close()
        logger.info("Worker %d stopped", self.worker_id)

    async def run_once(self) -> RecordBatch | None:
        """Fetch one due batch and emit it; ``None`` if nothing was due."""
        batch = await self._split_reader.fetch()
        if batch is None:
            return None
        async with self._emit_lock:
            await self._emit_batch(batch)
            if batch.finished:
                self._states.pop(batch.split_id, None)
                logger.info(
                    "Worker %d finished split %s", self.worker_id, batch.split_id
                )
                await self._context.send_split_finished(
                    self.worker_id, [batch.split_id]
                )
        return batch

    async def _emit_batch(self, batch: RecordBatch) -> None:
        state = self._states[batch.split_id]
        if not batch.records:
            return
        registry = get_hook_registry()

        async def emit_all() -> None:
            for record in batch.records:
                await self._emitter.emit_record(record, self._output, state)

        await registry.execute_all(
            f"kinesis.emit.{batch.split_id}",
            {
                "kinesis.stream_arn": state.split.stream_arn,
                "kinesis.shard_id": batch.split_id,
                "kinesis.record_count": len(batch.records),
                "kinesis.millis_behind_latest": batch.millis_behind_latest,
            },
            emit_all,
        )

    async def _run(self) -> None:
        while self._running:
            try:
                batch = await self.run_once()
                if batch is None or not batch.records:
                    await self._split_reader.wait_for_work(self._idle_wait)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("Worker %d failed", self.worker_id)
                self._running = False
                await self._context.fail(e)
                return

    @contextlib.asynccontextmanager
    async def paused(self) -> AsyncIterator[None]:
        """Hold the emit lock so no record is emitted while the block runs."""
        async with self._emit_lock:
            yield

    def current_checkpoint(self) -> ReaderCheckpoint:
        """Checkpoint of the current positions; call only inside ``paused()``."""
        return ReaderCheckpoint(
            worker_id=self.worker_id,
            splits=tuple(state.to_split() for state in self._states.values()),
        )

    async def snapshot_state(self) -> ReaderCheckpoint:
        registry = get_hook_registry()

        async def snapshot() -> ReaderCheckpoint:
            async with self._emit_lock:
                return self.current_checkpoint()

        checkpoint: ReaderCheckpoint = await registry.execute_all(
            "kinesis.snapshot.reader",
            {"kinesis.worker_id": self.worker_id},
            snapshot,
        )
        return checkpoint
