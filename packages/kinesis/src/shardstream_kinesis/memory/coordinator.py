"""In-process runtime wiring one enumerator to a fixed set of readers."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from .output import CollectingOutput

if TYPE_CHECKING:
    from collections.abc import Sequence

    from ..emitter import ISourceOutput
    from ..enumerator import KinesisStreamsSourceEnumerator
    from ..model import EnumeratorState, ReaderCheckpoint, ShardSplit
    from ..source import KinesisStreamsSource
    from ..source_reader import KinesisStreamsSourceReader

logger = logging.getLogger("shardstream.kinesis.coordinator")

T = TypeVar("T")


@dataclass(frozen=True)
class SourceCheckpoint:
    """Encoded enumerator state plus one encoded checkpoint per reader."""

    checkpoint_id: int
    enumerator: bytes
    readers: dict[int, bytes] = field(default_factory=dict)


class InMemorySourceCoordinator(Generic[T]):
    """Runs a source inside one event loop.

    Acts as both the enumerator context and every reader's context: it
    delivers assignments straight into readers, forwards finished splits to
    the enumerator and records fatal errors in ``errors``.
    """

    def __init__(
        self,
        source: KinesisStreamsSource[T],
        parallelism: int = 1,
        *,
        output: ISourceOutput[T] | None = None,
    ) -> None:
        if parallelism < 1:
            raise ValueError("parallelism must be >= 1")
        self.source = source
        self.parallelism = parallelism
        self.output: ISourceOutput[T] = output or CollectingOutput()
        self.errors: list[BaseException] = []
        self._failed = asyncio.Event()
        self._enumerator: KinesisStreamsSourceEnumerator | None = None
        self._readers: dict[int, KinesisStreamsSourceReader[T]] = {}
        self._last_checkpoint: SourceCheckpoint | None = None
        self._checkpoint_ids = 0

    @property
    def enumerator(self) -> KinesisStreamsSourceEnumerator:
        if self._enumerator is None:
            raise RuntimeError("Coordinator is not started")
        return self._enumerator

    @property
    def readers(self) -> dict[int, KinesisStreamsSourceReader[T]]:
        return dict(self._readers)

    @property
    def last_checkpoint(self) -> SourceCheckpoint | None:
        return self._last_checkpoint

    # ── lifecycle ────────────────────────────────────────────────────

    async def start(self, checkpoint: SourceCheckpoint | None = None) -> None:
        """Start fresh, or resume everything from ``checkpoint``."""
        reader_checkpoints: dict[int, ReaderCheckpoint] = {}
        if checkpoint is None:
            self._enumerator = self.source.create_enumerator(self)
        else:
            state = self.source.enumerator_state_serializer().deserialize(
                checkpoint.enumerator
            )
            reader_serializer = self.source.reader_checkpoint_serializer()
            reader_checkpoints = {
                worker_id: reader_serializer.deserialize(data)
                for worker_id, data in checkpoint.readers.items()
            }
            self._enumerator = self.source.restore_enumerator(self, state)
            self._last_checkpoint = checkpoint
            self._checkpoint_ids = checkpoint.checkpoint_id

        for worker_id in range(self.parallelism):
            self._readers[worker_id] = self.source.create_reader(
                worker_id,
                self,
                self.output,
                checkpoint=reader_checkpoints.get(worker_id),
            )

        await self._enumerator.start()
        for worker_id, cp in reader_checkpoints.items():
            if worker_id not in self._readers:
                logger.info("Worker %d is gone; returning its splits", worker_id)
                await self._enumerator.on_worker_failed(worker_id, cp.splits)
        for worker_id, reader in self._readers.items():
            await reader.start()
            await self._enumerator.on_worker_registered(worker_id)
        logger.info("Coordinator started with %d worker(s)", self.parallelism)

    async def stop(self) -> None:
        for reader in self._readers.values():
            await reader.stop()
        if self._enumerator is not None:
            await self._enumerator.stop()
        logger.info("Coordinator stopped")

    # ── enumerator and reader contexts ───────────────────────────────

    async def assign_split(self, worker_id: int, split: ShardSplit) -> None:
        reader = self._readers.get(worker_id)
        if reader is None:
            raise RuntimeError(f"No reader for worker {worker_id}")
        reader.add_splits([split])

    async def send_split_finished(
        self, worker_id: int, split_ids: Sequence[str]
    ) -> None:
        await self.enumerator.on_split_finished(worker_id, split_ids)

    async def fail(self, error: BaseException) -> None:
        logger.error("Source failed: %s", error)
        self.errors.append(error)
        self._failed.set()

    async def wait_for_failure(self, timeout: float = 5.0) -> BaseException:
        await asyncio.wait_for(self._failed.wait(), timeout=timeout)
        return self.errors[0]

    # ── checkpoints ──────────────────────────────────────────────────

    async def checkpoint(self) -> SourceCheckpoint:
        """Take a consistent checkpoint of the enumerator and every reader.

        All readers are paused first; the reader checkpoints are then taken
        inside the enumerator's snapshot command.
        """
        enumerator = self.enumerator
        async with contextlib.AsyncExitStack() as stack:
            for reader in self._readers.values():
                await stack.enter_async_context(reader.paused())

            def capture(
                state: EnumeratorState,
            ) -> tuple[EnumeratorState, dict[int, ReaderCheckpoint]]:
                return state, {
                    worker_id: reader.current_checkpoint()
                    for worker_id, reader in self._readers.items()
                }

            state, reader_checkpoints = await enumerator.snapshot_with(capture)

        reader_serializer = self.source.reader_checkpoint_serializer()
        self._checkpoint_ids += 1
        checkpoint = SourceCheckpoint(
            checkpoint_id=self._checkpoint_ids,
            enumerator=self.source.enumerator_state_serializer().serialize(state),
            readers={
                worker_id: reader_serializer.serialize(cp)
                for worker_id, cp in reader_checkpoints.items()
            },
        )
        self._last_checkpoint = checkpoint
        logger.info(
            "Checkpoint %d taken (%d reader(s))",
            checkpoint.checkpoint_id,
            len(checkpoint.readers),
        )
        return checkpoint

    # ── failures ─────────────────────────────────────────────────────

    async def fail_worker(self, worker_id: int, *, restart: bool = True) -> None:
        """Kill one reader and hand its splits back from the last checkpoint."""
        reader = self._readers.pop(worker_id)
        await reader.stop()
        returned: tuple[ShardSplit, ...] = ()
        if self._last_checkpoint is not None:
            data = self._last_checkpoint.readers.get(worker_id)
            if data is not None:
                returned = (
                    self.source.reader_checkpoint_serializer().deserialize(data).splits
                )
        await self.enumerator.on_worker_failed(worker_id, returned)
        if restart:
            replacement = self.source.create_reader(worker_id, self, self.output)
            self._readers[worker_id] = replacement
            await replacement.start()
            await self.enumerator.on_worker_registered(worker_id)
