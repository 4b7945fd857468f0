"""KinesisStreamsSourceEnumerator — shard discovery, lineage and assignment.

The enumerator is a single actor: every state change runs as a command taken
one at a time from a mailbox, so the shard graph needs no locking. Listing
shards is the only I/O and happens outside the mailbox, so a slow or failing
discovery never delays assignment or finished-split handling.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from shardstream_core.instrumentation import get_hook_registry
from shardstream_core.ports.background_worker import IBackgroundWorker
from shardstream_core.primitives.exceptions import (
    ConfigurationError,
    InfrastructureError,
)

from .exceptions import ShardAssignmentError, ShardTopologyError
from .model import (
    EnumeratorState,
    KnownShard,
    Shard,
    ShardSplit,
    SplitAssignment,
    StartingPosition,
)
from .proxy import list_all_shards

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Sequence

    from .config import KinesisSourceConfig
    from .ports import ISplitEnumeratorContext
    from .proxy import IStreamProxy

logger = logging.getLogger("shardstream.kinesis.enumerator")

R = TypeVar("R")

MAX_PARENTS = 2


@dataclass
class _Command:
    name: str
    action: Callable[[], Awaitable[Any]]
    future: asyncio.Future[Any]


class KinesisStreamsSourceEnumerator(IBackgroundWorker):
    """Discovers shards, tracks lineage and hands eligible splits to workers.

    A child shard becomes eligible only once every parent it names is
    finished. Parents that appear neither in state nor in the listing have
    aged out of retention and count as finished.
    """

    def __init__(
        self,
        context: ISplitEnumeratorContext,
        config: KinesisSourceConfig,
        proxy: IStreamProxy,
        *,
        state: EnumeratorState | None = None,
    ) -> None:
        self._context = context
        self._config = config
        self._proxy = proxy
        self._stream_arn = config.stream_arn
        self._assigner = config.assigner
        self._retry_policy = config.retry_policy()

        self._shards: dict[str, Shard] = {}
        self._finished: set[str] = set()
        self._pending: dict[str, ShardSplit] = {}
        self._assigned: dict[str, SplitAssignment] = {}
        self._workers: set[int] = set()
        self._initial_discovery_done = False
        if state is not None:
            self._restore(state)

        self._mailbox: asyncio.Queue[_Command] = asyncio.Queue()
        self._mailbox_task: asyncio.Task[None] | None = None
        self._discovery_task: asyncio.Task[None] | None = None
        self._discovery_failures = 0
        self._running = False

    # ── lifecycle ────────────────────────────────────────────────────

    async def start(self) -> None:
        """Run the first discovery, then keep discovering on a fixed interval.

        Configuration and topology errors from the first discovery are raised
        to the caller.
        """
        if self._running:
            return
        self._running = True
        self._mailbox_task = asyncio.create_task(self._run_mailbox())
        try:
            await self.discover()
        except BaseException:
            await self.stop()
            raise
        self._discovery_task = asyncio.create_task(self._run_discovery())
        logger.info(
            "Enumerator started for %s (discovery_interval=%.1fs, shards=%d)",
            self._stream_arn,
            self._config.shard_discovery_interval,
            len(self._shards),
        )

    async def stop(self) -> None:
        self._running = False
        for task in (self._discovery_task, self._mailbox_task):
            if task is not None:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._discovery_task = None
        self._mailbox_task = None
        while not self._mailbox.empty():
            self._mailbox.get_nowait().future.cancel()
        await self._proxy.close()
        logger.info("Enumerator stopped for %s", self._stream_arn)

    # ── public operations (serialized through the mailbox) ───────────

    async def discover(self) -> list[str]:
        """List the stream's shards and reconcile them; return newly seen ids."""
        shards = await self._list_shards()
        return await self._submit("discover", lambda: self._apply_discovery(shards))

    async def assign_pending(self) -> None:
        await self._submit("assign_pending", self._assign_pending)

    async def on_split_finished(self, worker_id: int, split_ids: Sequence[str]) -> None:
        await self._submit(
            "split_finished",
            lambda: self._handle_split_finished(worker_id, list(split_ids)),
        )

    async def on_worker_registered(self, worker_id: int) -> None:
        await self._submit(
            "worker_registered", lambda: self._handle_worker_registered(worker_id)
        )

    async def on_worker_failed(
        self, worker_id: int, returned_splits: Iterable[ShardSplit] = ()
    ) -> None:
        """Return a worker's unfinished splits to pending.

        ``returned_splits`` carries the positions from the worker's last
        checkpoint; splits not listed restart where they were assigned.
        """
        returned = {s.shard_id: s for s in returned_splits}
        await self._submit(
            "worker_failed", lambda: self._handle_worker_failed(worker_id, returned)
        )

    async def snapshot_state(self) -> EnumeratorState:
        return await self.snapshot_with(lambda state: state)

    async def snapshot_with(self, capture: Callable[[EnumeratorState], R]) -> R:
        """Snapshot and run ``capture`` on it before any other command runs.

        A runtime uses this to snapshot its (paused) readers at the same
        instant, so no assignment can land between the two snapshots.
        """

        async def snapshot() -> R:
            return capture(self._build_state())

        registry = get_hook_registry()
        return await registry.execute_all(
            "kinesis.snapshot.enumerator",
            {"kinesis.stream_arn": self._stream_arn},
            lambda: self._submit("snapshot", snapshot),
        )

    # ── read-only views ──────────────────────────────────────────────

    @property
    def registered_workers(self) -> frozenset[int]:
        return frozenset(self._workers)

    @property
    def pending_split_ids(self) -> list[str]:
        return list(self._pending)

    @property
    def assignments(self) -> dict[str, int]:
        return {sid: a.worker_id for sid, a in self._assigned.items()}

    @property
    def finished_split_ids(self) -> frozenset[str]:
        return frozenset(self._finished)

    # ── mailbox ──────────────────────────────────────────────────────

    async def _submit(self, name: str, action: Callable[[], Awaitable[Any]]) -> Any:
        if self._mailbox_task is None:
            raise RuntimeError("Enumerator is not running; call start() first")
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        await self._mailbox.put(_Command(name, action, future))
        return await future

    async def _run_mailbox(self) -> None:
        while True:
            command = await self._mailbox.get()
            if command.future.done():
                continue
            try:
                result = await command.action()
            except Exception as e:  # noqa: BLE001
                logger.debug("Enumerator command %s failed: %s", command.name, e)
                if not command.future.done():
                    command.future.set_exception(e)
            else:
                if not command.future.done():
                    command.future.set_result(result)

    # ── discovery ────────────────────────────────────────────────────

    async def _list_shards(self) -> list[Shard]:
        registry = get_hook_registry()
        stream_name = self._stream_arn.rsplit("/", 1)[-1]
        shards: list[Shard] = await registry.execute_all(
            f"kinesis.discover.{stream_name}",
            {"kinesis.stream_arn": self._stream_arn},
            lambda: self._retry_policy.run(
                lambda: list_all_shards(self._proxy, self._stream_arn),
                label=f"list shards of {stream_name}",
            ),
        )
        return shards

    async def _run_discovery(self) -> None:
        while self._running:
            delay = self._config.shard_discovery_interval
            if self._discovery_failures:
                delay += self._retry_policy.delay_for_attempt(self._discovery_failures)
            await asyncio.sleep(delay)
            try:
                await self.discover()
                self._discovery_failures = 0
            except ConfigurationError as e:
                logger.error("Shard discovery failed permanently: %s", e)
                await self._context.fail(e)
                return
            except InfrastructureError as e:
                self._discovery_failures += 1
                logger.warning(
                    "Shard discovery failed (%d in a row), retrying next tick: %s",
                    self._discovery_failures,
                    e,
                )
            except Exception as e:
                logger.exception("Unexpected error during shard discovery")
                await self._context.fail(e)
                return

    async def _apply_discovery(self, shards: list[Shard]) -> list[str]:
        listing = {s.shard_id: s for s in shards}
        self._validate_topology(listing)
        position = (
            StartingPosition.trim_horizon()
            if self._initial_discovery_done
            else self._config.initial_starting_position()
        )
        new_ids: list[str] = []
        for shard in self._parents_first(listing):
            known = self._shards.get(shard.shard_id)
            if known is None:
                self._shards[shard.shard_id] = shard
                self._pending[shard.shard_id] = ShardSplit(
                    shard_id=shard.shard_id,
                    stream_arn=self._stream_arn,
                    starting_position=position,
                    parent_shard_ids=shard.parent_shard_ids,
                )
                new_ids.append(shard.shard_id)
            elif shard.is_closed and not known.is_closed:
                self._shards[shard.shard_id] = shard
        self._initial_discovery_done = True
        if new_ids:
            logger.info(
                "Discovered %d new shard(s) on %s: %s",
                len(new_ids),
                self._stream_arn,
                ", ".join(new_ids),
            )
        await self._assign_pending()
        return new_ids

    def _validate_topology(self, listing: dict[str, Shard]) -> None:
        for shard in listing.values():
            parents = shard.parent_shard_ids
            if shard.shard_id in parents:
                raise ShardTopologyError(f"Shard {shard.shard_id} is its own parent")
            if len(parents) > MAX_PARENTS or len(set(parents)) != len(parents):
                raise ShardTopologyError(
                    f"Shard {shard.shard_id} has unsupported parents {parents}"
                )
            known = self._shards.get(shard.shard_id)
            if known is not None and known.parent_shard_ids != parents:
                raise ShardTopologyError(
                    f"Shard {shard.shard_id} changed parents from "
                    f"{known.parent_shard_ids} to {parents}"
                )
        graph = {sid: s.parent_shard_ids for sid, s in self._shards.items()}
        graph.update({sid: s.parent_shard_ids for sid, s in listing.items()})
        self._check_acyclic(graph)

    @staticmethod
    def _check_acyclic(graph: dict[str, tuple[str, ...]]) -> None:
        done: set[str] = set()
        for root in graph:
            if root in done:
                continue
            on_path: set[str] = set()
            stack: list[tuple[str, int]] = [(root, 0)]
            on_path.add(root)
            while stack:
                node, index = stack.pop()
                parents = [p for p in graph.get(node, ()) if p in graph]
                if index < len(parents):
                    stack.append((node, index + 1))
                    parent = parents[index]
                    if parent in on_path:
                        raise ShardTopologyError(
                            f"Shard lineage cycle through {parent}"
                        )
                    if parent not in done:
                        on_path.add(parent)
                        stack.append((parent, 0))
                else:
                    on_path.discard(node)
                    done.add(node)

    @staticmethod
    def _parents_first(listing: dict[str, Shard]) -> list[Shard]:
        ordered: list[Shard] = []
        placed: set[str] = set()

        def place(shard: Shard) -> None:
            if shard.shard_id in placed:
                return
            placed.add(shard.shard_id)
            for parent_id in shard.parent_shard_ids:
                parent = listing.get(parent_id)
                if parent is not None:
                    place(parent)
            ordered.append(shard)

        for shard in listing.values():
            place(shard)
        return ordered

    # ── assignment ───────────────────────────────────────────────────

    def _parents_finished(self, split: ShardSplit) -> bool:
        return all(
            parent in self._finished or parent not in self._shards
            for parent in split.parent_shard_ids
        )

    def _assignment_view(self) -> dict[int, set[str]]:
        view: dict[int, set[str]] = {w: set() for w in self._workers}
        for shard_id, assignment in self._assigned.items():
            view.setdefault(assignment.worker_id, set()).add(shard_id)
        return view

    async def _assign_pending(self) -> None:
        if not self._workers or not self._pending:
            return
        capacity = self._config.max_splits_per_worker
        view = self._assignment_view()
        for shard_id, split in list(self._pending.items()):
            if not self._parents_finished(split):
                continue
            workers = sorted(self._workers)
            if capacity is not None and all(len(view[w]) >= capacity for w in workers):
                break
            snapshot = {w: frozenset(ids) for w, ids in view.items()}
            worker_id = self._assigner.assign(split, snapshot, workers)
            if worker_id not in self._workers:
                raise ShardAssignmentError(
                    f"{self._assigner!r} chose worker {worker_id} for {shard_id}; "
                    f"known workers are {workers}"
                )
            if capacity is not None and len(view[worker_id]) >= capacity:
                logger.debug(
                    "Worker %d is full, %s stays pending", worker_id, shard_id
                )
                continue
            del self._pending[shard_id]
            self._assigned[shard_id] = SplitAssignment(split=split, worker_id=worker_id)
            view[worker_id].add(shard_id)
            logger.info(
                "Assigning %s to worker %d from %s",
                shard_id,
                worker_id,
                split.starting_position,
            )
            await self._context.assign_split(worker_id, split)

    async def _handle_split_finished(
        self, worker_id: int, split_ids: list[str]
    ) -> None:
        for split_id in split_ids:
            assignment = self._assigned.get(split_id)
            if assignment is None:
                if split_id not in self._finished:
                    logger.warning(
                        "Worker %d finished %s, which is not assigned",
                        worker_id,
                        split_id,
                    )
                continue
            if assignment.worker_id != worker_id:
                logger.warning(
                    "Worker %d finished %s, which is assigned to worker %d",
                    worker_id,
                    split_id,
                    assignment.worker_id,
                )
            del self._assigned[split_id]
            self._finished.add(split_id)
            logger.info("Shard %s finished", split_id)
        await self._assign_pending()

    async def _handle_worker_registered(self, worker_id: int) -> None:
        if worker_id < 0:
            raise ValueError("worker_id must be >= 0")
        self._workers.add(worker_id)
        logger.info("Worker %d registered", worker_id)
        await self._assign_pending()

    async def _handle_worker_failed(
        self, worker_id: int, returned: dict[str, ShardSplit]
    ) -> None:
        self._workers.discard(worker_id)
        requeued: dict[str, ShardSplit] = {}
        for shard_id, assignment in list(self._assigned.items()):
            if assignment.worker_id != worker_id:
                continue
            del self._assigned[shard_id]
            requeued[shard_id] = returned.get(shard_id, assignment.split)
        if requeued:
            logger.warning(
                "Worker %d failed; returning %d split(s) to pending: %s",
                worker_id,
                len(requeued),
                ", ".join(requeued),
            )
        self._pending = {**requeued, **self._pending}
        await self._assign_pending()

    # ── state ────────────────────────────────────────────────────────

    def _build_state(self) -> EnumeratorState:
        return EnumeratorState(
            shards=tuple(
                KnownShard(shard=shard, finished=shard_id in self._finished)
                for shard_id, shard in self._shards.items()
            ),
            pending=tuple(self._pending.values()),
            assignments=tuple(self._assigned.values()),
        )

    def _restore(self, state: EnumeratorState) -> None:
        for known in state.shards:
            self._shards[known.shard.shard_id] = known.shard
            if known.finished:
                self._finished.add(known.shard.shard_id)
        self._pending = {split.shard_id: split for split in state.pending}
        self._assigned = {a.split.shard_id: a for a in state.assignments}
        self._initial_discovery_done = True
        logger.info(
            "Enumerator restored: %d shards, %d pending, %d assigned, %d finished",
            len(self._shards),
            len(self._pending),
            len(self._assigned),
            len(self._finished),
        )
