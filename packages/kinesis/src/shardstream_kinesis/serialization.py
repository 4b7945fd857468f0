"""Versioned binary codecs for splits, enumerator state and reader checkpoints.

Every payload starts with a version byte. Integers are unsigned LEB128
varints, strings are a varint byte length followed by UTF-8, and positions
are a kind byte followed by a value for the kinds that carry one. Decoders
are registered per version so bytes written by older releases stay
readable.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Generic, TypeVar

from pydantic import ValidationError

from .exceptions import CheckpointDecodeError
from .model import (
    EnumeratorState,
    HashKeyRange,
    KnownShard,
    PositionKind,
    ReaderCheckpoint,
    Shard,
    ShardSplit,
    ShardStatus,
    SplitAssignment,
    StartingPosition,
)

if TYPE_CHECKING:
    from collections.abc import Callable

T = TypeVar("T")

CURRENT_VERSION = 1


class _Writer:
    def __init__(self) -> None:
        self._buf = bytearray()

    def byte(self, value: int) -> None:
        self._buf.append(value)

    def varint(self, value: int) -> None:
        if value < 0:
            raise ValueError(f"cannot encode negative integer {value}")
        while True:
            low = value & 0x7F
            value >>= 7
            if value:
                self._buf.append(low | 0x80)
            else:
                self._buf.append(low)
                return

    def string(self, value: str) -> None:
        data = value.encode("utf-8")
        self.varint(len(data))
        self._buf.extend(data)

    def getvalue(self) -> bytes:
        return bytes(self._buf)


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._offset = 0

    def byte(self) -> int:
        if self._offset >= len(self._data):
            raise CheckpointDecodeError("Truncated checkpoint data")
        value = self._data[self._offset]
        self._offset += 1
        return value

    def varint(self) -> int:
        result = 0
        shift = 0
        while True:
            b = self.byte()
            result |= (b & 0x7F) << shift
            if not b & 0x80:
                return result
            shift += 7

    def string(self) -> str:
        length = self.varint()
        end = self._offset + length
        if end > len(self._data):
            raise CheckpointDecodeError("Truncated checkpoint data")
        raw = self._data[self._offset : end]
        self._offset = end
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CheckpointDecodeError(f"Invalid UTF-8 in checkpoint: {e}") from e

    def finish(self) -> None:
        if self._offset != len(self._data):
            raise CheckpointDecodeError(
                f"{len(self._data) - self._offset} trailing byte(s) after checkpoint"
            )


# ── shared entries ───────────────────────────────────────────────────


def _write_position(w: _Writer, position: StartingPosition) -> None:
    w.byte(position.kind.value)
    if position.kind is PositionKind.SEQUENCE_NUMBER:
        if not isinstance(position.value, str):
            raise TypeError(f"Sequence number must be a str, got {position.value!r}")
        w.string(position.value)
    elif position.kind is PositionKind.TIMESTAMP:
        if not isinstance(position.value, datetime):
            raise TypeError(f"Timestamp must be a datetime, got {position.value!r}")
        w.string(position.value.isoformat())


def _read_position(r: _Reader) -> StartingPosition:
    tag = r.byte()
    try:
        kind = PositionKind(tag)
    except ValueError:
        raise CheckpointDecodeError(f"Unknown position kind {tag}") from None
    if kind is PositionKind.SEQUENCE_NUMBER:
        return StartingPosition.after_sequence_number(r.string())
    if kind is PositionKind.TIMESTAMP:
        raw = r.string()
        try:
            return StartingPosition.at_timestamp(datetime.fromisoformat(raw))
        except ValueError as e:
            raise CheckpointDecodeError(f"Invalid timestamp {raw!r}") from e
    return StartingPosition(kind=kind)


def _write_ids(w: _Writer, ids: tuple[str, ...]) -> None:
    w.varint(len(ids))
    for item in ids:
        w.string(item)


def _read_ids(r: _Reader) -> tuple[str, ...]:
    return tuple(r.string() for _ in range(r.varint()))


def _write_split(w: _Writer, split: ShardSplit) -> None:
    w.string(split.split_id)
    w.string(split.stream_arn)
    _write_position(w, split.starting_position)
    _write_ids(w, split.parent_shard_ids)


def _read_split(r: _Reader) -> ShardSplit:
    return ShardSplit(
        shard_id=r.string(),
        stream_arn=r.string(),
        starting_position=_read_position(r),
        parent_shard_ids=_read_ids(r),
    )


def _write_shard(w: _Writer, known: KnownShard) -> None:
    shard = known.shard
    w.string(shard.shard_id)
    _write_ids(w, shard.parent_shard_ids)
    if shard.hash_key_range is None:
        w.byte(0)
    else:
        w.byte(1)
        w.varint(shard.hash_key_range.start)
        w.varint(shard.hash_key_range.end)
    w.byte(1 if shard.is_closed else 0)
    w.byte(1 if known.finished else 0)


def _read_shard(r: _Reader) -> KnownShard:
    shard_id = r.string()
    parents = _read_ids(r)
    hash_key_range = (
        HashKeyRange(start=r.varint(), end=r.varint()) if r.byte() else None
    )
    status = ShardStatus.CLOSED if r.byte() else ShardStatus.OPEN
    finished = bool(r.byte())
    return KnownShard(
        shard=Shard(
            shard_id=shard_id,
            parent_shard_ids=parents,
            hash_key_range=hash_key_range,
            status=status,
        ),
        finished=finished,
    )


# ── versioned serializers ────────────────────────────────────────────


class _VersionedSerializer(Generic[T]):
    """Writes the current version; reads any version with a registered decoder."""

    kind = "payload"
    version = CURRENT_VERSION
    decoders: dict[int, Callable[[_Reader], T]] = {}

    def _encode(self, w: _Writer, obj: T) -> None:
        raise NotImplementedError

    def serialize(self, obj: T) -> bytes:
        w = _Writer()
        w.byte(self.version)
        self._encode(w, obj)
        return w.getvalue()

    def deserialize(self, data: bytes) -> T:
        if not data:
            raise CheckpointDecodeError(f"Empty {self.kind}")
        r = _Reader(bytes(data))
        version = r.byte()
        decoder = self.decoders.get(version)
        if decoder is None:
            raise CheckpointDecodeError(
                f"Unsupported {self.kind} version {version}; "
                f"known versions: {sorted(self.decoders)}"
            )
        try:
            obj = decoder(r)
        except ValidationError as e:
            raise CheckpointDecodeError(f"Invalid {self.kind}: {e}") from e
        r.finish()
        return obj


def _decode_split_v1(r: _Reader) -> ShardSplit:
    return _read_split(r)


def _decode_enumerator_state_v1(r: _Reader) -> EnumeratorState:
    shards = tuple(_read_shard(r) for _ in range(r.varint()))
    pending = tuple(_read_split(r) for _ in range(r.varint()))
    assignments = []
    for _ in range(r.varint()):
        worker_id = r.varint()
        assignments.append(SplitAssignment(split=_read_split(r), worker_id=worker_id))
    return EnumeratorState(
        shards=shards, pending=pending, assignments=tuple(assignments)
    )


def _decode_reader_checkpoint_v1(r: _Reader) -> ReaderCheckpoint:
    worker_id = r.varint()
    splits = tuple(_read_split(r) for _ in range(r.varint()))
    return ReaderCheckpoint(worker_id=worker_id, splits=splits)


class ShardSplitSerializer(_VersionedSerializer[ShardSplit]):
    kind = "split"
    decoders = {1: _decode_split_v1}

    def _encode(self, w: _Writer, obj: ShardSplit) -> None:
        _write_split(w, obj)


class EnumeratorStateSerializer(_VersionedSerializer[EnumeratorState]):
    kind = "enumerator state"
    decoders = {1: _decode_enumerator_state_v1}

    def _encode(self, w: _Writer, obj: EnumeratorState) -> None:
        w.varint(len(obj.shards))
        for known in obj.shards:
            _write_shard(w, known)
        w.varint(len(obj.pending))
        for split in obj.pending:
            _write_split(w, split)
        w.varint(len(obj.assignments))
        for assignment in obj.assignments:
            w.varint(assignment.worker_id)
            _write_split(w, assignment.split)


class ReaderCheckpointSerializer(_VersionedSerializer[ReaderCheckpoint]):
    kind = "reader checkpoint"
    decoders = {1: _decode_reader_checkpoint_v1}

    def _encode(self, w: _Writer, obj: ReaderCheckpoint) -> None:
        w.varint(obj.worker_id)
        w.varint(len(obj.splits))
        for split in obj.splits:
            _write_split(w, split)
