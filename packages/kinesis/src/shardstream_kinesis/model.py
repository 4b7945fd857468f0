"""Shards, positions, splits and the checkpointed state built from them."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

T = TypeVar("T")


class ShardStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class PositionKind(IntEnum):
    """Kind of a split position; the value is its checkpoint tag byte."""

    TRIM_HORIZON = 0
    LATEST = 1
    SEQUENCE_NUMBER = 2
    TIMESTAMP = 3


class HashKeyRange(BaseModel):
    """Inclusive range of 128-bit partition-key hashes owned by a shard."""

    model_config = ConfigDict(frozen=True)

    start: int = Field(ge=0)
    end: int = Field(ge=0)

    @model_validator(mode="after")
    def _check_order(self) -> HashKeyRange:
        if self.start > self.end:
            raise ValueError("hash key range start must be <= end")
        return self


class Shard(BaseModel):
    """Immutable description of a shard as returned by a listing."""

    model_config = ConfigDict(frozen=True)

    shard_id: str = Field(min_length=1)
    parent_shard_ids: tuple[str, ...] = ()
    hash_key_range: HashKeyRange | None = None
    status: ShardStatus = ShardStatus.OPEN

    @property
    def is_closed(self) -> bool:
        return self.status is ShardStatus.CLOSED


class StartingPosition(BaseModel):
    """Where consumption of a shard starts (or resumes).

    ``SEQUENCE_NUMBER`` positions resume strictly *after* ``value``: it is the
    sequence number of the last record already emitted.
    """

    model_config = ConfigDict(frozen=True)

    kind: PositionKind
    value: str | datetime | None = None

    @model_validator(mode="after")
    def _check_value(self) -> StartingPosition:
        if self.kind is PositionKind.SEQUENCE_NUMBER:
            if not isinstance(self.value, str) or not self.value:
                raise ValueError("SEQUENCE_NUMBER position requires a sequence number")
        elif self.kind is PositionKind.TIMESTAMP:
            if not isinstance(self.value, datetime) or self.value.tzinfo is None:
                raise ValueError(
                    "TIMESTAMP position requires a timezone-aware datetime"
                )
        elif self.value is not None:
            raise ValueError(f"{self.kind.name} position takes no value")
        return self

    @classmethod
    def trim_horizon(cls) -> StartingPosition:
        return cls(kind=PositionKind.TRIM_HORIZON)

    @classmethod
    def latest(cls) -> StartingPosition:
        return cls(kind=PositionKind.LATEST)

    @classmethod
    def after_sequence_number(cls, sequence_number: str) -> StartingPosition:
        return cls(kind=PositionKind.SEQUENCE_NUMBER, value=sequence_number)

    @classmethod
    def at_timestamp(cls, timestamp: datetime) -> StartingPosition:
        return cls(kind=PositionKind.TIMESTAMP, value=timestamp)

    def __str__(self) -> str:
        if self.value is None:
            return self.kind.name
        if isinstance(self.value, datetime):
            return f"{self.kind.name}({self.value.isoformat()})"
        return f"{self.kind.name}({self.value})"


class ShardSplit(BaseModel):
    """Unit of assignable work: one shard plus the position to read it from."""

    model_config = ConfigDict(frozen=True)

    shard_id: str = Field(min_length=1)
    stream_arn: str = Field(min_length=1)
    starting_position: StartingPosition
    parent_shard_ids: tuple[str, ...] = ()

    @property
    def split_id(self) -> str:
        return self.shard_id

    def with_position(self, position: StartingPosition) -> ShardSplit:
        return self.model_copy(update={"starting_position": position})


@dataclass
class ShardSplitState:
    """Mutable per-split progress owned by exactly one reader.

    ``position`` only moves after a record has been handed downstream.
    """

    split: ShardSplit
    position: StartingPosition = field(init=False)

    def __post_init__(self) -> None:
        self.position = self.split.starting_position

    @property
    def split_id(self) -> str:
        return self.split.shard_id

    def to_split(self) -> ShardSplit:
        """The split as it should be restored, starting at the current position."""
        return self.split.with_position(self.position)


class KnownShard(BaseModel):
    """A discovered shard and whether its records have been fully drained."""

    model_config = ConfigDict(frozen=True)

    shard: Shard
    finished: bool = False


class SplitAssignment(BaseModel):
    model_config = ConfigDict(frozen=True)

    split: ShardSplit
    worker_id: int = Field(ge=0)


class EnumeratorState(BaseModel):
    """Point-in-time copy of the enumerator's view of the shard graph.

    A shard id appears in at most one of pending, assigned and finished, and
    every pending or assigned split refers to a known shard.
    """

    model_config = ConfigDict(frozen=True)

    shards: tuple[KnownShard, ...] = ()
    pending: tuple[ShardSplit, ...] = ()
    assignments: tuple[SplitAssignment, ...] = ()

    @model_validator(mode="after")
    def _check_exclusive(self) -> EnumeratorState:
        known = {k.shard.shard_id for k in self.shards}
        if len(known) != len(self.shards):
            raise ValueError("duplicate shard in enumerator state")
        finished = {k.shard.shard_id for k in self.shards if k.finished}
        pending = [s.shard_id for s in self.pending]
        assigned = [a.split.shard_id for a in self.assignments]
        seen: set[str] = set(finished)
        for shard_id in pending + assigned:
            if shard_id in seen:
                raise ValueError(
                    f"shard {shard_id} is in more than one of pending/assigned/finished"
                )
            if shard_id not in known:
                raise ValueError(f"split for unknown shard {shard_id}")
            seen.add(shard_id)
        return self

    @property
    def finished_shard_ids(self) -> set[str]:
        return {k.shard.shard_id for k in self.shards if k.finished}


class ReaderCheckpoint(BaseModel):
    """Positions of every unfinished split owned by one worker."""

    model_config = ConfigDict(frozen=True)

    worker_id: int = Field(ge=0)
    splits: tuple[ShardSplit, ...] = ()


class RawRecord(BaseModel):
    """A record exactly as fetched from a shard."""

    model_config = ConfigDict(frozen=True)

    sequence_number: str
    data: bytes
    partition_key: str = ""
    approximate_arrival_timestamp: datetime | None = None


@dataclass(frozen=True)
class SourceRecord(Generic[T]):
    """Deserialized record handed to the application, with its origin."""

    value: T
    stream_arn: str
    shard_id: str
    sequence_number: str
    partition_key: str
    approximate_arrival_timestamp: datetime | None = None
