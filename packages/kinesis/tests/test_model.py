from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from shardstream_kinesis.model import (
    EnumeratorState,
    HashKeyRange,
    KnownShard,
    PositionKind,
    Shard,
    ShardSplit,
    ShardSplitState,
    ShardStatus,
    SplitAssignment,
    StartingPosition,
)

SplitFactory = Callable[..., ShardSplit]


def test_position_values_are_checked_per_kind() -> None:
    assert StartingPosition.after_sequence_number("42").value == "42"
    with pytest.raises(ValidationError):
        StartingPosition(kind=PositionKind.SEQUENCE_NUMBER)
    with pytest.raises(ValidationError):
        StartingPosition(kind=PositionKind.TIMESTAMP, value=datetime(2024, 1, 1))
    with pytest.raises(ValidationError):
        StartingPosition(kind=PositionKind.LATEST, value="1")


def test_position_str() -> None:
    ts = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    assert str(StartingPosition.trim_horizon()) == "TRIM_HORIZON"
    assert str(StartingPosition.after_sequence_number("7")) == "SEQUENCE_NUMBER(7)"
    assert str(StartingPosition.at_timestamp(ts)) == (
        "TIMESTAMP(2024-05-01T12:00:00+00:00)"
    )


def test_hash_key_range_order() -> None:
    with pytest.raises(ValidationError):
        HashKeyRange(start=10, end=1)


def test_split_state_snapshot_uses_current_position(make_split: SplitFactory) -> None:
    state = ShardSplitState(make_split("shard-1"))
    assert state.position == StartingPosition.trim_horizon()

    state.position = StartingPosition.after_sequence_number("42")
    restored = state.to_split()

    assert restored.starting_position == StartingPosition.after_sequence_number("42")
    assert restored.shard_id == "shard-1"
    assert state.split.starting_position == StartingPosition.trim_horizon()


def test_closed_shard() -> None:
    assert Shard(shard_id="a", status=ShardStatus.CLOSED).is_closed
    assert not Shard(shard_id="a").is_closed


def test_enumerator_state_rejects_shard_in_two_places(make_split: SplitFactory) -> None:
    shard = KnownShard(shard=Shard(shard_id="s1"))
    split = make_split("s1")
    with pytest.raises(ValidationError, match="more than one"):
        EnumeratorState(
            shards=(shard,),
            pending=(split,),
            assignments=(SplitAssignment(split=split, worker_id=0),),
        )


def test_enumerator_state_rejects_finished_and_pending(
    make_split: SplitFactory,
) -> None:
    with pytest.raises(ValidationError, match="more than one"):
        EnumeratorState(
            shards=(KnownShard(shard=Shard(shard_id="s1"), finished=True),),
            pending=(make_split("s1"),),
        )


def test_enumerator_state_rejects_unknown_split(make_split: SplitFactory) -> None:
    with pytest.raises(ValidationError, match="unknown shard"):
        EnumeratorState(pending=(make_split("ghost"),))


def test_enumerator_state_finished_ids() -> None:
    state = EnumeratorState(
        shards=(
            KnownShard(shard=Shard(shard_id="s1"), finished=True),
            KnownShard(shard=Shard(shard_id="s2")),
        )
    )
    assert state.finished_shard_ids == {"s1"}
