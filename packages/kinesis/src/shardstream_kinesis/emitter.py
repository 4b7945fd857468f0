"""KinesisStreamsRecordEmitter — deserialize, hand off, then advance position."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Generic, Protocol, TypeVar, runtime_checkable

from .model import RawRecord, ShardSplitState, SourceRecord, StartingPosition

if TYPE_CHECKING:
    from collections.abc import Callable

T = TypeVar("T")
T_co = TypeVar("T_co", covariant=True)
T_contra = TypeVar("T_contra", contravariant=True)


@runtime_checkable
class IDeserializationSchema(Protocol[T_co]):
    """Turns record bytes into an application value; ``None`` drops the record."""

    def deserialize(self, data: bytes) -> T_co | None: ...


@runtime_checkable
class ISourceOutput(Protocol[T_contra]):
    """Downstream consumer of emitted records."""

    async def collect(self, record: SourceRecord[T_contra]) -> None: ...


class RawBytesSchema:
    """Passes record payloads through unchanged."""

    def deserialize(self, data: bytes) -> bytes:
        return data


class JsonSchema:
    """Decodes UTF-8 JSON payloads."""

    def deserialize(self, data: bytes) -> Any:
        return json.loads(data.decode("utf-8"))


class FunctionSchema(Generic[T]):
    """Adapts a plain ``bytes -> value`` callable."""

    def __init__(self, func: Callable[[bytes], T | None]) -> None:
        self._func = func

    def deserialize(self, data: bytes) -> T | None:
        return self._func(data)


class KinesisStreamsRecordEmitter(Generic[T]):
    """Emits one record at a time in fetch order.

    The split position moves to "after this record" only once ``collect`` has
    returned, so a checkpoint never covers a record that was not handed off.
    A record the schema maps to ``None`` is skipped but still advances the
    position.
    """

    def __init__(self, schema: IDeserializationSchema[T]) -> None:
        self._schema = schema

    async def emit_record(
        self,
        record: RawRecord,
        output: ISourceOutput[T],
        split_state: ShardSplitState,
    ) -> None:
        value = self._schema.deserialize(record.data)
        if value is not None:
            await output.collect(
                SourceRecord(
                    value=value,
                    stream_arn=split_state.split.stream_arn,
                    shard_id=split_state.split_id,
                    sequence_number=record.sequence_number,
                    partition_key=record.partition_key,
                    approximate_arrival_timestamp=record.approximate_arrival_timestamp,
                )
            )
        split_state.position = StartingPosition.after_sequence_number(
            record.sequence_number
        )
