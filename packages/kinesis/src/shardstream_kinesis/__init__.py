"""Exactly-once Kinesis Data Streams source."""

from __future__ import annotations

from .assigner import (
    FunctionShardAssigner,
    HashShardAssigner,
    IShardAssigner,
    ShardAssignerFactory,
    UniformShardAssigner,
    resolve_shard_assigner,
)
from .config import InitialPosition, KinesisSourceConfig, validate_source_config
from .emitter import (
    FunctionSchema,
    IDeserializationSchema,
    ISourceOutput,
    JsonSchema,
    KinesisStreamsRecordEmitter,
    RawBytesSchema,
)
from .enumerator import KinesisStreamsSourceEnumerator
from .exceptions import (
    CheckpointDecodeError,
    ExpiredIteratorError,
    KinesisSourceError,
    ShardAssignmentError,
    ShardTopologyError,
    SourceConfigurationError,
    StaleSplitPositionError,
    StreamConfigurationError,
    TransientStreamError,
)
from .memory import (
    CollectingOutput,
    InMemorySourceCoordinator,
    InMemoryStreamProxy,
    SourceCheckpoint,
)
from .model import (
    EnumeratorState,
    HashKeyRange,
    KnownShard,
    PositionKind,
    RawRecord,
    ReaderCheckpoint,
    Shard,
    ShardSplit,
    ShardSplitState,
    ShardStatus,
    SourceRecord,
    SplitAssignment,
    StartingPosition,
)
from .ports import ISourceReaderContext, ISplitEnumeratorContext
from .proxy import (
    GetRecordsResult,
    IStreamProxy,
    KinesisStreamProxy,
    ListShardsResult,
    list_all_shards,
)
from .retry import RetryPolicy
from .serialization import (
    EnumeratorStateSerializer,
    ReaderCheckpointSerializer,
    ShardSplitSerializer,
)
from .source import KinesisStreamsSource, default_proxy_factory
from .source_reader import KinesisStreamsSourceReader
from .split_reader import PollingKinesisShardSplitReader, RecordBatch

__all__ = [
    "CheckpointDecodeError",
    "CollectingOutput",
    "EnumeratorState",
    "EnumeratorStateSerializer",
    "ExpiredIteratorError",
    "FunctionSchema",
    "FunctionShardAssigner",
    "GetRecordsResult",
    "HashKeyRange",
    "HashShardAssigner",
    "IDeserializationSchema",
    "IShardAssigner",
    "ISourceOutput",
    "ISourceReaderContext",
    "ISplitEnumeratorContext",
    "IStreamProxy",
    "InMemorySourceCoordinator",
    "InMemoryStreamProxy",
    "InitialPosition",
    "JsonSchema",
    "KinesisSourceConfig",
    "KinesisSourceError",
    "KinesisStreamProxy",
    "KinesisStreamsRecordEmitter",
    "KinesisStreamsSource",
    "KinesisStreamsSourceEnumerator",
    "KinesisStreamsSourceReader",
    "KnownShard",
    "ListShardsResult",
    "PollingKinesisShardSplitReader",
    "PositionKind",
    "RawBytesSchema",
    "RawRecord",
    "ReaderCheckpoint",
    "ReaderCheckpointSerializer",
    "RecordBatch",
    "RetryPolicy",
    "Shard",
    "ShardAssignerFactory",
    "ShardAssignmentError",
    "ShardSplit",
    "ShardSplitSerializer",
    "ShardSplitState",
    "ShardStatus",
    "ShardTopologyError",
    "SourceCheckpoint",
    "SourceConfigurationError",
    "SourceRecord",
    "SplitAssignment",
    "StaleSplitPositionError",
    "StartingPosition",
    "StreamConfigurationError",
    "TransientStreamError",
    "UniformShardAssigner",
    "default_proxy_factory",
    "list_all_shards",
    "resolve_shard_assigner",
    "validate_source_config",
]
