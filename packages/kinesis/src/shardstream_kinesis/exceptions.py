"""Kinesis source exceptions.

Transient errors are contained by the component that hits them; everything
else propagates to the coordinator, which fails the job.
"""

from __future__ import annotations

from shardstream_core.primitives.exceptions import (
    ConfigurationError,
    InfrastructureError,
    PersistenceError,
    TransientError,
)


class KinesisSourceError(InfrastructureError):
    """Base for non-transient Kinesis source failures."""


class TransientStreamError(TransientError):
    """Throttling, 5xx or network failure talking to the stream service."""


class ExpiredIteratorError(KinesisSourceError):
    """A chained shard iterator has expired; a new one can be requested."""


class StaleSplitPositionError(KinesisSourceError):
    """A split's position can no longer be resolved by the service.

    Fatal for the split: skipping ahead would lose records.
    """

    def __init__(self, shard_id: str, reason: str) -> None:
        self.shard_id = shard_id
        super().__init__(f"Position of split {shard_id} is no longer valid: {reason}")


class SourceConfigurationError(ConfigurationError):
    """Invalid user-supplied source configuration."""


class StreamConfigurationError(ConfigurationError):
    """The configured stream is missing or inaccessible."""


class ShardTopologyError(ConfigurationError):
    """The shard listing describes lineage that cannot be processed in order."""


class ShardAssignmentError(KinesisSourceError):
    """A shard assigner returned a worker that is not registered."""


class CheckpointDecodeError(PersistenceError):
    """Checkpoint bytes are of an unknown version or malformed."""
