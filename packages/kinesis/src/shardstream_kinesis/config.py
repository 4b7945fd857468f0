"""KinesisSourceConfig — validated source options."""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import Any, cast

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .assigner import IShardAssigner, resolve_shard_assigner
from .exceptions import SourceConfigurationError
from .model import StartingPosition
from .retry import RetryPolicy

_STREAM_ARN = re.compile(
    r"^arn:aws[a-zA-Z-]*:kinesis:(?P<region>[a-z0-9-]+):\d{12}:"
    r"stream/[a-zA-Z0-9_.-]{1,128}$"
)

# The service allows five GetRecords calls per shard per second.
DEFAULT_POLL_INTERVAL = 0.2
MAX_RECORDS_PER_FETCH = 10_000


class InitialPosition(str, Enum):
    TRIM_HORIZON = "TRIM_HORIZON"
    LATEST = "LATEST"
    AT_TIMESTAMP = "AT_TIMESTAMP"


class KinesisSourceConfig(BaseModel):
    """Options recognised by the Kinesis source.

    ``max_splits_per_worker`` optionally bounds how many shards one worker
    polls at once; the default ``None`` assigns every eligible shard.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    stream_arn: str
    initial_position: InitialPosition = InitialPosition.LATEST
    initial_timestamp: datetime | None = None
    shard_discovery_interval: float = Field(default=10.0, gt=0)
    poll_interval: float = Field(default=DEFAULT_POLL_INTERVAL, ge=0)
    max_records_per_fetch: int = Field(
        default=MAX_RECORDS_PER_FETCH, ge=1, le=MAX_RECORDS_PER_FETCH
    )
    shard_assigner: Any = Field(default="uniform", validate_default=True)
    max_splits_per_worker: int | None = Field(default=None, ge=1)
    retry_max_attempts: int = Field(default=5, ge=1)
    retry_base_delay: float = Field(default=0.1, ge=0)
    retry_max_delay: float = Field(default=5.0, ge=0)
    retry_jitter: bool = True
    region_name: str | None = None
    endpoint_url: str | None = None

    @field_validator("stream_arn")
    @classmethod
    def _check_arn(cls, value: str) -> str:
        if not _STREAM_ARN.match(value):
            raise ValueError(f"not a Kinesis stream ARN: {value!r}")
        return value

    @field_validator("shard_assigner")
    @classmethod
    def _resolve_assigner(cls, value: Any) -> IShardAssigner:
        try:
            return resolve_shard_assigner(value)
        except TypeError as e:
            raise ValueError(str(e)) from e

    @field_validator("initial_timestamp")
    @classmethod
    def _aware_timestamp(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def _check_combinations(self) -> KinesisSourceConfig:
        if self.initial_position is InitialPosition.AT_TIMESTAMP:
            if self.initial_timestamp is None:
                raise ValueError("AT_TIMESTAMP requires initial_timestamp")
        elif self.initial_timestamp is not None:
            raise ValueError("initial_timestamp is only valid with AT_TIMESTAMP")
        if self.retry_base_delay > self.retry_max_delay:
            raise ValueError("retry_base_delay must be <= retry_max_delay")
        return self

    @property
    def region(self) -> str:
        """Explicit region, else the one embedded in the stream ARN."""
        if self.region_name:
            return self.region_name
        match = _STREAM_ARN.match(self.stream_arn)
        if match is None:
            raise SourceConfigurationError(
                f"Cannot derive a region from {self.stream_arn!r}"
            )
        return match.group("region")

    @property
    def assigner(self) -> IShardAssigner:
        return cast(IShardAssigner, self.shard_assigner)

    def initial_starting_position(self) -> StartingPosition:
        """Position for shards found on the first discovery of a fresh job."""
        if self.initial_position is InitialPosition.TRIM_HORIZON:
            return StartingPosition.trim_horizon()
        if self.initial_position is InitialPosition.AT_TIMESTAMP:
            if self.initial_timestamp is None:
                raise SourceConfigurationError(
                    "AT_TIMESTAMP requires initial_timestamp"
                )
            return StartingPosition.at_timestamp(self.initial_timestamp)
        return StartingPosition.latest()

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            jitter=self.retry_jitter,
        )

    @classmethod
    def from_properties(cls, properties: Mapping[str, str]) -> KinesisSourceConfig:
        """Build from flat string properties, e.g. loaded from a job file."""
        data: dict[str, Any] = {}
        unknown = sorted(set(properties) - set(_PROPERTY_KEYS))
        if unknown:
            raise SourceConfigurationError(f"Unknown source properties: {unknown}")
        for key, raw in properties.items():
            name, convert = _PROPERTY_KEYS[key]
            try:
                data[name] = convert(raw)
            except ValueError as e:
                raise SourceConfigurationError(f"Invalid value for {key}: {e}") from e
        return validate_source_config(data)


def validate_source_config(data: Mapping[str, Any]) -> KinesisSourceConfig:
    """Validate a mapping of options, raising ``SourceConfigurationError``."""
    try:
        return KinesisSourceConfig.model_validate(dict(data))
    except ValidationError as e:
        raise SourceConfigurationError(str(e)) from e


def _millis(raw: str) -> float:
    return int(raw) / 1000.0


def _optional_int(raw: str) -> int | None:
    return None if raw.strip().lower() in ("", "none", "unbounded") else int(raw)


def _bool(raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no"):
        return False
    raise ValueError(f"not a boolean: {raw!r}")


_PROPERTY_KEYS: dict[str, tuple[str, Any]] = {
    "stream.arn": ("stream_arn", str),
    "stream.initial-position": ("initial_position", str.upper),
    "stream.initial-timestamp": ("initial_timestamp", datetime.fromisoformat),
    "source.shard.discovery.interval-ms": ("shard_discovery_interval", _millis),
    "source.shard.assigner": ("shard_assigner", str),
    "source.reader.poll-interval-ms": ("poll_interval", _millis),
    "source.reader.max-records": ("max_records_per_fetch", int),
    "source.reader.max-splits": ("max_splits_per_worker", _optional_int),
    "retry.max-attempts": ("retry_max_attempts", int),
    "retry.base-delay-ms": ("retry_base_delay", _millis),
    "retry.max-delay-ms": ("retry_max_delay", _millis),
    "retry.jitter": ("retry_jitter", _bool),
    "aws.region": ("region_name", str),
    "aws.endpoint": ("endpoint_url", str),
}
