"""Shared fixtures for Kinesis source tests."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from shardstream_kinesis.config import KinesisSourceConfig
from shardstream_kinesis.memory import InMemoryStreamProxy
from shardstream_kinesis.model import ShardSplit, StartingPosition

STREAM_ARN = "arn:aws:kinesis:eu-west-1:123456789012:stream/orders"

ConfigFactory = Callable[..., KinesisSourceConfig]
SplitFactory = Callable[..., ShardSplit]


@pytest.fixture
def stream_arn() -> str:
    return STREAM_ARN


@pytest.fixture
def make_config() -> ConfigFactory:
    """Config tuned for tests: no waits between polls or retries."""

    def factory(**overrides: Any) -> KinesisSourceConfig:
        options: dict[str, Any] = {
            "stream_arn": STREAM_ARN,
            "initial_position": "TRIM_HORIZON",
            "shard_discovery_interval": 60.0,
            "poll_interval": 0.0,
            "retry_base_delay": 0.0,
            "retry_max_delay": 0.0,
            "retry_jitter": False,
        }
        options.update(overrides)
        return KinesisSourceConfig(**options)

    return factory


@pytest.fixture
def make_split() -> SplitFactory:
    def factory(
        shard_id: str,
        position: StartingPosition | None = None,
        parents: tuple[str, ...] = (),
    ) -> ShardSplit:
        return ShardSplit(
            shard_id=shard_id,
            stream_arn=STREAM_ARN,
            starting_position=position or StartingPosition.trim_horizon(),
            parent_shard_ids=parents,
        )

    return factory


@pytest.fixture
def config(make_config: ConfigFactory) -> KinesisSourceConfig:
    return make_config()


@pytest.fixture
def stream() -> InMemoryStreamProxy:
    return InMemoryStreamProxy(STREAM_ARN)
