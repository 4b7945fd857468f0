from __future__ import annotations

import pytest

from shardstream_kinesis import (
    EnumeratorStateSerializer,
    JsonSchema,
    KinesisStreamProxy,
    KinesisStreamsSource,
    ReaderCheckpointSerializer,
    ShardSplitSerializer,
    SourceConfigurationError,
    default_proxy_factory,
)
from shardstream_kinesis.config import KinesisSourceConfig

ARN = "arn:aws:kinesis:eu-west-1:123456789012:stream/orders"


def test_mapping_config_is_validated() -> None:
    source = KinesisStreamsSource(
        {"stream_arn": ARN, "initial_position": "TRIM_HORIZON"}, JsonSchema()
    )
    assert source.config.stream_arn == ARN
    assert source.config.initial_position.value == "TRIM_HORIZON"


def test_invalid_mapping_config_is_rejected() -> None:
    with pytest.raises(SourceConfigurationError, match="stream_arn"):
        KinesisStreamsSource({"stream_arn": "orders"}, JsonSchema())


def test_serializers() -> None:
    source = KinesisStreamsSource(KinesisSourceConfig(stream_arn=ARN), JsonSchema())
    assert isinstance(source.split_serializer(), ShardSplitSerializer)
    assert isinstance(source.enumerator_state_serializer(), EnumeratorStateSerializer)
    assert isinstance(source.reader_checkpoint_serializer(), ReaderCheckpointSerializer)


def test_default_proxy_factory_uses_region_and_endpoint() -> None:
    config = KinesisSourceConfig(stream_arn=ARN, endpoint_url="http://localhost:4566")
    proxy = default_proxy_factory(config)
    assert isinstance(proxy, KinesisStreamProxy)
    assert proxy._region == "eu-west-1"
    assert proxy._client_kwargs == {"endpoint_url": "http://localhost:4566"}


def test_default_proxy_factory_prefers_explicit_region() -> None:
    config = KinesisSourceConfig(stream_arn=ARN, region_name="us-west-2")
    proxy = default_proxy_factory(config)
    assert isinstance(proxy, KinesisStreamProxy)
    assert proxy._region == "us-west-2"
    assert proxy._client_kwargs == {}
