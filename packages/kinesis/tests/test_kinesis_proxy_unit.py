"""Unit tests for KinesisStreamProxy with mocked aiobotocore (no real AWS)."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from shardstream_kinesis.exceptions import (
    ExpiredIteratorError,
    KinesisSourceError,
    StaleSplitPositionError,
    StreamConfigurationError,
    TransientStreamError,
)
from shardstream_kinesis.model import ShardStatus, StartingPosition
from shardstream_kinesis.proxy import KinesisStreamProxy, list_all_shards

ARN = "arn:aws:kinesis:eu-west-1:123456789012:stream/orders"


def _client_error(code: str, operation: str = "GetRecords") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture
def mock_session() -> MagicMock:
    session = MagicMock()
    mock_cm = MagicMock()
    mock_client = MagicMock()
    mock_client.list_shards = AsyncMock(
        return_value={
            "Shards": [
                {
                    "ShardId": "shardId-000000000000",
                    "HashKeyRange": {"StartingHashKey": "0", "EndingHashKey": "100"},
                    "SequenceNumberRange": {
                        "StartingSequenceNumber": "1",
                        "EndingSequenceNumber": "50",
                    },
                },
                {
                    "ShardId": "shardId-000000000002",
                    "ParentShardId": "shardId-000000000000",
                    "AdjacentParentShardId": "shardId-000000000001",
                    "HashKeyRange": {"StartingHashKey": "0", "EndingHashKey": "200"},
                    "SequenceNumberRange": {"StartingSequenceNumber": "51"},
                },
            ]
        }
    )
    mock_client.get_shard_iterator = AsyncMock(return_value={"ShardIterator": "it-1"})
    mock_client.get_records = AsyncMock(
        return_value={
            "Records": [
                {
                    "SequenceNumber": "43",
                    "Data": b"payload",
                    "PartitionKey": "pk",
                    "ApproximateArrivalTimestamp": datetime(
                        2024, 1, 1, tzinfo=timezone.utc
                    ),
                }
            ],
            "NextShardIterator": "it-2",
            "MillisBehindLatest": 0,
        }
    )
    mock_client.list_streams = AsyncMock(return_value={"StreamNames": []})
    mock_cm.__aenter__ = AsyncMock(return_value=mock_client)
    mock_cm.__aexit__ = AsyncMock(return_value=None)
    session.create_client = MagicMock(return_value=mock_cm)
    return session


def _client(session: MagicMock) -> MagicMock:
    return session.create_client.return_value.__aenter__.return_value


@pytest.mark.asyncio
async def test_get_client_creates_and_caches(mock_session: MagicMock) -> None:
    proxy = KinesisStreamProxy(
        "eu-west-1", session=mock_session, endpoint_url="http://localhost:4566"
    )
    client1 = await proxy.get_client()
    client2 = await proxy.get_client()
    assert client1 is client2
    mock_session.create_client.assert_called_once()
    assert mock_session.create_client.call_args.args[0] == "kinesis"
    assert mock_session.create_client.call_args.kwargs["region_name"] == "eu-west-1"
    assert (
        mock_session.create_client.call_args.kwargs["endpoint_url"]
        == "http://localhost:4566"
    )


@pytest.mark.asyncio
async def test_list_shards_parses_lineage_and_status(mock_session: MagicMock) -> None:
    proxy = KinesisStreamProxy(session=mock_session)
    page = await proxy.list_shards(ARN)

    closed, child = page.shards
    assert closed.shard_id == "shardId-000000000000"
    assert closed.status is ShardStatus.CLOSED
    assert closed.parent_shard_ids == ()
    assert closed.hash_key_range is not None
    assert closed.hash_key_range.end == 100
    assert child.status is ShardStatus.OPEN
    assert child.parent_shard_ids == ("shardId-000000000000", "shardId-000000000001")
    assert page.next_token is None
    _client(mock_session).list_shards.assert_called_once_with(StreamARN=ARN)


@pytest.mark.asyncio
async def test_list_all_shards_follows_next_token(mock_session: MagicMock) -> None:
    _client(mock_session).list_shards = AsyncMock(
        side_effect=[
            {"Shards": [{"ShardId": "a"}], "NextToken": "page-2"},
            {"Shards": [{"ShardId": "b"}]},
        ]
    )
    proxy = KinesisStreamProxy(session=mock_session)
    shards = await list_all_shards(proxy, ARN)
    assert [s.shard_id for s in shards] == ["a", "b"]
    second_call = _client(mock_session).list_shards.call_args_list[1]
    assert second_call.kwargs == {"NextToken": "page-2"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("position", "expected"),
    [
        (StartingPosition.trim_horizon(), {"ShardIteratorType": "TRIM_HORIZON"}),
        (StartingPosition.latest(), {"ShardIteratorType": "LATEST"}),
        (
            StartingPosition.after_sequence_number("42"),
            {
                "ShardIteratorType": "AFTER_SEQUENCE_NUMBER",
                "StartingSequenceNumber": "42",
            },
        ),
        (
            StartingPosition.at_timestamp(datetime(2024, 1, 1, tzinfo=timezone.utc)),
            {
                "ShardIteratorType": "AT_TIMESTAMP",
                "Timestamp": datetime(2024, 1, 1, tzinfo=timezone.utc),
            },
        ),
    ],
)
async def test_get_shard_iterator_maps_positions(
    mock_session: MagicMock, position: StartingPosition, expected: dict[str, object]
) -> None:
    proxy = KinesisStreamProxy(session=mock_session)
    iterator = await proxy.get_shard_iterator(ARN, "shardId-000000000000", position)
    assert iterator == "it-1"
    _client(mock_session).get_shard_iterator.assert_called_once_with(
        StreamARN=ARN, ShardId="shardId-000000000000", **expected
    )


@pytest.mark.asyncio
async def test_get_records_parses_batch(mock_session: MagicMock) -> None:
    proxy = KinesisStreamProxy(session=mock_session)
    result = await proxy.get_records(ARN, "it-1", 500)
    assert [r.sequence_number for r in result.records] == ["43"]
    assert result.records[0].data == b"payload"
    assert result.records[0].partition_key == "pk"
    assert result.next_shard_iterator == "it-2"
    assert not result.is_shard_end
    _client(mock_session).get_records.assert_called_once_with(
        StreamARN=ARN, ShardIterator="it-1", Limit=500
    )


@pytest.mark.asyncio
async def test_get_records_without_next_iterator_is_shard_end(
    mock_session: MagicMock,
) -> None:
    _client(mock_session).get_records = AsyncMock(return_value={"Records": []})
    proxy = KinesisStreamProxy(session=mock_session)
    result = await proxy.get_records(ARN, "it-1", 10)
    assert result.is_shard_end
    assert result.records == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("code", "expected"),
    [
        ("ProvisionedThroughputExceededException", TransientStreamError),
        ("InternalFailure", TransientStreamError),
        ("ExpiredIteratorException", ExpiredIteratorError),
        ("ResourceNotFoundException", StreamConfigurationError),
        ("KMSDisabledException", KinesisSourceError),
    ],
)
async def test_get_records_error_translation(
    mock_session: MagicMock, code: str, expected: type[Exception]
) -> None:
    _client(mock_session).get_records = AsyncMock(side_effect=_client_error(code))
    proxy = KinesisStreamProxy(session=mock_session)
    with pytest.raises(expected) as exc_info:
        await proxy.get_records(ARN, "it-1", 10)
    assert isinstance(exc_info.value.__cause__, ClientError)


@pytest.mark.asyncio
async def test_throttling_keeps_error_code(mock_session: MagicMock) -> None:
    _client(mock_session).list_shards = AsyncMock(
        side_effect=_client_error("LimitExceededException", "ListShards")
    )
    proxy = KinesisStreamProxy(session=mock_session)
    with pytest.raises(TransientStreamError) as exc_info:
        await proxy.list_shards(ARN)
    assert exc_info.value.code == "LimitExceededException"


@pytest.mark.asyncio
async def test_invalid_position_is_stale(mock_session: MagicMock) -> None:
    _client(mock_session).get_shard_iterator = AsyncMock(
        side_effect=_client_error("InvalidArgumentException", "GetShardIterator")
    )
    proxy = KinesisStreamProxy(session=mock_session)
    with pytest.raises(StaleSplitPositionError) as exc_info:
        await proxy.get_shard_iterator(
            ARN, "shardId-000000000000", StartingPosition.after_sequence_number("1")
        )
    assert exc_info.value.shard_id == "shardId-000000000000"


@pytest.mark.asyncio
async def test_network_errors_are_transient(mock_session: MagicMock) -> None:
    _client(mock_session).get_records = AsyncMock(
        side_effect=EndpointConnectionError(endpoint_url="http://localhost:4566")
    )
    proxy = KinesisStreamProxy(session=mock_session)
    with pytest.raises(TransientStreamError):
        await proxy.get_records(ARN, "it-1", 10)


@pytest.mark.asyncio
async def test_close_cleans_up_client(mock_session: MagicMock) -> None:
    proxy = KinesisStreamProxy(session=mock_session)
    await proxy.get_client()
    await proxy.close()
    mock_session.create_client.return_value.__aexit__.assert_called_once()
    await proxy.close()
    mock_session.create_client.return_value.__aexit__.assert_called_once()


@pytest.mark.asyncio
async def test_health_check(mock_session: MagicMock) -> None:
    proxy = KinesisStreamProxy(session=mock_session)
    assert await proxy.health_check() is True
    _client(mock_session).list_streams = AsyncMock(side_effect=RuntimeError("down"))
    assert await proxy.health_check() is False
