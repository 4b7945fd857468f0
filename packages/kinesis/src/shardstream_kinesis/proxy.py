"""Stream proxy port and the aiobotocore-backed Kinesis implementation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from aiobotocore.session import AioSession
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from .exceptions import (
    ExpiredIteratorError,
    KinesisSourceError,
    StaleSplitPositionError,
    StreamConfigurationError,
    TransientStreamError,
)
from .model import (
    HashKeyRange,
    PositionKind,
    RawRecord,
    Shard,
    ShardStatus,
    StartingPosition,
)

logger = logging.getLogger(__name__)

TRANSIENT_ERROR_CODES = frozenset(
    {
        "ProvisionedThroughputExceededException",
        "LimitExceededException",
        "ThrottlingException",
        "KMSThrottlingException",
        "InternalFailure",
        "InternalFailureException",
        "InternalServerError",
        "ServiceUnavailable",
        "ServiceUnavailableException",
    }
)
CONFIGURATION_ERROR_CODES = frozenset(
    {"ResourceNotFoundException", "AccessDeniedException"}
)

_NETWORK_ERRORS = (
    EndpointConnectionError,
    ConnectionClosedError,
    ConnectTimeoutError,
    ReadTimeoutError,
)


@dataclass(frozen=True)
class ListShardsResult:
    shards: list[Shard]
    next_token: str | None = None


@dataclass(frozen=True)
class GetRecordsResult:
    """One page of records.

    ``next_shard_iterator`` is ``None`` once a closed shard has been read to its end.
    """

    records: list[RawRecord] = field(default_factory=list)
    next_shard_iterator: str | None = None
    millis_behind_latest: int | None = None

    @property
    def is_shard_end(self) -> bool:
        return self.next_shard_iterator is None


@runtime_checkable
class IStreamProxy(Protocol):
    """Client surface of the stream service used by the source."""

    async def list_shards(
        self, stream_arn: str, next_token: str | None = None
    ) -> ListShardsResult:
        """Return one page of the stream's shards."""
        ...

    async def get_shard_iterator(
        self, stream_arn: str, shard_id: str, position: StartingPosition
    ) -> str:
        """Translate a position into a fetch cursor."""
        ...

    async def get_records(
        self, stream_arn: str, shard_iterator: str, max_records: int
    ) -> GetRecordsResult:
        """Fetch the next batch at ``shard_iterator``."""
        ...

    async def close(self) -> None:
        """Release client resources."""
        ...


async def list_all_shards(proxy: IStreamProxy, stream_arn: str) -> list[Shard]:
    """Follow listing pagination until the last page."""
    shards: list[Shard] = []
    token: str | None = None
    while True:
        page = await proxy.list_shards(stream_arn, token)
        shards.extend(page.shards)
        token = page.next_token
        if not token:
            return shards


def _iterator_request(position: StartingPosition) -> dict[str, Any]:
    if position.kind is PositionKind.TRIM_HORIZON:
        return {"ShardIteratorType": "TRIM_HORIZON"}
    if position.kind is PositionKind.LATEST:
        return {"ShardIteratorType": "LATEST"}
    if position.kind is PositionKind.SEQUENCE_NUMBER:
        return {
            "ShardIteratorType": "AFTER_SEQUENCE_NUMBER",
            "StartingSequenceNumber": position.value,
        }
    return {"ShardIteratorType": "AT_TIMESTAMP", "Timestamp": position.value}


def _parse_shard(raw: dict[str, Any]) -> Shard:
    parents = tuple(
        p
        for p in (raw.get("ParentShardId"), raw.get("AdjacentParentShardId"))
        if p
    )
    hash_range = raw.get("HashKeyRange")
    seq_range = raw.get("SequenceNumberRange") or {}
    return Shard(
        shard_id=raw["ShardId"],
        parent_shard_ids=parents,
        hash_key_range=(
            HashKeyRange(
                start=int(hash_range["StartingHashKey"]),
                end=int(hash_range["EndingHashKey"]),
            )
            if hash_range
            else None
        ),
        status=(
            ShardStatus.CLOSED
            if seq_range.get("EndingSequenceNumber")
            else ShardStatus.OPEN
        ),
    )


def _parse_record(raw: dict[str, Any]) -> RawRecord:
    return RawRecord(
        sequence_number=raw["SequenceNumber"],
        data=raw.get("Data", b""),
        partition_key=raw.get("PartitionKey", ""),
        approximate_arrival_timestamp=raw.get("ApproximateArrivalTimestamp"),
    )


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


class KinesisStreamProxy(IStreamProxy):
    """IStreamProxy over a shared aiobotocore Kinesis client.

    Maps service errors onto the source's error taxonomy: throttling and
    service faults become ``TransientStreamError``; a missing stream becomes
    ``StreamConfigurationError``; unresolvable positions become
    ``StaleSplitPositionError``.
    """

    def __init__(
        self,
        region_name: str = "us-east-1",
        *,
        session: AioSession | None = None,
        **client_kwargs: Any,
    ) -> None:
        """Configure region and optional session/client kwargs (e.g. endpoint_url)."""
        self._region = region_name
        self._session = session or AioSession()
        self._client_kwargs = client_kwargs
        self._client: Any = None
        self._client_cm: Any = None

    async def get_client(self) -> Any:
        """Return shared Kinesis client; create if needed."""
        if self._client is None:
            self._client_cm = self._session.create_client(
                "kinesis",
                region_name=self._region,
                **self._client_kwargs,
            )
            self._client = await self._client_cm.__aenter__()
        return self._client

    async def list_shards(
        self, stream_arn: str, next_token: str | None = None
    ) -> ListShardsResult:
        client = await self.get_client()
        # The service rejects a stream identifier alongside a continuation token.
        request = {"NextToken": next_token} if next_token else {"StreamARN": stream_arn}
        try:
            out = await client.list_shards(**request)
        except ClientError as e:
            raise self._translate(e, stream_arn=stream_arn) from e
        except _NETWORK_ERRORS as e:
            raise TransientStreamError(str(e)) from e
        return ListShardsResult(
            shards=[_parse_shard(s) for s in out.get("Shards", [])],
            next_token=out.get("NextToken"),
        )

    async def get_shard_iterator(
        self, stream_arn: str, shard_id: str, position: StartingPosition
    ) -> str:
        client = await self.get_client()
        try:
            out = await client.get_shard_iterator(
                StreamARN=stream_arn,
                ShardId=shard_id,
                **_iterator_request(position),
            )
        except ClientError as e:
            code = _error_code(e)
            if code in ("InvalidArgumentException", "ResourceNotFoundException"):
                raise StaleSplitPositionError(shard_id, str(e)) from e
            raise self._translate(e, stream_arn=stream_arn) from e
        except _NETWORK_ERRORS as e:
            raise TransientStreamError(str(e)) from e
        return str(out["ShardIterator"])

    async def get_records(
        self, stream_arn: str, shard_iterator: str, max_records: int
    ) -> GetRecordsResult:
        client = await self.get_client()
        try:
            out = await client.get_records(
                StreamARN=stream_arn,
                ShardIterator=shard_iterator,
                Limit=max_records,
            )
        except ClientError as e:
            if _error_code(e) == "ExpiredIteratorException":
                raise ExpiredIteratorError(str(e)) from e
            raise self._translate(e, stream_arn=stream_arn) from e
        except _NETWORK_ERRORS as e:
            raise TransientStreamError(str(e)) from e
        return GetRecordsResult(
            records=[_parse_record(r) for r in out.get("Records", [])],
            next_shard_iterator=out.get("NextShardIterator"),
            millis_behind_latest=out.get("MillisBehindLatest"),
        )

    def _translate(self, error: ClientError, *, stream_arn: str) -> Exception:
        code = _error_code(error)
        if code in TRANSIENT_ERROR_CODES:
            return TransientStreamError(str(error), code=code)
        if code in CONFIGURATION_ERROR_CODES:
            return StreamConfigurationError(f"Stream {stream_arn}: {error}")
        logger.debug("Unclassified Kinesis error %s for %s", code, stream_arn)
        return KinesisSourceError(str(error))

    async def close(self) -> None:
        """Close the client if open."""
        if self._client_cm is not None:
            await self._client_cm.__aexit__(None, None, None)
            self._client_cm = None
            self._client = None

    async def health_check(self) -> bool:
        """Return True if the service answers a lightweight call."""
        try:
            client = await self.get_client()
            await client.list_streams(Limit=1)
            return True
        except Exception:  # noqa: BLE001
            return False
