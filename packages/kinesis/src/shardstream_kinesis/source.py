"""KinesisStreamsSource — assembles enumerators, readers and serializers."""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from .config import KinesisSourceConfig, validate_source_config
from .emitter import KinesisStreamsRecordEmitter
from .enumerator import KinesisStreamsSourceEnumerator
from .proxy import KinesisStreamProxy
from .serialization import (
    EnumeratorStateSerializer,
    ReaderCheckpointSerializer,
    ShardSplitSerializer,
)
from .source_reader import KinesisStreamsSourceReader
from .split_reader import PollingKinesisShardSplitReader

if TYPE_CHECKING:
    from collections.abc import Callable

    from .emitter import IDeserializationSchema, ISourceOutput
    from .model import EnumeratorState, ReaderCheckpoint
    from .ports import ISourceReaderContext, ISplitEnumeratorContext
    from .proxy import IStreamProxy

T = TypeVar("T")


def default_proxy_factory(config: KinesisSourceConfig) -> IStreamProxy:
    """Build an aiobotocore-backed proxy for ``config``'s region and endpoint."""
    kwargs: dict[str, Any] = {}
    if config.endpoint_url:
        kwargs["endpoint_url"] = config.endpoint_url
    return KinesisStreamProxy(config.region, **kwargs)


class KinesisStreamsSource(Generic[T]):
    """Entry point a runtime uses to build the pieces of the source.

    Every enumerator and every reader gets its own proxy from
    ``proxy_factory`` and closes it when stopped.
    """

    def __init__(
        self,
        config: KinesisSourceConfig | Mapping[str, Any],
        schema: IDeserializationSchema[T],
        *,
        proxy_factory: Callable[[KinesisSourceConfig], IStreamProxy] | None = None,
    ) -> None:
        self.config = (
            config
            if isinstance(config, KinesisSourceConfig)
            else validate_source_config(config)
        )
        self._schema = schema
        self._proxy_factory = proxy_factory or default_proxy_factory

    def create_enumerator(
        self, context: ISplitEnumeratorContext
    ) -> KinesisStreamsSourceEnumerator:
        return KinesisStreamsSourceEnumerator(
            context, self.config, self._proxy_factory(self.config)
        )

    def restore_enumerator(
        self, context: ISplitEnumeratorContext, state: EnumeratorState
    ) -> KinesisStreamsSourceEnumerator:
        return KinesisStreamsSourceEnumerator(
            context, self.config, self._proxy_factory(self.config), state=state
        )

    def create_reader(
        self,
        worker_id: int,
        context: ISourceReaderContext,
        output: ISourceOutput[T],
        checkpoint: ReaderCheckpoint | None = None,
    ) -> KinesisStreamsSourceReader[T]:
        split_reader = PollingKinesisShardSplitReader(
            self._proxy_factory(self.config),
            max_records=self.config.max_records_per_fetch,
            poll_interval=self.config.poll_interval,
            retry_policy=self.config.retry_policy(),
        )
        return KinesisStreamsSourceReader(
            worker_id,
            context,
            split_reader,
            KinesisStreamsRecordEmitter(self._schema),
            output,
            checkpoint=checkpoint,
        )

    def split_serializer(self) -> ShardSplitSerializer:
        return ShardSplitSerializer()

    def enumerator_state_serializer(self) -> EnumeratorStateSerializer:
        return EnumeratorStateSerializer()

    def reader_checkpoint_serializer(self) -> ReaderCheckpointSerializer:
        return ReaderCheckpointSerializer()
