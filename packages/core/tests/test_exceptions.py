from __future__ import annotations

from shardstream_core.primitives.exceptions import (
    ConfigurationError,
    InfrastructureError,
    PersistenceError,
    ShardStreamError,
    TransientError,
)


def test_hierarchy() -> None:
    assert issubclass(ConfigurationError, ShardStreamError)
    assert issubclass(InfrastructureError, ShardStreamError)
    assert issubclass(TransientError, InfrastructureError)
    assert issubclass(PersistenceError, InfrastructureError)
    assert not issubclass(ConfigurationError, InfrastructureError)


def test_transient_error_carries_code() -> None:
    err = TransientError("slow down", code="ProvisionedThroughputExceededException")
    assert err.code == "ProvisionedThroughputExceededException"
    assert str(err) == "slow down"
    assert TransientError("x").code is None
