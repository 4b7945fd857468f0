"""Instrumentation hooks — wrap source operations for tracing and metrics.

Connectors run their I/O and state operations through
``get_hook_registry().execute_all(operation, attributes, next_handler)``.
Operation names are dotted, most specific last, e.g.
``kinesis.fetch.shardId-000000000001``; attributes use the same prefix
(``kinesis.shard_id``, ``kinesis.record_count``).
"""

from __future__ import annotations

import fnmatch
import functools
import logging
import re
from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Mapping

logger = logging.getLogger("shardstream.instrumentation")


@runtime_checkable
class InstrumentationHook(Protocol):
    """Wraps one operation; must await ``next_handler`` exactly once."""

    async def __call__(
        self,
        operation: str,
        attributes: dict[str, Any],
        next_handler: Callable[[], Awaitable[Any]],
    ) -> Any: ...


def _compile_patterns(patterns: Iterable[str]) -> re.Pattern[str] | None:
    translated = [fnmatch.translate(p) for p in patterns]
    if not translated:
        return None
    return re.compile("|".join(f"(?:{t})" for t in translated))


@dataclass(eq=False)
class HookRegistration:
    """A hook plus the operations and attribute values it applies to.

    ``operations`` are fnmatch patterns such as ``"kinesis.fetch.*"``; an
    empty tuple matches every operation. ``attribute_filters`` narrows further,
    e.g. ``{"kinesis.shard_id": "shardId-000000000001"}``.
    """

    hook: InstrumentationHook
    priority: int = 0
    operations: tuple[str, ...] = ()
    attribute_filters: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    _pattern: re.Pattern[str] | None = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._pattern = _compile_patterns(self.operations)

    def matches(self, operation: str, attributes: Mapping[str, Any]) -> bool:
        if not self.enabled:
            return False
        if self._pattern is not None and not self._pattern.match(operation):
            return False
        return all(
            attributes.get(key) == value
            for key, value in self.attribute_filters.items()
        )


class HookRegistry:
    """Hooks applied around instrumented operations, outermost first.

    Lower ``priority`` wraps further out; equal priorities keep registration
    order.
    """

    def __init__(self) -> None:
        self._registrations: list[HookRegistration] = []

    @property
    def registrations(self) -> list[HookRegistration]:
        return list(self._registrations)

    def register(
        self,
        hook: InstrumentationHook,
        *,
        priority: int = 0,
        operations: Iterable[str] = (),
        attribute_filters: Mapping[str, Any] | None = None,
        enabled: bool = True,
    ) -> HookRegistration:
        registration = HookRegistration(
            hook=hook,
            priority=priority,
            operations=tuple(operations),
            attribute_filters=dict(attribute_filters or {}),
            enabled=enabled,
        )
        self._registrations.append(registration)
        self._registrations.sort(key=lambda r: r.priority)
        logger.debug(
            "Registered hook %r (priority=%d, operations=%s)",
            hook,
            priority,
            registration.operations or "*",
        )
        return registration

    def unregister(self, registration: HookRegistration) -> None:
        """Remove ``registration``; unknown registrations are ignored."""
        if registration in self._registrations:
            self._registrations.remove(registration)

    async def execute_all(
        self,
        operation: str,
        attributes: dict[str, Any],
        next_handler: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Run ``next_handler`` inside every hook matching ``operation``."""
        call: Callable[[], Awaitable[Any]] = next_handler
        for registration in reversed(self._registrations):
            if registration.matches(operation, attributes):
                call = functools.partial(
                    registration.hook, operation, attributes, call
                )
        return await call()

    def clear(self) -> None:
        self._registrations.clear()


_hook_registry_var: ContextVar[HookRegistry | None] = ContextVar(
    "shardstream_hook_registry", default=None
)


def get_hook_registry() -> HookRegistry:
    """Return the registry for the current context, creating it on first use.

    Tasks started afterwards inherit the context and therefore share it.
    """
    registry = _hook_registry_var.get()
    if registry is None:
        registry = HookRegistry()
        _hook_registry_var.set(registry)
    return registry


def set_hook_registry(registry: HookRegistry) -> Token[HookRegistry | None]:
    """Install ``registry`` for the current context; returns a reset token."""
    return _hook_registry_var.set(registry)
