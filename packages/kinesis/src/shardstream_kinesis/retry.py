"""RetryPolicy — bounded exponential backoff for transient stream errors."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar

from shardstream_core.primitives.exceptions import TransientError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

R = TypeVar("R")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with optional jitter and a ceiling on attempts.

    Attributes:
        max_attempts: Calls allowed per operation, the first one included.
        base_delay: Seconds to wait after the first failed attempt.
        max_delay: Upper bound on any single wait, jitter included.
        jitter: Scale each wait by a random factor in [0.5, 1.5].
    """

    max_attempts: int = 5
    base_delay: float = 0.1
    max_delay: float = 5.0
    jitter: bool = True
    sleep: Callable[[float], Awaitable[None]] = field(
        default=asyncio.sleep, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("base_delay and max_delay must be >= 0")
        if self.base_delay > self.max_delay:
            raise ValueError("base_delay must be <= max_delay")

    def should_retry(self, attempt: int) -> bool:
        """True if another call may follow failed call number ``attempt``."""
        return 1 <= attempt < self.max_attempts

    def delay_for_attempt(self, attempt: int) -> float:
        """Seconds to wait after failed call number ``attempt`` (1-based)."""
        if attempt < 1:
            return 0.0
        delay = min(self.base_delay * 2 ** (attempt - 1), self.max_delay)
        if self.jitter:
            delay = min(delay * random.uniform(0.5, 1.5), self.max_delay)  # noqa: S311
        return max(0.0, float(delay))

    async def wait_before_retry(self, attempt: int) -> None:
        delay = self.delay_for_attempt(attempt)
        if delay > 0:
            await self.sleep(delay)

    async def run(self, operation: Callable[[], Awaitable[R]], *, label: str) -> R:
        """Await ``operation`` until it succeeds or ``max_attempts`` is spent.

        Only ``TransientError`` is retried; the last one is re-raised once the
        ceiling is hit. Anything else propagates immediately.
        """
        attempt = 1
        while True:
            try:
                return await operation()
            except TransientError as e:
                if not self.should_retry(attempt):
                    logger.error(
                        "Giving up on %s after %d attempts: %s", label, attempt, e
                    )
                    raise
                logger.warning(
                    "Transient error on %s (attempt %d/%d): %s",
                    label,
                    attempt,
                    self.max_attempts,
                    e,
                )
                await self.wait_before_retry(attempt)
                attempt += 1
