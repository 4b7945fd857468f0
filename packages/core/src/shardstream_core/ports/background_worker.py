"""IBackgroundWorker — start/stop contract for components that own asyncio tasks."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class IBackgroundWorker(Protocol):
    """A component that runs its own task(s) between ``start`` and ``stop``.

    ``start`` returns once the component is serving; a second call is a
    no-op. ``stop`` cancels the tasks, releases clients the component owns
    and may be called even if ``start`` failed halfway.

    Implemented by the split enumerator and the per-worker source reader.
    """

    async def start(self) -> None: ...

    async def stop(self) -> None: ...
