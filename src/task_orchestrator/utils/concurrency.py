"""Async concurrency primitives used across orchestration planes."""

from __future__ import annotations

import asyncio


class CancellationToken:
    """Cooperative cancellation token backed by ``asyncio.Event``.

    Holders poll ``is_cancelled`` at safe points (before admitting a task or
    starting a phase); in-flight work is never interrupted.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        if self._reason is None:
            self._reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    async def wait(self) -> None:
        await self._event.wait()


__all__ = ["CancellationToken"]
