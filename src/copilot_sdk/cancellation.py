"""Cooperative cancellation for long-running awaits.

A :class:`CancellationToken` is handed to an operation (device polling, a
chat request, a stream) by the caller; calling :meth:`CancellationToken.cancel`
makes the operation raise :class:`~copilot_sdk.errors.OperationCancelled` at
its next suspension point.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Awaitable, TypeVar

from copilot_sdk.errors import OperationCancelled

T = TypeVar("T")


class CancellationToken:
    """An asyncio-friendly cancel signal."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        """Request cancellation.  Idempotent; the first reason wins."""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(self._reason or "operation cancelled")

    async def wait(self) -> None:
        await self._event.wait()

    async def run(self, aw: Awaitable[T]) -> T:
        """Await *aw*, abandoning it if the token fires first."""
        if self._event.is_set():
            if inspect.iscoroutine(aw):
                aw.close()
            self.raise_if_cancelled()
        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            self.raise_if_cancelled()
        return task.result()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled}, reason={self._reason!r})"


async def run_cancellable(aw: Awaitable[T], cancel: CancellationToken | None) -> T:
    """Await *aw* under *cancel* when one is given."""
    if cancel is None:
        return await aw
    return await cancel.run(aw)
