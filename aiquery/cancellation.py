"""Composable cancellation tokens for asyncio.

A token is cancelled at most once; later ``cancel()`` calls are no-ops.
``CancellationToken.any_of(a, b)`` yields a child that fires as soon as any
parent fires, carrying that parent's reason.
"""
from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from core.errors import OperationCancelled

__all__ = ["CancellationToken"]

T = TypeVar("T")

Callback = Callable[[str], Any]


class CancellationToken:
    def __init__(self) -> None:
        self._cancelled = False
        self._reason: Optional[str] = None
        self._callbacks: List[Callback] = []
        self._removers: List[Callable[[], None]] = []
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> bool:
        """Cancel the token. Returns False if it was already cancelled."""
        if self._cancelled:
            return False
        self._cancelled = True
        self._reason = reason
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(reason)
        return True

    def add_callback(self, callback: Callback) -> Callable[[], None]:
        """Run ``callback(reason)`` on cancellation; returns a remover."""
        if self._cancelled:
            callback(self._reason or "cancelled")
            return lambda: None
        self._callbacks.append(callback)

        def remove() -> None:
            with contextlib.suppress(ValueError):
                self._callbacks.remove(callback)

        return remove

    def cancel_after(self, delay: float, reason: str = "deadline") -> asyncio.TimerHandle:
        """Arm a timer on the running loop; cancel the handle to disarm it."""
        loop = asyncio.get_running_loop()
        return loop.call_later(delay, self.cancel, reason)

    async def wait(self) -> str:
        await self._event.wait()
        return self._reason or "cancelled"

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        When the token wins, the underlying task is cancelled and
        ``OperationCancelled`` is raised with the token's reason.
        """
        if self._cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise OperationCancelled(self._reason or "cancelled")

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task.done():
            return task.result()

        task.cancel()
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await task
        raise OperationCancelled(self._reason or "cancelled")

    @classmethod
    def any_of(cls, *tokens: Optional["CancellationToken"]) -> "CancellationToken":
        """A token cancelled when any of ``tokens`` is; ``None`` entries are skipped."""
        combined = cls()
        for token in tokens:
            if token is not None:
                combined._removers.append(token.add_callback(combined.cancel))
        return combined

    def detach(self) -> None:
        """Stop listening to the parents this token was composed from."""
        removers, self._removers = self._removers, []
        for remove in removers:
            remove()

    def __repr__(self) -> str:
        state = f"cancelled reason={self._reason!r}" if self._cancelled else "active"
        return f"<CancellationToken {state}>"
