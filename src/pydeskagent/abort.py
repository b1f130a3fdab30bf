from __future__ import annotations

import asyncio
import contextlib
from typing import Awaitable, TypeVar

from .errors import StreamAbortedError

T = TypeVar("T")


class AbortSignal:
    """Cooperative cancellation flag shared by one generation turn."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def _fire(self, reason: str) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def throw_if_aborted(self) -> None:
        if self.aborted:
            raise StreamAbortedError(self.reason or "aborted")

    async def race(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the signal fires first.

        On abort the pending work is cancelled and StreamAbortedError raised.
        """
        if self.aborted:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise StreamAbortedError(self.reason or "aborted")

        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            waiter.cancel()
            raise

        if work.done() and not self.aborted:
            waiter.cancel()
            return work.result()

        if work.done():
            # finished in the same tick as the abort; the outcome is discarded
            if not work.cancelled():
                work.exception()
        else:
            work.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await work
        raise StreamAbortedError(self.reason or "aborted")


class AbortController:
    def __init__(self) -> None:
        self.signal = AbortSignal()

    def abort(self, reason: str = "aborted") -> None:
        self.signal._fire(reason)
