"""
Cooperative Cancellation

A CancellationToken is created per run and passed down every recursive
traversal call. Suspension points (HTTP calls, delays, scripts, loop and
parallel boundaries) observe it; code that never checks it runs to completion.
"""

import asyncio
from typing import Awaitable, Optional, TypeVar

from flowrunner.utils.errors import FlowCancelled

T = TypeVar('T')


class CancellationToken:
    """
    Single-shot cancellation signal for one run.

    Usage:
        token = CancellationToken()

        await token.sleep(1.5)                  # raises FlowCancelled early
        response = await token.guard(client.get(url))
        token.raise_if_cancelled()

        token.cancel()                          # from anywhere on the loop
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = 'Flow execution stopped') -> None:
        """Trigger cancellation. Idempotent; the first reason is kept."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise FlowCancelled(self.reason or 'Flow execution stopped')

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        await self._event.wait()

    async def sleep(self, seconds: float) -> None:
        """
        Sleep for the given time unless cancelled first.

        Raises:
            FlowCancelled: if the token fires before the timer elapses
        """
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(seconds, 0))
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await something, aborting it as soon as the token fires.

        The wrapped awaitable is cancelled (in-flight HTTP calls are torn
        down, pending timers cleared) and FlowCancelled is raised.
        """
        self.raise_if_cancelled()
        work = asyncio.ensure_future(awaitable)
        watcher = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, watcher}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            watcher.cancel()

        if work.done():
            return work.result()

        work.cancel()
        try:
            await work
        except asyncio.CancelledError:
            pass
        raise FlowCancelled(self.reason or 'Flow execution stopped')
