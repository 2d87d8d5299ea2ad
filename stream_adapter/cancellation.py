"""
Cancellation for completion calls.

A host cancellation event and a timeout are merged into one AbortSignal.
The transport read loop (through ``CancellationCoordinator.guard``) and the
stream decoder both observe that same signal.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterable, AsyncIterator
from typing import TypeVar

from .errors import CancellationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

HOST_REASON = "host"
TIMEOUT_REASON = "timeout"


class AbortSignal:
    """One-shot, idempotent abort flag with an awaitable form."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self, reason: str = HOST_REASON) -> bool:
        """Fire the signal. Returns False if it had already fired."""
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        return True

    async def wait(self) -> str | None:
        await self._event.wait()
        return self.reason

    def raise_if_aborted(self) -> None:
        if self.aborted:
            raise CancellationError(self.reason or HOST_REASON)


class CancellationCoordinator:
    """
    Merges a host cancellation event and a timeout into a single AbortSignal.

    Use as an async context manager; leaving the context disposes the timer
    and the host watcher. The signal stays readable afterwards.
    """

    def __init__(
        self,
        host_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ):
        self.signal = AbortSignal()
        self._host_event = host_event
        self._timeout = timeout
        self._watcher: asyncio.Task[None] | None = None
        self._timer: asyncio.TimerHandle | None = None

    async def __aenter__(self) -> CancellationCoordinator:
        loop = asyncio.get_running_loop()

        if self._host_event is not None:
            if self._host_event.is_set():
                self.signal.abort(HOST_REASON)
            else:
                self._watcher = asyncio.create_task(self._watch_host())

        if self._timeout is not None and self._timeout > 0:
            self._timer = loop.call_later(self._timeout, self._on_timeout)

        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.dispose()

    async def _watch_host(self) -> None:
        assert self._host_event is not None
        await self._host_event.wait()
        if self.signal.abort(HOST_REASON):
            logger.info("Completion cancelled by host")

    def _on_timeout(self) -> None:
        if self.signal.abort(TIMEOUT_REASON):
            logger.warning("Completion aborted after %.1fs timeout", self._timeout)

    async def dispose(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._watcher is not None:
            self._watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._watcher
            self._watcher = None

    async def guard(self, source: AsyncIterable[T]) -> AsyncIterator[T]:
        """
        Re-yield items from ``source`` until it is exhausted or the signal fires.

        Each pending read is raced against the signal, so an abort interrupts
        a read that is still waiting on the network. The source is closed on
        exit either way.

        Raises:
            CancellationError: once the signal has fired.
        """
        iterator = aiter(source)
        abort_wait = asyncio.ensure_future(self.signal.wait())
        try:
            while True:
                self.signal.raise_if_aborted()
                next_item = asyncio.ensure_future(anext(iterator))
                done, _ = await asyncio.wait(
                    {next_item, abort_wait}, return_when=asyncio.FIRST_COMPLETED
                )
                if next_item not in done:
                    next_item.cancel()
                    with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration):
                        await next_item
                    self.signal.raise_if_aborted()
                try:
                    item = next_item.result()
                except StopAsyncIteration:
                    return
                yield item
        finally:
            abort_wait.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await abort_wait
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()
