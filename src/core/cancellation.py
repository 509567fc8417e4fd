"""
Cancellation token for a running turn.

A turn runs in its own asyncio task. Whoever stops it (the stop endpoint, a
newer turn on the same chat, server shutdown) calls ``cancel`` with a reason;
the task running inside ``cancellation_scope`` then receives
``asyncio.CancelledError`` wherever it is awaiting, including mid model call
or mid tool execution.
"""

from __future__ import annotations

import asyncio
import contextlib

from collections.abc import AsyncIterator


class CancellationToken:
    """One-shot, idempotent cancellation signal carrying a reason.

    Example:
        token = CancellationToken()

        async with token.cancellation_scope():
            await orchestrator.run()  # elsewhere: await token.cancel("Stopped by user")
    """

    __slots__ = ("_event", "_reason")

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def cancel_reason(self) -> str | None:
        return self._reason

    async def cancel(self, reason: str | None = None) -> None:
        """Fire the token; the first reason wins."""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    @contextlib.asynccontextmanager
    async def cancellation_scope(self) -> AsyncIterator[None]:
        """Cancel the enclosing task when the token fires.

        Raises:
            asyncio.CancelledError: If the token already fired before the scope was entered
        """
        if self.is_cancelled:
            raise asyncio.CancelledError(self._reason)

        task = asyncio.current_task()

        async def watch() -> None:
            await self._event.wait()
            if task is not None and not task.done():
                task.cancel(self._reason)

        watcher = asyncio.create_task(watch())
        try:
            yield
        finally:
            watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watcher


__all__ = ["CancellationToken"]
