"""Overall deadlines for pipeline calls, whose retry loop only bounds attempt count."""

from __future__ import annotations

import asyncio
import inspect
from contextlib import suppress
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable

T = TypeVar("T")

CANCELLED_MESSAGE = "operation cancelled"


class CancellationToken:
    """One-shot cancellation signal shared between a caller and a deadline race."""

    __slots__ = ("_fired",)

    def __init__(self) -> None:
        self._fired = asyncio.Event()

    def cancel(self) -> None:
        self._fired.set()

    @property
    def is_cancelled(self) -> bool:
        return self._fired.is_set()

    async def wait(self) -> None:
        await self._fired.wait()

    def raise_if_cancelled(self) -> None:
        if self.is_cancelled:
            raise asyncio.CancelledError(CANCELLED_MESSAGE)


async def run_with_timeout(
    awaitable: Awaitable[T],
    timeout_seconds: float,
    cancel_token: CancellationToken | None = None,
) -> T:
    """Race ``awaitable`` against a wall-clock deadline and an optional token.

    The loser is cancelled and awaited before this returns, so a child process
    owned by the inner call is reaped by its own cleanup. Raises ``TimeoutError``
    on the deadline and ``asyncio.CancelledError`` on the token.
    """
    if timeout_seconds <= 0 or (cancel_token is not None and cancel_token.is_cancelled):
        if inspect.iscoroutine(awaitable):
            awaitable.close()
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        raise asyncio.CancelledError(CANCELLED_MESSAGE)

    work: asyncio.Future[T] = asyncio.ensure_future(awaitable)
    racers: set[asyncio.Future[Any]] = {work}
    watcher: asyncio.Task[None] | None = None
    if cancel_token is not None:
        watcher = asyncio.create_task(cancel_token.wait())
        racers.add(watcher)

    try:
        finished, _ = await asyncio.wait(
            racers, timeout=timeout_seconds, return_when=asyncio.FIRST_COMPLETED
        )
        if work in finished:
            return work.result()
        await _cancel_and_reap(work)
        if watcher is not None and watcher in finished:
            raise asyncio.CancelledError(CANCELLED_MESSAGE)
        raise TimeoutError(f"operation timed out after {timeout_seconds} seconds")
    finally:
        if watcher is not None:
            await _cancel_and_reap(watcher)


async def _cancel_and_reap(future: asyncio.Future[Any]) -> None:
    future.cancel()
    with suppress(asyncio.CancelledError):
        await future


__all__ = ["CANCELLED_MESSAGE", "CancellationToken", "run_with_timeout"]
