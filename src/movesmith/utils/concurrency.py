"""Async concurrency primitives shared by the pipeline and the source adapters."""

from __future__ import annotations

import asyncio
import inspect
from contextlib import suppress
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Iterable

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation token backed by ``asyncio.Event``."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise asyncio.CancelledError("operation cancelled")


@dataclass(frozen=True, slots=True)
class Settled(Generic[T]):
    """Outcome of one awaitable run by :func:`gather_settled`."""

    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def gather_settled(
    awaitables: Iterable[Awaitable[T]],
    *,
    max_concurrency: int | None = None,
) -> list[Settled[T]]:
    """Run ``awaitables`` concurrently; one failure never cancels its siblings.

    Results keep input order. Cancellation of the caller still propagates.
    """

    if max_concurrency is not None and max_concurrency <= 0:
        raise ValueError("max_concurrency must be > 0")
    semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency else None

    async def _one(awaitable: Awaitable[T]) -> T:
        if semaphore is None:
            return await awaitable
        async with semaphore:
            return await awaitable

    outcomes = await asyncio.gather(*(_one(item) for item in awaitables), return_exceptions=True)
    settled: list[Settled[T]] = []
    for outcome in outcomes:
        if isinstance(outcome, asyncio.CancelledError):
            raise outcome
        if isinstance(outcome, BaseException):
            settled.append(Settled(error=outcome))
        else:
            settled.append(Settled(value=outcome))
    return settled


async def run_with_timeout(
    coroutine: Awaitable[T],
    timeout_seconds: float,
    cancel_token: CancellationToken | None = None,
) -> T:
    """Await ``coroutine`` for at most ``timeout_seconds``.

    Raises ``TimeoutError`` when the deadline passes and ``asyncio.CancelledError``
    when ``cancel_token`` fires first; in both cases the work is cancelled before
    this returns.
    """

    if timeout_seconds <= 0:
        _discard(coroutine)
        raise ValueError("timeout_seconds must be > 0")
    if cancel_token is not None and cancel_token.is_cancelled:
        _discard(coroutine)
        raise asyncio.CancelledError("operation cancelled")

    work: asyncio.Future[T] = asyncio.ensure_future(coroutine)
    watcher: asyncio.Task[None] | None = None
    if cancel_token is not None:
        watcher = asyncio.create_task(cancel_token.wait())
        watcher.add_done_callback(lambda _: work.cancel())
    try:
        async with asyncio.timeout(timeout_seconds):
            return await work
    finally:
        if watcher is not None:
            watcher.cancel()
            with suppress(asyncio.CancelledError):
                await watcher


def _discard(awaitable: Awaitable[object]) -> None:
    # An unscheduled coroutine warns at GC time unless closed.
    if inspect.iscoroutine(awaitable):
        awaitable.close()


__all__ = [
    "CancellationToken",
    "Settled",
    "gather_settled",
    "run_with_timeout",
]
