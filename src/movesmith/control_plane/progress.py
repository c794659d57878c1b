"""Bounded progress channel with drop-oldest backpressure and isolated listeners."""

from __future__ import annotations

import asyncio
import threading
import time
from collections import deque
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any

import structlog

from movesmith.constants import PROGRESS_BUFFER_SIZE, PROGRESS_DRAIN_SECONDS
from movesmith.domain.models import ProgressRecord

ProgressListener = Callable[[ProgressRecord], object]


@dataclass(frozen=True, slots=True)
class ListenerError:
    """Listener failure captured without interrupting the publisher."""

    listener: str
    error_type: str
    message: str


class _ListenerWorker:
    """Feeds one listener from its own drop-oldest buffer on a daemon thread."""

    def __init__(
        self,
        listener: ProgressListener,
        buffer_size: int,
        on_error: Callable[[ProgressListener, Exception], None],
    ) -> None:
        self.listener = listener
        self.dropped = 0
        self._pending = deque[ProgressRecord](maxlen=buffer_size)
        self._ready = threading.Condition()
        self._stopping = False
        self._on_error = on_error
        self._thread = threading.Thread(
            target=self._run,
            name=f"movesmith-progress-{getattr(listener, '__name__', 'listener')}",
            daemon=True,
        )
        self._thread.start()

    @property
    def alive(self) -> bool:
        return self._thread.is_alive()

    def offer(self, record: ProgressRecord) -> None:
        with self._ready:
            if self._stopping:
                return
            if len(self._pending) == self._pending.maxlen:
                self.dropped += 1
            self._pending.append(record)
            self._ready.notify()

    def stop(self) -> None:
        """Deliver what is already buffered, then exit."""

        with self._ready:
            self._stopping = True
            self._ready.notify()

    def join(self, timeout: float | None) -> bool:
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def _run(self) -> None:
        while True:
            with self._ready:
                while not self._pending and not self._stopping:
                    self._ready.wait()
                if not self._pending:
                    return
                record = self._pending.popleft()
            try:
                self.listener(record)
            except Exception as exc:  # noqa: BLE001
                self._on_error(self.listener, exc)


class ProgressChannel:
    """Progress stream whose publisher never waits on a consumer.

    Records go to an async-iterable buffer and to every subscribed listener. Each
    listener runs on its own thread behind a bounded buffer, so a slow or blocked
    listener loses its oldest unread records instead of stalling the pipeline. The
    newest record is never dropped.
    """

    def __init__(
        self,
        *,
        buffer_size: int = PROGRESS_BUFFER_SIZE,
        drain_timeout_seconds: float = PROGRESS_DRAIN_SECONDS,
        logger: Any | None = None,
    ) -> None:
        if not isinstance(buffer_size, int):
            raise ValueError(f"buffer_size must be an integer, got {type(buffer_size).__name__}")
        if buffer_size <= 0:
            raise ValueError("buffer_size must be > 0")
        if drain_timeout_seconds < 0:
            raise ValueError("drain_timeout_seconds must be >= 0")
        self._buffer_size = buffer_size
        self._drain_timeout = drain_timeout_seconds
        self._buffer = deque[ProgressRecord](maxlen=buffer_size)
        self._workers: dict[int, _ListenerWorker] = {}
        self._retired: list[_ListenerWorker] = []
        self._listener_errors: list[ListenerError] = []
        self._next_token = 1
        self._dropped = 0
        self._published = 0
        self._closed = False
        self._latest: ProgressRecord | None = None
        self._lock = threading.RLock()
        self._wakeup = asyncio.Event()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def dropped(self) -> int:
        return self._dropped

    @property
    def listener_dropped(self) -> int:
        """Records listeners never saw because their buffers overflowed."""

        with self._lock:
            return sum(worker.dropped for worker in (*self._workers.values(), *self._retired))

    @property
    def published(self) -> int:
        return self._published

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def latest(self) -> ProgressRecord | None:
        return self._latest

    @property
    def listener_errors(self) -> tuple[ListenerError, ...]:
        with self._lock:
            return tuple(self._listener_errors)

    def subscribe(self, listener: ProgressListener) -> int:
        if not callable(listener):
            raise ValueError("listener must be callable")
        with self._lock:
            if self._closed:
                raise RuntimeError("progress channel is closed")
            token = self._next_token
            self._next_token += 1
            self._workers[token] = _ListenerWorker(listener, self._buffer_size, self._record_error)
        return token

    def unsubscribe(self, token: int) -> bool:
        with self._lock:
            worker = self._workers.pop(token, None)
            if worker is None:
                return False
            self._retired.append(worker)
        worker.stop()
        return True

    def publish(self, record: ProgressRecord) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError("progress channel is closed")
            if len(self._buffer) == self._buffer.maxlen:
                self._dropped += 1
            self._buffer.append(record)
            self._published += 1
            self._latest = record
            workers = tuple(self._workers.values())
        for worker in workers:
            worker.offer(record)
        self._wakeup.set()

    def close(self) -> None:
        """Stop accepting records; listeners still receive what is buffered for them."""

        with self._lock:
            self._closed = True
            workers = tuple(self._workers.values())
        for worker in workers:
            worker.stop()
        self._wakeup.set()

    def wait_drained(self, timeout: float | None = None) -> bool:
        """Block until every stopped listener has finished, up to ``timeout`` seconds.

        Returns False when a listener is still busy at the deadline.
        """

        deadline = None if timeout is None else time.monotonic() + timeout
        with self._lock:
            workers = (*self._workers.values(), *self._retired)
        drained = True
        for worker in workers:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            drained = worker.join(remaining) and drained
        return drained

    async def aclose(self) -> bool:
        """Close the channel and give listeners a bounded window to catch up."""

        self.close()
        drained = await asyncio.to_thread(self.wait_drained, self._drain_timeout)
        if not drained:
            self._logger.warning(
                "progress_listeners_lagging",
                drain_timeout_seconds=self._drain_timeout,
                listener_dropped=self.listener_dropped,
            )
        return drained

    def drain(self) -> list[ProgressRecord]:
        """Remove and return every buffered record."""

        with self._lock:
            records = list(self._buffer)
            self._buffer.clear()
        return records

    async def __aiter__(self) -> AsyncIterator[ProgressRecord]:
        while True:
            with self._lock:
                record = self._buffer.popleft() if self._buffer else None
                finished = record is None and self._closed
                if record is None and not finished:
                    self._wakeup.clear()
            if record is not None:
                yield record
                continue
            if finished:
                return
            await self._wakeup.wait()

    def _record_error(self, listener: ProgressListener, exc: Exception) -> None:
        error = ListenerError(
            listener=getattr(listener, "__qualname__", repr(listener)),
            error_type=type(exc).__name__,
            message=str(exc),
        )
        with self._lock:
            self._listener_errors.append(error)
        self._logger.warning(
            "progress_listener_failed",
            listener=error.listener,
            error_type=error.error_type,
            error=error.message,
        )


__all__ = ["ListenerError", "ProgressChannel", "ProgressListener"]
