"""Async concurrency primitives used by the check executor."""

from __future__ import annotations

import asyncio
import contextvars
import functools
import inspect
import os
import threading
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Iterable

T = TypeVar("T")

MAX_DEFAULT_CONCURRENCY: Final[int] = 32


def default_concurrency() -> int:
    """Worker count sized to available cores, capped and never below one."""

    return max(1, min(os.cpu_count() or 1, MAX_DEFAULT_CONCURRENCY))


class CancellationToken:
    """Cooperative cancellation flag that async waiters can block on."""

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


class BoundedSemaphore:
    """``asyncio.Semaphore`` wrapper that records current and peak usage."""

    def __init__(self, limit: int) -> None:
        if limit <= 0:
            raise ValueError("limit must be > 0")
        self._limit = limit
        self._semaphore = asyncio.Semaphore(limit)
        self._in_use = 0
        self._peak = 0

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def in_use(self) -> int:
        return self._in_use

    @property
    def peak(self) -> int:
        return self._peak

    async def acquire(self) -> None:
        await self._semaphore.acquire()
        self._in_use += 1
        if self._in_use > self._peak:
            self._peak = self._in_use

    def release(self) -> None:
        if self._in_use <= 0:
            raise RuntimeError("release called more times than acquire")
        self._in_use -= 1
        self._semaphore.release()

    @asynccontextmanager
    async def permit(self) -> AsyncIterator[None]:
        await self.acquire()
        try:
            yield
        finally:
            self.release()


@dataclass(slots=True)
class WorkerPool(Generic[T]):
    """Gather coroutines under a concurrency bound, keeping submission order.

    The first task exception cancels the tasks still pending and propagates, so
    callers wanting per-item isolation must catch inside the coroutine they submit.
    """

    max_concurrency: int
    cancel_token: CancellationToken | None = None
    _semaphore: BoundedSemaphore = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_concurrency <= 0:
            raise ValueError("max_concurrency must be > 0")
        self._semaphore = BoundedSemaphore(self.max_concurrency)

    @property
    def peak_concurrency(self) -> int:
        return self._semaphore.peak

    async def gather(self, coroutines: Iterable[Awaitable[T]]) -> list[T]:
        pending_work = list(coroutines)
        if self.cancel_token is not None and self.cancel_token.is_cancelled:
            for item in pending_work:
                _close_unscheduled_coroutine(item)
            raise asyncio.CancelledError("operation cancelled")

        tasks = [asyncio.create_task(self._bounded(item)) for item in pending_work]
        waiting: set[asyncio.Future[object]] = set(tasks)
        watcher = self._watch_cancellation()
        if watcher is not None:
            waiting.add(watcher)

        try:
            while any(not task.done() for task in tasks):
                done, waiting = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
                if watcher is not None and watcher in done:
                    raise asyncio.CancelledError("operation cancelled")
                for task in done:
                    if task is not watcher and not task.cancelled() and task.exception():
                        raise task.exception()  # type: ignore[misc]
        except BaseException:
            await _cancel_and_drain(tasks)
            raise
        finally:
            if watcher is not None:
                await _cancel_and_drain([watcher])
        return [task.result() for task in tasks]

    def _watch_cancellation(self) -> asyncio.Task[None] | None:
        if self.cancel_token is None:
            return None
        return asyncio.create_task(self.cancel_token.wait())

    async def _bounded(self, coroutine: Awaitable[T]) -> T:
        async with self._semaphore.permit():
            if self.cancel_token is not None:
                self.cancel_token.raise_if_cancelled()
            return await coroutine


async def run_with_timeout(
    coroutine: Awaitable[T],
    timeout_seconds: float,
    cancel_token: CancellationToken | None = None,
) -> T:
    """Await ``coroutine`` for at most ``timeout_seconds``.

    Raises ``TimeoutError`` when time runs out and ``asyncio.CancelledError`` when
    ``cancel_token`` fires first; the work is cancelled in both cases.
    """

    if timeout_seconds <= 0:
        _close_unscheduled_coroutine(coroutine)
        raise ValueError("timeout_seconds must be > 0")
    if cancel_token is not None and cancel_token.is_cancelled:
        _close_unscheduled_coroutine(coroutine)
        raise asyncio.CancelledError("operation cancelled")

    work: asyncio.Future[T] = asyncio.ensure_future(coroutine)
    watcher = None if cancel_token is None else asyncio.create_task(cancel_token.wait())
    waiting: set[asyncio.Future[object]] = {work}
    if watcher is not None:
        waiting.add(watcher)

    try:
        done, _ = await asyncio.wait(
            waiting, timeout=timeout_seconds, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        await _cancel_and_drain([work])
        raise
    finally:
        if watcher is not None:
            await _cancel_and_drain([watcher])

    if work in done:
        return work.result()
    await _cancel_and_drain([work])
    if watcher is not None and watcher in done:
        raise asyncio.CancelledError("operation cancelled")
    raise TimeoutError(f"timed out after {timeout_seconds:g}s")


async def run_in_thread(
    func: Callable[..., T], /, *args: Any, name: str | None = None, **kwargs: Any
) -> T:
    """Run blocking ``func`` on its own daemon thread and await the outcome.

    Unlike a shared executor, a call whose waiter gives up (timeout or cancellation)
    leaves its thread behind without occupying a slot that later calls queue for.
    The thread inherits the caller's context variables.
    """

    loop = asyncio.get_running_loop()
    future: asyncio.Future[T] = loop.create_future()
    call = functools.partial(contextvars.copy_context().run, func, *args, **kwargs)

    def _target() -> None:
        try:
            result = call()
        except Exception as exc:  # noqa: BLE001
            _deliver(loop, future, None, exc)
        else:
            _deliver(loop, future, result, None)

    threading.Thread(target=_target, name=name, daemon=True).start()
    return await future


def _deliver(
    loop: asyncio.AbstractEventLoop,
    future: asyncio.Future[T],
    result: T | None,
    error: BaseException | None,
) -> None:
    def _settle() -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)  # type: ignore[arg-type]

    if loop.is_closed():
        return
    try:
        loop.call_soon_threadsafe(_settle)
    except RuntimeError:
        # The loop may close between the check above and the call.
        if not loop.is_closed():
            raise


async def _cancel_and_drain(futures: Iterable[asyncio.Future[object]]) -> None:
    unfinished = [item for item in futures if not item.done()]
    for item in unfinished:
        item.cancel()
    if unfinished:
        await asyncio.gather(*unfinished, return_exceptions=True)


def _close_unscheduled_coroutine(awaitable: Awaitable[object]) -> None:
    # Unscheduled coroutine objects would otherwise warn "never awaited" at GC time.
    if inspect.iscoroutine(awaitable):
        awaitable.close()


__all__ = [
    "MAX_DEFAULT_CONCURRENCY",
    "BoundedSemaphore",
    "CancellationToken",
    "WorkerPool",
    "default_concurrency",
    "run_in_thread",
    "run_with_timeout",
]
