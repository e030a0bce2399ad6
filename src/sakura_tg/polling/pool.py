"""Bounded-concurrency worker pool for handler invocations."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any

import structlog

from sakura_tg.errors import DispatchFailure

logger = structlog.get_logger()

Task = Callable[[], Any]
ErrorCallback = Callable[[BaseException], Any]


def is_async_callable(obj: Any) -> bool:
    """True for coroutine functions and objects with an ``async def __call__``."""
    if inspect.iscoroutinefunction(obj):
        return True
    call = getattr(obj, "__call__", None)  # noqa: B004
    return inspect.iscoroutinefunction(call)


class WorkerPool:
    """Runs at most ``max_concurrency`` tasks at once.

    ``submit`` waits for a free slot and returns as soon as the task is
    scheduled. Coroutine functions run as asyncio tasks, plain callables on a
    thread pool. Anything a task raises, ``SystemExit`` included, is logged,
    counted and passed to the task's ``on_error`` callback; it never reaches
    the submitter or its siblings. Only cancellation propagates.
    """

    def __init__(
        self,
        max_concurrency: int = 10,
        *,
        executor: Executor | None = None,
    ) -> None:
        if max_concurrency < 1:
            msg = f"max_concurrency must be >= 1, got {max_concurrency}"
            raise ValueError(msg)
        self._max_concurrency = max_concurrency
        self._slots = asyncio.Semaphore(max_concurrency)
        self._owns_executor = executor is None
        self._executor: Executor = executor or ThreadPoolExecutor(
            max_workers=max_concurrency, thread_name_prefix="sakura-worker"
        )
        self._in_flight = 0
        self._failed = 0
        self._abandoned = 0
        self._closed = False
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def failed(self) -> int:
        return self._failed

    @property
    def abandoned(self) -> int:
        """Tasks still running when a bounded drain gave up on them."""
        return self._abandoned

    @property
    def closed(self) -> bool:
        return self._closed

    async def submit(
        self,
        task: Task,
        *,
        name: str | None = None,
        on_error: ErrorCallback | None = None,
    ) -> None:
        """Admit *task* once a slot is free, then schedule it and return."""
        if self._closed:
            msg = f"Could not schedule task {name or task!r}: the pool is closed"
            raise DispatchFailure(msg)
        await self._slots.acquire()
        self._in_flight += 1
        loop = asyncio.get_running_loop()
        work: Awaitable[Any] | None = None
        try:
            if is_async_callable(task):
                work = task()
            else:
                work = loop.run_in_executor(self._executor, task)
            runner = loop.create_task(self._run(work, name, on_error), name=name)
        except (RuntimeError, OSError) as exc:
            if inspect.iscoroutine(work):
                work.close()
            self._release()
            msg = f"Could not schedule task {name or task!r}: {exc}"
            raise DispatchFailure(msg) from exc
        self._tasks.add(runner)
        runner.add_done_callback(self._tasks.discard)

    async def _run(
        self,
        work: Awaitable[Any],
        name: str | None,
        on_error: ErrorCallback | None,
    ) -> None:
        try:
            await work
        except asyncio.CancelledError:
            raise
        except BaseException as exc:
            self._failed += 1
            logger.exception("worker_pool.task_failed", task=name, error=repr(exc))
            if on_error is not None:
                await self._notify(on_error, exc, name)
        finally:
            self._release()

    async def _notify(
        self, on_error: ErrorCallback, exc: BaseException, name: str | None
    ) -> None:
        try:
            result = on_error(exc)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except BaseException:
            logger.exception("worker_pool.error_hook_failed", task=name)

    def _release(self) -> None:
        self._in_flight -= 1
        self._slots.release()

    async def drain(self, timeout: float | None = None) -> int:
        """Wait until every admitted task has finished.

        With a *timeout*, tasks still running at the deadline are cancelled
        and counted as abandoned; the count is returned. A handler running on
        a worker thread cannot be interrupted and keeps its thread.
        """
        if timeout is None:
            while self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            return 0
        if not self._tasks:
            return 0
        _, pending = await asyncio.wait(list(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._abandoned += len(pending)
        return len(pending)

    async def close(self, timeout: float | None = None) -> None:
        """Drain in-flight work and shut down the owned thread pool."""
        abandoned = await self.drain(timeout)
        self._closed = True
        if abandoned:
            logger.warning("worker_pool.abandoned", tasks=abandoned, timeout=timeout)
        if self._owns_executor:
            self._executor.shutdown(wait=not abandoned, cancel_futures=True)
