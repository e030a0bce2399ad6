"""Unit tests for the bounded worker pool."""

from __future__ import annotations

import asyncio
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from sakura_tg.errors import DispatchFailure
from sakura_tg.polling.pool import WorkerPool


class _Gauge:
    """Thread-safe concurrent-execution counter."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.current = 0
        self.peak = 0

    def enter(self) -> None:
        with self._lock:
            self.current += 1
            self.peak = max(self.peak, self.current)

    def leave(self) -> None:
        with self._lock:
            self.current -= 1


class TestConstruction:
    def test_rejects_zero_concurrency(self):
        with pytest.raises(ValueError, match=">= 1"):
            WorkerPool(0)

    def test_initial_state(self):
        pool = WorkerPool(4)
        assert pool.max_concurrency == 4
        assert pool.in_flight == 0
        assert pool.failed == 0


class TestAdmission:
    async def test_fourth_submission_blocks_until_a_slot_frees(self):
        pool = WorkerPool(3)
        gate = asyncio.Event()

        async def blocked() -> None:
            await gate.wait()

        for _ in range(3):
            await pool.submit(blocked)
        assert pool.in_flight == 3

        fourth = asyncio.create_task(pool.submit(blocked))
        await asyncio.sleep(0.05)
        assert not fourth.done(), "submit should block while the pool is saturated"

        gate.set()
        await asyncio.wait_for(fourth, timeout=1.0)
        await pool.close()
        assert pool.in_flight == 0

    async def test_submit_returns_before_task_completes(self):
        pool = WorkerPool(2)
        gate = asyncio.Event()
        finished: list[bool] = []

        async def slow() -> None:
            await gate.wait()
            finished.append(True)

        await pool.submit(slow)
        assert finished == []
        assert pool.in_flight == 1

        gate.set()
        await pool.drain()
        assert finished == [True]

    async def test_async_tasks_never_exceed_limit(self):
        pool = WorkerPool(3)
        gauge = _Gauge()

        async def work() -> None:
            gauge.enter()
            assert pool.in_flight <= 3
            await asyncio.sleep(0.01)
            gauge.leave()

        for i in range(10):
            await pool.submit(work, name=f"task-{i}")
            assert pool.in_flight <= 3
        await pool.close()

        assert gauge.peak == 3
        assert gauge.current == 0

    async def test_sync_tasks_run_on_threads_within_limit(self):
        pool = WorkerPool(3)
        gauge = _Gauge()
        threads: set[str] = set()

        def work() -> None:
            gauge.enter()
            threads.add(threading.current_thread().name)
            time.sleep(0.02)
            gauge.leave()

        for _ in range(10):
            await pool.submit(work)
        await pool.close()

        assert gauge.peak <= 3
        assert threading.current_thread().name not in threads
        assert all(name.startswith("sakura-worker") for name in threads)

    async def test_limit_one_serialises_execution(self):
        pool = WorkerPool(1)
        events: list[str] = []

        def make(label: str):
            def work() -> None:
                events.append(f"{label}-start")
                time.sleep(0.02)
                events.append(f"{label}-end")

            return work

        await pool.submit(make("first"))
        await pool.submit(make("second"))
        await pool.close()

        assert events == ["first-start", "first-end", "second-start", "second-end"]


class TestIsolation:
    async def test_failing_task_is_contained(self):
        pool = WorkerPool(2)
        ran: list[str] = []

        async def boom() -> None:
            raise RuntimeError("handler exploded")

        async def fine() -> None:
            ran.append("fine")

        await pool.submit(boom, name="boom")
        await pool.submit(fine, name="fine")
        await pool.drain()

        assert ran == ["fine"]
        assert pool.failed == 1
        assert pool.in_flight == 0

    async def test_failing_sync_task_releases_slot(self):
        pool = WorkerPool(1)

        def boom() -> None:
            raise ValueError("nope")

        await pool.submit(boom)
        # the single slot must come back, otherwise this would hang
        await asyncio.wait_for(pool.submit(boom), timeout=1.0)
        await pool.close()

        assert pool.failed == 2
        assert pool.in_flight == 0

    async def test_sys_exit_in_sync_task_is_contained(self):
        pool = WorkerPool(1)

        def bail() -> None:
            sys.exit(3)

        await pool.submit(bail, name="bail")
        await asyncio.wait_for(pool.drain(), timeout=1.0)
        await pool.close()

        assert pool.failed == 1
        assert pool.in_flight == 0

    async def test_sys_exit_in_async_task_is_contained(self):
        pool = WorkerPool(2)
        ran: list[str] = []

        async def bail() -> None:
            sys.exit(3)

        async def fine() -> None:
            ran.append("fine")

        await pool.submit(bail)
        await pool.submit(fine)
        await pool.drain()

        assert ran == ["fine"]
        assert pool.failed == 1

    async def test_on_error_receives_the_exception(self):
        pool = WorkerPool(1)
        seen: list[BaseException] = []

        def boom() -> None:
            raise KeyError("missing")

        await pool.submit(boom, on_error=seen.append)
        await pool.close()

        assert len(seen) == 1
        assert isinstance(seen[0], KeyError)

    async def test_async_on_error_is_awaited(self):
        pool = WorkerPool(1)
        seen: list[str] = []

        async def boom() -> None:
            raise ValueError("bad")

        async def record(exc: BaseException) -> None:
            await asyncio.sleep(0)
            seen.append(str(exc))

        await pool.submit(boom, on_error=record)
        await pool.drain()

        assert seen == ["bad"]

    async def test_failing_on_error_is_contained(self):
        pool = WorkerPool(1)

        async def boom() -> None:
            raise ValueError("bad")

        def broken_hook(exc: BaseException) -> None:
            raise RuntimeError("hook exploded")

        await pool.submit(boom, on_error=broken_hook)
        await asyncio.wait_for(pool.submit(boom), timeout=1.0)
        await pool.drain()

        assert pool.failed == 2
        assert pool.in_flight == 0

    async def test_successful_task_does_not_call_on_error(self):
        pool = WorkerPool(1)
        seen: list[BaseException] = []

        await pool.submit(lambda: None, on_error=seen.append)
        await pool.close()

        assert seen == []


class TestAsyncCallables:
    async def test_object_with_async_call_runs_on_the_loop(self):
        pool = WorkerPool(1)
        loop_thread = threading.current_thread().name

        class Job:
            def __init__(self) -> None:
                self.thread: str | None = None

            async def __call__(self) -> None:
                await asyncio.sleep(0)
                self.thread = threading.current_thread().name

        job = Job()
        await pool.submit(job)
        await pool.close()

        assert job.thread == loop_thread
        assert pool.failed == 0


class TestBoundedDrain:
    async def test_drain_timeout_cancels_stuck_tasks(self):
        pool = WorkerPool(2)
        cancelled: list[bool] = []

        async def stuck() -> None:
            try:
                await asyncio.sleep(3600)
            except asyncio.CancelledError:
                cancelled.append(True)
                raise

        await pool.submit(stuck)
        abandoned = await asyncio.wait_for(pool.drain(timeout=0.05), timeout=1.0)

        assert abandoned == 1
        assert pool.abandoned == 1
        assert cancelled == [True]
        assert pool.in_flight == 0

    async def test_close_with_timeout_does_not_wait_for_threads(self):
        pool = WorkerPool(1)
        release = threading.Event()

        await pool.submit(lambda: release.wait(5))
        started = time.monotonic()
        await pool.close(timeout=0.05)
        elapsed = time.monotonic() - started
        release.set()

        assert elapsed < 1.0
        assert pool.abandoned == 1
        assert pool.closed

    async def test_closed_pool_rejects_work(self):
        pool = WorkerPool(1)
        await pool.close()

        with pytest.raises(DispatchFailure, match="closed"):
            await pool.submit(lambda: None)
        assert pool.in_flight == 0


class TestDispatchFailure:
    async def test_unschedulable_task_raises_and_releases_slot(self):
        executor = ThreadPoolExecutor(max_workers=1)
        executor.shutdown()
        pool = WorkerPool(1, executor=executor)

        with pytest.raises(DispatchFailure, match="Could not schedule"):
            await pool.submit(lambda: None, name="doomed")

        assert pool.in_flight == 0

    async def test_close_keeps_injected_executor_open(self):
        executor = ThreadPoolExecutor(max_workers=2)
        pool = WorkerPool(2, executor=executor)
        await pool.submit(lambda: None)
        await pool.close()

        # still usable by its owner
        assert executor.submit(lambda: 1).result(timeout=1) == 1
        executor.shutdown()
