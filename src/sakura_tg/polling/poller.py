"""Update poller: long-poll ``getUpdates`` and dispatch to a handler."""

from __future__ import annotations

import asyncio
import functools
import signal
from collections.abc import Callable
from concurrent.futures import Executor
from typing import Any

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    stop_any,
    wait_exponential,
    wait_none,
)

from sakura_tg.api.base import Transport
from sakura_tg.config.models import PollingConfig
from sakura_tg.errors import DispatchFailure, SourceError
from sakura_tg.polling.cursor import PollCursor
from sakura_tg.polling.handler import (
    HandlerDescriptor,
    validate_error_hook,
    validate_handler,
)
from sakura_tg.polling.pool import WorkerPool
from sakura_tg.polling.source import UpdateSource
from sakura_tg.types import Update

logger = structlog.get_logger()

ErrorHook = Callable[[Update, BaseException], Any]


class Poller:
    """Polls for updates forever and hands each one to *handler*.

    Each cycle fetches a batch at the cursor offset, advances the cursor past
    every update and submits it to the worker pool, then polls again without
    waiting for the handlers to finish. The cursor moves before the handler
    completes, so an update in flight when the process dies is not fetched
    again.

    The handler, and the optional ``on_error(update, exc)`` hook called for
    every failed handler invocation, are validated here; an invalid one aborts
    construction.
    """

    def __init__(
        self,
        handler: Callable[[Any], Any],
        transport: Transport,
        max_concurrency: int | None = None,
        *,
        config: PollingConfig | None = None,
        executor: Executor | None = None,
        on_error: ErrorHook | None = None,
    ) -> None:
        self._descriptor: HandlerDescriptor = validate_handler(handler)
        self._on_error = validate_error_hook(on_error) if on_error is not None else None
        self._config = config or PollingConfig()
        self._source = UpdateSource(transport)
        self._cursor = PollCursor(self._config.initial_offset)
        if max_concurrency is None:
            max_concurrency = self._config.max_concurrency
        self._max_concurrency = max_concurrency
        self._executor = executor
        self._pool = WorkerPool(max_concurrency, executor=executor)
        self._running = False
        self._stop_requested = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._fetch_task: asyncio.Future[list[Update]] | None = None
        self._signal: int | None = None
        self._batches = 0
        self._dispatched = 0
        self._fetch_failures = 0

        backoff = self._config.backoff
        self._wait = (
            wait_exponential(
                multiplier=backoff.initial_wait_seconds,
                max=backoff.max_wait_seconds,
            )
            if backoff.enabled
            else wait_none()
        )
        if backoff.max_consecutive_failures is not None:
            self._stop = stop_any(
                self._stop_was_requested,
                stop_after_attempt(backoff.max_consecutive_failures),
            )
        else:
            self._stop = stop_any(self._stop_was_requested)

    # -- Introspection ---------------------------------------------------------

    @property
    def descriptor(self) -> HandlerDescriptor:
        return self._descriptor

    @property
    def offset(self) -> int:
        return self._cursor.offset

    @property
    def pool(self) -> WorkerPool:
        return self._pool

    @property
    def running(self) -> bool:
        return self._running

    # -- Lifecycle -------------------------------------------------------------

    def run(self) -> None:
        """Poll forever (blocking). Returns only after SIGINT/SIGTERM or stop()."""
        asyncio.run(self.serve(install_signal_handlers=True))

    def _on_signal(self, signum: int) -> None:
        if self._signal is not None:
            self._die_by_signal(signum)
            return
        self._signal = signum
        logger.info("poller.shutdown_signal", signal=signum)
        self.stop()

    def _die_by_signal(self, signum: int) -> None:
        logger.warning(
            "poller.forced_exit",
            signal=signum,
            in_flight=self._pool.in_flight,
            abandoned=self._pool.abandoned,
        )
        signal.signal(signum, signal.SIG_DFL)
        signal.raise_signal(signum)

    async def serve(self, *, install_signal_handlers: bool = False) -> None:
        """Async poll loop behind :meth:`run`.

        On exit in-flight handlers get ``shutdown_grace_seconds`` to finish.
        With signal handlers installed, a first SIGINT/SIGTERM stops the loop
        and a second one terminates the process with the default action, as
        does the first one when handlers are still running after the grace
        period.
        """
        if self._running:
            msg = "Poller is already running"
            raise RuntimeError(msg)
        if self._pool.closed:
            self._pool = WorkerPool(self._max_concurrency, executor=self._executor)

        loop = asyncio.get_running_loop()
        self._loop = loop
        self._signal = None
        installed: list[int] = []
        if install_signal_handlers:
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, self._on_signal, sig)
                except NotImplementedError:
                    continue
                installed.append(sig)

        self._running = True
        logger.info(
            "poller.started",
            handler=getattr(self._descriptor.handler, "__qualname__", None),
            parameter_kind=self._descriptor.kind.value,
            offset=self._cursor.offset,
            max_concurrency=self._pool.max_concurrency,
        )
        try:
            while not self._stop_requested:
                await self.poll_once()
        finally:
            self._running = False
            await self._pool.close(timeout=self._config.shutdown_grace_seconds)
            self._stop_requested = False
            for sig in installed:
                loop.remove_signal_handler(sig)
            logger.info("poller.stopped", offset=self._cursor.offset)
            if self._signal is not None and self._pool.abandoned:
                self._die_by_signal(self._signal)

    def stop(self) -> None:
        """Ask the loop to exit; a pending long poll is cancelled.

        May be called before :meth:`serve`, in which case the loop exits
        without fetching.
        """
        self._stop_requested = True
        fetch, loop = self._fetch_task, self._loop
        if fetch is not None and loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(fetch.cancel)

    # -- Polling ---------------------------------------------------------------

    async def poll_once(self) -> int:
        """Fetch one batch and submit every update; return how many were submitted."""
        fetch = asyncio.ensure_future(self._fetch())
        self._fetch_task = fetch
        try:
            batch = await fetch
        except asyncio.CancelledError:
            current = asyncio.current_task()
            outer_cancelled = current is not None and current.cancelling() > 0
            if fetch.cancelled() and self._stop_requested and not outer_cancelled:
                logger.debug("poller.fetch_cancelled", offset=self._cursor.offset)
                return 0
            raise
        except SourceError as exc:
            if self._stop_requested:
                return 0
            logger.error(
                "poller.fetch_gave_up",
                offset=self._cursor.offset,
                error=exc.description,
                failures=self._fetch_failures,
            )
            raise
        finally:
            self._fetch_task = None
        self._batches += 1
        if not batch:
            return 0

        for update in batch:
            self._cursor.observe(update)
            await self._submit(update)
        self._dispatched += len(batch)
        return len(batch)

    async def _submit(self, update: Update) -> None:
        on_error = (
            functools.partial(self._on_error, update)
            if self._on_error is not None
            else None
        )
        try:
            await self._pool.submit(
                self._descriptor.bind(update),
                name=f"update-{update.update_id}",
                on_error=on_error,
            )
        except DispatchFailure as exc:
            logger.error(
                "poller.dispatch_failed",
                update_id=update.update_id,
                offset=self._cursor.offset,
                error=str(exc),
            )
            raise

    async def _fetch(self) -> list[Update]:
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(SourceError),
            wait=self._wait,
            stop=self._stop,
            before_sleep=self._before_retry,
            reraise=True,
        )
        return await retrying(self._fetch_once)

    async def _fetch_once(self) -> list[Update]:
        try:
            return await self._source.fetch(
                self._cursor.offset,
                allowed_updates=self._config.allowed_updates,
                timeout=self._config.timeout_seconds,
                limit=self._config.limit,
            )
        except SourceError as exc:
            self._fetch_failures += 1
            logger.warning(
                "poller.fetch_failed",
                offset=self._cursor.offset,
                error=exc.description,
                error_code=exc.error_code,
            )
            raise

    def _stop_was_requested(self, retry_state: RetryCallState) -> bool:
        return self._stop_requested

    def _before_retry(self, retry_state: RetryCallState) -> None:
        sleep = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.debug(
            "poller.fetch_retry",
            attempt=retry_state.attempt_number,
            sleep_seconds=sleep,
        )

    async def health(self) -> dict[str, Any]:
        """Return loop counters and pool occupancy."""
        return {
            "status": "running" if self._running else "stopped",
            "offset": self._cursor.offset,
            "in_flight": self._pool.in_flight,
            "max_concurrency": self._pool.max_concurrency,
            "batches": self._batches,
            "dispatched": self._dispatched,
            "fetch_failures": self._fetch_failures,
            "handler_failures": self._pool.failed,
        }
