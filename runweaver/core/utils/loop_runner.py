"""Sync -> async bridge for callers that are not running an event loop."""

from __future__ import annotations

import asyncio
import atexit
import contextlib
import threading
from concurrent.futures import Future
from typing import Any, Awaitable, Callable, TypeVar

from runweaver.core.logging import get_logger

T = TypeVar('T')


class LoopRunnerError(RuntimeError):
    """The background loop could not run the requested coroutine."""


class LoopRunner:
    """
    Owns one event loop on a daemon thread and runs coroutines on it.

    Run locks (asyncio.Lock) bind to the loop that first awaits them, so an
    orchestrator driven through a LoopRunner must only ever be driven through
    that same runner.
    """

    def __init__(self, thread_name: str = 'runweaver-loop') -> None:
        self.logger = get_logger('loop_runner')
        self._thread_name = thread_name
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._closed = False
        self._guard = threading.RLock()

    @property
    def running(self) -> bool:
        with self._guard:
            return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._guard:
            if self._closed:
                raise LoopRunnerError('Loop runner is closed and cannot be restarted')
            if self._thread is not None:
                return
            loop = asyncio.new_event_loop()
            thread = threading.Thread(
                target=loop.run_forever, name=self._thread_name, daemon=True,
            )
            try:
                thread.start()
            except RuntimeError as exc:
                loop.close()
                raise LoopRunnerError(
                    f'Failed to start loop thread: {type(exc).__name__}: {exc}',
                ) from exc
            self._loop = loop
            self._thread = thread

    def stop(self, join_timeout: float = 2.0) -> None:
        with self._guard:
            self._closed = True
            loop, thread = self._loop, self._thread
            if loop is None or thread is None:
                return
            loop.call_soon_threadsafe(loop.stop)
            thread.join(timeout=join_timeout)
            if thread.is_alive():
                self.logger.warning(
                    f'{self._thread_name} did not stop within {join_timeout}s; leaving loop open'
                )
                return
            loop.close()
            self._loop = None
            self._thread = None

    def call(
        self,
        coro_fn: Callable[..., Awaitable[T]],
        *args: Any,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> T:
        """Run `coro_fn(*args, **kwargs)` on the loop and block for its result."""
        self.start()
        with self._guard:
            loop = self._loop
        if loop is None:
            raise LoopRunnerError('Loop runner is not running')

        coro: Awaitable[T] | None = None
        try:
            coro = coro_fn(*args, **kwargs)
            fut: Future[T] = asyncio.run_coroutine_threadsafe(coro, loop)  # type: ignore[arg-type]
        except Exception as exc:
            if asyncio.iscoroutine(coro):
                with contextlib.suppress(RuntimeError):
                    coro.close()
            raise LoopRunnerError(
                f'Failed to schedule {getattr(coro_fn, "__name__", coro_fn)!r}: '
                f'{type(exc).__name__}: {exc}',
            ) from exc
        return fut.result(timeout=timeout)

    def __enter__(self) -> LoopRunner:
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()


_shared_runner: LoopRunner | None = None
_shared_guard = threading.Lock()


def _shutdown_shared_runner() -> None:
    global _shared_runner
    runner, _shared_runner = _shared_runner, None
    if runner is not None:
        runner.stop()


def get_shared_runner() -> LoopRunner:
    """Process-wide LoopRunner, created on first use and stopped at exit."""
    global _shared_runner
    with _shared_guard:
        if _shared_runner is None:
            runner = LoopRunner()
            runner.start()
            atexit.register(_shutdown_shared_runner)
            _shared_runner = runner
        return _shared_runner
