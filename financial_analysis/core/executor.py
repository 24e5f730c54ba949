"""Run background coroutines without blocking the render loop.

Two interchangeable executors exist. Native hosts get a dedicated thread
running an asyncio event loop; single-threaded hosts (Python compiled to
WebAssembly and running inside a browser) schedule tasks on the loop that is
already running. :func:`select_executor` picks one at startup.
"""

from __future__ import annotations

import abc
import asyncio
import concurrent.futures
import logging
import sys
import threading
from typing import Any, Coroutine, Optional, Union

LOGGER = logging.getLogger(__name__)

UnitOfWork = Coroutine[Any, Any, None]


def _log_failure(name: str, exc: Optional[BaseException]) -> None:
    if exc is None or isinstance(exc, (asyncio.CancelledError, concurrent.futures.CancelledError)):
        return
    LOGGER.error("Background task %s failed; its event was dropped", name, exc_info=exc)


class TaskExecutor(abc.ABC):
    """Spawn self-contained coroutines whose only effect is sending events."""

    @abc.abstractmethod
    def spawn(self, unit_of_work: UnitOfWork, *, name: str | None = None) -> None:
        """Schedule ``unit_of_work`` and return immediately."""

    @abc.abstractmethod
    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work and release the underlying runtime."""

    @property
    @abc.abstractmethod
    def pending(self) -> int:
        """Number of spawned units that have not finished yet."""


class ThreadedTaskExecutor(TaskExecutor):
    """Executor backed by an asyncio loop running on a daemon thread."""

    def __init__(self, *, thread_name: str = "financial-analysis-worker") -> None:
        self._loop = asyncio.new_event_loop()
        self._ready = threading.Event()
        self._futures: set[concurrent.futures.Future[None]] = set()
        self._lock = threading.Lock()
        self._closed = False
        self._thread = threading.Thread(target=self._run_loop, name=thread_name, daemon=True)
        self._thread.start()
        self._ready.wait()
        LOGGER.debug("Started worker loop on thread %s", thread_name)

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.call_soon(self._ready.set)
        try:
            self._loop.run_forever()
        finally:
            leftovers = asyncio.all_tasks(self._loop)
            for task in leftovers:
                task.cancel()
            if leftovers:
                self._loop.run_until_complete(asyncio.gather(*leftovers, return_exceptions=True))
            self._loop.run_until_complete(self._loop.shutdown_asyncgens())
            self._loop.close()

    def spawn(self, unit_of_work: UnitOfWork, *, name: str | None = None) -> None:
        label = name or getattr(unit_of_work, "__qualname__", "task")
        with self._lock:
            if self._closed:
                unit_of_work.close()
                raise RuntimeError("executor has been shut down")
            future = asyncio.run_coroutine_threadsafe(unit_of_work, self._loop)
            self._futures.add(future)

        def _done(fut: concurrent.futures.Future[None]) -> None:
            with self._lock:
                self._futures.discard(fut)
            if not fut.cancelled():
                _log_failure(label, fut.exception())

        future.add_done_callback(_done)

    def shutdown(self, wait: bool = True, timeout: float | None = None) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            outstanding = list(self._futures)
        if wait and outstanding:
            concurrent.futures.wait(outstanding, timeout=timeout)
        for future in outstanding:
            future.cancel()
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout)
        LOGGER.debug("Worker loop stopped")

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._futures)


class CooperativeTaskExecutor(TaskExecutor):
    """Executor scheduling tasks on an event loop that the host already runs."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    def _resolve_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def spawn(self, unit_of_work: UnitOfWork, *, name: str | None = None) -> None:
        if self._closed:
            unit_of_work.close()
            raise RuntimeError("executor has been shut down")
        label = name or getattr(unit_of_work, "__qualname__", "task")
        task = self._resolve_loop().create_task(unit_of_work, name=label)
        self._tasks.add(task)

        def _done(done: asyncio.Task[None]) -> None:
            self._tasks.discard(done)
            if not done.cancelled():
                _log_failure(label, done.exception())

        task.add_done_callback(_done)

    async def join(self) -> None:
        """Wait until every spawned task, including ones spawned meanwhile, ends."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def shutdown(self, wait: bool = True) -> None:
        self._closed = True
        if not wait:
            for task in list(self._tasks):
                task.cancel()

    @property
    def pending(self) -> int:
        return len(self._tasks)


def is_single_threaded_host(platform: str | None = None) -> bool:
    """Return ``True`` when threads are unavailable (browser WebAssembly hosts)."""

    return (platform or sys.platform) in {"emscripten", "wasi"}


def select_executor(
    platform: str | None = None,
) -> Union[ThreadedTaskExecutor, CooperativeTaskExecutor]:
    """Build the executor matching the host's concurrency capabilities."""

    if is_single_threaded_host(platform):
        LOGGER.info("Single-threaded host detected; using cooperative executor")
        return CooperativeTaskExecutor()
    return ThreadedTaskExecutor()


__all__ = [
    "CooperativeTaskExecutor",
    "TaskExecutor",
    "ThreadedTaskExecutor",
    "UnitOfWork",
    "is_single_threaded_host",
    "select_executor",
]
