"""Tracking of concurrently-running startup jobs.

The :class:`JobEngine` runs coroutines on an asyncio event loop: by default a
private loop on a daemon thread, or a loop supplied by the host application.
Coroutines launched on it run concurrently with each other and with the
launching thread. Every launched coroutine is tracked as a :class:`Job` until
a barrier wait (:meth:`JobEngine.await_all` or
:meth:`JobEngine.await_all_async`) has seen it, and every other tracked job,
finish successfully.

Failures are isolated: a failing job never cancels its siblings. The barrier
reports the first failure, in completion order, once every job is terminal.
"""

import asyncio
import concurrent.futures
import itertools
import threading
import time
from dataclasses import dataclass
from typing import Any, Coroutine, Optional

import structlog

from ignition.errors import AggregateAwaitFailure

__all__ = ["Job", "JobEngine"]

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, eq=False)
class Job:
    """Handle to one launched coroutine.

    Attributes:
        name: Human-readable name used in logs and errors.
        number: Launch sequence number, unique per engine.
        future: Thread-safe future completed when the coroutine finishes.
    """

    name: str
    number: int
    future: concurrent.futures.Future

    @property
    def is_running(self) -> bool:
        return not self.future.done()

    @property
    def failure(self) -> Optional[BaseException]:
        """The error the job ended with, or None if it is running or succeeded."""
        if not self.future.done():
            return None
        if self.future.cancelled():
            return concurrent.futures.CancelledError()
        return self.future.exception()


class JobEngine:
    """Launches coroutines on an event loop and waits for them as a batch.

    Args:
        loop: Optional loop owned and run by the host application. Jobs are
            scheduled on it and :meth:`shutdown` leaves it running. Without it
            the engine starts a private loop on a daemon thread on first use.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop: Optional[asyncio.AbstractEventLoop] = loop
        self._owns_loop = loop is None
        self._thread: Optional[threading.Thread] = None
        self._start_lock = threading.Lock()
        self._jobs_lock = threading.Lock()
        self._jobs: list[Job] = []
        self._numbers = itertools.count()
        self._completions = itertools.count()
        self._failure_order: dict[int, int] = {}

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        """The loop jobs run on; a private one is started on first use."""
        with self._start_lock:
            if self._loop is None:
                loop = asyncio.new_event_loop()
                ready = threading.Event()
                thread = threading.Thread(
                    target=_run_loop, args=(loop, ready), name="ignition-jobs", daemon=True
                )
                thread.start()
                ready.wait()
                self._loop, self._thread = loop, thread
            return self._loop

    @property
    def jobs(self) -> list[Job]:
        """Snapshot of the currently tracked jobs, in launch order."""
        with self._jobs_lock:
            return list(self._jobs)

    def in_engine_thread(self) -> bool:
        """Whether the caller is running on the engine's loop."""
        if self._loop is None:
            return False
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    def launch(self, coroutine: Coroutine[Any, Any, Any], name: Optional[str] = None) -> Job:
        """Schedule a coroutine on the engine loop and track it.

        Returns immediately; the coroutine runs concurrently with the caller.

        Args:
            coroutine: The coroutine to run.
            name: Optional job name; defaults to the coroutine's qualified name.

        Returns:
            The :class:`Job` record tracking the coroutine.
        """
        loop = self.loop
        name = name or getattr(coroutine, "__qualname__", "job")
        with self._jobs_lock:
            number = next(self._numbers)
            future = asyncio.run_coroutine_threadsafe(
                self._tracked(coroutine, name, number), loop
            )
            job = Job(name, number, future)
            self._jobs.append(job)
        logger.debug("job_launched", job=name)
        return job

    async def run(self, coroutine: Coroutine[Any, Any, Any]) -> Any:
        """Await a coroutine on the engine loop, from whichever loop the caller is on."""
        loop = self.loop
        if asyncio.get_running_loop() is loop:
            return await coroutine
        return await asyncio.wrap_future(asyncio.run_coroutine_threadsafe(coroutine, loop))

    def is_all_done(self) -> bool:
        """True if no tracked job is still running. Does not clear the job list."""
        with self._jobs_lock:
            return not any(job.is_running for job in self._jobs)

    def await_all(self, timeout: Optional[float] = None):
        """Block until every tracked job has finished, then clear the job list.

        Jobs launched while waiting are waited for too.

        Args:
            timeout: Optional overall limit in seconds.

        Raises:
            AggregateAwaitFailure: If a job failed (wrapping the first failure),
                or the timeout elapsed (wrapping a ``TimeoutError``). The job
                list is left untouched in both cases.
            RuntimeError: If called from the engine's own loop.
        """
        if self.in_engine_thread():
            raise RuntimeError(
                "await_all() would block the job engine loop; use await_all_async()"
            )

        deadline = _deadline(timeout)
        waited: list[Job] = []
        while True:
            pending = self._not_yet_waited(waited)
            if not pending:
                break
            logger.debug("awaiting_jobs", count=len(pending))
            _, not_done = concurrent.futures.wait(
                [job.future for job in pending], timeout=_remaining(deadline)
            )
            if not_done:
                raise _timed_out(len(not_done), timeout)
            waited.extend(pending)

        self._finish(waited)

    async def await_all_async(self, timeout: Optional[float] = None):
        """Suspend until every tracked job has finished, then clear the job list.

        Same contract as :meth:`await_all`, without blocking the caller's loop.
        """
        deadline = _deadline(timeout)
        waited: list[Job] = []
        while True:
            pending = self._not_yet_waited(waited)
            if not pending:
                break
            logger.debug("awaiting_jobs", count=len(pending))
            done, not_done = await asyncio.wait(
                [asyncio.wrap_future(job.future) for job in pending],
                timeout=_remaining(deadline),
            )
            # failures are reported through _finish
            for wrapped in done:
                if not wrapped.cancelled():
                    wrapped.exception()
            if not_done:
                raise _timed_out(len(not_done), timeout)
            waited.extend(pending)

        self._finish(waited)

    def shutdown(self):
        """Cancel running jobs and, if the engine started its own loop, stop it.

        Raises:
            RuntimeError: If called from the engine's own private loop.
        """
        if self._owns_loop and self.in_engine_thread():
            raise RuntimeError("shutdown() cannot be called from the job engine loop")

        with self._start_lock:
            loop, thread = self._loop, self._thread
            if self._owns_loop:
                self._loop = self._thread = None
        if loop is None:
            return

        if not self._owns_loop:
            for job in self.jobs:
                job.future.cancel()
            return

        asyncio.run_coroutine_threadsafe(_cancel_tasks(), loop).result()
        loop.call_soon_threadsafe(loop.stop)
        thread.join()
        loop.close()

    async def _tracked(self, coroutine: Coroutine[Any, Any, Any], name: str, number: int) -> Any:
        try:
            return await coroutine
        except BaseException as error:
            # recorded before the job's future completes, so waiters always see it
            with self._jobs_lock:
                self._failure_order[number] = next(self._completions)
            if not isinstance(error, asyncio.CancelledError):
                logger.error("job_failed", job=name, exc_info=error)
            raise

    def _not_yet_waited(self, waited: list[Job]) -> list[Job]:
        seen = set(waited)
        with self._jobs_lock:
            return [job for job in self._jobs if job not in seen]

    def _finish(self, waited: list[Job]):
        failed = [job for job in waited if job.failure is not None]
        if failed:
            with self._jobs_lock:
                first = min(
                    failed, key=lambda job: self._failure_order.get(job.number, job.number)
                )
            error = first.failure
            raise AggregateAwaitFailure(error, first.name) from error

        seen = set(waited)
        with self._jobs_lock:
            self._jobs = [job for job in self._jobs if job not in seen]
            for job in waited:
                self._failure_order.pop(job.number, None)


def _run_loop(loop: asyncio.AbstractEventLoop, ready: threading.Event):
    asyncio.set_event_loop(loop)
    loop.call_soon(ready.set)
    loop.run_forever()


async def _cancel_tasks():
    tasks = [task for task in asyncio.all_tasks() if task is not asyncio.current_task()]
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


def _deadline(timeout: Optional[float]) -> Optional[float]:
    return None if timeout is None else time.monotonic() + timeout


def _remaining(deadline: Optional[float]) -> Optional[float]:
    return None if deadline is None else max(0.0, deadline - time.monotonic())


def _timed_out(still_running: int, timeout: Optional[float]) -> AggregateAwaitFailure:
    return AggregateAwaitFailure(
        TimeoutError(f"{still_running} startup job(s) still running after {timeout}s")
    )
