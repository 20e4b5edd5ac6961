"""Memoized, cycle-safe resolution of components and their dependencies.

The :class:`Orchestrator` produces each component exactly once, after every
component it depends on. Components are resolved either synchronously on the
calling thread (:meth:`Orchestrator.resolve_sync`) or as coroutines on the
job engine's event loop (:meth:`Orchestrator.resolve_async`,
:meth:`Orchestrator.launch_async`).

Both paths walk the dependency graph depth-first, in declared order, and
share a single write-once cache:

- A synchronous resolution holds a re-entrant lock for its whole duration,
  so concurrent callers serialize and never construct a component twice.
- Asynchronous resolutions run on the job engine loop and take no lock. An
  asynchronous component is claimed with an in-flight future before its
  first suspension point; later requests for it await that future, so
  independent components are built concurrently and each exactly once.
  Synchronous components met on the async path are constructed under the
  synchronous lock.

A component that fails is not cached; resolving it again retries it.
Dependencies that were built before the failure stay cached.
"""

import asyncio
import inspect
import threading
from typing import Any, Callable, Iterable, Optional, Protocol

import structlog

from ignition.domain import (
    ComponentDescriptor,
    ComponentId,
    ComponentKey,
    InitializerKind,
    identity_of,
)
from ignition.errors import (
    CycleDetected,
    DiscoveryError,
    InitializationFailed,
    StartupError,
)
from ignition.initializers import Initializer, kind_of
from ignition.jobs import Job, JobEngine
from ignition.settings import IgnitionSettings

__all__ = ["Lookup", "Discovery", "Orchestrator"]

logger = structlog.get_logger(__name__)


class Lookup(Protocol):
    """Obtains a fresh initializer for a component identity."""

    def lookup(self, key: ComponentKey) -> Initializer: ...


class Discovery(Protocol):
    """Reports which components to initialize eagerly."""

    def discover(self, profiles: Optional[set[str]] = None) -> Iterable[ComponentDescriptor]: ...


class Orchestrator:
    """Resolves components through a lookup collaborator and caches the results.

    Args:
        lookup: Source of initializers, usually an
            :class:`~ignition.registry.InitializerRegistry`.
        context: Opaque object handed to every initializer's ``create``.
        job_engine: Engine running asynchronous jobs; a private one is created
            if omitted.
        settings: Settings; read from the environment if omitted.
    """

    def __init__(
        self,
        lookup: Lookup,
        context: Any = None,
        job_engine: Optional[JobEngine] = None,
        settings: Optional[IgnitionSettings] = None,
    ):
        self._lookup = lookup
        self._context = context
        self._jobs = job_engine or JobEngine()
        self._settings = settings or IgnitionSettings()

        self._cache: dict[ComponentId, Any] = {}
        self._lock = threading.RLock()
        # touched only on the engine loop
        self._in_flight: dict[ComponentId, asyncio.Future] = {}
        self._claimed_by: dict[ComponentId, _Resolution] = {}

        self._sync_discovered: set[ComponentId] = set()
        self._async_discovered: set[ComponentId] = set()

    @property
    def context(self) -> Any:
        return self._context

    @property
    def job_engine(self) -> JobEngine:
        return self._jobs

    def resolve_sync(self, key: ComponentKey) -> Any:
        """Resolve a synchronous component and its dependencies on the calling thread.

        Returns the cached value immediately if the component was already built.

        Raises:
            CycleDetected: If the dependency chain loops back on itself.
            InitializationFailed: If a component's initializer could not be
                obtained, is asynchronous, or failed in ``create``.
        """
        identity = identity_of(key)
        with self._lock:
            if identity in self._cache:
                return self._cache[identity]
            return self._resolve(identity, set())

    async def resolve_async(self, key: ComponentKey) -> Any:
        """Resolve a component and its dependencies as a coroutine.

        The resolution runs on the job engine's loop, whichever loop awaits it.

        Raises:
            CycleDetected: If the dependency chain loops back on itself.
            InitializationFailed: If a component's initializer could not be
                obtained or failed in ``create``.
        """
        identity = identity_of(key)
        return await self._jobs.run(self._resolve_top_level_async(identity))

    def launch_async(self, key: ComponentKey) -> Job:
        """Resolve a component in the background as a tracked job.

        Returns:
            The :class:`~ignition.jobs.Job` running the resolution.
        """
        identity = identity_of(key)
        return self._jobs.launch(self._resolve_top_level_async(identity), name=identity)

    def bulk_initialize(self, descriptors: Iterable[ComponentDescriptor]) -> list[Job]:
        """Initialize a batch of discovered components.

        Every component is first recorded as eagerly initialized. Synchronous
        components are then resolved one after another, in the given order,
        and asynchronous ones launched as jobs.

        Returns:
            The jobs launched for the asynchronous components.
        """
        descriptors = list(descriptors)
        sync_ids = [d.identity for d in descriptors if d.kind is InitializerKind.SYNC]
        async_ids = [d.identity for d in descriptors if d.kind is InitializerKind.ASYNC]

        self._sync_discovered.update(sync_ids)
        self._async_discovered.update(async_ids)

        for identity in sync_ids:
            self.resolve_sync(identity)
        return [self.launch_async(identity) for identity in async_ids]

    def discover_and_initialize(
        self, discovery: Discovery, profiles: Optional[set[str]] = None
    ) -> list[Job]:
        """Ask a discovery collaborator for components and initialize them in bulk.

        Raises:
            DiscoveryError: If discovery itself fails.
        """
        try:
            descriptors = list(discovery.discover(profiles))
        except StartupError:
            raise
        except Exception as error:
            raise DiscoveryError(f"Component discovery failed: {error!r}") from error
        return self.bulk_initialize(descriptors)

    def is_eagerly_initialized(self, key: ComponentKey) -> bool:
        """Whether the component was part of a bulk initialization, finished or not."""
        identity = identity_of(key)
        return identity in self._sync_discovered or identity in self._async_discovered

    def is_initialized(self, key: ComponentKey) -> bool:
        """Whether the component has been built and cached."""
        return identity_of(key) in self._cache

    def await_all_jobs(self, timeout: Optional[float] = None):
        """Block until every launched job has finished. See :meth:`JobEngine.await_all`."""
        self._jobs.await_all(self._timeout(timeout))

    async def await_all_jobs_async(self, timeout: Optional[float] = None):
        """Suspend until every launched job has finished. See :meth:`JobEngine.await_all_async`."""
        await self._jobs.await_all_async(self._timeout(timeout))

    def is_all_done(self) -> bool:
        """Whether no launched job is still running."""
        return self._jobs.is_all_done()

    def on_startup_complete(self, callback: Callable[["Orchestrator"], Any]) -> Any:
        """Wait for all jobs, then call ``callback(self)`` and return its result."""
        self.await_all_jobs()
        return callback(self)

    async def on_startup_complete_async(self, callback: Callable[["Orchestrator"], Any]) -> Any:
        """Wait for all jobs, then call ``callback(self)``, awaiting it if it returns an awaitable."""
        await self.await_all_jobs_async()
        result = callback(self)
        if inspect.isawaitable(result):
            result = await result
        return result

    def close(self):
        """Shut down the job engine."""
        self._jobs.shutdown()

    def __enter__(self) -> "Orchestrator":
        return self

    def __exit__(self, *args):
        self.close()

    def _resolve(self, identity: ComponentId, in_progress: set[ComponentId]) -> Any:
        if identity in self._cache:
            return self._cache[identity]
        if identity in in_progress:
            raise CycleDetected(identity)

        in_progress.add(identity)
        try:
            initializer, kind = self._initializer_for(identity)
            if kind is InitializerKind.ASYNC:
                error = TypeError(f"{identity} is asynchronous; resolve it with resolve_async()")
                raise InitializationFailed(identity, error) from error
            return self._construct(identity, initializer, in_progress)
        finally:
            in_progress.discard(identity)

    def _construct(
        self, identity: ComponentId, initializer: Initializer, in_progress: set[ComponentId]
    ) -> Any:
        for dependency in initializer.dependencies():
            dependency_id = identity_of(dependency)
            if dependency_id not in self._cache:
                self._resolve(dependency_id, in_progress)

        self._trace("component_initializing", identity)
        try:
            value = initializer.create(self._context)
        except Exception as error:
            raise InitializationFailed(identity, error) from error
        self._cache[identity] = value
        self._trace("component_initialized", identity)
        return value

    async def _resolve_top_level_async(self, identity: ComponentId) -> Any:
        return await self._resolve_async(identity, _Resolution())

    async def _resolve_async(self, identity: ComponentId, chain: "_Resolution") -> Any:
        if identity in self._cache:
            return self._cache[identity]
        if identity in chain.in_progress:
            raise CycleDetected(identity)
        pending = self._in_flight.get(identity)
        if pending is not None:
            return await self._await_in_flight(identity, pending, chain)

        chain.in_progress.add(identity)
        try:
            initializer, kind = self._initializer_for(identity)
            if kind is InitializerKind.SYNC:
                with self._lock:
                    if identity in self._cache:
                        return self._cache[identity]
                    return self._construct(identity, initializer, chain.in_progress)
            return await self._construct_async(identity, initializer, chain)
        finally:
            chain.in_progress.discard(identity)

    async def _construct_async(
        self, identity: ComponentId, initializer: Initializer, chain: "_Resolution"
    ) -> Any:
        # Claimed before the first suspension point; later requests await the claim.
        pending = asyncio.get_running_loop().create_future()
        self._in_flight[identity] = pending
        self._claimed_by[identity] = chain
        try:
            for dependency in initializer.dependencies():
                dependency_id = identity_of(dependency)
                if dependency_id not in self._cache:
                    await self._resolve_async(dependency_id, chain)

            self._trace("component_initializing", identity)
            try:
                value = await initializer.create(self._context)
            except Exception as error:
                logger.error("component_failed", component=identity, exc_info=error)
                raise InitializationFailed(identity, error) from error
            with self._lock:
                self._cache[identity] = value
            self._trace("component_initialized", identity)
        except asyncio.CancelledError:
            pending.cancel()
            raise
        except BaseException as error:
            pending.set_exception(error)
            # marked retrieved for when no other chain is waiting
            pending.exception()
            raise
        else:
            pending.set_result(value)
            return value
        finally:
            del self._in_flight[identity]
            del self._claimed_by[identity]

    async def _await_in_flight(
        self, identity: ComponentId, pending: asyncio.Future, chain: "_Resolution"
    ) -> Any:
        blocker = self._claimed_by[identity]
        while blocker is not None:
            if blocker is chain:
                raise CycleDetected(identity)
            waiting_on = blocker.waiting_on
            blocker = self._claimed_by.get(waiting_on) if waiting_on is not None else None

        chain.waiting_on = identity
        try:
            return await asyncio.shield(pending)
        finally:
            chain.waiting_on = None

    def _initializer_for(self, identity: ComponentId) -> tuple[Initializer, InitializerKind]:
        try:
            initializer = self._lookup.lookup(identity)
            return initializer, kind_of(initializer)
        except Exception as error:
            raise InitializationFailed(identity, error) from error

    def _timeout(self, timeout: Optional[float]) -> Optional[float]:
        return timeout if timeout is not None else self._settings.await_timeout

    def _trace(self, event: str, identity: ComponentId):
        if self._settings.trace_initialization:
            logger.info(event, component=identity)
        else:
            logger.debug(event, component=identity)


class _Resolution:
    """One top-level asynchronous resolution: what it is building and what it waits on."""

    def __init__(self):
        self.in_progress: set[ComponentId] = set()
        self.waiting_on: Optional[ComponentId] = None
