"""High level entry points for constructing orchestrators."""

from typing import Any, Optional

from ignition.jobs import JobEngine
from ignition.orchestrator import Orchestrator
from ignition.registry import InitializerRegistry
from ignition.settings import IgnitionSettings

__all__ = ["make_orchestrator", "start"]


def make_orchestrator(
    registry: InitializerRegistry,
    context: Any = None,
    settings: Optional[IgnitionSettings] = None,
    job_engine: Optional[JobEngine] = None,
) -> Orchestrator:
    """Construct an :class:`Orchestrator` resolving components from a registry.

    The orchestrator is an ordinary object: create one at application startup
    and pass it to whatever needs components. Its cache lives as long as it does.

    Args:
        registry: The registry supplying initializers.
        context: Opaque object handed to every initializer's ``create``.
        settings: Optional settings; read from the environment if omitted.
        job_engine: Optional job engine, e.g. one shared with other
            orchestrators or replaced in tests.

    Returns:
        A new orchestrator with an empty cache.
    """
    return Orchestrator(registry, context, job_engine, settings)


def start(
    registry: InitializerRegistry,
    context: Any = None,
    profiles: Optional[set[str]] = None,
    settings: Optional[IgnitionSettings] = None,
) -> Orchestrator:
    """Construct an orchestrator and initialize every eager component in the registry.

    Synchronous components are built before this returns; asynchronous ones
    keep running in the background until awaited with
    :meth:`Orchestrator.await_all_jobs`.

    Example:
        >>> orchestrator = start(registry, context=app_config, profiles={"prod"})
        >>> orchestrator.await_all_jobs()
    """
    orchestrator = make_orchestrator(registry, context, settings)
    orchestrator.discover_and_initialize(registry, profiles)
    return orchestrator
