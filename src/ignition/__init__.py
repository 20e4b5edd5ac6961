"""Ignition component initialization framework.

Ignition builds an application's components at startup, each exactly once and
after everything it depends on. Components are declared as initializers in an
explicit registry; an orchestrator resolves them on demand or in bulk, either
synchronously on the calling thread or as background jobs that can be awaited
together.

Key Features:
    - Explicit registration of sync and async initializers
    - Depth-first dependency resolution with cycle detection
    - Write-once cache: every component is created at most once
    - Background jobs with a wait-for-all barrier
    - Eager discovery filtered by profile

Basic Usage:
    >>> from ignition.registry import InitializerRegistry
    >>> from ignition.builders import start
    >>>
    >>> registry = InitializerRegistry()
    >>>
    >>> @registry.provides(eager=True)
    >>> def make_config(context) -> Config:
    ...     return Config.load()
    >>>
    >>> @registry.provides(eager=True, depends_on=["config"])
    >>> async def make_cache(context) -> Cache:
    ...     return await Cache.connect()
    >>>
    >>> orchestrator = start(registry)
    >>> orchestrator.await_all_jobs()

The framework consists of several core modules:
    - registry: Initializer registration, lookup and discovery
    - initializers: Sync and async initializer interfaces
    - orchestrator: Cached, cycle-safe dependency resolution
    - jobs: Background job tracking and the wait-for-all barrier
    - builders: High-level orchestrator construction functions
    - errors: Framework-specific exceptions
"""
