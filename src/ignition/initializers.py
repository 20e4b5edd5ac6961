"""Initializer interfaces and adapters for plain functions.

An initializer knows how to create one component and which other components
must exist before it can. :class:`SyncInitializer` runs to completion on the
calling thread; :class:`AsyncInitializer` may suspend inside ``create``.

Example:
    >>> class DatabaseInit(SyncInitializer):
    ...     def dependencies(self):
    ...         return [ConfigInit]
    ...
    ...     def create(self, context):
    ...         return Database(context["dsn"])
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

from ignition.domain import ComponentKey, InitializerKind

__all__ = [
    "Initializer",
    "SyncInitializer",
    "AsyncInitializer",
    "FunctionInitializer",
    "AsyncFunctionInitializer",
    "kind_of",
]


class Initializer(ABC):
    """Common base of the sync and async initializer variants."""

    kind: InitializerKind

    def dependencies(self) -> list[ComponentKey]:
        """Components that must be resolved before this one, in resolution order."""
        return []


class SyncInitializer(Initializer):
    """Creates a component synchronously on the calling thread."""

    kind = InitializerKind.SYNC

    @abstractmethod
    def create(self, context: Any) -> Any:
        """Construct and return the component."""


class AsyncInitializer(Initializer):
    """Creates a component in a coroutine, which may suspend before returning."""

    kind = InitializerKind.ASYNC

    @abstractmethod
    async def create(self, context: Any) -> Any:
        """Construct and return the component."""


class FunctionInitializer(SyncInitializer):
    """Adapts ``func(context) -> component`` to the :class:`SyncInitializer` interface."""

    def __init__(self, func: Callable[[Any], Any], depends_on: Optional[list[ComponentKey]] = None):
        self._func = func
        self._depends_on = list(depends_on or [])

    def dependencies(self) -> list[ComponentKey]:
        return list(self._depends_on)

    def create(self, context: Any) -> Any:
        return self._func(context)


class AsyncFunctionInitializer(AsyncInitializer):
    """Adapts ``async func(context) -> component`` to the :class:`AsyncInitializer` interface."""

    def __init__(
        self,
        func: Callable[[Any], Awaitable[Any]],
        depends_on: Optional[list[ComponentKey]] = None,
    ):
        self._func = func
        self._depends_on = list(depends_on or [])

    def dependencies(self) -> list[ComponentKey]:
        return list(self._depends_on)

    async def create(self, context: Any) -> Any:
        return await self._func(context)


def kind_of(initializer: Any) -> InitializerKind:
    """Return the kind of an initializer instance.

    Raises:
        TypeError: If the object is not an :class:`Initializer`.
    """
    if isinstance(initializer, AsyncInitializer):
        return InitializerKind.ASYNC
    if isinstance(initializer, SyncInitializer):
        return InitializerKind.SYNC
    raise TypeError(f"{initializer!r} is not a SyncInitializer or AsyncInitializer")
