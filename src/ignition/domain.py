"""Domain models used throughout the framework."""

import inspect
from dataclasses import dataclass
from enum import Enum
from typing import Union

__all__ = [
    "ComponentId",
    "ComponentKey",
    "InitializerKind",
    "ComponentDescriptor",
    "identity_of",
]


ComponentId = str
"""Unique, stable name of a component. Used as the cache and registry key."""

ComponentKey = Union[str, type]
"""Type alias for keys used to refer to components.

Components can be referred to either by their string name or by the class
they are registered as. A class is converted to its class name.

Example:
    >>> orchestrator.resolve_sync("database")     # Lookup by name
    >>> orchestrator.resolve_sync(DatabaseInit)   # Lookup by class -> "DatabaseInit"
"""


class InitializerKind(str, Enum):
    """Whether a component is created on the calling thread or as a coroutine."""

    SYNC = "sync"
    ASYNC = "async"


@dataclass(frozen=True)
class ComponentDescriptor:
    """A discovered component, as reported by a discovery collaborator.

    Attributes:
        identity: The component's registered name.
        kind: Whether the component is resolved synchronously or launched as a job.
    """

    identity: ComponentId
    kind: InitializerKind


def identity_of(key: ComponentKey) -> ComponentId:
    """Normalise a :data:`ComponentKey` to a :data:`ComponentId`.

    Raises:
        TypeError: If the key is neither a string nor a class.
    """
    if isinstance(key, str):
        return key
    if inspect.isclass(key):
        return key.__name__
    raise TypeError(f"{key!r} is not a component name or class")
