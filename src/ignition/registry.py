"""Registration, lookup and discovery of component initializers."""

import inspect
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Optional

import structlog

from ignition.domain import (
    ComponentDescriptor,
    ComponentId,
    ComponentKey,
    InitializerKind,
    identity_of,
)
from ignition.errors import RegistrationError, UnknownComponent
from ignition.initializers import (
    AsyncFunctionInitializer,
    AsyncInitializer,
    FunctionInitializer,
    Initializer,
    SyncInitializer,
)

__all__ = [
    "InitializerProvider",
    "InitializerRegistry",
]

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class InitializerProvider:
    """Encapsulates metadata about a registered initializer.

    Attributes:
        name: Identity of the component (derived from the class or function
            name if not explicitly stated in the registration decorator).
        factory: Zero-argument callable returning a fresh :class:`Initializer`.
        kind: Whether the initializer is synchronous or asynchronous.
        profiles: List of profile names under which the component is
            discovered. Empty list means active in all profiles.
        eager: Whether the component is reported by discovery and so
            initialized as part of a bulk initialization.

    Example:
        >>> @registry.provides(eager=True, profiles=["prod"])
        >>> class DatabaseInit(SyncInitializer):
        ...     def create(self, context):
        ...         return Database()
        >>>
        >>> # Creates InitializerProvider with:
        >>> # - name: "DatabaseInit"
        >>> # - factory: DatabaseInit
        >>> # - kind: InitializerKind.SYNC
        >>> # - profiles: ["prod"]
        >>> # - eager: True
    """

    name: ComponentId
    factory: Callable[[], Initializer]
    kind: InitializerKind
    profiles: list[str]
    eager: bool


def inferred_name(target: Any) -> str:
    """Derive component name from class or function name, removing 'make_' prefix if present.

    Args:
        target: The function or class to derive a name from.

    Returns:
        The class name, or the function name with any 'make_' prefix removed.

    Example:
        >>> inferred_name(DatabaseInit)   # Returns "DatabaseInit"
        >>> inferred_name(make_database)  # Returns "database"
        >>> inferred_name(warm_cache)     # Returns "warm_cache"
    """
    if inspect.isclass(target):
        return target.__name__

    if target.__name__.startswith("make_"):
        return target.__name__[5:]
    else:
        return target.__name__


class InitializerRegistry:
    """Registry of initializers keyed by component identity.

    The registry is the host application's explicit mapping from identity to
    initializer factory. It serves the orchestrator as its ``lookup``
    collaborator, and as a discovery source through :meth:`discover`.
    """

    def __init__(self):
        self._providers: dict[ComponentId, InitializerProvider] = {}

    def register(self, provider: InitializerProvider):
        """Register an initializer provider explicitly.

        Args:
            provider: The provider to be registered.

        Raises:
            RegistrationError: If a provider is already registered under the same name.
        """
        if provider.name in self._providers:
            raise RegistrationError(
                f"Duplicate initializer name '{provider.name}' "
                f"for providers {list(self._providers)}"
            )
        self._providers[provider.name] = provider

    def registered_providers(
        self, profiles: Optional[set[str]] = None
    ) -> list[InitializerProvider]:
        """Retrieve providers in registration order, optionally filtered by active profiles.

        Args:
            profiles: A set of active profile names. If None, returns all providers.

        Returns:
            A list of providers whose profiles match the given profile set.
        """
        providers = list(self._providers.values())
        if profiles is None:
            return providers
        return [p for p in providers if _profiles_match(p.profiles, profiles)]

    def provides(
        self,
        name: Optional[str] = None,
        profiles: Optional[list[str]] = None,
        eager: bool = False,
        depends_on: Optional[list[ComponentKey]] = None,
    ) -> Callable:
        """Decorator to register an initializer class or function.

        Classes must subclass :class:`SyncInitializer` or :class:`AsyncInitializer`.
        A plain function is registered as a synchronous initializer and a
        coroutine function as an asynchronous one; both are called with the
        orchestrator's context.

        Args:
            name: Optional identity to assign; defaults to the class name, or the
                function name with 'make_' prefix removed.
            profiles: Optional list of profiles for which the component is discovered.
            eager: Whether :meth:`discover` reports the component.
            depends_on: Dependencies of a function initializer. Classes declare
                theirs by overriding ``dependencies()``.

        Returns:
            A decorator that registers its target and returns it unchanged.

        Example:
            @registry.provides(eager=True, depends_on=["config"])
            async def make_http_client(context) -> Client:
                return await Client.connect(context.base_url)
        """

        def decorator(obj):
            provided_name = name or inferred_name(obj)
            if inspect.isclass(obj):
                provider = _make_class_provider(
                    obj, provided_name, profiles or [], eager, depends_on
                )
            elif inspect.isfunction(obj):
                provider = _make_function_provider(
                    obj, provided_name, profiles or [], eager, depends_on
                )
            else:
                raise RegistrationError(f"{obj} is not a class or function")

            self.register(provider)
            return obj

        return decorator

    def lookup(self, key: ComponentKey) -> Initializer:
        """Build a fresh initializer for the given component.

        Raises:
            UnknownComponent: If nothing is registered under the key.
        """
        identity = identity_of(key)
        provider = self._providers.get(identity)
        if provider is None:
            raise UnknownComponent(identity)
        return provider.factory()

    def discover(self, profiles: Optional[set[str]] = None) -> list[ComponentDescriptor]:
        """Report the eagerly-initialized components active in the given profiles.

        Args:
            profiles: A set of active profile names. If None, profiles are not checked.

        Returns:
            Descriptors of eager providers, in registration order.
        """
        descriptors = [
            ComponentDescriptor(provider.name, provider.kind)
            for provider in self.registered_providers(profiles)
            if provider.eager
        ]
        for descriptor in descriptors:
            logger.debug(
                "component_discovered",
                component=descriptor.identity,
                kind=descriptor.kind.value,
            )
        return descriptors

    def __contains__(self, key: ComponentKey) -> bool:
        return identity_of(key) in self._providers


def _make_class_provider(
    cls: type,
    component_name: str,
    profiles: list[str],
    eager: bool,
    depends_on: Optional[list[ComponentKey]],
) -> InitializerProvider:
    """Create an InitializerProvider from an initializer class.

    Raises:
        RegistrationError: If the class is not an initializer, or ``depends_on``
            is given for a class.
    """
    if depends_on is not None:
        raise RegistrationError(
            f"{cls.__name__} is a class; declare its dependencies by overriding dependencies()"
        )
    if issubclass(cls, AsyncInitializer):
        kind = InitializerKind.ASYNC
    elif issubclass(cls, SyncInitializer):
        kind = InitializerKind.SYNC
    else:
        raise RegistrationError(
            f"{cls.__name__} is not a subclass of SyncInitializer or AsyncInitializer"
        )

    return InitializerProvider(component_name, cls, kind, profiles, eager)


def _make_function_provider(
    func: Callable,
    component_name: str,
    profiles: list[str],
    eager: bool,
    depends_on: Optional[list[ComponentKey]],
) -> InitializerProvider:
    """Create an InitializerProvider wrapping a plain or coroutine function."""
    if inspect.iscoroutinefunction(func):
        return InitializerProvider(
            component_name,
            partial(AsyncFunctionInitializer, func, depends_on),
            InitializerKind.ASYNC,
            profiles,
            eager,
        )
    return InitializerProvider(
        component_name,
        partial(FunctionInitializer, func, depends_on),
        InitializerKind.SYNC,
        profiles,
        eager,
    )


def _profiles_match(stated: list[str], selected: set[str]) -> bool:
    """Check if a provider's profile requirements match the selected profiles.

    Profile matching supports inclusion and exclusion patterns:
    - Normal profiles ("dev", "prod") must be in the selected set
    - Exclusion profiles ("!test") must NOT be in the selected set
    - Empty stated profiles match all selected profiles

    Example:
        >>> _profiles_match(["dev"], {"dev"})          # True
        >>> _profiles_match(["!test"], {"dev"})        # True
        >>> _profiles_match(["!test"], {"test"})       # False
        >>> _profiles_match(["prod"], {"dev"})         # False
    """
    provided = [p for p in stated if not p.startswith("!")]
    excluded = [p[1:] for p in stated if p.startswith("!")]

    return not any(e in selected for e in excluded) and (
        not provided or any(p in selected for p in provided)
    )
