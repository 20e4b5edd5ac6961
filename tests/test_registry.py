import pytest

from ignition.domain import ComponentDescriptor, InitializerKind
from ignition.errors import RegistrationError, UnknownComponent
from ignition.initializers import (
    AsyncFunctionInitializer,
    AsyncInitializer,
    FunctionInitializer,
    SyncInitializer,
)
from ignition.registry import InitializerProvider, InitializerRegistry


@pytest.fixture
def registry():
    return InitializerRegistry()


@pytest.fixture
def provider_finder(registry):
    def find(name: str) -> InitializerProvider:
        return next(p for p in registry.registered_providers() if p.name == name)

    return find


class ConfigInit(SyncInitializer):
    def create(self, context):
        return {"dsn": "sqlite://"}


class CacheInit(AsyncInitializer):
    def dependencies(self):
        return [ConfigInit]

    async def create(self, context):
        return {}


def test_class_is_registered_under_its_name(registry, provider_finder):
    registry.provides(profiles=["test"])(ConfigInit)

    provider = provider_finder("ConfigInit")
    assert provider.kind is InitializerKind.SYNC
    assert provider.profiles == ["test"]
    assert provider.eager is False
    assert isinstance(registry.lookup(ConfigInit), ConfigInit)


def test_async_class_is_registered_as_async(registry, provider_finder):
    registry.provides("cache", eager=True)(CacheInit)

    assert provider_finder("cache").kind is InitializerKind.ASYNC
    assert registry.lookup("cache").dependencies() == [ConfigInit]


def test_name_can_be_resolved_from_declaring_function_name(registry, provider_finder):
    @registry.provides()
    def make_greeter(context):
        return lambda name: f"Hello {name}"

    @registry.provides()
    def warm_cache(context):
        pass

    assert provider_finder("greeter").kind is InitializerKind.SYNC
    assert provider_finder("warm_cache")


def test_function_initializer_receives_context_and_dependencies(registry):
    @registry.provides("greeting", depends_on=["config", ConfigInit])
    def make_greeting(context):
        return f"Hello {context}"

    initializer = registry.lookup("greeting")
    assert isinstance(initializer, FunctionInitializer)
    assert initializer.dependencies() == ["config", ConfigInit]
    assert initializer.create("Dominic") == "Hello Dominic"


def test_coroutine_function_is_registered_as_async(registry, provider_finder):
    @registry.provides()
    async def make_client(context):
        return "client"

    assert provider_finder("client").kind is InitializerKind.ASYNC
    assert isinstance(registry.lookup("client"), AsyncFunctionInitializer)


def test_lookup_builds_a_fresh_initializer_each_time(registry):
    registry.provides()(ConfigInit)

    assert registry.lookup("ConfigInit") is not registry.lookup("ConfigInit")


def test_lookup_of_unregistered_component_raises(registry):
    with pytest.raises(UnknownComponent, match="No initializer registered for component 'nope'"):
        registry.lookup("nope")

    with pytest.raises(LookupError):
        registry.lookup(CacheInit)


def test_duplicate_name_raises(registry):
    @registry.provides("x")
    def x_one(context):
        return 1

    with pytest.raises(RegistrationError, match="Duplicate initializer name 'x'"):

        @registry.provides("x")
        def x_two(context):
            return 2


def test_class_must_be_an_initializer(registry):
    with pytest.raises(RegistrationError, match="is not a subclass of SyncInitializer"):

        @registry.provides()
        class NotAnInitializer:
            pass


def test_class_cannot_take_depends_on(registry):
    with pytest.raises(RegistrationError, match="overriding dependencies"):
        registry.provides(depends_on=["a"])(ConfigInit)


def test_only_classes_and_functions_can_be_registered(registry):
    with pytest.raises(RegistrationError, match="is not a class or function"):
        registry.provides("lambda_like")(print)


def test_contains_accepts_names_and_classes(registry):
    registry.provides()(ConfigInit)

    assert ConfigInit in registry
    assert "ConfigInit" in registry
    assert CacheInit not in registry


def test_retrieve_providers_by_profile(registry):
    @registry.provides()
    def globally_defined(context):
        pass

    @registry.provides(profiles=["test"])
    def test_only(context):
        pass

    @registry.provides(profiles=["!test"])
    def not_test(context):
        pass

    @registry.provides(profiles=["prod", "uat"])
    def prod_or_uat(context):
        pass

    def providers_in(*profiles):
        return {p.name for p in registry.registered_providers(set(profiles))}

    assert providers_in() == {"globally_defined", "not_test"}
    assert providers_in("test") == {"globally_defined", "test_only"}
    assert providers_in("prod") == {"globally_defined", "not_test", "prod_or_uat"}
    assert providers_in("uat") == {"globally_defined", "not_test", "prod_or_uat"}
    assert providers_in("empty") == {"globally_defined", "not_test"}


def test_discover_reports_eager_providers_in_registration_order(registry):
    registry.provides(eager=True)(ConfigInit)

    @registry.provides()
    def lazy(context):
        pass

    registry.provides("cache", eager=True)(CacheInit)

    @registry.provides(eager=True, profiles=["prod"])
    def make_mailer(context):
        pass

    assert registry.discover() == [
        ComponentDescriptor("ConfigInit", InitializerKind.SYNC),
        ComponentDescriptor("cache", InitializerKind.ASYNC),
        ComponentDescriptor("mailer", InitializerKind.SYNC),
    ]
    assert [d.identity for d in registry.discover({"dev"})] == ["ConfigInit", "cache"]
