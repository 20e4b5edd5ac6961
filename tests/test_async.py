import asyncio
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from ignition.builders import make_orchestrator
from ignition.errors import CycleDetected, InitializationFailed
from ignition.initializers import AsyncInitializer
from ignition.jobs import JobEngine
from ignition.registry import InitializerRegistry


@pytest.fixture
def registry():
    return InitializerRegistry()


@pytest.fixture
def created():
    return []


@pytest.fixture
def orchestrator(registry):
    with make_orchestrator(registry) as orchestrator:
        yield orchestrator


class ClockInit(AsyncInitializer):
    async def create(self, context):
        await asyncio.sleep(0)
        return threading.current_thread().name


@pytest.mark.asyncio
async def test_async_component_is_created_on_the_engine_loop(registry, orchestrator):
    registry.provides("clock")(ClockInit)

    assert await orchestrator.resolve_async("clock") == "ignition-jobs"
    assert orchestrator.is_initialized("clock")


@pytest.mark.asyncio
async def test_concurrent_async_requests_share_one_construction(registry, orchestrator, created):
    @registry.provides()
    async def make_pool(context):
        created.append("pool")
        await asyncio.sleep(0.01)
        return object()

    @registry.provides(depends_on=["pool"])
    async def make_repository(context):
        created.append("repository")
        await asyncio.sleep(0.01)
        return object()

    results = await asyncio.gather(
        *(orchestrator.resolve_async(name) for name in ["repository", "pool"] * 5)
    )

    assert created == ["pool", "repository"]
    assert len({id(result) for result in results}) == 2


@pytest.mark.asyncio
async def test_async_dependencies_resolve_sequentially_in_declared_order(
    registry, orchestrator, created
):
    @registry.provides()
    async def make_slow(context):
        await asyncio.sleep(0.05)
        created.append("slow")

    @registry.provides()
    async def make_fast(context):
        created.append("fast")

    @registry.provides(depends_on=["slow", "fast"])
    async def make_root(context):
        created.append("root")

    await orchestrator.resolve_async("root")

    assert created == ["slow", "fast", "root"]


@pytest.mark.asyncio
async def test_async_component_can_depend_on_sync_component(registry, orchestrator, created):
    @registry.provides()
    def make_config(context):
        created.append("config")
        return {"url": "http://localhost"}

    @registry.provides(depends_on=["config"])
    async def make_client(context):
        created.append("client")
        return "client"

    assert await orchestrator.resolve_async("client") == "client"
    assert orchestrator.resolve_sync("config") == {"url": "http://localhost"}
    assert created == ["config", "client"]


@pytest.mark.asyncio
async def test_sync_component_can_be_resolved_on_the_async_path(registry, orchestrator):
    @registry.provides()
    def make_config(context):
        return "config"

    assert await orchestrator.resolve_async("config") == "config"
    assert orchestrator.resolve_sync("config") == "config"


@pytest.mark.asyncio
async def test_async_cycle_is_detected(registry, orchestrator):
    @registry.provides("ping", depends_on=["pong"])
    async def ping(context):
        pass

    @registry.provides("pong", depends_on=["ping"])
    async def pong(context):
        pass

    with pytest.raises(CycleDetected) as raised:
        await orchestrator.resolve_async("ping")

    assert raised.value.identity == "ping"
    assert not orchestrator.is_initialized("ping")
    assert not orchestrator.is_initialized("pong")


@pytest.mark.asyncio
async def test_cycle_spanning_two_concurrent_resolutions_is_detected(registry, orchestrator):
    @registry.provides()
    async def make_slow(context):
        await asyncio.sleep(0.05)

    @registry.provides("a", depends_on=["slow", "b"])
    async def make_a(context):
        pass

    @registry.provides("b", depends_on=["a"])
    async def make_b(context):
        pass

    async def resolve_b_later():
        await asyncio.sleep(0.01)
        return await orchestrator.resolve_async("b")

    results = await asyncio.wait_for(
        asyncio.gather(orchestrator.resolve_async("a"), resolve_b_later(), return_exceptions=True),
        timeout=2,
    )

    assert all(isinstance(result, CycleDetected) for result in results)
    assert not orchestrator.is_initialized("a")
    assert not orchestrator.is_initialized("b")


@pytest.mark.asyncio
async def test_sync_and_async_callers_build_a_shared_component_once(
    registry, orchestrator, created
):
    @registry.provides()
    def make_config(context):
        created.append("config")
        time.sleep(0.05)
        return {"url": "http://localhost"}

    @registry.provides(depends_on=["config"])
    async def make_client(context):
        created.append("client")
        await asyncio.sleep(0)
        return "client"

    loop = asyncio.get_running_loop()
    with ThreadPoolExecutor(max_workers=4) as pool:
        results = await asyncio.gather(
            *(loop.run_in_executor(pool, orchestrator.resolve_sync, "config") for _ in range(4)),
            *(orchestrator.resolve_async("client") for _ in range(4)),
        )

    assert created == ["config", "client"]
    assert len({id(config) for config in results[:4]}) == 1
    assert results[0] == {"url": "http://localhost"}
    assert results[4:] == ["client"] * 4


@pytest.mark.asyncio
async def test_failed_async_component_is_retried(registry, orchestrator):
    attempts = []

    @registry.provides("flaky")
    async def make_flaky(context):
        attempts.append(1)
        await asyncio.sleep(0)
        if len(attempts) == 1:
            raise ConnectionError("refused")
        return "connected"

    with pytest.raises(InitializationFailed) as raised:
        await orchestrator.resolve_async("flaky")

    assert raised.value.identity == "flaky"
    assert isinstance(raised.value.cause, ConnectionError)

    assert await orchestrator.resolve_async("flaky") == "connected"
    assert len(attempts) == 2


def test_launched_component_is_available_after_awaiting_jobs(registry, orchestrator):
    registry.provides("clock")(ClockInit)

    job = orchestrator.launch_async("clock")
    orchestrator.await_all_jobs()

    assert job.name == "clock"
    assert not job.is_running
    assert orchestrator.resolve_sync("clock") == "ignition-jobs"
    assert orchestrator.is_all_done()


@pytest.mark.asyncio
async def test_async_components_can_be_built_on_the_host_loop(registry):
    registry.provides("clock")(ClockInit)
    engine = JobEngine(loop=asyncio.get_running_loop())

    with make_orchestrator(registry, job_engine=engine) as orchestrator:
        assert await orchestrator.resolve_async("clock") == threading.current_thread().name

        orchestrator.launch_async("clock")
        await orchestrator.await_all_jobs_async()
        assert orchestrator.is_all_done()
