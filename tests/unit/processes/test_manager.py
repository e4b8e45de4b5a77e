"""
Unit tests for tool_bridge/processes/manager.py - Process lifecycle.

Spawning is patched out here; tests/integration/test_process_lifecycle.py
drives real tool server processes.
"""

from unittest.mock import AsyncMock, patch

import pytest
from prometheus_client import REGISTRY


@pytest.fixture
def manager(fast_settings):
    from tool_bridge.processes.manager import ProcessManager
    from tool_bridge.tools.registry import ToolRegistry

    return ProcessManager(fast_settings, registry=ToolRegistry())


@pytest.fixture
def failing_spawn():
    """spawn_server that always fails like a missing executable."""
    with patch(
        "tool_bridge.processes.manager.spawn_server",
        new=AsyncMock(side_effect=FileNotFoundError("no such file: nope")),
    ) as mock:
        yield mock


# =============================================================================
# Queries
# =============================================================================


class TestQueries:

    def test_backoff_doubles_up_to_cap(self, manager):
        assert manager.backoff_delay(1) == pytest.approx(0.05)
        assert manager.backoff_delay(2) == pytest.approx(0.1)
        assert manager.backoff_delay(3) == pytest.approx(0.2)
        assert manager.backoff_delay(10) == pytest.approx(0.2)

    def test_unknown_server(self, manager):
        from tool_bridge.core.exceptions import NotRunningError

        with pytest.raises(NotRunningError, match="unknown server"):
            manager.address_of("fs")
        with pytest.raises(KeyError):
            manager.health_of("fs")
        with pytest.raises(KeyError):
            manager.status_of("fs")
        assert manager.statuses() == []

    def test_max_restarts(self, manager):
        assert manager.max_restarts == 2


# =============================================================================
# Start Failures and Restart Budget
# =============================================================================


class TestRestartBudget:

    @pytest.mark.asyncio
    async def test_spawn_failure_exhausts_budget(self, manager, failing_spawn):
        from tool_bridge.core.config import ServerDescriptor
        from tool_bridge.core.exceptions import NotRunningError
        from tool_bridge.processes.state import HealthState

        restarts_before = REGISTRY.get_sample_value(
            "tool_bridge_server_restarts_total", {"server": "budget"}
        ) or 0.0

        async with manager:
            status = await manager.start(ServerDescriptor(name="budget", command="nope"))

            assert status.state is HealthState.FAILED
            assert status.restart_count == 2
            assert "spawn failed" in status.last_error
            # Initial attempt plus two restarts
            assert failing_spawn.await_count == 3
            assert REGISTRY.get_sample_value(
                "tool_bridge_server_restarts_total", {"server": "budget"}
            ) == restarts_before + 2

            with pytest.raises(NotRunningError) as exc_info:
                manager.address_of("budget")
            assert exc_info.value.state == "failed"

    @pytest.mark.asyncio
    async def test_zero_budget_fails_on_first_error(self, fast_settings, failing_spawn):
        from tool_bridge.core.config import ServerDescriptor
        from tool_bridge.processes.manager import ProcessManager
        from tool_bridge.processes.state import HealthState

        settings = fast_settings.model_copy(update={"max_restarts": 0})
        async with ProcessManager(settings) as manager:
            status = await manager.start(ServerDescriptor(name="once", command="nope"))

        assert status.state is HealthState.FAILED
        assert status.restart_count == 0
        assert failing_spawn.await_count == 1

    @pytest.mark.asyncio
    async def test_failed_is_sticky_until_explicit_restart(self, manager, failing_spawn):
        from tool_bridge.core.config import ServerDescriptor
        from tool_bridge.processes.state import HealthState

        async with manager:
            await manager.start(ServerDescriptor(name="sticky", command="nope"))
            calls = failing_spawn.await_count

            await manager.probe_all()
            assert manager.health_of("sticky") is HealthState.FAILED
            assert failing_spawn.await_count == calls

            status = await manager.restart("sticky")

            # Fresh budget, spent again
            assert status.state is HealthState.FAILED
            assert status.restart_count == 2
            assert failing_spawn.await_count == calls * 2

    @pytest.mark.asyncio
    async def test_static_tools_are_registered(self, fast_settings, failing_spawn):
        from tool_bridge.core.config import ServerDescriptor
        from tool_bridge.processes.manager import ProcessManager
        from tool_bridge.tools.registry import ToolRegistry

        registry = ToolRegistry()
        descriptor = ServerDescriptor(
            name="static",
            command="nope",
            discover_tools=False,
            tools=[{"name": "read", "parameters": {"properties": {"path": {"type": "string"}}}}],
        )
        async with ProcessManager(fast_settings, registry=registry) as manager:
            status = await manager.start(descriptor)

        assert "static.read" in registry
        assert status.tools == ["static.read"]


# =============================================================================
# Explicit Control
# =============================================================================


class TestExplicitControl:

    @pytest.mark.asyncio
    async def test_restart_unknown(self, manager):
        with pytest.raises(KeyError):
            await manager.restart("ghost")

    @pytest.mark.asyncio
    async def test_duplicate_start_rejected(self, manager, failing_spawn):
        from tool_bridge.core.config import ServerDescriptor

        descriptor = ServerDescriptor(name="dup", command="nope")
        async with manager:
            await manager.start(descriptor)
            with pytest.raises(ValueError, match="already managed"):
                await manager.start(descriptor)

    @pytest.mark.asyncio
    async def test_stopped_cannot_restart_but_can_start_again(self, manager, failing_spawn):
        from tool_bridge.core.config import ServerDescriptor
        from tool_bridge.processes.state import HealthState, InvalidStateTransitionError

        descriptor = ServerDescriptor(name="cycle", command="nope")
        async with manager:
            await manager.start(descriptor)
            status = await manager.stop("cycle")
            assert status.state is HealthState.STOPPED

            # Idempotent
            assert (await manager.stop("cycle")).state is HealthState.STOPPED

            with pytest.raises(InvalidStateTransitionError):
                await manager.restart("cycle")

            status = await manager.start(descriptor)
            assert status.state is HealthState.FAILED

    @pytest.mark.asyncio
    async def test_start_after_shutdown_is_stopped(self, manager, failing_spawn):
        from tool_bridge.core.config import ServerDescriptor
        from tool_bridge.core.exceptions import NotRunningError
        from tool_bridge.processes.state import HealthState

        await manager.stop_all()
        status = await manager.start(ServerDescriptor(name="late", command="nope"))

        assert status.state is HealthState.STOPPED
        assert failing_spawn.await_count == 0
        with pytest.raises(NotRunningError):
            await manager.restart("late")

    @pytest.mark.asyncio
    async def test_stop_all_is_idempotent(self, manager):
        await manager.stop_all()
        await manager.stop_all()


# =============================================================================
# Recovery Internals
# =============================================================================


def running_handle(name, **fields):
    """A RUNNING handle injected as if its process had just started."""
    from tool_bridge.core.config import ServerDescriptor
    from tool_bridge.processes.handle import ServerHandle
    from tool_bridge.processes.state import HealthState

    return ServerHandle(
        descriptor=ServerDescriptor(name=name, command="nope"),
        state=HealthState.RUNNING,
        generation=1,
        **fields,
    )


class TestRecoveryTeardown:

    @pytest.mark.asyncio
    async def test_stop_waits_for_teardown_started_by_recovery(self, manager, failing_spawn):
        import asyncio
        from unittest.mock import MagicMock

        from tool_bridge.processes.state import HealthState

        release = asyncio.Event()
        killed = []

        async def slow_terminate(process, grace):
            await release.wait()
            killed.append(process.pid)

        handle = running_handle("dying", process=MagicMock(pid=4242), channel=AsyncMock())
        manager._handles["dying"] = handle

        with patch("tool_bridge.processes.manager.terminate_tree", new=slow_terminate):
            await manager._mark_unresponsive(handle, 1, "process exited with code 1")
            await asyncio.sleep(0.02)
            assert handle.teardown is not None and not handle.teardown.done()

            stopping = asyncio.create_task(manager.stop("dying"))
            await asyncio.sleep(0.05)
            # The group is still being killed
            assert not stopping.done()

            release.set()
            status = await stopping

        assert killed == [4242]
        assert status.state is HealthState.STOPPED
        assert failing_spawn.await_count == 0


class TestRestartBudgetReset:

    @pytest.mark.asyncio
    async def test_crash_after_short_run_spends_budget(self, manager, failing_spawn):
        import asyncio

        from tool_bridge.processes.state import HealthState

        handle = running_handle(
            "short", restart_count=2, running_since=asyncio.get_running_loop().time()
        )
        manager._handles["short"] = handle

        async with manager:
            await manager._mark_unresponsive(handle, 1, "process exited with code 1")
            await asyncio.wait({handle.supervisor})

            assert handle.state is HealthState.FAILED
            assert failing_spawn.await_count == 0

    @pytest.mark.asyncio
    async def test_crash_after_stable_run_starts_budget_over(self, fast_settings, failing_spawn):
        import asyncio

        from tool_bridge.processes.manager import ProcessManager
        from tool_bridge.processes.state import HealthState

        settings = fast_settings.model_copy(update={"restart_reset_seconds": 0.1})
        manager = ProcessManager(settings)
        handle = running_handle(
            "stable", restart_count=2, running_since=asyncio.get_running_loop().time() - 1.0
        )
        manager._handles["stable"] = handle

        async with manager:
            await manager._mark_unresponsive(handle, 1, "process exited with code 1")
            await asyncio.wait({handle.supervisor})

            # Fresh budget of two restarts, both spent on the failing spawns
            assert handle.state is HealthState.FAILED
            assert handle.restart_count == 2
            assert failing_spawn.await_count == 2
