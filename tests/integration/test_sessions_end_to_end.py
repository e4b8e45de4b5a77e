"""
End-to-end sessions: ScriptedModel -> orchestrator -> real tool server.
"""

import json
import time

import pytest
from fastapi.testclient import TestClient

pytestmark = pytest.mark.integration


@pytest.fixture
def orchestrator_factory(fast_settings):
    """Build a registry, manager and orchestrator sharing one translator."""
    from tool_bridge.processes.manager import ProcessManager
    from tool_bridge.rpc.translator import ProtocolTranslator
    from tool_bridge.services.orchestrator import BridgeOrchestrator
    from tool_bridge.tools.registry import ToolRegistry

    def make(model, **overrides):
        settings = fast_settings.model_copy(update=overrides)
        translator = ProtocolTranslator()
        registry = ToolRegistry()
        manager = ProcessManager(settings, registry=registry, translator=translator)
        orchestrator = BridgeOrchestrator(
            model, registry, manager, translator=translator, settings=settings
        )
        return orchestrator, manager

    return make


def call(name, call_id=None, **arguments):
    from tool_bridge.models.domain import ToolCall

    if call_id:
        return ToolCall(id=call_id, name=name, arguments=arguments)
    return ToolCall(name=name, arguments=arguments)


class TestSessionsWithRealServer:

    @pytest.mark.asyncio
    async def test_read_file_session(self, orchestrator_factory, tool_server_descriptor, sandbox):
        from tool_bridge.models.domain import ModelReply
        from tool_bridge.providers.fake import ScriptedModel

        model = ScriptedModel(
            [
                ModelReply(tool_calls=[call("fx.read", "c1", path="a.txt")]),
                ModelReply(text="The file says hello"),
            ]
        )
        orchestrator, manager = orchestrator_factory(model)

        async with manager:
            await manager.start(tool_server_descriptor("fx"))
            result = await orchestrator.run_session("What is in a.txt?")

        assert result.text == "The file says hello"
        (tool_result,) = result.tool_results
        assert tool_result.tool_call_id == "c1"
        assert tool_result.content == "hello"
        assert not tool_result.is_error

        # The model saw the discovered tools and the tool reply
        first_tools = [t.name for t in model.calls[0][1]]
        assert "fx.read" in first_tools
        assert model.calls[1][0][-1].content == "hello"

    @pytest.mark.asyncio
    async def test_parallel_calls_keep_order(self, orchestrator_factory, tool_server_descriptor):
        from tool_bridge.providers.fake import ScriptedModel

        orchestrator, manager = orchestrator_factory(ScriptedModel())

        async with manager:
            await manager.start(tool_server_descriptor("fx"))
            calls = [
                call("fx.sleep", "slow", seconds=0.5),
                call("fx.sleep", "second", seconds=0.5),
                call("fx.echo", "echo", value="x"),
            ]

            started = time.monotonic()
            results = await orchestrator.execute_tool_calls(calls)
            elapsed = time.monotonic() - started

        assert [r.tool_call_id for r in results] == ["slow", "second", "echo"]
        assert [json.loads(r.content) for r in results] == [0.5, 0.5, {"value": "x"}]
        # Sequential execution would take at least 1s
        assert elapsed < 0.9

    @pytest.mark.asyncio
    async def test_mixed_success_and_failure(self, orchestrator_factory, tool_server_descriptor):
        from tool_bridge.providers.fake import ScriptedModel

        orchestrator, manager = orchestrator_factory(ScriptedModel(), call_timeout_seconds=0.3)

        async with manager:
            await manager.start(tool_server_descriptor("fx"))
            results = await orchestrator.execute_tool_calls(
                [
                    call("fx.echo", n=1),
                    call("fx.fail", message="nope"),
                    call("fx.sleep", seconds=2),
                    call("fx.read"),
                    call("other.tool"),
                ]
            )

        assert [r.error_kind for r in results] == [
            None,
            "TOOL_EXECUTION_ERROR",
            "TOOL_TIMEOUT",
            "VALIDATION_ERROR",
            "UNKNOWN_TOOL",
        ]

    @pytest.mark.asyncio
    async def test_failed_server_reports_not_running(
        self, orchestrator_factory, tool_server_descriptor
    ):
        from tool_bridge.providers.fake import ScriptedModel

        orchestrator, manager = orchestrator_factory(
            ScriptedModel(), max_restarts=0, start_timeout_seconds=0.3
        )
        descriptor = tool_server_descriptor(
            "fx",
            "--never-ready",
            discover_tools=False,
            tools=[{"name": "echo", "parameters": {"additionalProperties": True}}],
        )

        async with manager:
            await manager.start(descriptor)
            (result,) = await orchestrator.execute_tool_calls([call("fx.echo", n=1)])

        assert result.error_kind == "NOT_RUNNING"

    @pytest.mark.asyncio
    async def test_loop_limit(self, orchestrator_factory, tool_server_descriptor):
        from tool_bridge.core.exceptions import LoopLimitExceeded
        from tool_bridge.models.domain import ModelReply
        from tool_bridge.providers.fake import ScriptedModel

        model = ScriptedModel(lambda messages, tools: ModelReply(tool_calls=[call("fx.echo", n=1)]))
        orchestrator, manager = orchestrator_factory(model, max_iterations=2)

        async with manager:
            await manager.start(tool_server_descriptor("fx"))
            with pytest.raises(LoopLimitExceeded):
                await orchestrator.run_session("forever")

        assert model.call_count == 3


class TestHttpEndToEnd:

    def test_session_over_http(self, fast_settings, tool_server_descriptor, sandbox):
        from tool_bridge.core.config import BridgeConfig, ModelEndpoint
        from tool_bridge.main import create_app
        from tool_bridge.models.domain import ModelReply
        from tool_bridge.providers.fake import ScriptedModel

        model = ScriptedModel(
            [
                ModelReply(tool_calls=[call("fx.read", "c1", path="a.txt")]),
                ModelReply(text="hello it is"),
            ]
        )
        config = BridgeConfig(
            model=ModelEndpoint(model="test-model"), servers=[tool_server_descriptor("fx")]
        )
        app = create_app(settings=fast_settings, bridge_config=config, model=model)

        with TestClient(app) as client:
            servers = client.get("/health/servers").json()
            tools = [t["name"] for t in client.get("/v1/tools").json()["tools"]]
            response = client.post("/v1/sessions", json={"prompt": "read a.txt"})
            manager = client.app.state.manager
            pid = manager.status_of("fx").pid

        assert servers["status"] == "healthy"
        assert servers["servers"][0]["state"] == "running"
        assert "fx.read" in tools
        assert response.status_code == 200
        assert response.json()["tool_results"][0]["content"] == "hello"
        assert manager.status_of("fx").state.value == "stopped"
        assert pid is not None
