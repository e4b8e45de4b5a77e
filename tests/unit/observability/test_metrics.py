"""
Unit tests for tool_bridge/observability/metrics.py - Prometheus collectors.
"""

from prometheus_client import REGISTRY


def sample(name, labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestServerMetrics:

    def test_transition_updates_counter_and_gauge(self):
        from tool_bridge.observability.metrics import record_server_state_transition

        labels = {"server": "m-fs", "to_state": "running", "from_state": "starting"}
        before = sample("tool_bridge_server_state_transitions_total", labels)

        record_server_state_transition("m-fs", "running", "starting")

        assert sample("tool_bridge_server_state_transitions_total", labels) == before + 1
        assert sample("tool_bridge_server_state", {"server": "m-fs"}) == 2

        record_server_state_transition("m-fs", "failed", "unresponsive")
        assert sample("tool_bridge_server_state", {"server": "m-fs"}) == 5

    def test_restart_counter(self):
        from tool_bridge.observability.metrics import record_server_restart

        before = sample("tool_bridge_server_restarts_total", {"server": "m-git"})
        record_server_restart("m-git")
        assert sample("tool_bridge_server_restarts_total", {"server": "m-git"}) == before + 1


class TestCallMetrics:

    def test_tool_call_outcomes(self):
        from tool_bridge.observability.metrics import record_tool_call

        labels = {"server": "m-fs", "outcome": "TOOL_TIMEOUT"}
        before = sample("tool_bridge_tool_calls_total", labels)
        record_tool_call("m-fs", "TOOL_TIMEOUT")
        assert sample("tool_bridge_tool_calls_total", labels) == before + 1

    def test_latency_histogram(self):
        from tool_bridge.observability.metrics import observe_rpc_latency

        before = sample("tool_bridge_rpc_latency_seconds_count", {"server": "m-lat"})
        observe_rpc_latency("m-lat", 0.02)
        assert sample("tool_bridge_rpc_latency_seconds_count", {"server": "m-lat"}) == before + 1

    def test_sessions(self):
        from tool_bridge.observability.metrics import record_session

        before = sample("tool_bridge_sessions_total", {"outcome": "done"})
        record_session("done")
        assert sample("tool_bridge_sessions_total", {"outcome": "done"}) == before + 1
