"""
Bridge Metrics - Prometheus instrumentation.

Metrics Provided:
- Tool server health state transitions (counter) and current state (gauge)
- Tool server restarts (counter)
- Tool calls by outcome (counter) and remote call latency (histogram)
- Orchestration sessions by outcome (counter)
- Replies that could not be routed to a pending request (counter)

Metric names are module constants; the collectors live in the default
prometheus_client registry and are exposed by GET /metrics.
"""

from prometheus_client import Counter, Gauge, Histogram

# =============================================================================
# Constants
# =============================================================================

METRIC_SERVER_TRANSITIONS = "tool_bridge_server_state_transitions_total"
METRIC_SERVER_STATE = "tool_bridge_server_state"
METRIC_SERVER_RESTARTS = "tool_bridge_server_restarts_total"
METRIC_TOOL_CALLS = "tool_bridge_tool_calls_total"
METRIC_RPC_LATENCY = "tool_bridge_rpc_latency_seconds"
METRIC_SESSIONS = "tool_bridge_sessions_total"
METRIC_UNROUTED_REPLIES = "tool_bridge_unrouted_replies_total"


# =============================================================================
# Server Lifecycle
# =============================================================================

SERVER_STATE_TRANSITIONS = Counter(
    name=METRIC_SERVER_TRANSITIONS,
    documentation="Total number of tool server health state transitions",
    labelnames=["server", "to_state", "from_state"],
)

SERVER_STATE_GAUGE = Gauge(
    name=METRIC_SERVER_STATE,
    documentation=(
        "Current tool server state (0=stopped, 1=starting, 2=running, "
        "3=unresponsive, 4=restarting, 5=failed)"
    ),
    labelnames=["server"],
)

SERVER_RESTARTS = Counter(
    name=METRIC_SERVER_RESTARTS,
    documentation="Total number of tool server restart attempts",
    labelnames=["server"],
)

_STATE_TO_NUMERIC = {
    "stopped": 0,
    "starting": 1,
    "running": 2,
    "unresponsive": 3,
    "restarting": 4,
    "failed": 5,
}


def record_server_state_transition(server: str, to_state: str, from_state: str) -> None:
    """
    Record a tool server state transition.

    Args:
        server: Tool server name
        to_state: State transitioning to
        from_state: State transitioning from
    """
    SERVER_STATE_TRANSITIONS.labels(
        server=server,
        to_state=to_state,
        from_state=from_state,
    ).inc()
    SERVER_STATE_GAUGE.labels(server=server).set(_STATE_TO_NUMERIC.get(to_state, 0))


def record_server_restart(server: str) -> None:
    """Record one restart attempt of a tool server."""
    SERVER_RESTARTS.labels(server=server).inc()


# =============================================================================
# Tool Calls
# =============================================================================

TOOL_CALLS = Counter(
    name=METRIC_TOOL_CALLS,
    documentation="Total number of tool calls by outcome",
    labelnames=["server", "outcome"],
)

RPC_LATENCY = Histogram(
    name=METRIC_RPC_LATENCY,
    documentation="Latency of remote calls to tool servers",
    labelnames=["server"],
    buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

UNROUTED_REPLIES = Counter(
    name=METRIC_UNROUTED_REPLIES,
    documentation="Replies whose id matched no outstanding request, or had none",
    labelnames=["address"],
)


def record_tool_call(server: str, outcome: str) -> None:
    """
    Record a tool call outcome.

    Args:
        server: Owning server, or "unknown" when the tool did not resolve
        outcome: "ok" or the error kind
    """
    TOOL_CALLS.labels(server=server, outcome=outcome).inc()


def observe_rpc_latency(server: str, seconds: float) -> None:
    """Record how long a remote call took."""
    RPC_LATENCY.labels(server=server).observe(seconds)


def record_unrouted_reply(address: str) -> None:
    """Record a reply that could not be routed to a pending request."""
    UNROUTED_REPLIES.labels(address=address).inc()


# =============================================================================
# Sessions
# =============================================================================

SESSIONS = Counter(
    name=METRIC_SESSIONS,
    documentation="Total number of orchestration sessions by outcome",
    labelnames=["outcome"],
)


def record_session(outcome: str) -> None:
    """Record a finished session ("done" or the error kind)."""
    SESSIONS.labels(outcome=outcome).inc()
