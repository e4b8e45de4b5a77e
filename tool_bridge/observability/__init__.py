"""
Observability Package

This package provides:
- Structured JSON logging with session correlation ids
- Prometheus metrics for server lifecycle, tool calls and sessions
"""

from tool_bridge.observability.logging import (
    clear_correlation_id,
    configure_logging,
    correlation_id_context,
    get_correlation_id,
    get_logger,
    set_correlation_id,
)
from tool_bridge.observability.metrics import (
    observe_rpc_latency,
    record_server_restart,
    record_server_state_transition,
    record_session,
    record_tool_call,
    record_unrouted_reply,
)

__all__ = [
    # Logging
    "clear_correlation_id",
    "configure_logging",
    "correlation_id_context",
    "get_correlation_id",
    "get_logger",
    "set_correlation_id",
    # Metrics
    "observe_rpc_latency",
    "record_server_restart",
    "record_server_state_transition",
    "record_session",
    "record_tool_call",
    "record_unrouted_reply",
]
