"""
Processes Package - Tool server lifecycle.

This package provides:
- HealthState: state machine of a tool server
- ServerHandle / ServerStatus: runtime record and its read-only snapshot
- ProcessManager: spawn, health-check, restart and terminate tool servers
"""

from tool_bridge.processes.handle import ServerHandle, ServerStatus
from tool_bridge.processes.manager import ProcessManager
from tool_bridge.processes.state import (
    ALLOWED_TRANSITIONS,
    HealthState,
    InvalidStateTransitionError,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "HealthState",
    "InvalidStateTransitionError",
    "ProcessManager",
    "ServerHandle",
    "ServerStatus",
]
