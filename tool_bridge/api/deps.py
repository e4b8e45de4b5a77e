"""
API Dependencies - FastAPI dependency injection functions.

The registry, process manager and orchestrator are owned objects created by
the application lifespan and kept on ``app.state``; these functions hand them
to route handlers. Tests can replace any of them through
``app.dependency_overrides``.
"""

from fastapi import Request

from tool_bridge.processes.manager import ProcessManager
from tool_bridge.services.orchestrator import BridgeOrchestrator
from tool_bridge.tools.registry import ToolRegistry


def get_registry(request: Request) -> ToolRegistry:
    return request.app.state.registry


def get_manager(request: Request) -> ProcessManager:
    return request.app.state.manager


def get_orchestrator(request: Request) -> BridgeOrchestrator:
    return request.app.state.orchestrator
