"""Services Package - Orchestration of model turns and tool execution."""

from tool_bridge.services.orchestrator import BridgeOrchestrator

__all__ = ["BridgeOrchestrator"]
