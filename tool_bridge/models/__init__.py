"""Models Package - Domain value objects and JSON-RPC envelopes."""

from tool_bridge.models.domain import (
    ArgumentIssue,
    Message,
    ModelReply,
    ParameterSpec,
    SessionResult,
    SessionState,
    ToolCall,
    ToolResult,
    ToolSchema,
    split_tool_name,
)
from tool_bridge.models.rpc import RpcFault, RpcRequest, RpcResponse

__all__ = [
    # Domain
    "ArgumentIssue",
    "Message",
    "ModelReply",
    "ParameterSpec",
    "SessionResult",
    "SessionState",
    "ToolCall",
    "ToolResult",
    "ToolSchema",
    "split_tool_name",
    # JSON-RPC
    "RpcFault",
    "RpcRequest",
    "RpcResponse",
]
