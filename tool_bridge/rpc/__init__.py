"""
RPC Package - JSON-RPC transport and protocol translation.

- RpcChannel: multiplexed line-delimited JSON over a server's stdio
- ProtocolTranslator: ToolCall <-> JSON-RPC envelope conversion
"""

from tool_bridge.rpc.channel import RpcChannel
from tool_bridge.rpc.translator import ProtocolTranslator, RequestIdGenerator

__all__ = [
    "ProtocolTranslator",
    "RequestIdGenerator",
    "RpcChannel",
]
