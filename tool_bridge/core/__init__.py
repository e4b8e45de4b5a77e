"""
Core module for Tool Bridge.

This module contains configuration and the exception hierarchy.
"""

from tool_bridge.core.config import (
    BridgeConfig,
    ModelEndpoint,
    ServerDescriptor,
    Settings,
    get_settings,
    load_bridge_config,
)
from tool_bridge.core.exceptions import (
    BridgeError,
    ChannelClosedError,
    ConfigurationError,
    DuplicateToolError,
    ErrorCode,
    InvalidToolSchemaError,
    LoopLimitExceeded,
    NotRunningError,
    ProtocolError,
    SessionTransportError,
    ToolError,
    ToolExecutionError,
    ToolTimeoutError,
    ToolValidationError,
    UnknownToolError,
)

__all__ = [
    # Config
    "BridgeConfig",
    "ModelEndpoint",
    "ServerDescriptor",
    "Settings",
    "get_settings",
    "load_bridge_config",
    # Exceptions
    "BridgeError",
    "ChannelClosedError",
    "ConfigurationError",
    "DuplicateToolError",
    "ErrorCode",
    "InvalidToolSchemaError",
    "LoopLimitExceeded",
    "NotRunningError",
    "ProtocolError",
    "SessionTransportError",
    "ToolError",
    "ToolExecutionError",
    "ToolTimeoutError",
    "ToolValidationError",
    "UnknownToolError",
]
