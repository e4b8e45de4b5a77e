"""
Custom exceptions for Tool Bridge.

This module provides the exception hierarchy for the bridge. All exceptions
inherit from BridgeError and carry an error code so that failures can be
serialized consistently, both into tool results fed back to the model and
into API error bodies.

Two families matter to the orchestrator:

- ToolError subclasses are tool-level failures. They are recovered locally
  and reinjected into the conversation as error-shaped tool results.
- LoopLimitExceeded and SessionTransportError end a session and are
  surfaced to the caller.
"""

from enum import Enum
from typing import Any, Optional


# =============================================================================
# Error Codes
# =============================================================================


class ErrorCode(str, Enum):
    """
    Error codes for Tool Bridge exceptions.

    These codes identify error kinds across tool results, API responses
    and logs.
    """

    BRIDGE_ERROR = "BRIDGE_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    DUPLICATE_TOOL = "DUPLICATE_TOOL"
    INVALID_TOOL_SCHEMA = "INVALID_TOOL_SCHEMA"
    UNKNOWN_TOOL = "UNKNOWN_TOOL"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_RUNNING = "NOT_RUNNING"
    PROTOCOL_ERROR = "PROTOCOL_ERROR"
    TOOL_EXECUTION_ERROR = "TOOL_EXECUTION_ERROR"
    TOOL_TIMEOUT = "TOOL_TIMEOUT"
    CHANNEL_CLOSED = "CHANNEL_CLOSED"
    LOOP_LIMIT_EXCEEDED = "LOOP_LIMIT_EXCEEDED"
    SESSION_TRANSPORT_ERROR = "SESSION_TRANSPORT_ERROR"


# =============================================================================
# Base Exception
# =============================================================================


class BridgeError(Exception):
    """
    Base exception for all Tool Bridge errors.

    Attributes:
        message: Human-readable error message.
        error_code: Machine-readable error code from ErrorCode enum.
    """

    def __init__(
        self,
        message: str,
        error_code: str = ErrorCode.BRIDGE_ERROR,
        **kwargs: Any,
    ) -> None:
        """
        Initialize the exception.

        Args:
            message: Human-readable error message.
            error_code: Machine-readable error code.
            **kwargs: Additional attributes to set on the exception.
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code

        for key, value in kwargs.items():
            setattr(self, key, value)

    @property
    def kind(self) -> str:
        """Error kind as a plain string."""
        if isinstance(self.error_code, ErrorCode):
            return self.error_code.value
        return str(self.error_code)

    def to_dict(self) -> dict[str, str]:
        """Serialize to the {"kind", "message"} shape used on every surface."""
        return {"kind": self.kind, "message": self.message}


class ConfigurationError(BridgeError):
    """Raised when the bridge configuration file is missing or invalid."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message, ErrorCode.CONFIGURATION_ERROR)
        self.path = path


# =============================================================================
# Registry Errors
# =============================================================================


class DuplicateToolError(BridgeError):
    """Raised when registering a tool name that already exists."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(
            f"Tool already registered: {tool_name}", ErrorCode.DUPLICATE_TOOL
        )
        self.tool_name = tool_name


class InvalidToolSchemaError(BridgeError):
    """Raised when a tool schema is not namespaced under its owning server."""

    def __init__(self, message: str, tool_name: Optional[str] = None) -> None:
        super().__init__(message, ErrorCode.INVALID_TOOL_SCHEMA)
        self.tool_name = tool_name


# =============================================================================
# Tool-Level Errors (recovered by the orchestrator)
# =============================================================================


class ToolError(BridgeError):
    """
    Base class for failures scoped to a single tool call.

    The orchestrator converts these into error-shaped tool results so the
    model can adapt; they never end a session.

    Attributes:
        tool_name: Name of the tool involved (if known).
    """

    def __init__(
        self,
        message: str,
        tool_name: Optional[str] = None,
        error_code: str = ErrorCode.BRIDGE_ERROR,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code, **kwargs)
        self.tool_name = tool_name


class UnknownToolError(ToolError):
    """Raised when a tool name does not resolve to a registered schema."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(
            f"Unknown tool: {tool_name}", tool_name, ErrorCode.UNKNOWN_TOOL
        )


class ToolValidationError(ToolError):
    """
    Raised when tool call arguments fail schema validation.

    Named ToolValidationError to avoid conflict with pydantic.ValidationError.

    Attributes:
        issues: Every problem found, so the model sees all of them at once.
    """

    def __init__(self, tool_name: str, issues: list[Any]) -> None:
        summary = "; ".join(str(issue) for issue in issues) or "invalid arguments"
        super().__init__(
            f"Invalid arguments for {tool_name}: {summary}",
            tool_name,
            ErrorCode.VALIDATION_ERROR,
        )
        self.issues = list(issues)

    @property
    def field(self) -> Optional[str]:
        """Name of the first offending argument."""
        return getattr(self.issues[0], "argument", None) if self.issues else None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = super().to_dict()
        payload["issues"] = [str(issue) for issue in self.issues]
        return payload


class NotRunningError(ToolError):
    """
    Raised when the target tool server is not in the Running state.

    Restart exhaustion is reported through this error on the next call
    attempt rather than raised proactively.

    Attributes:
        server: Name of the tool server.
        state: Health state observed when the call was attempted.
    """

    def __init__(
        self,
        server: str,
        state: Optional[str] = None,
        tool_name: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        detail = f" (state={state})" if state else ""
        if reason:
            detail += f": {reason}"
        super().__init__(
            f"Tool server '{server}' is not running{detail}",
            tool_name,
            ErrorCode.NOT_RUNNING,
        )
        self.server = server
        self.state = state


class ProtocolError(ToolError):
    """Raised for malformed or unmatched JSON-RPC envelopes."""

    def __init__(self, message: str, tool_name: Optional[str] = None) -> None:
        super().__init__(message, tool_name, ErrorCode.PROTOCOL_ERROR)


class ToolExecutionError(ToolError):
    """
    Raised when a tool server replies with a JSON-RPC fault.

    Attributes:
        fault_code: The JSON-RPC error code reported by the server.
        data: Optional structured fault data.
    """

    def __init__(
        self,
        message: str,
        tool_name: Optional[str] = None,
        fault_code: Optional[int] = None,
        data: Any = None,
        error_code: str = ErrorCode.TOOL_EXECUTION_ERROR,
    ) -> None:
        super().__init__(message, tool_name, error_code)
        self.fault_code = fault_code
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = super().to_dict()
        if self.fault_code is not None:
            payload["code"] = self.fault_code
        return payload


class ToolTimeoutError(ToolExecutionError):
    """Raised when a remote call does not complete within its timeout."""

    def __init__(self, tool_name: Optional[str], timeout: float) -> None:
        super().__init__(
            f"Tool call timed out after {timeout}s",
            tool_name,
            error_code=ErrorCode.TOOL_TIMEOUT,
        )
        self.timeout = timeout


class ChannelClosedError(BridgeError):
    """Raised to pending requests when a tool server's pipe closes."""

    def __init__(self, address: str, reason: str = "channel closed") -> None:
        super().__init__(f"{address}: {reason}", ErrorCode.CHANNEL_CLOSED)
        self.address = address
        self.reason = reason


# =============================================================================
# Session-Level Errors (terminate the session)
# =============================================================================


class LoopLimitExceeded(BridgeError):
    """
    Raised when the model keeps requesting tools past the iteration ceiling.

    Attributes:
        limit: The configured ceiling.
        session_id: ID of the affected session (if known).
    """

    def __init__(self, limit: int, session_id: Optional[str] = None) -> None:
        super().__init__(
            f"Model still requested tools after {limit} tool rounds",
            ErrorCode.LOOP_LIMIT_EXCEEDED,
        )
        self.limit = limit
        self.session_id = session_id


class SessionTransportError(BridgeError):
    """
    Raised when the model interface cannot be reached or replies garbage.

    Attributes:
        endpoint: Base URL of the model runtime.
        status_code: HTTP status code (if applicable).
    """

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message, ErrorCode.SESSION_TRANSPORT_ERROR)
        self.endpoint = endpoint
        self.status_code = status_code
