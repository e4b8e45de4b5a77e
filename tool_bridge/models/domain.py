"""
Domain Models - Tool schemas, tool calls, results and conversation messages.

These are the internal value objects shared by the tool registry, the
protocol translator, the model interface and the orchestrator.

Pattern: Domain models as value objects (frozen where immutable)
Pattern: JSON Schema for tool parameters (Ollama/OpenAI compatible)
"""

import json
import uuid
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

TOOL_NAME_SEPARATOR = "."

PrimitiveType = Literal[
    "string", "integer", "number", "boolean", "array", "object", "null", "any"
]

_PRIMITIVE_TYPES = {"string", "integer", "number", "boolean", "array", "object", "null"}


def split_tool_name(name: str) -> tuple[str, str]:
    """
    Split a namespaced tool name into (server, method).

    Everything after the first separator is the method, so methods may
    themselves contain dots or slashes.

    Raises:
        ValueError: If the name has no server segment or no method segment.
    """
    server, sep, method = name.partition(TOOL_NAME_SEPARATOR)
    if not sep or not server or not method:
        raise ValueError(f"Tool name must look like '<server>.<method>': {name!r}")
    return server, method


# =============================================================================
# Tool Schema
# =============================================================================


class ParameterSpec(BaseModel):
    """
    One declared parameter of a tool.

    Attributes:
        name: Argument name.
        type: Primitive JSON type, or "any" when the schema does not say.
        required: Whether the argument must be supplied.
        description: Optional human-readable description.
    """

    name: str = Field(..., min_length=1)
    type: PrimitiveType = Field(default="any")
    required: bool = Field(default=False)
    description: Optional[str] = Field(default=None)

    model_config = {"frozen": True}

    def to_json_schema(self) -> dict[str, Any]:
        """JSON Schema fragment for this parameter."""
        schema: dict[str, Any] = {}
        if self.type != "any":
            schema["type"] = self.type
        if self.description:
            schema["description"] = self.description
        return schema


class ToolSchema(BaseModel):
    """
    Schema of a tool exposed by a tool server.

    The name is namespaced as "<server>.<method>"; many schemas reference the
    same server by name.

    Attributes:
        name: Fully-qualified tool name.
        server: Owning server name.
        parameters: Ordered parameter specs.
        description: Optional human-readable description.
        allow_extra: Whether undeclared arguments are accepted.

    Example:
        >>> schema = ToolSchema(
        ...     name="fs.read",
        ...     server="fs",
        ...     parameters=(ParameterSpec(name="path", type="string", required=True),),
        ... )
    """

    name: str = Field(..., description="Fully-qualified tool name")
    server: str = Field(..., description="Owning server name")
    parameters: tuple[ParameterSpec, ...] = Field(default_factory=tuple)
    description: Optional[str] = Field(default=None)
    allow_extra: bool = Field(default=False)

    model_config = {"frozen": True}

    @property
    def method(self) -> str:
        """Remote method name (the segment after the server)."""
        return split_tool_name(self.name)[1]

    @property
    def required(self) -> list[str]:
        """Names of required parameters, in declaration order."""
        return [p.name for p in self.parameters if p.required]

    def parameter(self, name: str) -> Optional[ParameterSpec]:
        """Look up a parameter spec by name."""
        for spec in self.parameters:
            if spec.name == name:
                return spec
        return None

    def to_json_schema(self) -> dict[str, Any]:
        """Parameters as a JSON Schema object."""
        return {
            "type": "object",
            "properties": {p.name: p.to_json_schema() for p in self.parameters},
            "required": self.required,
            "additionalProperties": self.allow_extra,
        }

    def to_function_definition(self) -> dict[str, Any]:
        """
        Tool definition in the function-calling format model runtimes expect.

        Returns:
            {"type": "function", "function": {"name", "description", "parameters"}}
        """
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description or self.name,
                "parameters": self.to_json_schema(),
            },
        }

    @classmethod
    def from_json_schema(
        cls,
        server: str,
        method: str,
        schema: Optional[dict[str, Any]] = None,
        description: Optional[str] = None,
    ) -> "ToolSchema":
        """
        Build a ToolSchema from a JSON Schema parameter object.

        Property types outside the primitive set (unions, missing types)
        become "any". additionalProperties defaults to False.

        Args:
            server: Owning server name.
            method: Method name on that server.
            schema: {"type": "object", "properties": ..., "required": [...]}.
            description: Optional tool description.
        """
        schema = schema or {}
        properties = schema.get("properties") or {}
        required = set(schema.get("required") or [])

        parameters = []
        for param_name, param_schema in properties.items():
            param_schema = param_schema or {}
            declared = param_schema.get("type")
            # Union types ("type": [...]) are not narrowed
            if not isinstance(declared, str) or declared not in _PRIMITIVE_TYPES:
                declared = "any"
            parameters.append(
                ParameterSpec(
                    name=param_name,
                    type=declared,
                    required=param_name in required,
                    description=param_schema.get("description"),
                )
            )

        # Required names without a property entry are still required
        for param_name in sorted(required - set(properties)):
            parameters.append(ParameterSpec(name=param_name, required=True))

        return cls(
            name=f"{server}{TOOL_NAME_SEPARATOR}{method}",
            server=server,
            parameters=tuple(parameters),
            description=description,
            allow_extra=bool(schema.get("additionalProperties", False)),
        )


class ArgumentIssue(BaseModel):
    """One problem found while validating call arguments."""

    argument: str
    problem: Literal["missing", "wrong_type", "unexpected"]
    expected: Optional[str] = None
    actual: Optional[str] = None

    model_config = {"frozen": True}

    def __str__(self) -> str:
        if self.problem == "missing":
            return f"missing required argument '{self.argument}'"
        if self.problem == "unexpected":
            return f"unexpected argument '{self.argument}'"
        return (
            f"argument '{self.argument}' must be {self.expected}, got {self.actual}"
        )


# =============================================================================
# Tool Calls and Results
# =============================================================================


def new_call_id() -> str:
    """Generate a tool call identity for calls the model left unnamed."""
    return f"call_{uuid.uuid4().hex[:12]}"


class ToolCall(BaseModel):
    """
    A model-issued request to invoke a named tool.

    Attributes:
        id: Call identity; results are attributed back through it.
        name: Fully-qualified tool name.
        arguments: Argument name to value mapping.
    """

    id: str = Field(default_factory=new_call_id)
    name: str = Field(..., description="Name of tool to execute")
    arguments: dict[str, Any] = Field(default_factory=dict)

    def to_message_dict(self) -> dict[str, Any]:
        """Function-call shape used inside assistant messages."""
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


class ToolResult(BaseModel):
    """
    Result of executing one tool call.

    Attributes:
        tool_call_id: ID of the ToolCall this result responds to.
        name: Tool name of the originating call.
        content: Output fed back to the model (JSON text for non-strings).
        is_error: Whether the result represents a failure.
        error_kind: Error code when is_error is set.
    """

    tool_call_id: str
    name: str
    content: str
    is_error: bool = False
    error_kind: Optional[str] = None

    @classmethod
    def success(cls, call: ToolCall, value: Any) -> "ToolResult":
        """Wrap a tool's output value."""
        content = value if isinstance(value, str) else json.dumps(value, default=str)
        return cls(tool_call_id=call.id, name=call.name, content=content)

    @classmethod
    def failure(cls, call: ToolCall, error: dict[str, Any]) -> "ToolResult":
        """Wrap a serialized error ({"kind", "message", ...})."""
        return cls(
            tool_call_id=call.id,
            name=call.name,
            content=json.dumps({"error": error}),
            is_error=True,
            error_kind=error.get("kind"),
        )


# =============================================================================
# Conversation
# =============================================================================


class Message(BaseModel):
    """
    A message in an orchestration session.

    Attributes:
        role: system, user, assistant or tool.
        content: Text content.
        tool_calls: Calls requested by the assistant.
        tool_call_id: For tool messages, the call this result answers.
        tool_name: For tool messages, the tool that produced it.
    """

    role: Literal["system", "user", "assistant", "tool"]
    content: str = ""
    tool_calls: Optional[list[ToolCall]] = None
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None

    @classmethod
    def from_tool_result(cls, result: ToolResult) -> "Message":
        return cls(
            role="tool",
            content=result.content,
            tool_call_id=result.tool_call_id,
            tool_name=result.name,
        )


class ModelReply(BaseModel):
    """What the model interface returns for one prompt."""

    text: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls)


class SessionState(str, Enum):
    """State of one orchestration session."""

    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    FAILED = "failed"


class SessionResult(BaseModel):
    """
    Outcome of a completed orchestration session.

    Attributes:
        session_id: Session identifier (also the log correlation id).
        text: Final model answer.
        iterations: Tool-execution rounds performed.
        tool_results: Every tool result of every round, in order.
        state: Final session state.
    """

    session_id: str
    text: str
    iterations: int = 0
    tool_results: list[ToolResult] = Field(default_factory=list)
    state: SessionState = SessionState.DONE
