"""
Tool Registry - Lookup table of tool schemas and argument validation.

The registry maps fully-qualified tool names ("<server>.<method>") to their
schemas and owning server, and validates call arguments against the declared
parameters before any remote call is made.

Pattern: Service Registry for tool inventory
Pattern: Owned object passed explicitly (no module-level singleton)
Pattern: Fail-fast validation at the boundary, pure and network-free

The registry is read-mostly: schemas are registered during startup (static
definitions and tools/list discovery) and looked up concurrently afterwards.
"""

import json
import logging
from pathlib import Path
from typing import Any, Iterable

from tool_bridge.core.exceptions import (
    DuplicateToolError,
    InvalidToolSchemaError,
    ToolValidationError,
    UnknownToolError,
)
from tool_bridge.models.domain import (
    ArgumentIssue,
    ToolSchema,
    split_tool_name,
)

logger = logging.getLogger(__name__)


# JSON type name -> accepted Python types
_TYPE_MAP: dict[str, type | tuple[type, ...]] = {
    "string": str,
    "integer": int,
    "number": (int, float),
    "boolean": bool,
    "array": list,
    "object": dict,
    "null": type(None),
}


def _json_type_name(value: Any) -> str:
    """Name of a value's JSON type, for error messages."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def matches_type(value: Any, expected_type: str) -> bool:
    """
    Check if a value matches a declared primitive type.

    Args:
        value: The argument value.
        expected_type: JSON type name, or "any".

    Returns:
        True if the value matches the type, False otherwise.
    """
    if expected_type == "any":
        return True

    python_type = _TYPE_MAP.get(expected_type)
    if python_type is None:
        return True

    # bool is a subclass of int, but never a valid integer or number
    if expected_type in ("integer", "number") and isinstance(value, bool):
        return False

    # JSON has one number type: 3.0 is an integer
    if expected_type == "integer" and isinstance(value, float):
        return value.is_integer()

    return isinstance(value, python_type)


class ToolRegistry:
    """
    Registry of tool schemas.

    Attributes:
        _tools: Tool name to ToolSchema, in registration order.

    Example:
        >>> registry = ToolRegistry()
        >>> registry.register(schema)
        >>> registry.validate("fs.read", {"path": "/a.txt"})
        >>> registry.resolve("fs.read").server
        'fs'
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._tools: dict[str, ToolSchema] = {}

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    # =========================================================================
    # Registration
    # =========================================================================

    def register(self, schema: ToolSchema) -> None:
        """
        Register a tool schema.

        Args:
            schema: The schema to register.

        Raises:
            DuplicateToolError: If a tool with the same name exists.
            InvalidToolSchemaError: If the name is not namespaced under
                the schema's server.
        """
        try:
            server, _method = split_tool_name(schema.name)
        except ValueError as e:
            raise InvalidToolSchemaError(str(e), schema.name) from e

        if server != schema.server:
            raise InvalidToolSchemaError(
                f"Tool '{schema.name}' is not namespaced under server '{schema.server}'",
                schema.name,
            )
        if schema.name in self._tools:
            raise DuplicateToolError(schema.name)

        self._tools[schema.name] = schema
        logger.debug(f"Registered tool: {schema.name}")

    def register_many(self, schemas: Iterable[ToolSchema]) -> list[str]:
        """Register several schemas in order. Returns the registered names."""
        names = []
        for schema in schemas:
            self.register(schema)
            names.append(schema.name)
        return names

    def register_discovered(
        self, server: str, raw_tools: Iterable[dict[str, Any]]
    ) -> list[str]:
        """
        Register tool definitions reported by a server (tools/list or static).

        Each raw definition looks like:
            {"name": "read", "description": "...",
             "parameters": {"type": "object", "properties": {...}, "required": [...]}}

        "inputSchema" is accepted as an alias of "parameters". Definitions
        that are malformed or already registered are logged and skipped, so
        one bad entry does not hide the server's other tools.

        Args:
            server: Server the tools belong to.
            raw_tools: Definitions as reported by the server.

        Returns:
            Names of the tools that were registered.
        """
        registered: list[str] = []
        for raw in raw_tools:
            if not isinstance(raw, dict) or not raw.get("name"):
                logger.warning(f"Skipping malformed tool definition from {server}: {raw!r}")
                continue

            method = str(raw["name"])
            # Servers may already report namespaced names
            prefix = f"{server}."
            if method.startswith(prefix):
                method = method[len(prefix):]

            schema = ToolSchema.from_json_schema(
                server=server,
                method=method,
                schema=raw.get("parameters") or raw.get("inputSchema"),
                description=raw.get("description"),
            )
            try:
                self.register(schema)
            except (DuplicateToolError, InvalidToolSchemaError) as e:
                logger.warning(f"Skipping tool from {server}: {e}")
                continue
            registered.append(schema.name)

        logger.info(f"Registered {len(registered)} tools from server {server}")
        return registered

    def unregister(self, name: str) -> None:
        """
        Remove a tool from the registry.

        Note:
            Does not raise an error if the tool doesn't exist.
        """
        self._tools.pop(name, None)
        logger.debug(f"Unregistered tool: {name}")

    # =========================================================================
    # Lookup
    # =========================================================================

    def resolve(self, name: str) -> ToolSchema:
        """
        Get a tool schema by name.

        Raises:
            UnknownToolError: If the tool is not registered.
        """
        try:
            return self._tools[name]
        except KeyError:
            raise UnknownToolError(name) from None

    def has(self, name: str) -> bool:
        """Check if a tool is registered."""
        return name in self._tools

    def tools_for(self, server: str) -> list[ToolSchema]:
        """Schemas owned by one server."""
        return [s for s in self._tools.values() if s.server == server]

    # =========================================================================
    # Validation
    # =========================================================================

    def check(self, name: str, arguments: dict[str, Any]) -> list[ArgumentIssue]:
        """
        Check call arguments against a tool's schema.

        Pure: never touches the network and never raises for bad arguments.

        Args:
            name: Tool name.
            arguments: Arguments supplied by the model.

        Returns:
            Every issue found; an empty list means the arguments are valid.

        Raises:
            UnknownToolError: If the tool is not registered.
        """
        schema = self.resolve(name)
        issues: list[ArgumentIssue] = []

        for required in schema.required:
            if required not in arguments:
                issues.append(ArgumentIssue(argument=required, problem="missing"))

        for arg_name, value in arguments.items():
            spec = schema.parameter(arg_name)
            if spec is None:
                if not schema.allow_extra:
                    issues.append(ArgumentIssue(argument=arg_name, problem="unexpected"))
                continue

            if not matches_type(value, spec.type):
                issues.append(
                    ArgumentIssue(
                        argument=arg_name,
                        problem="wrong_type",
                        expected=spec.type,
                        actual=_json_type_name(value),
                    )
                )

        return issues

    def validate(self, name: str, arguments: dict[str, Any]) -> None:
        """
        Validate call arguments, raising on the first failing call.

        Raises:
            UnknownToolError: If the tool is not registered.
            ToolValidationError: Carrying every issue found.
        """
        issues = self.check(name, arguments)
        if issues:
            raise ToolValidationError(name, issues)

    # =========================================================================
    # Load from config file
    # =========================================================================

    def load_from_file(self, filepath: str | Path) -> list[str]:
        """
        Load tool definitions from a JSON file.

        The file should have the format:
        {
            "tools": [
                {
                    "server": "fs",
                    "name": "read",
                    "description": "Read a file",
                    "parameters": { ... JSON Schema ... }
                }
            ]
        }

        Args:
            filepath: Path to the JSON file.

        Returns:
            Names of the tools registered.
        """
        path = Path(filepath)
        if not path.exists():
            logger.warning(f"Tool definition file not found: {filepath}")
            return []

        with open(path, encoding="utf-8") as f:
            config = json.load(f)

        by_server: dict[str, list[dict[str, Any]]] = {}
        for tool_data in config.get("tools", []):
            server = tool_data.get("server")
            if not server:
                logger.warning(f"Tool definition without server: {tool_data!r}")
                continue
            by_server.setdefault(server, []).append(tool_data)

        names: list[str] = []
        for server, raw_tools in by_server.items():
            names.extend(self.register_discovered(server, raw_tools))

        logger.info(f"Loaded {len(names)} tool definitions from {filepath}")
        return names

    # Keep last: shadows the builtin ``list`` in annotations that follow it
    def list(self) -> list[ToolSchema]:
        """All registered schemas, in registration order."""
        return list(self._tools.values())
