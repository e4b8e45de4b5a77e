"""
Core configuration module for Tool Bridge.

This module provides two layers of configuration:

1. Settings: process-wide tuning loaded from environment variables with the
   TOOL_BRIDGE_ prefix using Pydantic Settings (timeouts, restart budget,
   iteration ceiling, logging).
2. BridgeConfig: the on-disk JSON file naming each tool server and the model
   endpoint. The core receives it as an already-validated object.

Example bridge file:

    {
        "model": {"base_url": "http://localhost:11434", "model": "llama3.1"},
        "servers": [
            {"name": "fs", "command": "python", "args": ["-m", "fs_server"],
             "sandbox_root": "/srv/sandbox"}
        ]
    }
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings

from tool_bridge.core.exceptions import ConfigurationError


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All fields use the TOOL_BRIDGE_ prefix for environment variables.
    Example: TOOL_BRIDGE_MAX_RESTARTS=5
    """

    # =========================================================================
    # Service Configuration
    # =========================================================================
    service_name: str = Field(
        default="tool-bridge",
        description="Name of the service for logging and identification",
    )
    host: str = Field(
        default="127.0.0.1",
        description="Interface the HTTP surface binds to",
    )
    port: int = Field(
        default=8090,
        ge=1,
        le=65535,
        description="Port the HTTP surface listens on",
    )
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
    )
    config_path: str = Field(
        default="bridge.json",
        description="Path of the JSON file describing tool servers and model",
    )

    # =========================================================================
    # Process Manager
    # =========================================================================
    start_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=300.0,
        description="Readiness handshake timeout for a freshly spawned server",
    )
    probe_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=60.0,
        description="Timeout of a single health probe",
    )
    health_interval_seconds: float = Field(
        default=15.0,
        gt=0,
        description="Seconds between health probes of running servers",
    )
    max_restarts: int = Field(
        default=3,
        ge=0,
        le=100,
        description="Restart attempts before a server is marked Failed",
    )
    restart_reset_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Healthy run after which the restart count starts over",
    )
    backoff_base_seconds: float = Field(
        default=0.5,
        ge=0,
        description="First restart delay; doubles on every further attempt",
    )
    backoff_max_seconds: float = Field(
        default=30.0,
        ge=0,
        description="Upper bound of the restart delay",
    )
    stop_grace_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Seconds between SIGTERM and SIGKILL on shutdown",
    )

    # =========================================================================
    # Orchestrator
    # =========================================================================
    call_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=3600.0,
        description="Timeout of a single remote tool call",
    )
    max_iterations: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Maximum tool-execution rounds per session",
    )
    concurrent_tool_calls: bool = Field(
        default=True,
        description="Run the tool calls of one model turn concurrently",
    )
    max_concurrent_tool_calls: int = Field(
        default=8,
        ge=1,
        le=256,
        description="Upper bound of tool calls in flight per model turn",
    )

    # =========================================================================
    # Model Runtime
    # =========================================================================
    llm_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="HTTP timeout for the model runtime (long generations)",
    )

    model_config = {
        "env_prefix": "TOOL_BRIDGE_",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and validate the log level."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @model_validator(mode="after")
    def validate_backoff(self) -> "Settings":
        """Backoff cap must not be below the first delay."""
        if self.backoff_max_seconds < self.backoff_base_seconds:
            raise ValueError("backoff_max_seconds must be >= backoff_base_seconds")
        return self


@lru_cache
def get_settings() -> Settings:
    """
    Get the application settings singleton.

    Uses functools.lru_cache to ensure only one Settings instance is created.

    Returns:
        Settings: The application settings instance.
    """
    return Settings()


# =============================================================================
# Bridge File Models
# =============================================================================


class ServerDescriptor(BaseModel):
    """
    Launch description of one tool server.

    Attributes:
        name: Unique server name; also the namespace of its tools.
        command: Executable to launch.
        args: Launch arguments.
        sandbox_root: Optional directory the server is confined to. Used as
            the working directory and exported as TOOL_BRIDGE_SANDBOX_ROOT.
        env: Extra environment variables for the process.
        discover_tools: Ask the server for its tools (tools/list) once ready.
        tools: Static tool definitions (JSON Schema form) for servers that
            do not support discovery.
    """

    name: str = Field(..., min_length=1, description="Unique server name")
    command: str = Field(..., min_length=1, description="Executable to launch")
    args: list[str] = Field(default_factory=list, description="Launch arguments")
    sandbox_root: Optional[str] = Field(
        default=None, description="Filesystem sandbox root"
    )
    env: dict[str, str] = Field(default_factory=dict, description="Extra env vars")
    discover_tools: bool = Field(
        default=True, description="Discover tools via tools/list after start"
    )
    tools: list[dict[str, Any]] = Field(
        default_factory=list, description="Static tool definitions"
    )

    model_config = {"frozen": True}

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Server names prefix tool names, so they may not contain the separator."""
        if "." in v:
            raise ValueError("Server name must not contain '.'")
        return v

    @property
    def argv(self) -> list[str]:
        """Full command line."""
        return [self.command, *self.args]


class ModelEndpoint(BaseModel):
    """Where the model runtime lives and which model to use."""

    base_url: str = Field(default="http://localhost:11434")
    model: str = Field(..., min_length=1)
    timeout: Optional[float] = Field(default=None, gt=0)

    model_config = {"frozen": True}


class BridgeConfig(BaseModel):
    """Parsed bridge file: the model endpoint and every tool server."""

    model: ModelEndpoint
    servers: list[ServerDescriptor] = Field(default_factory=list)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def validate_unique_servers(self) -> "BridgeConfig":
        """Server names are unique keys."""
        seen: set[str] = set()
        for server in self.servers:
            if server.name in seen:
                raise ValueError(f"Duplicate server name: {server.name}")
            seen.add(server.name)
        return self

    def server(self, name: str) -> ServerDescriptor:
        """Look up a server descriptor by name."""
        for server in self.servers:
            if server.name == name:
                return server
        raise KeyError(name)


def load_bridge_config(path: str | Path) -> BridgeConfig:
    """
    Load and validate the bridge file.

    Args:
        path: Path of the JSON file.

    Returns:
        The validated BridgeConfig.

    Raises:
        ConfigurationError: If the file is missing, not JSON, or invalid.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigurationError(
            f"Bridge config file not found: {config_path}", str(config_path)
        )

    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigurationError(
            f"Bridge config is not valid JSON: {e}", str(config_path)
        ) from e

    try:
        return BridgeConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(
            f"Bridge config is invalid: {e}", str(config_path)
        ) from e
