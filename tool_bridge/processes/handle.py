"""
Server Handle - Runtime record of one tool server.

A ServerHandle is owned and mutated only by the ProcessManager. Everything
outside the manager sees ServerStatus, an immutable snapshot.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Optional

from pydantic import BaseModel, Field

from tool_bridge.core.config import ServerDescriptor
from tool_bridge.processes.state import HealthState
from tool_bridge.rpc.channel import RpcChannel


class ServerStatus(BaseModel):
    """Read-only view of a server handle."""

    name: str
    state: HealthState
    pid: Optional[int] = None
    address: Optional[str] = None
    restart_count: int = 0
    last_activity: Optional[float] = Field(
        default=None, description="Unix time of the last successful exchange"
    )
    last_error: Optional[str] = None
    tools: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}


@dataclass
class ServerHandle:
    """
    Mutable runtime state of one tool server.

    Attributes:
        descriptor: Launch description (immutable).
        state: Current health state.
        process: Live OS process, if one is spawned.
        channel: RPC channel over the process stdio.
        restart_count: Consecutive restart attempts; reset by an explicit
            restart or by a run that stayed healthy long enough.
        generation: Bumped on every spawn; background tasks of an older
            generation must not touch the handle.
        tools: Fully-qualified names of the tools this server provides.
        discovered: Whether tools/list already ran for this handle.
        supervisor: Task currently driving start/restart.
        exit_watcher: Task awaiting the current process' exit.
        teardown: Task killing the previous process group, if one is in flight.
        running_since: Monotonic time the current process became RUNNING.
    """

    descriptor: ServerDescriptor
    state: HealthState = HealthState.STARTING
    process: Optional[asyncio.subprocess.Process] = None
    channel: Optional[RpcChannel] = None
    restart_count: int = 0
    generation: int = 0
    last_activity: Optional[float] = None
    last_error: Optional[str] = None
    tools: list[str] = field(default_factory=list)
    discovered: bool = False
    supervisor: Optional[asyncio.Task] = None
    exit_watcher: Optional[asyncio.Task] = None
    teardown: Optional[asyncio.Task] = None
    running_since: Optional[float] = None

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process is not None else None

    @property
    def address(self) -> Optional[str]:
        return self.channel.address if self.channel is not None else None

    def touch(self) -> None:
        """Record a successful exchange with the server."""
        self.last_activity = time.time()

    def snapshot(self) -> ServerStatus:
        return ServerStatus(
            name=self.name,
            state=self.state,
            pid=self.pid,
            address=self.address,
            restart_count=self.restart_count,
            last_activity=self.last_activity,
            last_error=self.last_error,
            tools=list(self.tools),
        )
