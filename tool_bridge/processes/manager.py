"""
Process Manager - Lifecycle of tool server processes.

Spawns one OS process per configured tool server, confirms readiness with a
``ping`` handshake, watches for crashes and failed health probes, restarts
with exponential backoff inside a bounded budget, and kills every process
group on shutdown.

State Machine (see processes.state):
    STARTING -> RUNNING -> UNRESPONSIVE -> RESTARTING -> STARTING ...
    STARTING -> RESTARTING | FAILED     (handshake failed)
    UNRESPONSIVE -> FAILED              (restart budget exhausted)
    any -> STOPPED                      (explicit shutdown)

Every state change goes through _transition() with the manager lock held;
the lock also covers spawning, so a shutdown can never miss a process that
is being started concurrently.

Pattern: Supervisor with bounded restarts and exponential backoff
Pattern: Async context manager for scoped shutdown
"""

import asyncio
from typing import Iterable, Optional

from tool_bridge.core.config import ServerDescriptor, Settings, get_settings
from tool_bridge.core.exceptions import NotRunningError, ToolError
from tool_bridge.models.domain import TOOL_NAME_SEPARATOR
from tool_bridge.observability.logging import get_logger
from tool_bridge.observability.metrics import (
    record_server_restart,
    record_server_state_transition,
)
from tool_bridge.processes.handle import ServerHandle, ServerStatus
from tool_bridge.processes.process_tree import spawn_server, terminate_tree
from tool_bridge.processes.state import (
    HealthState,
    InvalidStateTransitionError,
    can_transition,
)
from tool_bridge.rpc.channel import RpcChannel
from tool_bridge.rpc.translator import ProtocolTranslator
from tool_bridge.tools.registry import ToolRegistry

logger = get_logger(__name__)

# Reserved methods every tool server answers
PING_METHOD = "ping"
TOOLS_LIST_METHOD = "tools/list"

_RESTARTABLE = frozenset(
    {HealthState.RUNNING, HealthState.UNRESPONSIVE, HealthState.FAILED}
)


class ProcessManager:
    """
    Owner of every tool server process.

    Only this class creates or kills OS processes. Callers get channels via
    address_of() and read state through immutable ServerStatus snapshots.

    Example:
        >>> async with ProcessManager(settings, registry=registry) as manager:
        ...     await manager.start_all(config.servers)
        ...     channel = manager.address_of("fs")

    Attributes:
        max_restarts: Restart attempts before a server is marked FAILED.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        registry: Optional[ToolRegistry] = None,
        translator: Optional[ProtocolTranslator] = None,
    ) -> None:
        """
        Initialize the manager.

        Args:
            settings: Timeouts and restart budget. Defaults to get_settings().
            registry: Registry receiving static and discovered tools.
            translator: Translator used for ping and tools/list.
        """
        settings = settings or get_settings()
        self._start_timeout = settings.start_timeout_seconds
        self._probe_timeout = settings.probe_timeout_seconds
        self._health_interval = settings.health_interval_seconds
        self._max_restarts = settings.max_restarts
        self._restart_reset = settings.restart_reset_seconds
        self._backoff_base = settings.backoff_base_seconds
        self._backoff_max = settings.backoff_max_seconds
        self._stop_grace = settings.stop_grace_seconds

        self._registry = registry
        self._translator = translator or ProtocolTranslator()

        self._handles: dict[str, ServerHandle] = {}
        self._lock = asyncio.Lock()
        self._closing = False
        self._health_task: Optional[asyncio.Task[None]] = None
        self._teardowns: set[asyncio.Task[None]] = set()

    async def __aenter__(self) -> "ProcessManager":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop_all()

    @property
    def max_restarts(self) -> int:
        return self._max_restarts

    # =========================================================================
    # Queries
    # =========================================================================

    def _require(self, name: str) -> ServerHandle:
        try:
            return self._handles[name]
        except KeyError:
            raise KeyError(f"Unknown tool server: {name}") from None

    def address_of(self, name: str) -> RpcChannel:
        """
        Get the live channel of a running server.

        Raises:
            NotRunningError: If the server is unknown or not RUNNING.
        """
        handle = self._handles.get(name)
        if handle is None:
            raise NotRunningError(name, reason="unknown server")
        if handle.state is not HealthState.RUNNING or handle.channel is None:
            raise NotRunningError(name, handle.state.value)
        return handle.channel

    def health_of(self, name: str) -> HealthState:
        """Current health state. Raises KeyError for unknown servers."""
        return self._require(name).state

    def status_of(self, name: str) -> ServerStatus:
        """Snapshot of one server. Raises KeyError for unknown servers."""
        return self._require(name).snapshot()

    def statuses(self) -> list[ServerStatus]:
        """Snapshots of every managed server, in start order."""
        return [handle.snapshot() for handle in self._handles.values()]

    def backoff_delay(self, attempt: int) -> float:
        """Delay before restart number ``attempt`` (1-based)."""
        return min(self._backoff_base * 2 ** (attempt - 1), self._backoff_max)

    # =========================================================================
    # Start / Restart
    # =========================================================================

    async def start(self, descriptor: ServerDescriptor) -> ServerStatus:
        """
        Launch a server and wait until it is RUNNING or FAILED.

        Readiness failures are retried inside the restart budget and never
        raised; inspect the returned status instead.

        Args:
            descriptor: Launch description.

        Returns:
            Status once the start attempt settled.

        Raises:
            ValueError: If a server with this name is already managed.
        """
        name = descriptor.name
        async with self._lock:
            existing = self._handles.get(name)
            if existing is not None and existing.state is not HealthState.STOPPED:
                raise ValueError(f"Tool server already managed: {name}")

            handle = ServerHandle(descriptor=descriptor)
            self._handles[name] = handle
            if self._closing:
                handle.state = HealthState.STOPPED
                handle.last_error = "manager is shutting down"
                return handle.snapshot()

            record_server_state_transition(name, HealthState.STARTING.value, "new")
            logger.info("server_starting", server=name, argv=descriptor.argv)

            if self._registry is not None and descriptor.tools:
                self._registry.register_discovered(name, descriptor.tools)
                handle.tools.extend(s.name for s in self._registry.tools_for(name))

            task = asyncio.create_task(self._bring_up(handle), name=f"start-{name}")
            handle.supervisor = task

        # wait() instead of await: a shutdown cancelling the supervisor must
        # not surface as CancelledError in the caller
        await asyncio.wait({task})
        return handle.snapshot()

    async def start_all(self, descriptors: Iterable[ServerDescriptor]) -> list[ServerStatus]:
        """Start several servers concurrently."""
        return list(await asyncio.gather(*(self.start(d) for d in descriptors)))

    async def restart(self, name: str) -> ServerStatus:
        """
        Explicit restart request.

        Resets the restart budget, kills the current process (if any) and
        starts a fresh one. This is the only way out of FAILED.

        Raises:
            KeyError: If the server is unknown.
            InvalidStateTransitionError: If the server is STOPPED or already
                starting/restarting.
            NotRunningError: If the manager is shutting down.
        """
        async with self._lock:
            handle = self._require(name)
            if self._closing:
                raise NotRunningError(name, handle.state.value, reason="manager is shutting down")
            if handle.state not in _RESTARTABLE:
                raise InvalidStateTransitionError(name, handle.state, HealthState.RESTARTING)

            previous = handle.supervisor
            if previous is not None and not previous.done():
                previous.cancel()

            handle.restart_count = 0
            handle.last_error = None
            self._transition(handle, HealthState.RESTARTING, reason="explicit restart")
            task = asyncio.create_task(
                self._explicit_restart(handle, previous), name=f"restart-{name}"
            )
            handle.supervisor = task

        await asyncio.wait({task})
        return handle.snapshot()

    async def _explicit_restart(
        self, handle: ServerHandle, previous: Optional[asyncio.Task]
    ) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait({previous})
        await self._discard_process(handle, "restart requested")
        async with self._lock:
            if handle.state is not HealthState.RESTARTING:
                return
            self._transition(handle, HealthState.STARTING)
        await self._bring_up(handle)

    async def _bring_up(self, handle: ServerHandle) -> None:
        """Spawn until RUNNING, retrying inside the restart budget."""
        while True:
            if await self._spawn_and_handshake(handle):
                return
            await self._discard_process(handle, "readiness check failed")
            if not await self._schedule_restart(handle):
                return

    async def _spawn_and_handshake(self, handle: ServerHandle) -> bool:
        name = handle.name
        async with self._lock:
            if handle.state is not HealthState.STARTING or self._closing:
                return False
            try:
                process = await spawn_server(handle.descriptor)
            except OSError as e:
                handle.last_error = f"spawn failed: {e}"
                logger.warning("server_spawn_failed", server=name, error=str(e))
                return False

            handle.generation += 1
            generation = handle.generation
            handle.process = process
            channel = RpcChannel.for_process(process, name)
            channel.start()
            handle.channel = channel
            handle.exit_watcher = asyncio.create_task(
                self._watch_exit(handle, generation, process), name=f"exit-watch-{name}"
            )

        try:
            await self._translator.invoke(
                channel, self._translator.request(PING_METHOD), self._start_timeout
            )
        except ToolError as e:
            handle.last_error = f"readiness check failed: {e.message}"
            logger.warning(
                "server_not_ready",
                server=name,
                pid=process.pid,
                error=e.message,
                timeout=self._start_timeout,
            )
            return False

        async with self._lock:
            if handle.state is not HealthState.STARTING or handle.generation != generation:
                return False
            handle.touch()
            handle.last_error = None
            handle.running_since = asyncio.get_running_loop().time()
            self._transition(handle, HealthState.RUNNING, pid=process.pid)

        await self._discover(handle, channel)
        return True

    async def _schedule_restart(self, handle: ServerHandle) -> bool:
        """
        Move to RESTARTING and wait out the backoff, or give up with FAILED.

        Returns:
            True when the handle is back in STARTING and should be spawned.
        """
        async with self._lock:
            if handle.state is HealthState.STOPPED or self._closing:
                return False
            if handle.restart_count >= self._max_restarts:
                self._transition(
                    handle,
                    HealthState.FAILED,
                    reason=f"restart budget of {self._max_restarts} exhausted",
                )
                return False
            handle.restart_count += 1
            self._transition(handle, HealthState.RESTARTING, reason=handle.last_error)
            record_server_restart(handle.name)
            delay = self.backoff_delay(handle.restart_count)

        await asyncio.sleep(delay)

        async with self._lock:
            if handle.state is not HealthState.RESTARTING or self._closing:
                return False
            self._transition(handle, HealthState.STARTING)
        return True

    async def _recover(self, handle: ServerHandle) -> None:
        await self._discard_process(handle, handle.last_error or "server unresponsive")
        if await self._schedule_restart(handle):
            await self._bring_up(handle)

    # =========================================================================
    # Failure Detection
    # =========================================================================

    async def _mark_unresponsive(
        self, handle: ServerHandle, generation: int, reason: str
    ) -> None:
        """
        Flag a RUNNING server as UNRESPONSIVE and start recovery.

        Shared by the exit watcher and the health probe. Events from an
        older process generation, or for handles not RUNNING, are ignored.
        """
        async with self._lock:
            if handle.generation != generation or handle.state is not HealthState.RUNNING:
                return
            if self._closing:
                return
            handle.last_error = reason
            self._forgive_stable_run(handle)
            self._transition(handle, HealthState.UNRESPONSIVE, reason=reason)
            handle.supervisor = asyncio.create_task(
                self._recover(handle), name=f"recover-{handle.name}"
            )

    def _forgive_stable_run(self, handle: ServerHandle) -> None:
        """Start the restart count over if the failing run stayed healthy long enough."""
        if handle.running_since is None or handle.restart_count == 0:
            return
        uptime = asyncio.get_running_loop().time() - handle.running_since
        if uptime >= self._restart_reset:
            logger.info(
                "restart_budget_reset",
                server=handle.name,
                uptime=round(uptime, 1),
                previous_restarts=handle.restart_count,
            )
            handle.restart_count = 0

    async def _watch_exit(
        self,
        handle: ServerHandle,
        generation: int,
        process: asyncio.subprocess.Process,
    ) -> None:
        returncode = await process.wait()
        await self._mark_unresponsive(
            handle, generation, f"process exited with code {returncode}"
        )

    def start_health_checks(self) -> None:
        """Start the periodic probe loop. Idempotent."""
        if self._health_task is None or self._health_task.done():
            self._health_task = asyncio.create_task(
                self._health_loop(), name="tool-server-health"
            )

    async def _health_loop(self) -> None:
        while True:
            await asyncio.sleep(self._health_interval)
            try:
                await self.probe_all()
            except Exception:
                logger.exception("health_probe_round_failed")

    async def probe_all(self) -> None:
        """Ping every RUNNING server once."""
        async with self._lock:
            targets = [
                (handle, handle.generation, handle.channel)
                for handle in self._handles.values()
                if handle.state is HealthState.RUNNING and handle.channel is not None
            ]
        await asyncio.gather(*(self._probe(h, g, c) for h, g, c in targets))

    async def _probe(self, handle: ServerHandle, generation: int, channel: RpcChannel) -> None:
        try:
            await self._translator.invoke(
                channel, self._translator.request(PING_METHOD), self._probe_timeout
            )
        except ToolError as e:
            await self._mark_unresponsive(
                handle, generation, f"health probe failed: {e.message}"
            )
            return
        handle.touch()

    # =========================================================================
    # Tool Discovery
    # =========================================================================

    async def _discover(self, handle: ServerHandle, channel: RpcChannel) -> None:
        """Ask a freshly started server for its tools (once per handle)."""
        name = handle.name
        if not handle.descriptor.discover_tools or handle.discovered:
            return

        try:
            result = await self._translator.invoke(
                channel, self._translator.request(TOOLS_LIST_METHOD), self._start_timeout
            )
        except ToolError as e:
            logger.warning("tool_discovery_failed", server=name, error=e.message)
            return

        raw_tools = result.get("tools") if isinstance(result, dict) else result
        if not isinstance(raw_tools, list):
            logger.warning("tool_discovery_malformed", server=name)
            return

        handle.discovered = True
        if self._registry is not None:
            self._registry.register_discovered(name, raw_tools)
            names = [schema.name for schema in self._registry.tools_for(name)]
        else:
            names = [
                f"{name}{TOOL_NAME_SEPARATOR}{raw['name']}"
                for raw in raw_tools
                if isinstance(raw, dict) and raw.get("name")
            ]
        handle.tools.extend(n for n in names if n not in handle.tools)
        logger.info("tools_discovered", server=name, count=len(handle.tools))

    # =========================================================================
    # Shutdown
    # =========================================================================

    async def stop(self, name: str) -> ServerStatus:
        """
        Stop one server and kill its process group. Idempotent.

        Pending requests on its channel fail with NotRunningError.

        Raises:
            KeyError: If the server is unknown.
        """
        async with self._lock:
            handle = self._require(name)
            if handle.state is not HealthState.STOPPED:
                self._transition(handle, HealthState.STOPPED, reason="stop requested")
            supervisor = handle.supervisor
            if supervisor is not None and not supervisor.done():
                supervisor.cancel()

        if supervisor is not None and not supervisor.done():
            await asyncio.wait({supervisor})
        await self._discard_process(handle, "server stopped")
        return handle.snapshot()

    async def stop_all(self) -> None:
        """
        Stop every server and the health loop. Idempotent.

        Safe during partial startup: supervisors are cancelled first and
        spawning is serialized with this method, so no process survives.
        """
        async with self._lock:
            self._closing = True
            health_task = self._health_task
            if health_task is not None and not health_task.done():
                health_task.cancel()

            handles = list(self._handles.values())
            supervisors = []
            for handle in handles:
                if handle.state is not HealthState.STOPPED:
                    self._transition(handle, HealthState.STOPPED, reason="bridge shutting down")
                if handle.supervisor is not None and not handle.supervisor.done():
                    handle.supervisor.cancel()
                    supervisors.append(handle.supervisor)

        pending = [t for t in [health_task, *supervisors] if t is not None and not t.done()]
        if pending:
            await asyncio.wait(pending)

        await asyncio.gather(
            *(self._discard_process(handle, "bridge shutting down") for handle in handles)
        )
        if self._teardowns:
            await asyncio.wait(list(self._teardowns))
        if handles:
            logger.info("servers_stopped", count=len(handles))

    async def _discard_process(self, handle: ServerHandle, reason: str) -> None:
        """
        Close the channel and kill the process group of a handle.

        Returns only once the group is gone, including when another task
        already started the teardown.
        """
        process, channel, watcher = handle.process, handle.channel, handle.exit_watcher
        handle.process = None
        handle.channel = None
        handle.exit_watcher = None

        if watcher is not None and not watcher.done() and watcher is not asyncio.current_task():
            watcher.cancel()
        if channel is None and process is None:
            in_flight = handle.teardown
            if in_flight is not None and not in_flight.done():
                await asyncio.wait({in_flight})
            return

        # Runs as its own task: a cancelled caller must not leave the group
        # half-killed, and stop_all() waits for every teardown in flight
        task = asyncio.create_task(self._teardown(channel, process, reason))
        handle.teardown = task
        self._teardowns.add(task)
        task.add_done_callback(self._teardowns.discard)
        await asyncio.shield(task)

    async def _teardown(
        self,
        channel: Optional[RpcChannel],
        process: Optional[asyncio.subprocess.Process],
        reason: str,
    ) -> None:
        if channel is not None:
            await channel.close(reason)
        if process is not None:
            await terminate_tree(process, self._stop_grace)

    # =========================================================================
    # State Transitions
    # =========================================================================

    def _transition(
        self,
        handle: ServerHandle,
        to_state: HealthState,
        reason: Optional[str] = None,
        **fields: object,
    ) -> None:
        """Apply one state change. Caller must hold self._lock."""
        from_state = handle.state
        if not can_transition(from_state, to_state):
            raise InvalidStateTransitionError(handle.name, from_state, to_state)

        handle.state = to_state
        record_server_state_transition(handle.name, to_state.value, from_state.value)
        logger.info(
            "server_state_changed",
            server=handle.name,
            from_state=from_state.value,
            to_state=to_state.value,
            restart_count=handle.restart_count,
            reason=reason,
            **fields,
        )
