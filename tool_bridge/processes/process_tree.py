"""
Process Tree - Spawning and killing tool server process groups.

Every tool server is started as the leader of its own session, so its
process group id equals its pid and the whole descendant tree can be
signalled at once. Only the ProcessManager calls into this module.

POSIX only (os.killpg).
"""

import asyncio
import logging
import os
import signal
from pathlib import Path

from tool_bridge.core.config import ServerDescriptor
from tool_bridge.rpc.channel import STREAM_LIMIT

logger = logging.getLogger(__name__)

SANDBOX_ENV_VAR = "TOOL_BRIDGE_SANDBOX_ROOT"

_POLL_INTERVAL_SECONDS = 0.05


def build_environment(descriptor: ServerDescriptor) -> dict[str, str]:
    """Inherited environment plus the descriptor's extra variables."""
    env = os.environ.copy()
    env.update(descriptor.env)
    if descriptor.sandbox_root:
        env[SANDBOX_ENV_VAR] = str(Path(descriptor.sandbox_root).resolve())
    return env


async def spawn_server(descriptor: ServerDescriptor) -> asyncio.subprocess.Process:
    """
    Launch a tool server with piped stdio in a new process group.

    Args:
        descriptor: Launch description.

    Returns:
        The running subprocess.

    Raises:
        OSError: If the executable or the sandbox root cannot be used.
    """
    cwd = None
    if descriptor.sandbox_root:
        root = Path(descriptor.sandbox_root).resolve()
        if not root.is_dir():
            raise FileNotFoundError(f"Sandbox root is not a directory: {root}")
        cwd = str(root)

    process = await asyncio.create_subprocess_exec(
        *descriptor.argv,
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=cwd,
        env=build_environment(descriptor),
        start_new_session=True,
        limit=STREAM_LIMIT,
    )
    logger.debug(f"Spawned {descriptor.name}: pid={process.pid} argv={descriptor.argv}")
    return process


def signal_group(pgid: int, sig: int) -> bool:
    """
    Send a signal to a whole process group.

    Returns:
        False if the group no longer exists.
    """
    try:
        os.killpg(pgid, sig)
    except ProcessLookupError:
        return False
    except PermissionError as e:
        logger.warning(f"Cannot signal process group {pgid}: {e}")
        return False
    return True


def group_alive(pgid: int) -> bool:
    """Check whether any process of the group still exists."""
    return signal_group(pgid, 0)


async def terminate_tree(process: asyncio.subprocess.Process, grace: float) -> None:
    """
    Terminate a server and all of its descendants.

    SIGTERM goes to the process group first; whatever is still alive after
    ``grace`` seconds gets SIGKILL. Descendants are handled even when the
    leader has already exited.

    Args:
        process: Group leader spawned by spawn_server().
        grace: Seconds between SIGTERM and SIGKILL.
    """
    pgid = process.pid
    loop = asyncio.get_running_loop()
    deadline = loop.time() + grace

    if signal_group(pgid, signal.SIGTERM):
        try:
            await asyncio.wait_for(process.wait(), grace)
        except asyncio.TimeoutError:
            pass
        # Descendants may outlive the leader
        while group_alive(pgid) and loop.time() < deadline:
            await asyncio.sleep(_POLL_INTERVAL_SECONDS)
        if group_alive(pgid):
            logger.warning(f"Process group {pgid} ignored SIGTERM, sending SIGKILL")
            signal_group(pgid, signal.SIGKILL)

    if process.returncode is None:
        await process.wait()
