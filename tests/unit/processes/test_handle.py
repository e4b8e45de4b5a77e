"""
Unit tests for tool_bridge/processes/handle.py and process_tree helpers.
"""

import os
import signal
from unittest.mock import MagicMock

import pytest
from pydantic import ValidationError


@pytest.fixture
def descriptor():
    from tool_bridge.core.config import ServerDescriptor

    return ServerDescriptor(name="fs", command="python", env={"FS_MODE": "ro"})


class TestServerHandle:

    def test_defaults(self, descriptor):
        from tool_bridge.processes.handle import ServerHandle
        from tool_bridge.processes.state import HealthState

        handle = ServerHandle(descriptor=descriptor)
        assert handle.name == "fs"
        assert handle.state is HealthState.STARTING
        assert handle.pid is None
        assert handle.address is None
        assert handle.restart_count == 0

    def test_snapshot_is_immutable_copy(self, descriptor):
        from tool_bridge.processes.handle import ServerHandle

        handle = ServerHandle(descriptor=descriptor)
        handle.process = MagicMock(pid=4242)
        handle.channel = MagicMock(address="stdio://4242")
        handle.tools.append("fs.read")
        handle.touch()

        status = handle.snapshot()
        handle.tools.append("fs.write")

        assert status.pid == 4242
        assert status.address == "stdio://4242"
        assert status.tools == ["fs.read"]
        assert status.last_activity is not None
        with pytest.raises(ValidationError):
            status.restart_count = 9


class TestProcessTreeHelpers:

    def test_environment_includes_extras_and_sandbox(self, tmp_path):
        from tool_bridge.core.config import ServerDescriptor
        from tool_bridge.processes.process_tree import SANDBOX_ENV_VAR, build_environment

        descriptor = ServerDescriptor(
            name="fs", command="python", env={"FS_MODE": "ro"}, sandbox_root=str(tmp_path)
        )
        env = build_environment(descriptor)

        assert env["FS_MODE"] == "ro"
        assert env[SANDBOX_ENV_VAR] == str(tmp_path.resolve())
        assert env.get("PATH") == os.environ.get("PATH")

    def test_signal_missing_group(self):
        from tool_bridge.processes import process_tree

        with pytest.MonkeyPatch.context() as mp:
            mp.setattr(process_tree.os, "killpg", MagicMock(side_effect=ProcessLookupError))
            assert process_tree.signal_group(999999, signal.SIGTERM) is False
            assert process_tree.group_alive(999999) is False

    @pytest.mark.asyncio
    async def test_spawn_rejects_missing_sandbox(self, tmp_path):
        from tool_bridge.core.config import ServerDescriptor
        from tool_bridge.processes.process_tree import spawn_server

        descriptor = ServerDescriptor(
            name="fs", command="python", sandbox_root=str(tmp_path / "missing")
        )
        with pytest.raises(FileNotFoundError):
            await spawn_server(descriptor)
