"""
Pytest configuration and shared fixtures.

This configuration sets up:
- Import path for the tool_bridge package
- Test markers for categorization
- Fast Settings, a populated ToolRegistry and tool server descriptors
  shared by unit and integration tests
"""

import sys
from pathlib import Path

import pytest

# Add project root to Python path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

TOOL_SERVER_SCRIPT = PROJECT_ROOT / "tests" / "fixtures" / "tool_server.py"


# =============================================================================
# Test Markers
# =============================================================================


def pytest_configure(config):
    """
    Register custom markers for test categorization.

    - unit: Tests for individual components, no subprocesses
    - integration: Tests that spawn real tool server processes
    - slow: Tests that take a long time to run
    """
    config.addinivalue_line("markers", "unit: Unit tests for individual components")
    config.addinivalue_line("markers", "integration: Tests spawning real tool servers")
    config.addinivalue_line("markers", "slow: Tests that take a long time to run")


# =============================================================================
# Settings Fixtures
# =============================================================================


@pytest.fixture
def fast_settings():
    """
    Settings with short timeouts and backoff so lifecycle tests run quickly.
    """
    from tool_bridge.core.config import Settings

    return Settings(
        start_timeout_seconds=2.0,
        probe_timeout_seconds=0.5,
        health_interval_seconds=60.0,
        max_restarts=2,
        backoff_base_seconds=0.05,
        backoff_max_seconds=0.2,
        stop_grace_seconds=0.5,
        call_timeout_seconds=2.0,
        max_iterations=3,
    )


# =============================================================================
# Registry Fixtures
# =============================================================================


@pytest.fixture
def fs_read_schema():
    """Schema of fs.read with one required string argument."""
    from tool_bridge.models.domain import ParameterSpec, ToolSchema

    return ToolSchema(
        name="fs.read",
        server="fs",
        description="Read a file",
        parameters=(ParameterSpec(name="path", type="string", required=True),),
    )


@pytest.fixture
def registry(fs_read_schema):
    """Registry holding fs.read and fs.write."""
    from tool_bridge.models.domain import ParameterSpec, ToolSchema
    from tool_bridge.tools.registry import ToolRegistry

    registry = ToolRegistry()
    registry.register(fs_read_schema)
    registry.register(
        ToolSchema(
            name="fs.write",
            server="fs",
            parameters=(
                ParameterSpec(name="path", type="string", required=True),
                ParameterSpec(name="content", type="string", required=True),
                ParameterSpec(name="append", type="boolean"),
            ),
        )
    )
    return registry


# =============================================================================
# Tool Server Fixtures
# =============================================================================


@pytest.fixture
def tool_server_descriptor(tmp_path):
    """
    Factory of descriptors launching tests/fixtures/tool_server.py.

    The sandbox root is the test's tmp_path.

    Example:
        descriptor = tool_server_descriptor("fx", "--never-ready")
    """
    from tool_bridge.core.config import ServerDescriptor

    def make(name: str, *flags: str, **overrides):
        fields = {
            "name": name,
            "command": sys.executable,
            "args": [str(TOOL_SERVER_SCRIPT), *flags],
            "sandbox_root": str(tmp_path),
        }
        fields.update(overrides)
        return ServerDescriptor(**fields)

    return make
