"""
Integration test infrastructure.

These tests spawn tests/fixtures/tool_server.py as real child processes
through the ProcessManager. They need a POSIX system with /proc (Linux).
"""

import sys
from pathlib import Path

import pytest


def pytest_collection_modifyitems(config, items):
    """Skip subprocess tests where process groups or /proc are unavailable."""
    if sys.platform.startswith("linux") and Path("/proc").is_dir():
        return
    skip = pytest.mark.skip(reason="requires Linux process groups and /proc")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip)


@pytest.fixture
def count_file(tmp_path):
    """File the fixture server appends one line to per start."""
    return tmp_path / "starts.log"


@pytest.fixture
def sandbox(tmp_path):
    """Sandbox root of the fixture servers, with one readable file."""
    (tmp_path / "a.txt").write_text("hello", encoding="utf-8")
    return tmp_path
