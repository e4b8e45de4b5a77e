"""
Tools Package - Tool Registry

Lookup table of tool schemas and the argument validation performed before
any remote call.
"""

from tool_bridge.tools.registry import ToolRegistry, matches_type

__all__ = [
    "ToolRegistry",
    "matches_type",
]
