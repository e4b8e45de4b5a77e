"""Tool Bridge - Local model runtime to JSON-RPC tool server bridge.

Note: Import `app` directly from `tool_bridge.main` to avoid circular imports.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
