"""API Package - FastAPI routes and dependencies.

Note: Import routers directly from tool_bridge.api.routes to avoid circular imports.
"""

__all__ = ["routes", "deps"]
