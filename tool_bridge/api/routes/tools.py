"""
Tools Router - Inventory of registered tool schemas.

Endpoints:
- GET /v1/tools: every registered tool with its JSON Schema parameters
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from tool_bridge.api.deps import get_registry
from tool_bridge.tools.registry import ToolRegistry


class ToolDefinition(BaseModel):
    """Public view of a ToolSchema."""

    name: str
    server: str
    description: Optional[str] = None
    parameters: dict[str, Any]


class ToolListResponse(BaseModel):
    tools: list[ToolDefinition]


router = APIRouter(prefix="/v1/tools", tags=["Tools"])


@router.get("", response_model=ToolListResponse)
async def list_tools(registry: ToolRegistry = Depends(get_registry)) -> ToolListResponse:
    """List registered tools in registration order."""
    return ToolListResponse(
        tools=[
            ToolDefinition(
                name=schema.name,
                server=schema.server,
                description=schema.description,
                parameters=schema.to_json_schema(),
            )
            for schema in registry.list()
        ]
    )
