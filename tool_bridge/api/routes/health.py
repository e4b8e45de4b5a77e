"""
Health Router - Liveness, tool server health and Prometheus metrics.

Endpoints:
- GET /health: process is up
- GET /health/servers: per-server status; 503 when any server is FAILED
- GET /metrics: Prometheus exposition of the default registry
"""

import logging

from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel

from tool_bridge import __version__
from tool_bridge.api.deps import get_manager
from tool_bridge.processes.handle import ServerStatus
from tool_bridge.processes.manager import ProcessManager
from tool_bridge.processes.state import HealthState

logger = logging.getLogger(__name__)


# =============================================================================
# Response Models
# =============================================================================


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str


class ServersHealthResponse(BaseModel):
    """Tool server health response model."""

    status: str
    servers: list[ServerStatus]


router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Liveness check. Always 200 while the process serves requests."""
    return HealthResponse(status="healthy", version=__version__)


@router.get("/health/servers", response_model=ServersHealthResponse)
async def servers_health(
    response: Response,
    manager: ProcessManager = Depends(get_manager),
) -> ServersHealthResponse:
    """
    Health of every tool server.

    Returns 503 when any server has exhausted its restart budget, since
    its tools will fail until an explicit restart.
    """
    statuses = manager.statuses()
    failed = [s.name for s in statuses if s.state is HealthState.FAILED]
    if failed:
        logger.warning(f"Tool servers failed: {', '.join(failed)}")
        response.status_code = 503

    return ServersHealthResponse(
        status="degraded" if failed else "healthy",
        servers=statuses,
    )


@router.get("/metrics")
async def metrics() -> Response:
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
