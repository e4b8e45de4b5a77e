"""
Servers Router - Operator control of tool servers.

Endpoints:
- POST /v1/servers/{name}/restart: explicit restart (the only way out of FAILED)
"""

import logging
from typing import Union

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from tool_bridge.api.deps import get_manager
from tool_bridge.core.exceptions import NotRunningError
from tool_bridge.processes.handle import ServerStatus
from tool_bridge.processes.manager import ProcessManager
from tool_bridge.processes.state import InvalidStateTransitionError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/servers", tags=["Servers"])


def _error(status_code: int, kind: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content={"error": {"kind": kind, "message": message}}
    )


@router.post("/{name}/restart", response_model=None)
async def restart_server(
    name: str,
    manager: ProcessManager = Depends(get_manager),
) -> Union[ServerStatus, JSONResponse]:
    """
    Restart a tool server with a fresh restart budget.

    Returns:
        ServerStatus once the restart settled (RUNNING or FAILED).
        JSONResponse: 404 unknown server, 409 server stopped or already
            starting, 503 bridge shutting down.
    """
    try:
        status = await manager.restart(name)
    except KeyError:
        return _error(404, "UNKNOWN_SERVER", f"Unknown tool server: {name}")
    except InvalidStateTransitionError as e:
        return _error(409, "INVALID_STATE", str(e))
    except NotRunningError as e:
        return _error(503, e.kind, e.message)

    logger.info(f"Restart of {name} settled in state {status.state.value}")
    return status
