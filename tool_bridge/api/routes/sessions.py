"""
Sessions Router - Run orchestration sessions over HTTP.

Endpoints:
- POST /v1/sessions: run one session to completion

Session-ending errors are translated to JSON error bodies:
    LoopLimitExceeded     -> 422
    SessionTransportError -> 502
Body: {"error": {"kind": ..., "message": ...}}
"""

import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from tool_bridge.api.deps import get_orchestrator
from tool_bridge.core.exceptions import LoopLimitExceeded, SessionTransportError
from tool_bridge.models.domain import SessionState, ToolResult
from tool_bridge.services.orchestrator import BridgeOrchestrator

logger = logging.getLogger(__name__)


class SessionRequest(BaseModel):
    """Request body of POST /v1/sessions."""

    prompt: str = Field(..., min_length=1)
    system_prompt: Optional[str] = None
    session_id: Optional[str] = Field(default=None, min_length=1, max_length=128)


class SessionResponse(BaseModel):
    """Completed session."""

    session_id: str
    text: str
    iterations: int
    state: SessionState
    tool_results: list[ToolResult]


router = APIRouter(prefix="/v1/sessions", tags=["Sessions"])


@router.post("", response_model=None)
async def create_session(
    request: SessionRequest,
    orchestrator: BridgeOrchestrator = Depends(get_orchestrator),
) -> Union[SessionResponse, JSONResponse]:
    """
    Run one orchestration session.

    Returns:
        SessionResponse: The final answer and every tool result.
        JSONResponse: 422 on LoopLimitExceeded, 502 on SessionTransportError.
    """
    try:
        result = await orchestrator.run_session(
            request.prompt,
            system_prompt=request.system_prompt,
            session_id=request.session_id,
        )
    except LoopLimitExceeded as e:
        return JSONResponse(status_code=422, content={"error": e.to_dict()})
    except SessionTransportError as e:
        logger.error(
            f"Model runtime error: endpoint={e.endpoint}, "
            f"status_code={e.status_code}, message={e.message}"
        )
        return JSONResponse(status_code=502, content={"error": e.to_dict()})

    return SessionResponse(
        session_id=result.session_id,
        text=result.text,
        iterations=result.iterations,
        state=result.state,
        tool_results=result.tool_results,
    )
