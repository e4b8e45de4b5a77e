"""
JSON-RPC Envelope Models.

Wire contract with tool servers, one JSON object per line:

    request:  {"jsonrpc": "2.0", "method": ..., "params": {...}, "id": 17}
    response: {"jsonrpc": "2.0", "result": ..., "id": 17}
          or  {"jsonrpc": "2.0", "error": {"code": -32601, "message": ...}, "id": 17}

The envelope field is named ``version`` in Python and serialized under the
``jsonrpc`` key.
"""

import json
from typing import Any, Optional

from pydantic import BaseModel, Field

JSONRPC_VERSION = "2.0"

# Standard JSON-RPC fault codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class RpcRequest(BaseModel):
    """Outbound call envelope."""

    version: str = Field(default=JSONRPC_VERSION, alias="jsonrpc")
    method: str = Field(..., min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)
    id: int

    model_config = {"frozen": True, "populate_by_name": True}

    def to_wire(self) -> dict[str, Any]:
        """Envelope as a plain dict, keys in wire order."""
        return {
            "jsonrpc": self.version,
            "method": self.method,
            "params": self.params,
            "id": self.id,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_wire())


class RpcFault(BaseModel):
    """Structured error carried by a fault response."""

    code: int
    message: str
    data: Any = None

    model_config = {"frozen": True}


class RpcResponse(BaseModel):
    """Inbound reply envelope: exactly one of result or error is meaningful."""

    version: str = Field(default=JSONRPC_VERSION, alias="jsonrpc")
    id: Optional[int | str] = None
    result: Any = None
    error: Optional[RpcFault] = None

    model_config = {"frozen": True, "populate_by_name": True}

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_wire(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"jsonrpc": self.version}
        if self.error is not None:
            payload["error"] = self.error.model_dump(exclude_none=True)
        else:
            payload["result"] = self.result
        payload["id"] = self.id
        return payload
