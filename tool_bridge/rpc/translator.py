"""
Protocol Translator - Model tool calls to JSON-RPC and back.

Outbound, a ToolCall named "<server>.<method>" becomes a JSON-RPC request
for <method> with the call arguments as params and a fresh request id.
Inbound, a raw reply is validated against the envelope contract and
unwrapped into either the plain result or a ToolExecutionError.

Pattern: Translator / Anti-corruption layer between model and tool servers
Pattern: Typed errors at every failure edge (timeout, closed pipe, fault)

Reference:
    JSON-RPC 2.0 specification (request, response and error objects)
"""

import asyncio
import itertools
import json
import logging
import threading
import time
from typing import Any, Optional

from tool_bridge.core.exceptions import (
    ChannelClosedError,
    NotRunningError,
    ProtocolError,
    ToolExecutionError,
    ToolTimeoutError,
)
from tool_bridge.models.domain import ToolCall, split_tool_name
from tool_bridge.models.rpc import JSONRPC_VERSION, RpcFault, RpcRequest, RpcResponse
from tool_bridge.observability.metrics import observe_rpc_latency
from tool_bridge.rpc.channel import RpcChannel

logger = logging.getLogger(__name__)


# =============================================================================
# Request Ids
# =============================================================================


class RequestIdGenerator:
    """
    Monotonically increasing request id source.

    Lock-protected so ids stay unique even when translators are used from
    several threads (e.g. a TestClient thread next to the server loop).
    """

    def __init__(self, start: int = 1) -> None:
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def next_id(self) -> int:
        with self._lock:
            return next(self._counter)


# Shared by every translator: ids are unique for the process lifetime
_process_ids = RequestIdGenerator()


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


# =============================================================================
# Translator
# =============================================================================


class ProtocolTranslator:
    """
    Converts between model tool calls and JSON-RPC envelopes.

    Stateless apart from the id generator, so one instance can serve every
    server and every session.

    Example:
        >>> translator = ProtocolTranslator()
        >>> request = translator.encode(ToolCall(name="fs.read", arguments={"path": "/a.txt"}))
        >>> request.method
        'read'
        >>> result = await translator.execute(call, channel, timeout=30.0)
    """

    def __init__(self, ids: Optional[RequestIdGenerator] = None) -> None:
        """
        Initialize the translator.

        Args:
            ids: Request id source. Defaults to the process-wide generator.
        """
        self._ids = ids or _process_ids

    # =========================================================================
    # Encoding
    # =========================================================================

    def encode(self, call: ToolCall) -> RpcRequest:
        """
        Build the request envelope for a tool call.

        Raises:
            ProtocolError: If the tool name is not "<server>.<method>".
        """
        try:
            _server, method = split_tool_name(call.name)
        except ValueError as e:
            raise ProtocolError(str(e), call.name) from e
        return self.request(method, call.arguments)

    def request(self, method: str, params: Optional[dict[str, Any]] = None) -> RpcRequest:
        """Build a request envelope for a raw method (ping, tools/list)."""
        return RpcRequest(method=method, params=dict(params or {}), id=self._ids.next_id())

    # =========================================================================
    # Decoding
    # =========================================================================

    def decode(
        self,
        raw: Any,
        expected_id: int,
        tool_name: Optional[str] = None,
    ) -> RpcResponse:
        """
        Validate a raw reply against the envelope contract.

        Args:
            raw: Reply as a decoded object, or JSON text/bytes.
            expected_id: Id of the request this reply must answer.
            tool_name: Tool name for error context.

        Returns:
            The validated RpcResponse.

        Raises:
            ProtocolError: If the reply is not a well-formed response to
                ``expected_id``.
        """
        if isinstance(raw, (str, bytes, bytearray)):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError as e:
                raise ProtocolError(f"Reply is not valid JSON: {e}", tool_name) from e

        if not isinstance(raw, dict):
            raise ProtocolError(
                f"Reply must be a JSON object, got {type(raw).__name__}", tool_name
            )

        if raw.get("jsonrpc") != JSONRPC_VERSION:
            raise ProtocolError(
                f"Reply has unsupported jsonrpc version: {raw.get('jsonrpc')!r}", tool_name
            )

        if "id" not in raw:
            raise ProtocolError("Reply has no id", tool_name)
        reply_id = raw["id"]
        if not _is_int(reply_id) or reply_id != expected_id:
            raise ProtocolError(
                f"Reply id {reply_id!r} does not match request id {expected_id}", tool_name
            )

        has_result = "result" in raw
        has_error = "error" in raw
        if has_result == has_error:
            raise ProtocolError(
                "Reply must carry exactly one of 'result' or 'error'", tool_name
            )

        if has_result:
            return RpcResponse(id=reply_id, result=raw["result"])

        error = raw["error"]
        if (
            not isinstance(error, dict)
            or not _is_int(error.get("code"))
            or not isinstance(error.get("message"), str)
        ):
            raise ProtocolError(
                "Reply error must carry an integer 'code' and a string 'message'",
                tool_name,
            )
        return RpcResponse(
            id=reply_id,
            error=RpcFault(code=error["code"], message=error["message"], data=error.get("data")),
        )

    def unwrap(self, response: RpcResponse, tool_name: Optional[str] = None) -> Any:
        """
        Extract the payload of a validated response.

        Returns:
            The result payload, unchanged.

        Raises:
            ToolExecutionError: If the response is a fault.
        """
        if response.error is not None:
            raise ToolExecutionError(
                response.error.message,
                tool_name,
                fault_code=response.error.code,
                data=response.error.data,
            )
        return response.result

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute(self, call: ToolCall, channel: RpcChannel, timeout: float) -> Any:
        """
        Run one tool call on a server and return its result.

        Args:
            call: Validated tool call.
            channel: Live channel of the owning server.
            timeout: Seconds to wait for the reply.

        Returns:
            The server's result payload, unchanged.

        Raises:
            ToolTimeoutError: If no reply arrives within ``timeout``.
            NotRunningError: If the channel closes before the reply.
            ProtocolError: If the reply is malformed.
            ToolExecutionError: If the server replies with a fault.
        """
        return await self.invoke(
            channel, self.encode(call), timeout, tool_name=call.name
        )

    async def invoke(
        self,
        channel: RpcChannel,
        request: RpcRequest,
        timeout: float,
        tool_name: Optional[str] = None,
    ) -> Any:
        """Send a prepared request and unwrap its reply. See execute()."""
        started = time.monotonic()
        try:
            raw = await channel.request(request, timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"{channel.server}: {request.method} (id={request.id}) timed out after {timeout}s"
            )
            raise ToolTimeoutError(tool_name or request.method, timeout) from None
        except ChannelClosedError as e:
            raise NotRunningError(
                channel.server, tool_name=tool_name, reason=e.reason
            ) from e
        except ProtocolError as e:
            e.tool_name = e.tool_name or tool_name
            raise
        finally:
            observe_rpc_latency(channel.server, time.monotonic() - started)

        response = self.decode(raw, request.id, tool_name)
        return self.unwrap(response, tool_name)
