"""
Ollama Model - Adapter for a local Ollama runtime.

Ollama API Reference:
- Base URL: http://localhost:11434 (default)
- Chat endpoint: POST /api/chat (non-streaming, with "tools")
- Models endpoint: GET /api/tags

Request shape sent to /api/chat:

    {"model": "llama3.1", "stream": false,
     "messages": [{"role": "user", "content": "..."},
                  {"role": "assistant", "content": "", "tool_calls": [...]},
                  {"role": "tool", "content": "...", "tool_name": "fs.read"}],
     "tools": [{"type": "function", "function": {...}}]}

Reply shape:

    {"message": {"role": "assistant", "content": "...",
                 "tool_calls": [{"function": {"name": "fs.read",
                                              "arguments": {"path": "/a.txt"}}}]}}

Every transport or decoding problem is raised as SessionTransportError.
"""

import json
import logging
from typing import Any, Optional

import httpx

from tool_bridge.core.exceptions import SessionTransportError
from tool_bridge.models.domain import Message, ModelReply, ToolCall, ToolSchema
from tool_bridge.providers.base import ModelInterface

logger = logging.getLogger(__name__)


class OllamaModel(ModelInterface):
    """
    Ollama chat adapter with tool calling.

    Pattern: Ports and Adapters (Hexagonal Architecture)
    Pattern: HTTP Client with timeout

    Args:
        model: Model name as known to Ollama (e.g. "llama3.1").
        base_url: URL of the Ollama instance.
        timeout: Request timeout in seconds (long, for local generation).
        http_client: Optional pre-configured client (for testing).

    Example:
        >>> model = OllamaModel(model="llama3.1")
        >>> reply = await model.send_prompt(messages, registry.list())
        >>> reply.tool_calls
    """

    DEFAULT_URL = "http://localhost:11434"
    DEFAULT_TIMEOUT = 120.0

    def __init__(
        self,
        model: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._model = model
        self._base_url = (base_url or self.DEFAULT_URL).rstrip("/")
        self._timeout = timeout or self.DEFAULT_TIMEOUT

        if http_client is not None:
            self._client = http_client
            self._owns_client = False
        else:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
            self._owns_client = True

    @property
    def model(self) -> str:
        return self._model

    @property
    def base_url(self) -> str:
        return self._base_url

    async def aclose(self) -> None:
        """Close the HTTP client if owned by this instance."""
        if self._owns_client:
            await self._client.aclose()

    # =========================================================================
    # Chat
    # =========================================================================

    async def send_prompt(
        self, messages: list[Message], tools: list[ToolSchema]
    ) -> ModelReply:
        """
        POST the conversation to /api/chat and parse the reply.

        Raises:
            SessionTransportError: On connection failure, timeout, non-2xx
                status, or a reply without a message object.
        """
        payload = self._build_request(messages, tools)
        logger.debug(
            f"Sending {len(messages)} messages and {len(tools)} tools to {self._model}"
        )
        data = await self._request("POST", "/api/chat", json=payload)
        return self._parse_reply(data)

    async def list_models(self) -> list[str]:
        """Names of the models available in the Ollama instance."""
        data = await self._request("GET", "/api/tags")
        models = data.get("models") or []
        return [m.get("name", "") for m in models if isinstance(m, dict) and m.get("name")]

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
            data = response.json()
        except httpx.ConnectError as e:
            raise SessionTransportError(
                f"Failed to connect to Ollama: {e}", endpoint=self._base_url
            ) from e
        except httpx.TimeoutException as e:
            raise SessionTransportError(
                f"Request to Ollama timed out: {e}", endpoint=self._base_url
            ) from e
        except httpx.HTTPStatusError as e:
            raise SessionTransportError(
                f"Ollama API error: {e}",
                endpoint=self._base_url,
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise SessionTransportError(
                f"Ollama transport error: {e}", endpoint=self._base_url
            ) from e
        except ValueError as e:
            raise SessionTransportError(
                f"Ollama returned a non-JSON body: {e}", endpoint=self._base_url
            ) from e

        if not isinstance(data, dict):
            raise SessionTransportError(
                "Ollama returned an unexpected body", endpoint=self._base_url
            )
        return data

    # =========================================================================
    # Helper Methods
    # =========================================================================

    def _build_request(
        self, messages: list[Message], tools: list[ToolSchema]
    ) -> dict[str, Any]:
        """Transform the conversation to the /api/chat format."""
        ollama_messages = []
        for msg in messages:
            ollama_msg: dict[str, Any] = {"role": msg.role, "content": msg.content or ""}
            if msg.tool_calls:
                ollama_msg["tool_calls"] = [
                    {"function": {"name": call.name, "arguments": call.arguments}}
                    for call in msg.tool_calls
                ]
            if msg.role == "tool" and msg.tool_name:
                ollama_msg["tool_name"] = msg.tool_name
            ollama_messages.append(ollama_msg)

        request: dict[str, Any] = {
            "model": self._model,
            "messages": ollama_messages,
            "stream": False,
        }
        if tools:
            request["tools"] = [schema.to_function_definition() for schema in tools]
        return request

    def _parse_reply(self, data: dict[str, Any]) -> ModelReply:
        """Transform an /api/chat reply into a ModelReply."""
        message = data.get("message")
        if not isinstance(message, dict):
            raise SessionTransportError(
                "Ollama reply has no message object", endpoint=self._base_url
            )

        tool_calls = []
        for raw in message.get("tool_calls") or []:
            function = raw.get("function") if isinstance(raw, dict) else None
            if not isinstance(function, dict) or not function.get("name"):
                raise SessionTransportError(
                    f"Ollama reply has a malformed tool call: {raw!r}",
                    endpoint=self._base_url,
                )
            arguments = self._parse_arguments(function.get("arguments"))
            call_id = raw.get("id")
            if call_id:
                tool_calls.append(ToolCall(id=str(call_id), name=function["name"], arguments=arguments))
            else:
                tool_calls.append(ToolCall(name=function["name"], arguments=arguments))

        return ModelReply(text=message.get("content") or "", tool_calls=tool_calls)

    def _parse_arguments(self, arguments: Any) -> dict[str, Any]:
        """Arguments arrive as an object, or as JSON text from some models."""
        if arguments is None or arguments == "":
            return {}
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments)
            except json.JSONDecodeError as e:
                raise SessionTransportError(
                    f"Tool call arguments are not valid JSON: {e}",
                    endpoint=self._base_url,
                ) from e
        if not isinstance(arguments, dict):
            raise SessionTransportError(
                "Tool call arguments must be an object", endpoint=self._base_url
            )
        return arguments
