"""
Bridge Orchestrator - The ask-model / execute-tools / feed-back loop.

One session:
    1. Send the conversation and every registered tool schema to the model.
    2. No tool calls in the reply: the session is done, return the text.
    3. Otherwise resolve, validate, address and execute every call (in
       parallel by default), append the results in call order, go to 1.

Tool-level failures never end a session: they are fed back to the model
as error-shaped tool results so it can adapt. Only model transport errors
and the iteration ceiling end a session early.

Pattern: Service Layer (orchestrates registry, process manager, translator)
Pattern: Dependency Injection (every collaborator is passed in)
Pattern: Bounded fan-out (semaphore around asyncio.gather)
"""

import asyncio
import uuid
from typing import Optional

from tool_bridge.core.config import Settings, get_settings
from tool_bridge.core.exceptions import (
    LoopLimitExceeded,
    SessionTransportError,
    ToolError,
)
from tool_bridge.models.domain import (
    Message,
    SessionResult,
    SessionState,
    ToolCall,
    ToolResult,
)
from tool_bridge.observability.logging import correlation_id_context, get_logger
from tool_bridge.observability.metrics import record_session, record_tool_call
from tool_bridge.processes.manager import ProcessManager
from tool_bridge.providers.base import ModelInterface
from tool_bridge.rpc.translator import ProtocolTranslator
from tool_bridge.tools.registry import ToolRegistry

logger = get_logger(__name__)

_UNKNOWN_SERVER = "unknown"


def new_session_id() -> str:
    return f"sess-{uuid.uuid4().hex[:12]}"


class BridgeOrchestrator:
    """
    Drives orchestration sessions.

    Attributes:
        max_iterations: Maximum tool-execution rounds per session.

    Example:
        >>> orchestrator = BridgeOrchestrator(model, registry, manager)
        >>> result = await orchestrator.run_session("What is in /a.txt?")
        >>> result.text
        'The file says hello'
    """

    def __init__(
        self,
        model: ModelInterface,
        registry: ToolRegistry,
        manager: ProcessManager,
        translator: Optional[ProtocolTranslator] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            model: Model runtime adapter.
            registry: Registry of tool schemas.
            manager: Process manager providing server channels.
            translator: Protocol translator. A fresh one by default.
            settings: Iteration ceiling, call timeout and concurrency policy.
        """
        settings = settings or get_settings()
        self._model = model
        self._registry = registry
        self._manager = manager
        self._translator = translator or ProtocolTranslator()

        self._max_iterations = settings.max_iterations
        self._call_timeout = settings.call_timeout_seconds
        self._concurrent = settings.concurrent_tool_calls
        self._max_concurrency = settings.max_concurrent_tool_calls

    @property
    def max_iterations(self) -> int:
        return self._max_iterations

    # =========================================================================
    # Sessions
    # =========================================================================

    async def run_session(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> SessionResult:
        """
        Run one orchestration session to completion.

        The model is asked at most ``max_iterations + 1`` times: tools run
        for at most ``max_iterations`` rounds, and a reply that still asks
        for tools after that ends the session.

        Args:
            prompt: User prompt.
            system_prompt: Optional system message.
            session_id: Session id; generated when omitted. Bound as the
                logging correlation id while the session runs.

        Returns:
            SessionResult with the final text and every tool result.

        Raises:
            LoopLimitExceeded: If the model keeps requesting tools.
            SessionTransportError: If the model runtime fails.
        """
        session_id = session_id or new_session_id()

        with correlation_id_context(session_id):
            messages: list[Message] = []
            if system_prompt:
                messages.append(Message(role="system", content=system_prompt))
            messages.append(Message(role="user", content=prompt))

            tool_results: list[ToolResult] = []
            iterations = 0
            state = SessionState.AWAITING_MODEL
            logger.info("session_started", session_id=session_id)

            try:
                while True:
                    reply = await self._model.send_prompt(messages, self._registry.list())

                    if not reply.wants_tools:
                        state = self._set_state(state, SessionState.DONE)
                        record_session(SessionState.DONE.value)
                        logger.info(
                            "session_completed",
                            session_id=session_id,
                            iterations=iterations,
                            tool_calls=len(tool_results),
                        )
                        return SessionResult(
                            session_id=session_id,
                            text=reply.text,
                            iterations=iterations,
                            tool_results=tool_results,
                            state=state,
                        )

                    if iterations >= self._max_iterations:
                        raise LoopLimitExceeded(self._max_iterations, session_id)

                    state = self._set_state(state, SessionState.EXECUTING_TOOLS)
                    messages.append(
                        Message(role="assistant", content=reply.text, tool_calls=reply.tool_calls)
                    )
                    results = await self.execute_tool_calls(reply.tool_calls)
                    tool_results.extend(results)
                    messages.extend(Message.from_tool_result(r) for r in results)
                    iterations += 1
                    state = self._set_state(state, SessionState.AWAITING_MODEL)

            except (LoopLimitExceeded, SessionTransportError) as e:
                self._set_state(state, SessionState.FAILED)
                record_session(e.kind)
                logger.warning(
                    "session_failed",
                    session_id=session_id,
                    kind=e.kind,
                    error=e.message,
                    iterations=iterations,
                )
                raise
            except asyncio.CancelledError:
                self._set_state(state, SessionState.FAILED)
                record_session("cancelled")
                logger.info("session_cancelled", session_id=session_id, iterations=iterations)
                raise

    def _set_state(self, current: SessionState, new: SessionState) -> SessionState:
        if current is not new:
            logger.debug("session_state_changed", from_state=current.value, to_state=new.value)
        return new

    # =========================================================================
    # Tool Execution
    # =========================================================================

    async def execute_tool_calls(self, calls: list[ToolCall]) -> list[ToolResult]:
        """
        Execute one model turn worth of tool calls.

        Returns:
            One result per call, in the original call order regardless of
            completion order.
        """
        if not self._concurrent or len(calls) <= 1:
            return [await self.execute_tool_call(call) for call in calls]

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def bounded(call: ToolCall) -> ToolResult:
            async with semaphore:
                return await self.execute_tool_call(call)

        return list(await asyncio.gather(*(bounded(call) for call in calls)))

    async def execute_tool_call(self, call: ToolCall) -> ToolResult:
        """
        Resolve, validate, address and execute a single tool call.

        Tool-level failures are returned as error results, never raised.
        """
        server = _UNKNOWN_SERVER
        try:
            schema = self._registry.resolve(call.name)
            server = schema.server
            self._registry.validate(call.name, call.arguments)
            channel = self._manager.address_of(server)
            value = await self._translator.execute(call, channel, self._call_timeout)
        except ToolError as e:
            record_tool_call(server, e.kind)
            logger.info(
                "tool_call_failed",
                tool=call.name,
                call_id=call.id,
                kind=e.kind,
                error=e.message,
            )
            return ToolResult.failure(call, e.to_dict())

        record_tool_call(server, "ok")
        logger.debug("tool_call_succeeded", tool=call.name, call_id=call.id)
        return ToolResult.success(call, value)
