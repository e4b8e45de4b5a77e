"""
Scripted Model - Deterministic in-process ModelInterface.

A proper implementation of the interface, not a mock: it replays a script
of replies (or asks a callable) and records every prompt it received.
Useful for tests, local development without a model runtime, and demos.
"""

from typing import Callable, Iterable, Optional, Union

from tool_bridge.models.domain import Message, ModelReply, ToolSchema
from tool_bridge.providers.base import ModelInterface

ReplyFactory = Callable[[list[Message], list[ToolSchema]], ModelReply]


class ScriptedModel(ModelInterface):
    """
    Model that answers from a script.

    Attributes:
        calls: Every (messages, tools) pair received, in order.

    Example:
        >>> model = ScriptedModel([
        ...     ModelReply(tool_calls=[ToolCall(name="fs.read", arguments={"path": "/a.txt"})]),
        ...     ModelReply(text="The file says hello"),
        ... ])

        # A model that never stops asking for tools:
        >>> model = ScriptedModel(lambda messages, tools: ModelReply(tool_calls=[...]))
    """

    def __init__(
        self,
        replies: Union[Iterable[ModelReply], ReplyFactory, None] = None,
        error: Optional[Exception] = None,
        default_text: str = "Scripted response",
    ) -> None:
        """
        Initialize the scripted model.

        Args:
            replies: Replies returned in order, or a callable producing them.
            error: Exception raised on every send_prompt() (for error testing).
            default_text: Text answer once a reply list is exhausted.
        """
        if callable(replies):
            self._factory: Optional[ReplyFactory] = replies
            self._script: list[ModelReply] = []
        else:
            self._factory = None
            self._script = list(replies or [])
        self._error = error
        self._default_text = default_text
        self.calls: list[tuple[list[Message], list[ToolSchema]]] = []
        self.closed = False

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def send_prompt(
        self, messages: list[Message], tools: list[ToolSchema]
    ) -> ModelReply:
        # Copy: the orchestrator keeps appending to its conversation
        self.calls.append((list(messages), list(tools)))

        if self._error is not None:
            raise self._error
        if self._factory is not None:
            return self._factory(messages, tools)
        if self._script:
            return self._script.pop(0)
        return ModelReply(text=self._default_text)

    async def aclose(self) -> None:
        self.closed = True
