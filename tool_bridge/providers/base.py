"""
Model Interface - Abstract port to the language model runtime.

The orchestrator only talks to a ModelInterface: it sends the conversation
plus the tool schemas and receives a ModelReply carrying text and zero or
more tool calls.

Design Pattern:
- Ports and Adapters (Hexagonal Architecture)
- ModelInterface is the port; OllamaModel and ScriptedModel are adapters
"""

from abc import ABC, abstractmethod

from tool_bridge.models.domain import Message, ModelReply, ToolSchema


class ModelInterface(ABC):
    """
    Abstract base class for model runtime adapters.

    Pattern: ABC for interface contracts

    Example:
        >>> class EchoModel(ModelInterface):
        ...     async def send_prompt(self, messages, tools):
        ...         return ModelReply(text=messages[-1].content)
    """

    @abstractmethod
    async def send_prompt(
        self, messages: list[Message], tools: list[ToolSchema]
    ) -> ModelReply:
        """
        Send the conversation to the model and wait for its reply.

        Args:
            messages: Full conversation so far, oldest first.
            tools: Schemas of every tool the model may call.

        Returns:
            The reply text and any tool calls the model requested.

        Raises:
            SessionTransportError: If the runtime cannot be reached or its
                reply cannot be understood.
        """
        ...

    async def aclose(self) -> None:
        """Release transport resources. No-op by default."""
        return None
