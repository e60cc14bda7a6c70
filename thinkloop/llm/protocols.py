"""Protocol definitions for chat model providers."""

from __future__ import annotations

from enum import Enum
from typing import Any, AsyncIterator, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field


class MessageRole(str, Enum):
    """Role of a message in a conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolCall(BaseModel):
    """A tool invocation requested by the model."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    arguments: str = "{}"  # JSON text, passed to the tool unparsed


class Message(BaseModel):
    """A message in a conversation.

    Assistant messages may carry tool calls; tool messages carry the
    correlation id of the call they answer. Messages are immutable.
    """

    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    tool_call_id: str | None = None
    name: str | None = None

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str, **kwargs: Any) -> Message:
        return cls(role=MessageRole.ASSISTANT, content=content, **kwargs)

    @classmethod
    def tool(cls, content: str, tool_call_id: str, name: str | None = None) -> Message:
        return cls(role=MessageRole.TOOL, content=content, tool_call_id=tool_call_id, name=name)


@runtime_checkable
class ChatModel(Protocol):
    """Protocol for text-generation capabilities.

    Implement this protocol to add support for new LLM APIs.
    """

    async def generate(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
    ) -> Message:
        """
        Generate one assistant message for a conversation.

        Args:
            messages: Conversation so far
            tools: Optional tool schemas in OpenAI function format

        Returns:
            The assistant message, possibly carrying tool calls
        """
        ...

    def stream(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
    ) -> AsyncIterator[Message]:
        """
        Generate one assistant message as a stream of chunks.

        Content chunks arrive as they are produced. Tool calls, if any,
        are delivered complete on the last chunk.

        Args:
            messages: Conversation so far
            tools: Optional tool schemas in OpenAI function format

        Returns:
            Async iterator of partial assistant messages
        """
        ...
