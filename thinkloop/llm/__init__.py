"""Chat model integrations with protocol-based adapter pattern."""

from .protocols import ChatModel, Message, MessageRole, ToolCall
from .adapters import AnthropicChatAdapter, OpenAIChatAdapter
from .completion import concat_chunks

__all__ = [
    # Protocols
    "ChatModel",
    "Message",
    "MessageRole",
    "ToolCall",
    # Adapters
    "AnthropicChatAdapter",
    "OpenAIChatAdapter",
    # Helpers
    "concat_chunks",
]
