"""Helpers for assembling streamed chat model output."""

from .protocols import Message, MessageRole, ToolCall


def concat_chunks(chunks: list[Message]) -> Message:
    """
    Merge streamed chunks into one message.

    Args:
        chunks: Partial messages in arrival order

    Returns:
        A single message with the joined content and all tool calls
    """
    content = "".join(chunk.content for chunk in chunks)
    tool_calls: list[ToolCall] = []
    seen: set[str] = set()
    for chunk in chunks:
        for call in chunk.tool_calls:
            if call.id:
                if call.id in seen:
                    continue
                seen.add(call.id)
            tool_calls.append(call)

    role = chunks[0].role if chunks else MessageRole.ASSISTANT
    return Message(role=role, content=content, tool_calls=tool_calls)
