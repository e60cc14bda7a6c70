"""Adapter implementations for chat model providers."""

import json
import logging
from typing import AsyncIterator

from openai import AsyncOpenAI

from ..settings import (
    ANTHROPIC_API_KEY,
    ANTHROPIC_DEFAULT_MODEL,
    LLM_MAX_RETRIES,
    LLM_TIMEOUT_SECONDS,
    OPENROUTER_API_KEY,
    OPENROUTER_BASE_URL,
    OPENROUTER_DEFAULT_MODEL,
)
from .protocols import ChatModel, Message, MessageRole, ToolCall

logger = logging.getLogger(__name__)


def _to_openai_message(msg: Message) -> dict:
    if msg.role == MessageRole.TOOL:
        return {"role": "tool", "tool_call_id": msg.tool_call_id or "", "content": msg.content}

    formatted: dict = {"role": msg.role.value, "content": msg.content}
    if msg.tool_calls:
        formatted["tool_calls"] = [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.name, "arguments": call.arguments},
            }
            for call in msg.tool_calls
        ]
    return formatted


class OpenAIChatAdapter(ChatModel):
    """
    Adapter for OpenAI-compatible chat completion APIs.

    Defaults to OpenRouter, which exposes many LLMs through an
    OpenAI-compatible API. Pass ``base_url=None`` explicitly via the
    factory to talk to api.openai.com.

    Usage:
        async with OpenAIChatAdapter() as llm:
            reply = await llm.generate([Message.user("What is ReAct?")])
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = OPENROUTER_BASE_URL,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ):
        """
        Initialize the adapter.

        Args:
            api_key: Optional API key. If not provided, uses OPENROUTER_API_KEY env var.
            model: Model to use. Defaults to OPENROUTER_DEFAULT_MODEL.
            base_url: API base URL; None means the OpenAI default.
            temperature: Sampling temperature (0-2)
            max_tokens: Maximum tokens to generate
        """
        self.api_key = api_key or OPENROUTER_API_KEY
        self.model = model or OPENROUTER_DEFAULT_MODEL
        self.base_url = base_url
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client: AsyncOpenAI | None = None

        if not self.api_key:
            raise ValueError(
                "API key required. Set OPENROUTER_API_KEY in .env"
            )

        logger.info(f"OpenAI-compatible adapter initialized with model: {self.model}")

    async def __aenter__(self) -> "OpenAIChatAdapter":
        self._client = AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            max_retries=LLM_MAX_RETRIES,
            timeout=LLM_TIMEOUT_SECONDS,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client:
            await self._client.close()
            self._client = None

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            raise RuntimeError(
                "Client not initialized. Use 'async with' context manager."
            )
        return self._client

    def _request(self, messages: list[Message], tools: list[dict] | None) -> dict:
        request: dict = {
            "model": self.model,
            "messages": [_to_openai_message(m) for m in messages],
            "temperature": self.temperature,
        }
        if self.max_tokens:
            request["max_tokens"] = self.max_tokens
        if tools:
            request["tools"] = tools
        return request

    async def generate(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
    ) -> Message:
        """Generate one assistant message for a conversation."""
        logger.debug(f"Generating with {self.model}: {len(messages)} messages, {len(tools or [])} tools")

        response = await self.client.chat.completions.create(**self._request(messages, tools))

        choice = response.choices[0].message
        tool_calls = [
            ToolCall(
                id=call.id,
                name=call.function.name,
                arguments=call.function.arguments or "{}",
            )
            for call in choice.tool_calls or []
        ]
        result = Message.assistant(choice.content or "", tool_calls=tool_calls)
        logger.info(
            f"Completion received ({len(result.content)} chars, {len(tool_calls)} tool calls)"
        )
        logger.debug(f"Usage: {response.usage}")

        return result

    async def stream(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
    ) -> AsyncIterator[Message]:
        """Stream one assistant message; tool calls arrive on the last chunk."""
        response = await self.client.chat.completions.create(
            **self._request(messages, tools), stream=True
        )

        pending: dict[int, dict[str, str]] = {}
        async for chunk in response:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta
            if delta.content:
                yield Message.assistant(delta.content)
            for part in delta.tool_calls or []:
                slot = pending.setdefault(part.index, {"id": "", "name": "", "arguments": ""})
                if part.id:
                    slot["id"] = part.id
                if part.function is not None:
                    if part.function.name:
                        slot["name"] += part.function.name
                    if part.function.arguments:
                        slot["arguments"] += part.function.arguments

        if pending:
            calls = [
                ToolCall(id=slot["id"], name=slot["name"], arguments=slot["arguments"] or "{}")
                for _, slot in sorted(pending.items())
            ]
            logger.info(f"Stream finished with {len(calls)} tool calls")
            yield Message.assistant("", tool_calls=calls)


def _to_anthropic_tools(tools: list[dict]) -> list[dict]:
    converted = []
    for schema in tools:
        function = schema.get("function", schema)
        converted.append({
            "name": function["name"],
            "description": function.get("description", ""),
            "input_schema": function.get("parameters", {"type": "object", "properties": {}}),
        })
    return converted


def _to_anthropic_messages(messages: list[Message]) -> tuple[str, list[dict]]:
    """Split out the system prompt and convert the rest to Anthropic blocks."""
    system_parts: list[str] = []
    formatted: list[dict] = []

    for msg in messages:
        if msg.role == MessageRole.SYSTEM:
            system_parts.append(msg.content)
        elif msg.role == MessageRole.TOOL:
            block = {
                "type": "tool_result",
                "tool_use_id": msg.tool_call_id or "",
                "content": msg.content,
            }
            # consecutive tool results belong in a single user turn
            previous = formatted[-1] if formatted else None
            if (
                previous is not None
                and previous["role"] == "user"
                and isinstance(previous["content"], list)
                and all(b.get("type") == "tool_result" for b in previous["content"])
            ):
                previous["content"].append(block)
            else:
                formatted.append({"role": "user", "content": [block]})
        elif msg.tool_calls:
            blocks: list[dict] = []
            if msg.content:
                blocks.append({"type": "text", "text": msg.content})
            for call in msg.tool_calls:
                try:
                    arguments = json.loads(call.arguments or "{}")
                except json.JSONDecodeError:
                    logger.warning(f"Tool call {call.id} has non-JSON arguments, sending raw text")
                    arguments = {"input": call.arguments}
                blocks.append({"type": "tool_use", "id": call.id, "name": call.name, "input": arguments})
            formatted.append({"role": "assistant", "content": blocks})
        else:
            formatted.append({"role": msg.role.value, "content": msg.content})

    return "\n\n".join(system_parts), formatted


class AnthropicChatAdapter(ChatModel):
    """
    Adapter for Anthropic API (direct).

    Uses the Anthropic Python SDK directly for Claude models.

    Usage:
        async with AnthropicChatAdapter() as llm:
            reply = await llm.generate([Message.user("What is ReAct?")])
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ):
        """
        Initialize the Anthropic adapter.

        Args:
            api_key: Optional API key. If not provided, uses ANTHROPIC_API_KEY env var.
            model: Model to use. Defaults to ANTHROPIC_DEFAULT_MODEL.
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate (defaults to 4096)
        """
        self.api_key = api_key or ANTHROPIC_API_KEY
        self.model = model or ANTHROPIC_DEFAULT_MODEL
        self.temperature = temperature
        self.max_tokens = max_tokens or 4096
        self._client = None

        if not self.api_key:
            raise ValueError(
                "Anthropic API key required. Set ANTHROPIC_API_KEY in .env"
            )

        logger.info(f"Anthropic adapter initialized with model: {self.model}")

    async def __aenter__(self) -> "AnthropicChatAdapter":
        import anthropic

        self._client = anthropic.AsyncAnthropic(
            api_key=self.api_key,
            max_retries=LLM_MAX_RETRIES,
            timeout=LLM_TIMEOUT_SECONDS,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client:
            await self._client.close()
            self._client = None

    @property
    def client(self):
        if self._client is None:
            raise RuntimeError(
                "Client not initialized. Use 'async with' context manager."
            )
        return self._client

    def _request(self, messages: list[Message], tools: list[dict] | None) -> dict:
        system_prompt, formatted = _to_anthropic_messages(messages)
        request: dict = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": system_prompt,
            "messages": formatted,
            "temperature": self.temperature,
        }
        if tools:
            request["tools"] = _to_anthropic_tools(tools)
        return request

    @staticmethod
    def _parse_content(content) -> Message:
        text = ""
        tool_calls = []
        for block in content:
            if block.type == "text":
                text += block.text
            elif block.type == "tool_use":
                tool_calls.append(
                    ToolCall(id=block.id, name=block.name, arguments=json.dumps(block.input))
                )
        return Message.assistant(text, tool_calls=tool_calls)

    async def generate(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
    ) -> Message:
        """Generate one assistant message for a conversation."""
        logger.debug(f"Generating with {self.model}: {len(messages)} messages, {len(tools or [])} tools")

        response = await self.client.messages.create(**self._request(messages, tools))
        result = self._parse_content(response.content)

        logger.info(
            f"Completion received ({len(result.content)} chars, "
            f"{len(result.tool_calls)} tool calls, stop_reason={response.stop_reason})"
        )
        logger.debug(f"Usage: input={response.usage.input_tokens}, output={response.usage.output_tokens}")

        return result

    async def stream(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
    ) -> AsyncIterator[Message]:
        """Stream one assistant message; tool calls arrive on the last chunk."""
        async with self.client.messages.stream(**self._request(messages, tools)) as response:
            async for text in response.text_stream:
                yield Message.assistant(text)
            final = await response.get_final_message()

        tool_calls = self._parse_content(final.content).tool_calls
        if tool_calls:
            logger.info(f"Stream finished with {len(tool_calls)} tool calls")
            yield Message.assistant("", tool_calls=tool_calls)
