"""Factory functions to create engine components from configuration."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, AsyncIterator, Callable, Iterable, Union

from ..errors import ConfigurationError
from ..llm.protocols import ChatModel, Message
from ..tools.registry import ToolRegistry

if TYPE_CHECKING:
    from ..agent.reasoning_loop import ReasoningLoop
    from ..orchestration.orchestrator import Orchestrator
    from ..orchestration.specialists import Specialist
    from ..storage.events import EventPublisher
    from .loader import ModelConfig, OrchestratorConfig, ProfileConfig, PublisherConfig, ReasoningConfig

logger = logging.getLogger(__name__)

MOCK_RESPONSE = "[Mock response]"

ScriptEntry = Union[str, Message, Callable[..., Union[str, Message]]]


class MockChatModel:
    """Mock chat model for testing.

    Replies come from ``script`` in order; each entry is a string, a
    message, or a callable receiving ``(messages, tools)``. Once the script
    runs out every reply is ``MOCK_RESPONSE``. Every call is recorded in
    ``calls``.
    """

    def __init__(self, script: Iterable[ScriptEntry] | None = None, chunk_size: int = 8):
        self.script = list(script or [])
        self.chunk_size = max(1, chunk_size)
        self.calls: list[list[Message]] = []
        self._position = 0

    def _next(self, messages: list[Message], tools: list[dict] | None) -> Message:
        self.calls.append(list(messages))
        if self._position >= len(self.script):
            return Message.assistant(MOCK_RESPONSE)

        entry = self.script[self._position]
        self._position += 1
        if callable(entry):
            entry = entry(messages, tools)
        if isinstance(entry, Message):
            return entry
        return Message.assistant(str(entry))

    @property
    def remaining(self) -> int:
        """Number of scripted replies not yet used."""
        return max(0, len(self.script) - self._position)

    async def generate(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
    ) -> Message:
        """Return the next scripted reply."""
        return self._next(messages, tools)

    async def stream(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
    ) -> AsyncIterator[Message]:
        """Return the next scripted reply in small chunks; tool calls come last."""
        reply = self._next(messages, tools)
        content = reply.content
        for start in range(0, len(content), self.chunk_size):
            yield Message.assistant(content[start:start + self.chunk_size])
        if reply.tool_calls or not content:
            yield Message.assistant("", tool_calls=list(reply.tool_calls))

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        pass


def _resolved(value: str | None) -> str | None:
    """Treat an unexpanded ${VAR} reference as unset."""
    if value and "${" in value:
        return None
    return value or None


def create_chat_model(config: ModelConfig) -> ChatModel:
    """Create a chat model backend from configuration.

    Args:
        config: Model configuration

    Returns:
        ChatModel instance (OpenAIChatAdapter, AnthropicChatAdapter, or Mock)

    Raises:
        ConfigurationError: If backend type is not supported or the API key is missing
    """
    api_key = _resolved(config.api_key)

    if config.backend == "openrouter":
        from ..llm import OpenAIChatAdapter
        from ..settings import OPENROUTER_BASE_URL

        if not api_key:
            raise ConfigurationError("OpenRouter backend requires api_key", component="config")

        return OpenAIChatAdapter(
            api_key=api_key,
            model=config.model,
            base_url=_resolved(config.base_url) or OPENROUTER_BASE_URL,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
        )

    elif config.backend == "openai":
        from ..llm import OpenAIChatAdapter
        from ..settings import OPENAI_DEFAULT_MODEL

        if not api_key:
            raise ConfigurationError("OpenAI backend requires api_key", component="config")

        return OpenAIChatAdapter(
            api_key=api_key,
            model=config.model or OPENAI_DEFAULT_MODEL,
            base_url=_resolved(config.base_url),
            temperature=config.temperature,
            max_tokens=config.max_tokens,
        )

    elif config.backend == "anthropic":
        from ..llm import AnthropicChatAdapter

        if not api_key:
            raise ConfigurationError("Anthropic backend requires api_key", component="config")

        return AnthropicChatAdapter(
            api_key=api_key,
            model=config.model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
        )

    elif config.backend == "mock":
        return MockChatModel(script=config.script)

    else:
        raise ConfigurationError(f"Unsupported model backend: {config.backend}", component="config")


def create_reasoning_loop(
    model: ChatModel,
    config: ReasoningConfig,
    registry: ToolRegistry | None = None,
) -> ReasoningLoop:
    """Create a ReasoningLoop from configuration.

    Args:
        model: Chat model the loop reasons with
        config: Reasoning configuration
        registry: Tools the loop may call

    Returns:
        ReasoningLoop instance
    """
    from ..agent.reasoning_loop import ReasoningLoop

    return ReasoningLoop(
        model,
        registry,
        max_iterations=config.max_iterations,
        return_directly=config.return_directly,
        system_prompt=config.system_prompt,
    )


def create_specialists(
    config: OrchestratorConfig,
    model: ChatModel,
    registry: ToolRegistry | None = None,
) -> list[Specialist]:
    """Create the host's specialists from configuration.

    Args:
        config: Orchestrator configuration holding the roster
        model: Chat model shared by all specialists
        registry: Tools sub-agent specialists select from by name

    Returns:
        List of specialists in roster order

    Raises:
        ConfigurationError: If a specialist names a tool that is not registered
    """
    from ..agent.reasoning_loop import ReasoningLoop
    from ..orchestration.specialists import BoundModelSpecialist, SubAgentSpecialist

    registry = registry or ToolRegistry()
    specialists: list[Specialist] = []

    for entry in config.specialists:
        if entry.kind == "bound_model":
            specialists.append(
                BoundModelSpecialist(
                    name=entry.name,
                    intended_use=entry.intended_use,
                    system_prompt=entry.system_prompt,
                    model=model,
                )
            )
            continue

        agent = ReasoningLoop(
            model,
            registry.subset(entry.tools),
            max_iterations=entry.max_iterations,
            system_prompt=entry.system_prompt or None,
            name=entry.name,
        )
        specialists.append(
            SubAgentSpecialist(
                name=entry.name,
                intended_use=entry.intended_use,
                system_prompt=entry.system_prompt,
                agent=agent,
            )
        )

    logger.info(f"Created {len(specialists)} specialist(s): {', '.join(s.name for s in specialists)}")
    return specialists


def create_orchestrator(
    model: ChatModel,
    config: OrchestratorConfig,
    registry: ToolRegistry | None = None,
) -> Orchestrator:
    """Create an Orchestrator and its specialists from configuration.

    Args:
        model: Chat model for the host and the specialists
        config: Orchestrator configuration
        registry: Tools available to sub-agent specialists

    Returns:
        Orchestrator instance
    """
    from ..orchestration.orchestrator import Orchestrator

    return Orchestrator(
        model,
        create_specialists(config, model, registry),
        max_rounds=config.max_rounds,
        host_system_prompt=config.host_system_prompt,
        planning_prompt=config.planning_prompt,
        max_parse_retries=config.max_parse_retries,
    )


def create_event_publisher(config: PublisherConfig) -> EventPublisher | None:
    """Create an HTTP event publisher, or None when no URL is configured.

    The returned publisher must be entered with ``async with`` before use.
    """
    from ..storage.events import EventsConfig, HTTPEventPublisher

    url = _resolved(config.url)
    if not url:
        return None
    return HTTPEventPublisher(EventsConfig(url=url, timeout=config.timeout))


def create_from_profile(
    profile: ProfileConfig,
    registry: ToolRegistry | None = None,
) -> tuple:
    """Create all components from a profile configuration.

    Args:
        profile: Profile configuration
        registry: Tools shared by the reasoning loop and the specialists

    Returns:
        Tuple of (model, reasoning_loop, orchestrator)

    Raises:
        ConfigurationError: If any component configuration is invalid
    """
    model = create_chat_model(profile.model)
    reasoning_loop = create_reasoning_loop(model, profile.reasoning, registry)
    orchestrator = create_orchestrator(model, profile.orchestrator, registry)

    return model, reasoning_loop, orchestrator
