"""Data models for the reasoning loop."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Sequence

from ..llm.protocols import Message, ToolCall

if TYPE_CHECKING:
    from ..storage.message_store import MessageStore

DEFAULT_CONFIDENCE = 0.8


class Action(str, Enum):
    """What the model decided to do next."""

    CONTINUE = "continue"
    TOOL_CALL = "tool_call"
    FINAL_ANSWER = "final_answer"


class ReasoningStage(str, Enum):
    """Stages of one reasoning loop run."""

    INIT = "init"
    REASONING = "reasoning"
    TOOLS = "tools"
    TOOLS_CHECKER = "tools_checker"
    COMPLETE = "complete"


@dataclass
class ReasoningDecision:
    """Parsed interpretation of one model response."""

    thought: str
    action: Action
    tool_calls: list[ToolCall] = field(default_factory=list)
    final_answer: str = ""
    confidence: float = DEFAULT_CONFIDENCE


@dataclass
class AgentRunState:
    """State owned by a single reasoning loop invocation."""

    messages: list[Message]
    max_iterations: int
    iteration: int = 0
    reasoning_history: list[ReasoningDecision] = field(default_factory=list)
    completed: bool = False
    final_answer: str = ""
    return_directly_call_id: str | None = None
    return_directly_result: str | None = None
    force_final_answer: bool = False
    final_message: Message | None = None

    @property
    def last_decision(self) -> ReasoningDecision | None:
        return self.reasoning_history[-1] if self.reasoning_history else None


class AgentObserver:
    """
    Receives per-stage notifications from a reasoning loop run.

    Hooks are awaited in registration order before the loop continues.
    Override the ones you need.
    """

    async def on_message(self, stage: ReasoningStage, message: Message) -> None:
        """Called with each complete message a stage produces."""

    async def on_stream_chunk(self, stage: ReasoningStage, chunk: Message) -> None:
        """Called with each chunk while a stage streams model output."""


@dataclass
class RunOptions:
    """Per-invocation options for the reasoning loop."""

    max_iterations: int | None = None
    force_final_answer: bool = False
    observers: Sequence[AgentObserver] = ()
    cancel_event: asyncio.Event | None = None
    message_store: MessageStore | None = None
    conversation_id: str | None = None
