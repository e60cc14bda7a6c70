"""Specialists the host dispatches plan steps to.

A specialist is one of three variants, each with a single ``run``:

- ``SubAgentSpecialist``: backed by its own reasoning loop
- ``CallableSpecialist``: backed by a plain async function
- ``BoundModelSpecialist``: backed by a chat model called once
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Union

from ..agent.models import DEFAULT_CONFIDENCE, RunOptions
from ..agent.reasoning_loop import ReasoningLoop
from ..llm.protocols import ChatModel, Message
from .models import StepResult

logger = logging.getLogger(__name__)

GENERAL_SPECIALIST_NAME = "general_specialist"
GENERAL_SPECIALIST_USE = "handle general tasks that no other specialist covers"
GENERAL_SPECIALIST_PROMPT = "You are a general specialist, you can handle any task."

DEFAULT_QUALITY = 0.8

SpecialistFunc = Callable[[list[Message]], Union[Awaitable[Union[Message, str]], Message, str]]


@dataclass(kw_only=True)
class Specialist(ABC):
    """A named worker the host can assign steps to."""

    name: str
    intended_use: str
    system_prompt: str = ""

    @abstractmethod
    async def run(
        self,
        messages: list[Message],
        *,
        force_final_answer: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> StepResult:
        """
        Execute one step.

        Args:
            messages: System and user messages describing the step
            force_final_answer: Ask the specialist to answer now
            cancel_event: Caller's cancellation signal

        Returns:
            The step result
        """

    def _result(self, content: str, confidence: float = DEFAULT_CONFIDENCE) -> StepResult:
        return StepResult(
            success=True,
            output=Message.assistant(content, name=self.name),
            specialist=self.name,
            confidence=confidence,
            quality_score=DEFAULT_QUALITY,
        )


@dataclass(kw_only=True)
class SubAgentSpecialist(Specialist):
    """Specialist that runs its own reasoning loop."""

    agent: ReasoningLoop

    async def run(
        self,
        messages: list[Message],
        *,
        force_final_answer: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> StepResult:
        state = await self.agent.run(
            messages,
            RunOptions(force_final_answer=force_final_answer, cancel_event=cancel_event),
        )
        decision = state.last_decision
        confidence = decision.confidence if decision is not None else DEFAULT_CONFIDENCE
        logger.info(f"Specialist {self.name} finished after {state.iteration} iteration(s)")
        return self._result(state.final_message.content, confidence)


@dataclass(kw_only=True)
class CallableSpecialist(Specialist):
    """Specialist backed by a function returning a message or text."""

    func: SpecialistFunc

    async def run(
        self,
        messages: list[Message],
        *,
        force_final_answer: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> StepResult:
        output = self.func(messages)
        if inspect.isawaitable(output):
            output = await output
        content = output.content if isinstance(output, Message) else str(output)
        return self._result(content)


@dataclass(kw_only=True)
class BoundModelSpecialist(Specialist):
    """Specialist that answers with a single model call."""

    model: ChatModel

    async def run(
        self,
        messages: list[Message],
        *,
        force_final_answer: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> StepResult:
        reply = await self.model.generate(messages)
        return self._result(reply.content)


def general_specialist(model: ChatModel) -> BoundModelSpecialist:
    """The fallback specialist for steps with no matching assignee."""
    return BoundModelSpecialist(
        name=GENERAL_SPECIALIST_NAME,
        intended_use=GENERAL_SPECIALIST_USE,
        system_prompt=GENERAL_SPECIALIST_PROMPT,
        model=model,
    )
