"""
Reasoning loop controller.

Drives a single agent through think, decide, act, observe cycles:

    init -> reasoning -> decision
        tool_call    -> tools -> tools_checker -> reasoning | complete
        final_answer -> complete
        continue     -> reasoning

The iteration limit guarantees termination: once the counter exceeds it,
the run completes with a fixed "maximum iterations" answer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Iterable

from ..channel import Emit, stream_from
from ..errors import AgentError, ConfigurationError, GenerationError, RunCancelledError
from ..llm.completion import concat_chunks
from ..llm.protocols import ChatModel, Message
from ..settings import DEFAULT_MAX_ITERATIONS
from ..tools.registry import ToolRegistry
from .models import Action, AgentRunState, ReasoningStage, RunOptions
from .parsing import parse_reasoning_response
from .prompts import MAX_ITERATIONS_ANSWER, NO_RESPONSE_ANSWER, build_system_prompt

logger = logging.getLogger(__name__)


def positive_or_default(value: int | None, default: int, label: str) -> int:
    """Correct a missing or non-positive limit to its default."""
    if value is None:
        return default
    if value <= 0:
        logger.warning(f"{label}={value} is not positive, using default {default}")
        return default
    return value


@dataclass
class _Run:
    """Everything one invocation carries between stages."""

    state: AgentRunState
    options: RunOptions
    emit: Emit | None


class ReasoningLoop:
    """
    ReAct-style reasoning loop over a chat model and a tool registry.

    The controller itself is stateless between invocations; all run state
    lives in an ``AgentRunState`` created per call.

    Usage:
        loop = ReasoningLoop(model, tools=registry, return_directly=["lookup"])
        answer = await loop.invoke([Message.user("What is 6 * 7?")])
    """

    def __init__(
        self,
        model: ChatModel,
        tools: ToolRegistry | None = None,
        *,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        return_directly: Iterable[str] = (),
        system_prompt: str | None = None,
        name: str = "react_agent",
    ):
        """
        Initialize the reasoning loop.

        Args:
            model: Generation capability
            tools: Tools the model may call
            max_iterations: Reasoning steps allowed before forced termination
            return_directly: Tool names whose result ends the run immediately
            system_prompt: Extra instructions appended to the reasoning contract
            name: Name used in logs and errors

        Raises:
            ConfigurationError: If the model is missing or a return-directly
                tool is not registered
        """
        if model is None:
            raise ConfigurationError("A chat model is required", component=name)

        self.model = model
        self.tools = tools or ToolRegistry()
        self.name = name
        self.max_iterations = positive_or_default(max_iterations, DEFAULT_MAX_ITERATIONS, "max_iterations")
        self.return_directly = set(return_directly)
        self.system_prompt = system_prompt

        unknown = sorted(n for n in self.return_directly if n not in self.tools)
        if unknown:
            raise ConfigurationError(
                f"Return-directly tool(s) not registered: {', '.join(unknown)}",
                component=name,
            )

        self._handlers: dict[ReasoningStage, Callable[[_Run], Awaitable[ReasoningStage | None]]] = {
            ReasoningStage.INIT: self._init,
            ReasoningStage.REASONING: self._reason,
            ReasoningStage.TOOLS: self._run_tools,
            ReasoningStage.TOOLS_CHECKER: self._check_tools,
            ReasoningStage.COMPLETE: self._complete,
        }

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def invoke(self, messages: list[Message], options: RunOptions | None = None) -> Message:
        """
        Run the loop to completion.

        Args:
            messages: Conversation to answer
            options: Per-run options

        Returns:
            The final assistant message
        """
        state = await self._execute(messages, options, emit=None)
        return state.final_message

    async def run(self, messages: list[Message], options: RunOptions | None = None) -> AgentRunState:
        """Run the loop to completion and hand back the finished run state."""
        return await self._execute(messages, options, emit=None)

    async def stream(
        self, messages: list[Message], options: RunOptions | None = None
    ) -> AsyncIterator[Message]:
        """
        Run the loop, yielding output as it is produced.

        Yields reasoning chunks (``name="reasoning"``), tool result messages
        and, last, the final message (``name="complete"``).
        """

        async def produce(emit: Emit) -> None:
            await self._execute(messages, options, emit=emit)

        async for chunk in stream_from(produce):
            yield chunk

    async def _execute(
        self,
        messages: list[Message],
        options: RunOptions | None,
        emit: Emit | None,
    ) -> AgentRunState:
        options = options or RunOptions()
        max_iterations = self.max_iterations
        if options.max_iterations is not None:
            max_iterations = positive_or_default(options.max_iterations, DEFAULT_MAX_ITERATIONS, "max_iterations")

        state = AgentRunState(
            messages=list(messages),
            max_iterations=max_iterations,
            force_final_answer=options.force_final_answer,
        )
        run = _Run(state=state, options=options, emit=emit)

        logger.info(f"[{self.name}] Starting run with {len(messages)} messages, max {max_iterations} iterations")

        stage: ReasoningStage | None = ReasoningStage.INIT
        while stage is not None:
            logger.debug(f"[{self.name}] stage={stage.value} iteration={state.iteration}")
            stage = await self._handlers[stage](run)

        if options.message_store is not None and options.conversation_id:
            await options.message_store.append(
                options.conversation_id, state.messages + [state.final_message]
            )

        logger.info(f"[{self.name}] Completed after {state.iteration} iteration(s)")
        return state

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _init(self, run: _Run) -> ReasoningStage:
        run.state.iteration = 0
        return ReasoningStage.REASONING

    async def _reason(self, run: _Run) -> ReasoningStage:
        state = run.state
        state.iteration += 1

        tool_descriptions = self.tools.get_tool_descriptions() if len(self.tools) else None
        prompt = [Message.system(build_system_prompt(self.system_prompt, tool_descriptions))]
        prompt.extend(state.messages)

        response = await self._generate(
            run, ReasoningStage.REASONING, prompt, self.tools.get_tool_schema() or None
        )
        decision = parse_reasoning_response(response)

        if state.force_final_answer and decision.action is not Action.FINAL_ANSWER:
            logger.info(f"[{self.name}] Forcing final answer (was {decision.action.value})")
            decision.final_answer = decision.thought or response.content
            decision.action = Action.FINAL_ANSWER
            decision.tool_calls = []

        state.reasoning_history.append(decision)
        state.messages.append(response)
        await self._notify_message(run, ReasoningStage.REASONING, response)

        logger.info(
            f"[{self.name}] Iteration {state.iteration}: action={decision.action.value}, "
            f"confidence={decision.confidence:.2f}"
        )
        return self._decide(run)

    def _decide(self, run: _Run) -> ReasoningStage:
        state = run.state
        if state.iteration > state.max_iterations:
            logger.warning(f"[{self.name}] Maximum iterations ({state.max_iterations}) reached")
            state.final_answer = MAX_ITERATIONS_ANSWER
            state.completed = True
            return ReasoningStage.COMPLETE

        decision = state.last_decision
        if decision.action is Action.TOOL_CALL:
            if decision.tool_calls:
                return ReasoningStage.TOOLS
            logger.warning(f"[{self.name}] tool_call action without tool calls, reasoning again")
            return ReasoningStage.REASONING

        if decision.action is Action.FINAL_ANSWER:
            state.final_answer = decision.final_answer or decision.thought
            state.completed = True
            return ReasoningStage.COMPLETE

        return ReasoningStage.REASONING

    async def _run_tools(self, run: _Run) -> ReasoningStage:
        state = run.state
        for call in state.last_decision.tool_calls:
            self._check_cancelled(run, ReasoningStage.TOOLS)

            if call.name in self.tools:
                content = await self.tools.invoke(call.name, call.arguments)
            else:
                logger.warning(f"[{self.name}] Model requested unknown tool '{call.name}'")
                content = f"Error: unknown tool '{call.name}'"

            result = Message.tool(content, tool_call_id=call.id, name=call.name)
            state.messages.append(result)
            if run.emit is not None:
                await run.emit(result)
            await self._notify_message(run, ReasoningStage.TOOLS, result)

            if call.name in self.return_directly and state.return_directly_call_id is None:
                state.return_directly_call_id = call.id
                state.return_directly_result = content

        return ReasoningStage.TOOLS_CHECKER

    async def _check_tools(self, run: _Run) -> ReasoningStage:
        state = run.state
        if state.return_directly_call_id is None:
            return ReasoningStage.REASONING

        # tool call ids may repeat across iterations
        logger.info(f"[{self.name}] Returning tool result {state.return_directly_call_id} directly")
        state.final_answer = state.return_directly_result or ""
        state.completed = True
        return ReasoningStage.COMPLETE

    async def _complete(self, run: _Run) -> None:
        state = run.state
        if state.final_answer:
            text = state.final_answer
        elif state.messages and state.messages[-1].content:
            text = state.messages[-1].content
        else:
            text = NO_RESPONSE_ANSWER

        state.completed = True
        state.final_message = Message.assistant(text, name=ReasoningStage.COMPLETE.value)
        if run.emit is not None:
            await run.emit(state.final_message)
        await self._notify_message(run, ReasoningStage.COMPLETE, state.final_message)
        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_cancelled(self, run: _Run, stage: ReasoningStage) -> None:
        event = run.options.cancel_event
        if event is not None and event.is_set():
            logger.info(f"[{self.name}] Run cancelled during {stage.value}")
            raise RunCancelledError("Run cancelled", stage=stage.value, component=self.name)

    async def _generate(
        self,
        run: _Run,
        stage: ReasoningStage,
        prompt: list[Message],
        tools: list[dict] | None,
    ) -> Message:
        self._check_cancelled(run, stage)
        try:
            if run.emit is None:
                return await self.model.generate(prompt, tools)

            chunks: list[Message] = []
            async for chunk in self.model.stream(prompt, tools):
                self._check_cancelled(run, stage)
                chunks.append(chunk)
                tagged = chunk.model_copy(update={"name": stage.value})
                await run.emit(tagged)
                for observer in run.options.observers:
                    await observer.on_stream_chunk(stage, tagged)
            return concat_chunks(chunks)
        except AgentError:
            raise
        except Exception as e:
            logger.error(f"[{self.name}] Generation failed during {stage.value}: {e}")
            raise GenerationError.wrap(
                e, "Generation failed", stage=stage.value, component=self.name
            ) from e

    async def _notify_message(self, run: _Run, stage: ReasoningStage, message: Message) -> None:
        for observer in run.options.observers:
            await observer.on_message(stage, message)
