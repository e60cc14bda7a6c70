"""
Orchestration graph controller.

The host analyzes the conversation, then either answers directly or plans
the work and runs it round by round through its specialists:

    analysis -> direct_answer -> end
             -> plan_creation -> plan_execution -> specialist_dispatch
                -> result_collection -> feedback_evaluation
                -> plan_update -> plan_execution ...
                -> plan_execution (next round)
                -> final_answer -> end

Each round executes at most one step. The round limit guarantees
termination: once it is reached, the reflection branch always moves to
the final answer.
"""

from __future__ import annotations

import logging
from datetime import datetime
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Iterable, TypeVar

from ..agent.reasoning_loop import positive_or_default
from ..channel import Emit, stream_from
from ..errors import (
    AgentError,
    CapabilityError,
    ConfigurationError,
    GenerationError,
    ParseError,
    RunCancelledError,
)
from ..llm.completion import concat_chunks
from ..llm.protocols import ChatModel, Message
from ..settings import DEFAULT_MAX_ROUNDS
from .models import (
    ExecutionRecord,
    ExecutionStatus,
    OrchestrationOptions,
    OrchestrationState,
    Stage,
    StepStatus,
    TaskComplexity,
)
from .parsing import parse_conversation_context, parse_feedback, parse_plan
from .plan_stream import CREATE, PlanStepExtractor
from .plan_update import apply_revision, invalidate_results, parse_plan_revision
from .prompts import (
    build_analysis_prompt,
    build_direct_answer_prompt,
    build_feedback_prompt,
    build_final_answer_prompt,
    build_plan_creation_prompt,
    build_plan_update_prompt,
    build_specialist_messages,
)
from .specialists import GENERAL_SPECIALIST_NAME, Specialist, general_specialist

logger = logging.getLogger(__name__)

T = TypeVar("T")

PLAN_COMPLETE_MESSAGE = "Plan execution completed. All steps have been executed."
NO_RESULTS_MESSAGE = "No specialist results to collect."
RESULTS_SUMMARY_HEADER = "Specialist Results Summary:\n\n"
FINAL_MESSAGE_NAME = "complete"

RETRY_PROMPT = (
    "Your reply could not be parsed ({error}). "
    "Reply again with only the JSON object in the requested format."
)


@dataclass
class _Run:
    """Everything one invocation carries between stages."""

    state: OrchestrationState
    options: OrchestrationOptions
    emit: Emit | None


class Orchestrator:
    """
    Host agent coordinating specialists through a plan.

    The controller is stateless between invocations; all run state lives
    in an ``OrchestrationState`` created per call.

    Usage:
        host = Orchestrator(model, [research, writer], max_rounds=6)
        answer = await host.invoke([Message.user("Compare X and Y")])
    """

    def __init__(
        self,
        host_model: ChatModel,
        specialists: Iterable[Specialist] = (),
        *,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        host_system_prompt: str | None = None,
        planning_prompt: str | None = None,
        max_parse_retries: int = 0,
        name: str = "host",
    ):
        """
        Initialize the orchestrator.

        Args:
            host_model: Generation capability for the host's own stages
            specialists: Specialists steps can be assigned to
            max_rounds: Execution rounds allowed before the final answer is forced
            host_system_prompt: System prompt for host stages
            planning_prompt: Extra instructions prepended to the plan request
            max_parse_retries: Re-prompts allowed when plan/feedback JSON is malformed
            name: Name used in logs and errors

        Raises:
            ConfigurationError: If the host model is missing or two
                specialists share a name
        """
        if host_model is None:
            raise ConfigurationError("A host chat model is required", component=name)

        self.host_model = host_model
        self.name = name
        self.max_rounds = positive_or_default(max_rounds, DEFAULT_MAX_ROUNDS, "max_rounds")
        self.host_system_prompt = host_system_prompt
        self.planning_prompt = planning_prompt
        self.max_parse_retries = max(0, max_parse_retries)

        self.specialists: dict[str, Specialist] = {}
        for specialist in specialists:
            if specialist.name in self.specialists:
                raise ConfigurationError(f"Duplicate specialist name: {specialist.name}", component=name)
            self.specialists[specialist.name] = specialist
        if GENERAL_SPECIALIST_NAME not in self.specialists:
            self.specialists[GENERAL_SPECIALIST_NAME] = general_specialist(host_model)

        self._handlers: dict[Stage, Callable[[_Run], Awaitable[Stage]]] = {
            Stage.ANALYSIS: self._analyze,
            Stage.DIRECT_ANSWER: self._direct_answer,
            Stage.PLAN_CREATION: self._create_plan,
            Stage.PLAN_EXECUTION: self._execute_plan,
            Stage.SPECIALIST_DISPATCH: self._dispatch,
            Stage.RESULT_COLLECTION: self._collect_results,
            Stage.FEEDBACK: self._evaluate,
            Stage.PLAN_UPDATE: self._update_plan,
            Stage.FINAL_ANSWER: self._final_answer,
        }

        logger.info(
            f"[{self.name}] Orchestrator ready with specialists: {', '.join(self.specialists)}"
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def invoke(
        self, messages: list[Message], options: OrchestrationOptions | None = None
    ) -> Message:
        """
        Run the orchestration to completion.

        Args:
            messages: Conversation to answer
            options: Per-run options

        Returns:
            The final answer message
        """
        state = await self._execute(messages, options, emit=None)
        return state.final_answer

    async def run(
        self, messages: list[Message], options: OrchestrationOptions | None = None
    ) -> OrchestrationState:
        """Run to completion and hand back the finished orchestration state."""
        return await self._execute(messages, options, emit=None)

    async def stream(
        self, messages: list[Message], options: OrchestrationOptions | None = None
    ) -> AsyncIterator[Message]:
        """
        Run the orchestration, yielding output as it is produced.

        Chunks carry the producing stage in ``name``; the last message is
        the final answer with ``name="complete"``.
        """

        async def produce(emit: Emit) -> None:
            await self._execute(messages, options, emit=emit)

        async for chunk in stream_from(produce):
            yield chunk

    async def _execute(
        self,
        messages: list[Message],
        options: OrchestrationOptions | None,
        emit: Emit | None,
    ) -> OrchestrationState:
        options = options or OrchestrationOptions()
        max_rounds = self.max_rounds
        if options.max_rounds is not None:
            max_rounds = positive_or_default(options.max_rounds, DEFAULT_MAX_ROUNDS, "max_rounds")

        state = OrchestrationState(original_messages=list(messages), max_rounds=max_rounds)
        run = _Run(state=state, options=options, emit=emit)
        logger.info(f"[{self.name}] Starting orchestration, max {max_rounds} rounds")

        stage = Stage.ANALYSIS
        while stage is not Stage.END:
            self._check_cancelled(run, stage)
            logger.debug(f"[{self.name}] stage={stage.value} round={state.round_number}")
            for observer in options.observers:
                await observer.on_stage_start(stage, state)
            stage = await self._handlers[stage](run)

        if options.message_store is not None and options.conversation_id:
            await options.message_store.append(
                options.conversation_id, state.original_messages + [state.final_answer]
            )

        logger.info(
            f"[{self.name}] Orchestration finished after {state.round_number} round(s), "
            f"{state.reflection_count} evaluation(s)"
        )
        return state

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _analyze(self, run: _Run) -> Stage:
        state = run.state
        state.execution_status = ExecutionStatus.ANALYZING

        response = await self._generate(
            run, Stage.ANALYSIS, build_analysis_prompt(state, self.host_system_prompt)
        )
        state.conversation_context = parse_conversation_context(response.content)
        logger.info(f"[{self.name}] Complexity: {state.conversation_context.complexity.value}")
        return self._complexity_branch(state)

    @staticmethod
    def _complexity_branch(state: OrchestrationState) -> Stage:
        complexity = state.conversation_context.complexity
        if complexity in (TaskComplexity.SIMPLE, TaskComplexity.UNKNOWN):
            return Stage.DIRECT_ANSWER
        return Stage.PLAN_CREATION

    async def _direct_answer(self, run: _Run) -> Stage:
        response = await self._generate(
            run, Stage.DIRECT_ANSWER, build_direct_answer_prompt(run.state, self.host_system_prompt)
        )
        await self._finish(run, response.content)
        return Stage.END

    async def _create_plan(self, run: _Run) -> Stage:
        state = run.state
        state.execution_status = ExecutionStatus.PLANNING

        prompt = build_plan_creation_prompt(
            state,
            self.specialists.values(),
            self.host_system_prompt,
            self.planning_prompt,
        )
        plan = await self._generate_parsed(run, Stage.PLAN_CREATION, prompt, parse_plan, extract_steps=True)
        state.current_plan = plan

        for observer in run.options.observers:
            await observer.on_plan_step_end(state)
        return Stage.PLAN_EXECUTION

    async def _execute_plan(self, run: _Run) -> Stage:
        state = run.state
        state.execution_status = ExecutionStatus.EXECUTING
        state.round_number += 1

        # results survive a new round only if a plan revision preserved them
        state.specialist_results = {
            step_id: result
            for step_id, result in state.specialist_results.items()
            if step_id in state.preserved_result_ids
        }
        state.preserved_result_ids = set()
        state.current_step_id = None

        step = state.current_plan.next_runnable_step()
        if step is None:
            logger.info(f"[{self.name}] Round {state.round_number}: no runnable step left")
            await self._announce(run, Stage.PLAN_EXECUTION, PLAN_COMPLETE_MESSAGE)
            return Stage.SPECIALIST_DISPATCH

        specialist = self._resolve_specialist(step.assigned_specialist)
        step.status = StepStatus.RUNNING
        state.current_step_id = step.id
        state.execution_history.append(
            ExecutionRecord(step_id=step.id, specialist=specialist.name, round_number=state.round_number)
        )
        logger.info(f"[{self.name}] Round {state.round_number}: executing step {step.id} with {specialist.name}")

        for observer in run.options.observers:
            await observer.on_plan_step_status(state, step)
        await self._announce(run, Stage.PLAN_EXECUTION, f"Executing step: {step.name} - {step.description}")
        return Stage.SPECIALIST_DISPATCH

    async def _dispatch(self, run: _Run) -> Stage:
        state = run.state
        step = state.current_step
        if step is None:
            return Stage.RESULT_COLLECTION

        specialist = self._resolve_specialist(step.assigned_specialist)
        record = state.execution_history[-1]
        messages = build_specialist_messages(specialist, step, state)
        force_final = state.round_number >= state.max_rounds

        try:
            result = await specialist.run(
                messages,
                force_final_answer=force_final,
                cancel_event=run.options.cancel_event,
            )
        except RunCancelledError:
            raise
        except Exception as e:
            logger.error(f"[{self.name}] Specialist {specialist.name} failed on step {step.id}: {e}")
            step.status = StepStatus.FAILED
            record.status = StepStatus.FAILED
            record.error = str(e)
            record.finished_at = datetime.now()
            for observer in run.options.observers:
                await observer.on_plan_step_status(state, step)
            if isinstance(e, AgentError):
                raise
            raise CapabilityError.wrap(
                e,
                f"Specialist {specialist.name} failed",
                stage=Stage.SPECIALIST_DISPATCH.value,
                component=self.name,
            ) from e

        step.status = StepStatus.COMPLETED
        step.result = result
        record.status = StepStatus.COMPLETED
        record.finished_at = datetime.now()
        state.specialist_results[step.id] = result
        logger.debug(f"[{self.name}] Step {step.id} completed by {specialist.name}")

        if result.output is not None:
            output = result.output.model_copy(update={"name": Stage.SPECIALIST_DISPATCH.value})
            if run.emit is not None:
                await run.emit(output)
            for observer in run.options.observers:
                await observer.on_message(Stage.SPECIALIST_DISPATCH, output)
        for observer in run.options.observers:
            await observer.on_plan_step_status(state, step)
        return Stage.RESULT_COLLECTION

    async def _collect_results(self, run: _Run) -> Stage:
        state = run.state
        state.execution_status = ExecutionStatus.COLLECTING

        if not state.specialist_results:
            await self._announce(run, Stage.RESULT_COLLECTION, NO_RESULTS_MESSAGE)
            return Stage.FEEDBACK

        blocks = []
        for step_id, result in state.specialist_results.items():
            step = state.current_plan.get_step(step_id)
            description = step.description if step is not None and step.description else step_id
            blocks.append(f"{description}\n[{result.specialist}]: {result.text}")

        summary = await self._announce(
            run, Stage.RESULT_COLLECTION, RESULTS_SUMMARY_HEADER + "\n\n".join(blocks)
        )
        state.collected_results.append(summary)
        return Stage.FEEDBACK

    async def _evaluate(self, run: _Run) -> Stage:
        state = run.state
        state.execution_status = ExecutionStatus.EVALUATING

        feedback = await self._generate_parsed(
            run, Stage.FEEDBACK, build_feedback_prompt(state, self.host_system_prompt), parse_feedback
        )
        state.feedback_history.append(feedback)
        state.reflection_count += 1
        logger.info(
            f"[{self.name}] Feedback round {state.round_number}: completed={feedback.execution_completed}, "
            f"needs_update={feedback.plan_needs_update}, quality={feedback.overall_quality:.2f}"
        )
        return self._reflection_branch(state)

    def _reflection_branch(self, state: OrchestrationState) -> Stage:
        feedback = state.latest_feedback
        if state.round_limit_reached:
            logger.info(f"[{self.name}] Round limit {state.max_rounds} reached, finalizing")
            return Stage.FINAL_ANSWER
        if feedback.plan_needs_update:
            return Stage.PLAN_UPDATE
        if feedback.execution_completed:
            return Stage.FINAL_ANSWER
        if state.current_plan.next_runnable_step() is None:
            logger.info(f"[{self.name}] No runnable steps remain, finalizing")
            return Stage.FINAL_ANSWER
        return Stage.PLAN_EXECUTION

    async def _update_plan(self, run: _Run) -> Stage:
        state = run.state
        state.execution_status = ExecutionStatus.UPDATING

        revision = await self._generate_parsed(
            run,
            Stage.PLAN_UPDATE,
            build_plan_update_prompt(state, self.host_system_prompt),
            parse_plan_revision,
        )
        try:
            outcome = apply_revision(state.current_plan, revision)
        except AgentError as e:
            e.stage = Stage.PLAN_UPDATE.value
            e.component = self.name
            raise

        state.plan_history.append(state.current_plan)
        state.current_plan = outcome.plan
        state.specialist_results = invalidate_results(state.specialist_results, outcome.invalidated)
        state.preserved_result_ids = set(state.specialist_results)

        for observer in run.options.observers:
            for step_id in outcome.added:
                await observer.on_plan_step_create(state, outcome.plan.get_step(step_id))
            for step_id in outcome.modified:
                await observer.on_plan_step_update(state, outcome.plan.get_step(step_id))
            for step_id in outcome.removed:
                await observer.on_plan_step_delete(state, step_id)

        await self._announce(
            run,
            Stage.PLAN_UPDATE,
            f"Plan updated to version {outcome.plan.version}: {outcome.plan.update_history[-1].description}",
        )
        return Stage.PLAN_EXECUTION

    async def _final_answer(self, run: _Run) -> Stage:
        response = await self._generate(
            run, Stage.FINAL_ANSWER, build_final_answer_prompt(run.state, self.host_system_prompt)
        )
        await self._finish(run, response.content)
        return Stage.END

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve_specialist(self, name: str) -> Specialist:
        specialist = self.specialists.get(name) if name else None
        if specialist is None:
            logger.info(f"[{self.name}] No specialist named '{name}', using {GENERAL_SPECIALIST_NAME}")
            return self.specialists[GENERAL_SPECIALIST_NAME]
        return specialist

    def _check_cancelled(self, run: _Run, stage: Stage) -> None:
        event = run.options.cancel_event
        if event is not None and event.is_set():
            logger.info(f"[{self.name}] Run cancelled during {stage.value}")
            raise RunCancelledError("Run cancelled", stage=stage.value, component=self.name)

    async def _announce(self, run: _Run, stage: Stage, text: str) -> Message:
        """Emit a message produced by the controller itself."""
        message = Message.assistant(text, name=stage.value)
        if run.emit is not None:
            await run.emit(message)
        for observer in run.options.observers:
            await observer.on_message(stage, message)
        return message

    async def _finish(self, run: _Run, text: str) -> None:
        state = run.state
        state.final_answer = Message.assistant(text, name=FINAL_MESSAGE_NAME)
        state.is_completed = True
        state.execution_status = ExecutionStatus.COMPLETED
        if run.emit is not None:
            await run.emit(state.final_answer)

    async def _generate(
        self,
        run: _Run,
        stage: Stage,
        prompt: list[Message],
        extractor: PlanStepExtractor | None = None,
    ) -> Message:
        """Call the host model, streaming chunks when the caller is streaming."""
        self._check_cancelled(run, stage)
        try:
            if run.emit is None:
                response = await self.host_model.generate(prompt)
                if extractor is not None:
                    await self._deliver_step_events(run, extractor.feed(response.content))
            else:
                chunks: list[Message] = []
                async for chunk in self.host_model.stream(prompt):
                    self._check_cancelled(run, stage)
                    chunks.append(chunk)
                    tagged = chunk.model_copy(update={"name": stage.value})
                    await run.emit(tagged)
                    for observer in run.options.observers:
                        await observer.on_stream_chunk(stage, tagged)
                    if extractor is not None and chunk.content:
                        await self._deliver_step_events(run, extractor.feed(chunk.content))
                response = concat_chunks(chunks)
        except AgentError:
            raise
        except Exception as e:
            logger.error(f"[{self.name}] Generation failed during {stage.value}: {e}")
            raise GenerationError.wrap(
                e, "Generation failed", stage=stage.value, component=self.name
            ) from e

        logger.debug(f"[{self.name}] {stage.value} produced {len(response.content)} chars")
        for observer in run.options.observers:
            await observer.on_message(stage, response)
        return response

    async def _generate_parsed(
        self,
        run: _Run,
        stage: Stage,
        prompt: list[Message],
        parse: Callable[[str], T],
        extract_steps: bool = False,
    ) -> T:
        """Generate and parse JSON output, re-prompting up to ``max_parse_retries`` times."""
        messages = list(prompt)
        attempt = 0
        while True:
            extractor = PlanStepExtractor() if extract_steps and run.options.observers else None
            response = await self._generate(run, stage, messages, extractor)
            try:
                return parse(response.content)
            except ParseError as e:
                e.stage = stage.value
                e.component = self.name
                if attempt >= self.max_parse_retries:
                    logger.error(f"[{self.name}] {stage.value} output could not be parsed: {e.message}")
                    raise
                attempt += 1
                logger.warning(
                    f"[{self.name}] {stage.value} output could not be parsed, "
                    f"retry {attempt}/{self.max_parse_retries}"
                )
                messages = messages + [
                    Message.assistant(response.content),
                    Message.user(RETRY_PROMPT.format(error=e.message)),
                ]

    async def _deliver_step_events(self, run: _Run, events) -> None:
        for kind, step in events:
            for observer in run.options.observers:
                if kind == CREATE:
                    await observer.on_plan_step_create(run.state, step)
                else:
                    await observer.on_plan_step_update(run.state, step)
