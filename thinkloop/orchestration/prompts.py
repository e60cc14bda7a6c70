"""Prompt builders for the host's orchestration stages."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Iterable

from ..llm.protocols import Message, MessageRole
from .models import OrchestrationState, PlanStep, TaskPlan

if TYPE_CHECKING:
    from .specialists import Specialist

DEFAULT_HOST_SYSTEM_PROMPT = (
    "You are the host of a team of specialist agents. You analyze requests, "
    "plan the work, evaluate results and write the final answer."
)

LANGUAGE_RULE = "Reply in the same language as the user's question."
JSON_RULE = "Reply with the JSON object only, without any extra text."


def format_conversation(messages: Iterable[Message]) -> str:
    lines = []
    for msg in messages:
        if msg.role == MessageRole.SYSTEM:
            continue
        lines.append(f"{msg.role.value}: {msg.content}")
    return "\n".join(lines)


def original_question(state: OrchestrationState) -> str:
    """Content of the last user message, falling back to the first message."""
    for msg in reversed(state.original_messages):
        if msg.role == MessageRole.USER:
            return msg.content
    return state.original_messages[0].content if state.original_messages else ""


def format_plan(plan: TaskPlan, with_results: bool = False) -> str:
    lines = [f"Plan: {plan.name} (version {plan.version})"]
    if plan.description:
        lines.append(f"Description: {plan.description}")
    for i, step in enumerate(plan.steps, 1):
        deps = f" (depends on: {', '.join(step.dependencies)})" if step.dependencies else ""
        lines.append(
            f"{i}. [{step.id}] {step.name} - {step.description} "
            f"-> {step.assigned_specialist or 'unassigned'} [{step.status.value}]{deps}"
        )
        if with_results and step.result is not None and step.result.text:
            lines.append(f"   Result: {step.result.text}")
    return "\n".join(lines)


def _host(system_prompt: str | None, prompt: str) -> list[Message]:
    return [
        Message.system(system_prompt or DEFAULT_HOST_SYSTEM_PROMPT),
        Message.user(prompt),
    ]


def build_analysis_prompt(state: OrchestrationState, system_prompt: str | None = None) -> list[Message]:
    prompt = f"""Analyze the following conversation and extract the key information.

Conversation:
{format_conversation(state.original_messages)}

Return a JSON object:
{{
  "user_intent": "what the user wants, in one sentence",
  "key_topics": ["topic", "..."],
  "context_summary": "short summary of the relevant context",
  "complexity": "simple|moderate|complex|very_complex"
}}

Use "simple" when a single direct reply answers the request. Use the other
tiers when the request needs several steps or different kinds of expertise.
{JSON_RULE}"""
    return _host(system_prompt, prompt)


def build_direct_answer_prompt(state: OrchestrationState, system_prompt: str | None = None) -> list[Message]:
    context = state.conversation_context
    intent = context.user_intent if context else ""
    messages = [Message.system(system_prompt or DEFAULT_HOST_SYSTEM_PROMPT)]
    messages.extend(m for m in state.original_messages if m.role != MessageRole.SYSTEM)
    messages.append(Message.system(
        f"Answer the user's request directly and completely. User intent: {intent or 'see conversation'}. "
        f"{LANGUAGE_RULE}"
    ))
    return messages


def build_plan_creation_prompt(
    state: OrchestrationState,
    specialists: Iterable[Specialist],
    system_prompt: str | None = None,
    planning_prompt: str | None = None,
) -> list[Message]:
    context = state.conversation_context
    roster = "\n".join(f"- {s.name}: {s.intended_use}" for s in specialists)
    prompt = f"""Create an execution plan for the following task.

User intent: {context.user_intent if context else ''}
Key topics: {', '.join(context.key_topics) if context else ''}
Context: {context.context_summary if context else ''}
Complexity: {context.complexity.value if context else 'unknown'}

Original request:
{original_question(state)}

Available specialists:
{roster}

Return a JSON object:
{{
  "id": "plan id",
  "name": "plan name",
  "description": "what the plan achieves",
  "steps": [
    {{
      "id": "step_1",
      "name": "short step name",
      "description": "what this step must produce",
      "assigned_specialist": "one of the specialist names above",
      "priority": 1,
      "dependencies": [],
      "parameters": {{}}
    }}
  ]
}}

Rules:
- steps run in the listed order once their dependencies are completed
- dependencies refer to ids of earlier steps
- assign each step to the specialist whose purpose fits best
- {LANGUAGE_RULE}
- {JSON_RULE}"""
    if planning_prompt:
        prompt = f"{planning_prompt}\n\n{prompt}"
    return _host(system_prompt, prompt)


def build_specialist_messages(
    specialist: Specialist,
    step: PlanStep,
    state: OrchestrationState,
) -> list[Message]:
    system = specialist.system_prompt or (
        f"You are a {specialist.name} specialist, intended to {specialist.intended_use}."
    )
    context = state.conversation_context
    plan_summary = ""
    if state.current_plan is not None:
        plan_summary = f"{state.current_plan.name}: {state.current_plan.description}"

    parts = [
        "Execute the following step:",
        "",
        f"Step: {step.name}",
        f"Description: {step.description}",
    ]
    if step.parameters:
        parts.append(f"Parameters: {json.dumps(step.parameters, ensure_ascii=False)}")
    parts += [
        "",
        "Context:",
        f"- User Intent: {context.user_intent if context else original_question(state)}",
        f"- Overall Plan: {plan_summary}",
    ]

    completed = [
        s for s in (state.current_plan.steps if state.current_plan else [])
        if s.id in step.dependencies and s.result is not None
    ]
    if completed:
        parts += ["", "Results of the steps this one depends on:"]
        for dep in completed:
            parts.append(f"- {dep.name}: {dep.result.text}")

    return [Message.system(system), Message.user("\n".join(parts))]


def _format_results(state: OrchestrationState) -> str:
    if not state.collected_results:
        return "(no results collected yet)"
    return "\n\n".join(msg.content for msg in state.collected_results)


def build_feedback_prompt(state: OrchestrationState, system_prompt: str | None = None) -> list[Message]:
    context = state.conversation_context
    plan = format_plan(state.current_plan) if state.current_plan else "(no plan)"
    prompt = f"""Evaluate the execution so far and give feedback.

Original user intent: {context.user_intent if context else original_question(state)}

Current plan:
{plan}

Execution results:
{_format_results(state)}

Round: {state.round_number}/{state.max_rounds}
Steps executed: {len(state.execution_history)}

Return a JSON object:
{{
  "execution_completed": true,
  "overall_quality": 0.8,
  "plan_needs_update": false,
  "issues": ["problem found"],
  "suggestions": ["how to improve"],
  "confidence": 0.8,
  "next_action_reason": "why the next action is appropriate"
}}

Set execution_completed to true only when the results fully answer the user's
request. Set plan_needs_update to true only when the remaining steps must change.
{JSON_RULE}"""
    return _host(system_prompt, prompt)


def build_plan_update_prompt(state: OrchestrationState, system_prompt: str | None = None) -> list[Message]:
    context = state.conversation_context
    feedback = state.latest_feedback
    feedback_text = "(none)"
    if feedback is not None:
        feedback_text = (
            f"Quality: {feedback.overall_quality}\n"
            f"Issues: {'; '.join(feedback.issues) or 'none'}\n"
            f"Suggestions: {'; '.join(feedback.suggestions) or 'none'}\n"
            f"Reason: {feedback.next_action_reason}"
        )
    plan = format_plan(state.current_plan, with_results=True) if state.current_plan else "(no plan)"
    prompt = f"""Revise the current plan incrementally based on the feedback.

Original user intent: {context.user_intent if context else original_question(state)}

Current plan:
{plan}

Execution results:
{_format_results(state)}

Feedback:
{feedback_text}

Round: {state.round_number}/{state.max_rounds}

Return a JSON object:
{{
  "update_reason": "why the plan changes",
  "operations": [
    {{"type": "add", "step": {{"id": "step_4", "name": "...", "description": "...", "assigned_specialist": "...", "priority": 1, "dependencies": [], "parameters": {{}}}}, "position": {{"after": "step_2"}}, "reason": "..."}},
    {{"type": "modify", "step_id": "step_3", "step": {{"description": "..."}}, "reason": "..."}},
    {{"type": "remove", "step_id": "step_5", "reason": "..."}},
    {{"type": "reorder", "step_id": "step_4", "position": {{"index": 0}}, "reason": "..."}}
  ],
  "plan": {{"name": "optional new name", "description": "optional new description"}}
}}

Rules:
- completed steps cannot be modified or removed
- running steps cannot be removed
- do not remove steps that other steps depend on
- only include fields you want to change in a modify operation
- {JSON_RULE}"""
    return _host(system_prompt, prompt)


def build_final_answer_prompt(state: OrchestrationState, system_prompt: str | None = None) -> list[Message]:
    plan = format_plan(state.current_plan) if state.current_plan else "(no plan)"
    prompt = f"""Original question:
{original_question(state)}

Execution plan:
{plan}

Collected results:
{_format_results(state)}

Synthesize all of the above into a clear, complete and well-structured final
answer to the original question. Do not mention the plan or the specialists.
{LANGUAGE_RULE}"""
    return _host(system_prompt, prompt)
