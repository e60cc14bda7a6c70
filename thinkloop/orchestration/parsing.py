"""Parsing of the host's JSON-shaped stage outputs."""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any

from ..agent.parsing import strip_code_fences
from ..errors import FeedbackParseError, ParseError, PlanParseError
from .models import ConversationContext, Feedback, PlanStep, TaskComplexity, TaskPlan

logger = logging.getLogger(__name__)


def extract_json_object(text: str) -> dict:
    """
    Pull the outermost JSON object out of a model response.

    Args:
        text: Raw response, possibly fenced or wrapped in prose

    Returns:
        The decoded object

    Raises:
        ParseError: If no JSON object can be decoded
    """
    cleaned = strip_code_fences(text)
    json_start = cleaned.find("{")
    json_end = cleaned.rfind("}") + 1

    if json_start == -1 or json_end <= json_start:
        raise ParseError("No JSON object found in response", raw=text)

    try:
        data = json.loads(cleaned[json_start:json_end])
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON: {e}", raw=text, cause=e) from e

    if not isinstance(data, dict):
        raise ParseError("Response JSON is not an object", raw=text)
    return data


def _pick(data: dict, *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _as_float(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


def _as_str_list(value: Any) -> list[str]:
    if isinstance(value, list):
        return [str(v) for v in value]
    if isinstance(value, str) and value:
        return [value]
    return []


def parse_conversation_context(text: str) -> ConversationContext:
    """
    Parse the conversation analysis.

    Unparseable output does not fail the run: it yields an ``unknown``
    complexity, which routes to a direct answer.
    """
    try:
        data = extract_json_object(text)
    except ParseError as e:
        logger.warning(f"Conversation analysis unparseable, treating as unknown complexity: {e.message}")
        return ConversationContext(context_summary=text.strip(), complexity=TaskComplexity.UNKNOWN)

    metadata = data.get("metadata")
    return ConversationContext(
        user_intent=str(_pick(data, "user_intent", "userIntent", default="")),
        key_topics=_as_str_list(_pick(data, "key_topics", "keyTopics", default=[])),
        context_summary=str(_pick(data, "context_summary", "contextSummary", default="")),
        complexity=TaskComplexity.parse(data.get("complexity")),
        metadata=metadata if isinstance(metadata, dict) else {},
    )


def parse_plan(text: str) -> TaskPlan:
    """
    Parse a plan created by the host.

    Raises:
        PlanParseError: If the output is not a plan object with steps
    """
    try:
        data = extract_json_object(text)
    except ParseError as e:
        raise PlanParseError(f"Failed to parse plan: {e.message}", raw=text, cause=e.cause) from e

    raw_steps = data.get("steps")
    if not isinstance(raw_steps, list) or not raw_steps:
        raise PlanParseError("Plan has no steps", raw=text)

    steps: list[PlanStep] = []
    seen: set[str] = set()
    for i, raw in enumerate(raw_steps, 1):
        if not isinstance(raw, dict):
            raise PlanParseError(f"Step {i} is not an object", raw=text)
        try:
            step = PlanStep.from_dict(raw, default_id=f"step_{i}")
        except ValueError as e:
            raise PlanParseError(f"Step {i} is invalid: {e}", raw=text) from e
        if step.id in seen:
            raise PlanParseError(f"Duplicate step id: {step.id}", raw=text)
        seen.add(step.id)
        steps.append(step)

    plan = TaskPlan(
        id=str(data.get("id") or f"plan_{uuid.uuid4().hex[:8]}"),
        name=str(data.get("name") or "Execution plan"),
        description=str(data.get("description") or ""),
        steps=steps,
    )
    logger.info(f"Parsed plan '{plan.name}' with {len(steps)} steps")
    return plan


def parse_feedback(text: str) -> Feedback:
    """
    Parse the host's feedback evaluation.

    Raises:
        FeedbackParseError: If no JSON object can be decoded
    """
    try:
        data = extract_json_object(text)
    except ParseError as e:
        raise FeedbackParseError(f"Failed to parse feedback: {e.message}", raw=text, cause=e.cause) from e

    return Feedback(
        execution_completed=_as_bool(_pick(data, "execution_completed", "executionCompleted", default=False)),
        overall_quality=_as_float(_pick(data, "overall_quality", "overallQuality")),
        plan_needs_update=_as_bool(_pick(data, "plan_needs_update", "planNeedsUpdate", default=False)),
        issues=_as_str_list(data.get("issues")),
        suggestions=_as_str_list(data.get("suggestions")),
        confidence=_as_float(data.get("confidence")),
        next_action_reason=str(_pick(data, "next_action_reason", "nextActionReason", default="")),
    )
