"""Interpretation of raw model responses as reasoning decisions."""

from __future__ import annotations

import json
import logging

from ..llm.protocols import Message
from .models import DEFAULT_CONFIDENCE, Action, ReasoningDecision

logger = logging.getLogger(__name__)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json / ``` fence, if any."""
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[len("```json"):]
    elif cleaned.startswith("```"):
        cleaned = cleaned[len("```"):]
    if cleaned.endswith("```"):
        cleaned = cleaned[: -len("```")]
    return cleaned.strip()


def _parse_action(value) -> Action:
    if not isinstance(value, str):
        return Action.CONTINUE
    try:
        return Action(value.strip().lower())
    except ValueError:
        logger.warning(f"Unknown action '{value}', treating as continue")
        return Action.CONTINUE


def _parse_confidence(value) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        return DEFAULT_CONFIDENCE
    return min(float(value), 1.0)


def parse_reasoning_response(message: Message) -> ReasoningDecision:
    """
    Parse one model response into a reasoning decision.

    Tool calls on the message force a ``tool_call`` action. Otherwise the
    content is parsed as the JSON contract; anything unparseable degrades
    to ``continue`` with the text kept as the thought.

    Args:
        message: The assistant message

    Returns:
        The decision; never raises on malformed content
    """
    if message.tool_calls:
        return ReasoningDecision(
            thought=message.content.strip(),
            action=Action.TOOL_CALL,
            tool_calls=list(message.tool_calls),
        )

    cleaned = strip_code_fences(message.content)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        logger.debug("Reasoning response is not JSON, continuing with raw text as thought")
        return ReasoningDecision(thought=cleaned, action=Action.CONTINUE)

    if not isinstance(data, dict):
        return ReasoningDecision(thought=cleaned, action=Action.CONTINUE)

    final_answer = data.get("final_answer")
    return ReasoningDecision(
        thought=str(data.get("thought") or ""),
        action=_parse_action(data.get("action")),
        final_answer=final_answer if isinstance(final_answer, str) else "",
        confidence=_parse_confidence(data.get("confidence")),
    )
