"""Single-agent reasoning loop (think, decide, act, observe)."""

from .models import (
    Action,
    AgentObserver,
    AgentRunState,
    ReasoningDecision,
    ReasoningStage,
    RunOptions,
)
from .parsing import parse_reasoning_response, strip_code_fences
from .prompts import MAX_ITERATIONS_ANSWER, NO_RESPONSE_ANSWER
from .reasoning_loop import ReasoningLoop

__all__ = [
    # Models
    "Action",
    "AgentObserver",
    "AgentRunState",
    "ReasoningDecision",
    "ReasoningStage",
    "RunOptions",
    # Parsing
    "parse_reasoning_response",
    "strip_code_fences",
    # Fixed answers
    "MAX_ITERATIONS_ANSWER",
    "NO_RESPONSE_ANSWER",
    # Controller
    "ReasoningLoop",
]
