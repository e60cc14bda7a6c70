"""Thinkloop agent execution engine.

Two controllers over a text-generation capability:

- ``ReasoningLoop``: a single agent that thinks, calls tools and answers
- ``Orchestrator``: a host that plans, dispatches specialists and reflects

plus ``StreamingJsonParser`` for reading structured model output while it
is still being generated.
"""

from .agent import ReasoningLoop, RunOptions
from .errors import AgentError
from .extraction import StreamingJsonParser
from .llm import ChatModel, Message
from .orchestration import OrchestrationOptions, Orchestrator
from .tools import Tool, ToolRegistry

__version__ = "0.1.0"

__all__ = [
    "ReasoningLoop",
    "RunOptions",
    "AgentError",
    "StreamingJsonParser",
    "ChatModel",
    "Message",
    "OrchestrationOptions",
    "Orchestrator",
    "Tool",
    "ToolRegistry",
]
