"""Tool capability used by the reasoning loop."""

from .registry import Tool, ToolFunc, ToolRegistry
from .builtin import builtin_registry, calculate, current_time

__all__ = [
    # Registry
    "Tool",
    "ToolFunc",
    "ToolRegistry",
    # Built-in tools
    "builtin_registry",
    "calculate",
    "current_time",
]
