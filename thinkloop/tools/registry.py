"""Tool definitions and the registry the reasoning loop invokes them through."""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Union

from ..errors import ConfigurationError, ToolInvocationError

logger = logging.getLogger(__name__)

ToolFunc = Callable[..., Union[Any, Awaitable[Any]]]


@dataclass
class Tool:
    """A callable tool exposed to the model."""

    name: str
    description: str
    func: ToolFunc
    parameters: dict[str, dict] = field(default_factory=dict)
    required_params: list[str] = field(default_factory=list)

    def schema(self) -> dict:
        """OpenAI-style function schema for this tool."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": self.parameters,
                    "required": self.required_params,
                },
            },
        }


class ToolRegistry:
    """
    Name-indexed collection of tools.

    Arguments arrive from the model as JSON text and are decoded into
    keyword arguments. Results are returned as text: strings pass through,
    anything else is JSON-encoded.
    """

    def __init__(self, tools: Iterable[Tool] = ()):
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ConfigurationError(f"Tool '{tool.name}' registered twice", component="tools")
        self._tools[tool.name] = tool
        logger.debug(f"Registered tool: {tool.name}")

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def subset(self, names: Iterable[str]) -> ToolRegistry:
        """
        Build a registry holding only the named tools.

        Raises:
            ConfigurationError: If any name is not registered
        """
        names = list(names)
        missing = [n for n in names if n not in self._tools]
        if missing:
            raise ConfigurationError(
                f"Unknown tool(s): {', '.join(missing)}. Available: {', '.join(self._tools) or 'none'}",
                component="tools",
            )
        return ToolRegistry(self._tools[n] for n in names)

    def get_tool_schema(self) -> list[dict]:
        """
        Get OpenAI-style function schema for all tools.

        Returns:
            List of tool schemas for LLM function calling
        """
        return [tool.schema() for tool in self._tools.values()]

    def get_tool_descriptions(self) -> str:
        """
        Get human-readable tool descriptions.

        Returns:
            Formatted string describing all available tools
        """
        lines = ["Available tools:\n"]

        for name, tool in self._tools.items():
            lines.append(f"- {name}: {tool.description}")
            if tool.required_params:
                lines.append(f"  Required: {', '.join(tool.required_params)}")

        return "\n".join(lines)

    async def invoke(self, name: str, arguments_json: str) -> str:
        """
        Invoke a tool by name.

        Args:
            name: Registered tool name
            arguments_json: JSON object text with the keyword arguments

        Returns:
            The tool's result as text

        Raises:
            KeyError: If the tool is not registered
            ToolInvocationError: If the arguments are not a JSON object or
                the tool raises
        """
        tool = self._tools[name]

        try:
            arguments = json.loads(arguments_json) if arguments_json.strip() else {}
        except json.JSONDecodeError as e:
            raise ToolInvocationError(
                f"Invalid JSON arguments for tool '{name}'", tool_name=name, stage="tools", cause=e
            ) from e
        if not isinstance(arguments, dict):
            raise ToolInvocationError(
                f"Arguments for tool '{name}' must be a JSON object", tool_name=name, stage="tools"
            )

        logger.info(f"Invoking tool {name} with {len(arguments)} argument(s)")
        try:
            result = tool.func(**arguments)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            logger.error(f"Tool {name} failed: {e}")
            raise ToolInvocationError(
                f"Tool '{name}' failed", tool_name=name, stage="tools", cause=e
            ) from e

        if isinstance(result, str):
            return result
        return json.dumps(result, default=str)
