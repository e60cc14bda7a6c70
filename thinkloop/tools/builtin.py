"""Small general-purpose tools available to agents started from the CLI."""

from __future__ import annotations

import ast
import logging
import operator
from datetime import datetime, timezone

from .registry import Tool, ToolRegistry

logger = logging.getLogger(__name__)

_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}


def _evaluate(node: ast.AST) -> float:
    if isinstance(node, ast.Expression):
        return _evaluate(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _OPERATORS:
        return _OPERATORS[type(node.op)](_evaluate(node.left), _evaluate(node.right))
    if isinstance(node, ast.UnaryOp) and type(node.op) in _OPERATORS:
        return _OPERATORS[type(node.op)](_evaluate(node.operand))
    raise ValueError(f"Unsupported expression element: {type(node).__name__}")


def calculate(expression: str) -> str:
    """Evaluate an arithmetic expression.

    Args:
        expression: Numbers combined with + - * / // % ** and parentheses

    Returns:
        The result as text

    Raises:
        ValueError: If the expression contains anything but arithmetic
    """
    try:
        tree = ast.parse(expression, mode="eval")
    except SyntaxError as e:
        raise ValueError(f"Invalid expression: {expression}") from e
    result = _evaluate(tree)
    logger.debug(f"calculate({expression}) = {result}")
    return str(result)


def current_time() -> str:
    """Current UTC time in ISO 8601 format."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


CALCULATOR = Tool(
    name="calculate",
    description="Evaluate an arithmetic expression and return the numeric result.",
    func=calculate,
    parameters={
        "expression": {
            "type": "string",
            "description": "Arithmetic expression, e.g. '(3 + 4) * 2'",
        },
    },
    required_params=["expression"],
)

CURRENT_TIME = Tool(
    name="current_time",
    description="Return the current UTC date and time.",
    func=current_time,
)


def builtin_registry() -> ToolRegistry:
    """Registry holding every built-in tool."""
    return ToolRegistry([CALCULATOR, CURRENT_TIME])
