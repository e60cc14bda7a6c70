"""Path patterns for the streaming JSON extractor.

A pattern addresses a position inside a JSON document using dotted keys and
bracketed indices, e.g. ``steps[*].name`` or ``data.items[0].value``. ``*``
matches any key or index. ``$`` (or an empty pattern) addresses the root.
"""

from __future__ import annotations

from typing import Union

PathElement = Union[str, int]
Path = tuple[PathElement, ...]

WILDCARD = "*"


def parse_pattern(pattern: str) -> Path:
    """Parse a path pattern into a tuple of keys, indices and wildcards.

    Args:
        pattern: Pattern such as ``users[*].name``

    Returns:
        Tuple such as ``("users", "*", "name")``

    Raises:
        ValueError: If a bracket is not closed
    """
    pattern = pattern.strip()
    if pattern in ("", "$"):
        return ()
    if pattern.startswith("$."):
        pattern = pattern[2:]
    elif pattern.startswith("$["):
        pattern = pattern[1:]

    elements: list[PathElement] = []
    buf = ""
    i = 0
    while i < len(pattern):
        c = pattern[i]
        if c == ".":
            if buf:
                elements.append(buf)
                buf = ""
        elif c == "[":
            if buf:
                elements.append(buf)
                buf = ""
            close = pattern.find("]", i)
            if close == -1:
                raise ValueError(f"Unclosed '[' in path pattern: {pattern!r}")
            inner = pattern[i + 1 : close].strip().strip("'\"")
            if inner == WILDCARD:
                elements.append(WILDCARD)
            elif inner.lstrip("-").isdigit():
                elements.append(int(inner))
            else:
                elements.append(inner)
            i = close
        else:
            buf += c
        i += 1
    if buf:
        elements.append(buf)
    return tuple(elements)


class PathMatcher:
    """Compiled path pattern matched by exact length and element equality."""

    def __init__(self, pattern: str):
        self.pattern = pattern
        self.elements = parse_pattern(pattern)

    def matches(self, path: Path) -> bool:
        if len(path) != len(self.elements):
            return False
        for expected, actual in zip(self.elements, path):
            if expected == WILDCARD:
                continue
            # int keys never equal str keys: "0" does not match index 0
            if type(expected) is not type(actual) or expected != actual:
                return False
        return True

    def __repr__(self) -> str:
        return f"PathMatcher({self.pattern!r})"
