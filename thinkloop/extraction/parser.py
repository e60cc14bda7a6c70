"""Character-level streaming JSON parser with path callbacks.

The parser consumes a JSON document in arbitrary chunks and notifies
registered callbacks as soon as values at matching paths become available,
long before the enclosing document is syntactically complete. It is used to
surface plan steps while the host model is still writing the plan.

Delivery of string values is controlled by two independent flags:

- ``realtime``: fire on every character appended to an in-progress string
  (otherwise only when the value is complete)
- ``incremental``: deliver only the newly appended suffix of a string
  (otherwise the full value accumulated so far)

Non-string values (numbers, literals, objects, arrays) are always delivered
once, on completion.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable

from ..errors import MalformedJSONError
from .path_matcher import Path, PathElement, PathMatcher

logger = logging.getLogger(__name__)

PathCallback = Callable[[Path, Any], None]

_WHITESPACE = " \t\r\n"
_NUMBER_CHARS = "0123456789+-.eE"
_SIMPLE_ESCAPES = {
    '"': '"',
    "\\": "\\",
    "/": "/",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
}
_LITERALS = {"t": ("true", True), "f": ("false", False), "n": ("null", None)}


class ParserState(Enum):
    """Position of the parser within the JSON grammar."""

    VALUE = auto()  # a value must follow (root, after ':' or after ',' in an array)
    VALUE_OR_END = auto()  # just after '['
    KEY_OR_END = auto()  # just after '{'
    KEY = auto()  # after ',' inside an object
    KEY_STRING = auto()
    COLON = auto()
    COMMA_OR_END = auto()  # a value inside a container just completed
    STRING = auto()
    NUMBER = auto()
    LITERAL = auto()  # true / false / null in progress
    DONE = auto()  # root value complete


@dataclass
class _Frame:
    """An open object or array."""

    value: dict | list
    key: str | None = None
    index: int = 0

    @property
    def is_object(self) -> bool:
        return isinstance(self.value, dict)


@dataclass
class _Handler:
    matcher: PathMatcher
    callback: PathCallback


@dataclass
class _StringScan:
    """Escape-decoding state carried across chunk boundaries."""

    chars: list[str] = field(default_factory=list)
    escape: bool = False
    unicode_digits: str | None = None

    def text(self) -> str:
        return "".join(self.chars)


class StreamingJsonParser:
    """
    Incremental JSON parser with path-pattern callbacks.

    Usage:
        parser = StreamingJsonParser()
        parser.on("steps[*].name", lambda path, value: print(path, value))
        for chunk in chunks:
            parser.feed(chunk)
        parser.end()
        document = parser.result
    """

    def __init__(self, realtime: bool = False, incremental: bool = False):
        self.realtime = realtime
        self.incremental = incremental
        self._handlers: list[_Handler] = []
        self.reset()

    def on(self, pattern: str, callback: PathCallback) -> "StreamingJsonParser":
        """
        Register a callback for a path pattern.

        Args:
            pattern: Path pattern, e.g. ``steps[*].name``
            callback: Called as ``callback(path, value)``

        Returns:
            The parser, for chaining
        """
        self._handlers.append(_Handler(PathMatcher(pattern), callback))
        return self

    def reset(self) -> None:
        """Discard all parse progress, keeping registered callbacks."""
        self._state = ParserState.VALUE
        self._stack: list[_Frame] = []
        self._path: list[PathElement] = []
        self._scan = _StringScan()
        self._string_handlers: list[_Handler] = []
        self._sent_len = 0
        self._number = ""
        self._literal = ""
        self._literal_pos = 0
        self._root: Any = None
        self._pos = 0

    @property
    def done(self) -> bool:
        """True once the root value has been completely parsed."""
        return self._state is ParserState.DONE

    @property
    def result(self) -> Any:
        """The parsed document, or None while it is incomplete."""
        return self._root if self.done else None

    @property
    def path(self) -> Path:
        """Path of the value currently being parsed."""
        return tuple(self._path)

    def feed(self, chunk: str) -> None:
        """
        Consume the next chunk of the document.

        Raises:
            MalformedJSONError: On the first character that cannot continue
                a valid JSON document
        """
        for c in chunk:
            self._consume(c)
            self._pos += 1

    def end(self) -> Any:
        """
        Signal end of input.

        Returns:
            The parsed root value

        Raises:
            MalformedJSONError: If the document is incomplete
        """
        if self._state is ParserState.NUMBER and not self._stack:
            self._finish_number()
        if self._state is not ParserState.DONE:
            raise MalformedJSONError(
                f"Unexpected end of input: {len(self._stack)} unclosed container(s), "
                f"state={self._state.name}",
                position=self._pos,
            )
        return self._root

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _consume(self, c: str) -> None:
        state = self._state

        if state is ParserState.STRING:
            self._string_char(c)
        elif state is ParserState.KEY_STRING:
            self._key_char(c)
        elif state is ParserState.NUMBER:
            if c in _NUMBER_CHARS:
                self._number += c
            else:
                self._finish_number()
                self._consume(c)
        elif state is ParserState.LITERAL:
            self._literal_char(c)
        elif c in _WHITESPACE:
            return
        elif state is ParserState.VALUE:
            self._begin_value(c)
        elif state is ParserState.VALUE_OR_END:
            if c == "]":
                self._close_container()
            else:
                self._begin_value(c)
        elif state is ParserState.KEY_OR_END:
            if c == "}":
                self._close_container()
            elif c == '"':
                self._start_key()
            else:
                self._fail(c, "expected key or '}'")
        elif state is ParserState.KEY:
            if c == '"':
                self._start_key()
            else:
                self._fail(c, "expected key")
        elif state is ParserState.COLON:
            if c == ":":
                self._state = ParserState.VALUE
            else:
                self._fail(c, "expected ':'")
        elif state is ParserState.COMMA_OR_END:
            self._after_value(c)
        elif state is ParserState.DONE:
            self._fail(c, "unexpected data after root value")

    def _fail(self, c: str, expected: str) -> None:
        raise MalformedJSONError(
            f"Unexpected character {c!r} at position {self._pos}: {expected}",
            position=self._pos,
        )

    # ------------------------------------------------------------------
    # Values
    # ------------------------------------------------------------------

    def _begin_value(self, c: str) -> None:
        if self._stack:
            top = self._stack[-1]
            self._path.append(top.key if top.is_object else top.index)

        if c == "{":
            self._stack.append(_Frame(value={}))
            self._state = ParserState.KEY_OR_END
        elif c == "[":
            self._stack.append(_Frame(value=[]))
            self._state = ParserState.VALUE_OR_END
        elif c == '"':
            self._scan = _StringScan()
            self._sent_len = 0
            path = self.path
            self._string_handlers = [h for h in self._handlers if h.matcher.matches(path)]
            self._state = ParserState.STRING
        elif c == "-" or c.isdigit():
            self._number = c
            self._state = ParserState.NUMBER
        elif c in _LITERALS:
            self._literal = _LITERALS[c][0]
            self._literal_pos = 1
            self._state = ParserState.LITERAL
        else:
            self._fail(c, "expected a value")

    def _complete_value(self, value: Any, notify: bool = True) -> None:
        if notify:
            self._notify(self.path, value)

        if not self._stack:
            self._root = value
            self._state = ParserState.DONE
            return

        top = self._stack[-1]
        if top.is_object:
            top.value[top.key] = value
        else:
            top.value.append(value)
            top.index += 1
        self._path.pop()
        self._state = ParserState.COMMA_OR_END

    def _close_container(self) -> None:
        frame = self._stack.pop()
        self._complete_value(frame.value)

    def _after_value(self, c: str) -> None:
        top = self._stack[-1]
        if c == ",":
            self._state = ParserState.KEY if top.is_object else ParserState.VALUE
        elif c == "}" and top.is_object:
            self._close_container()
        elif c == "]" and not top.is_object:
            self._close_container()
        else:
            self._fail(c, "expected ',' or end of container")

    def _finish_number(self) -> None:
        text = self._number
        try:
            if any(ch in text for ch in ".eE"):
                value: int | float = float(text)
            else:
                value = int(text)
        except ValueError:
            raise MalformedJSONError(
                f"Invalid number {text!r} ending at position {self._pos}",
                position=self._pos,
            ) from None
        self._number = ""
        self._complete_value(value)

    def _literal_char(self, c: str) -> None:
        if c != self._literal[self._literal_pos]:
            self._fail(c, f"expected literal {self._literal!r}")
        self._literal_pos += 1
        if self._literal_pos == len(self._literal):
            value = _LITERALS[self._literal[0]][1]
            self._complete_value(value)

    # ------------------------------------------------------------------
    # Strings
    # ------------------------------------------------------------------

    def _scan_char(self, c: str) -> bool:
        """Feed one raw character of a string body.

        Returns True when the closing quote was consumed.
        """
        scan = self._scan
        if scan.unicode_digits is not None:
            scan.unicode_digits += c
            if len(scan.unicode_digits) == 4:
                try:
                    code = int(scan.unicode_digits, 16)
                except ValueError:
                    self._fail(c, "invalid \\u escape")
                scan.unicode_digits = None
                self._append_code_point(code)
            return False
        if scan.escape:
            scan.escape = False
            if c == "u":
                scan.unicode_digits = ""
            elif c in _SIMPLE_ESCAPES:
                scan.chars.append(_SIMPLE_ESCAPES[c])
            else:
                # lenient: keep unknown escapes verbatim
                scan.chars.append("\\" + c)
            return False
        if c == "\\":
            scan.escape = True
            return False
        if c == '"':
            return True
        scan.chars.append(c)
        return False

    def _append_code_point(self, code: int) -> None:
        chars = self._scan.chars
        if 0xDC00 <= code <= 0xDFFF and chars and 0xD800 <= ord(chars[-1][-1]) <= 0xDBFF:
            high = ord(chars.pop()[-1])
            code = 0x10000 + ((high - 0xD800) << 10) + (code - 0xDC00)
        chars.append(chr(code))

    def _start_key(self) -> None:
        self._scan = _StringScan()
        self._state = ParserState.KEY_STRING

    def _key_char(self, c: str) -> None:
        if self._scan_char(c):
            self._stack[-1].key = self._scan.text()
            self._state = ParserState.COLON

    def _string_char(self, c: str) -> None:
        closed = self._scan_char(c)
        if closed:
            value = self._scan.text()
            if self.incremental and self._sent_len > 0:
                remainder = value[self._sent_len :]
                if remainder:
                    self._deliver(remainder)
                self._complete_value(value, notify=False)
            else:
                self._complete_value(value)
            return

        if self.realtime and self._string_handlers:
            chars = self._scan.chars
            pending = (
                self._scan.unicode_digits is not None
                or self._scan.escape
                # a high surrogate may still combine with the next \u escape
                or (chars and 0xD800 <= ord(chars[-1][-1]) <= 0xDBFF)
            )
            if pending:
                return
            current = self._scan.text()
            if len(current) == self._sent_len:
                return
            if self.incremental:
                self._deliver(current[self._sent_len :])
            else:
                self._deliver(current)
            self._sent_len = len(current)

    def _deliver(self, value: str) -> None:
        path = self.path
        for handler in self._string_handlers:
            handler.callback(path, value)

    def _notify(self, path: Path, value: Any) -> None:
        for handler in self._handlers:
            if handler.matcher.matches(path):
                handler.callback(path, value)
