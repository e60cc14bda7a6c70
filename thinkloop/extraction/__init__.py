"""Incremental structured extraction from partially received JSON text."""

from .parser import ParserState, PathCallback, StreamingJsonParser
from .path_matcher import Path, PathMatcher, parse_pattern

__all__ = [
    "ParserState",
    "PathCallback",
    "StreamingJsonParser",
    "Path",
    "PathMatcher",
    "parse_pattern",
]
