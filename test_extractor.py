"""
Streaming Extractor Tests

Tests for the incremental JSON parser: path callbacks, chunk-boundary
independence, realtime and incremental string delivery, and malformed
input detection.
"""

import json

import pytest

from thinkloop.errors import MalformedJSONError
from thinkloop.extraction import PathMatcher, StreamingJsonParser, parse_pattern
from thinkloop.orchestration import PlanStepExtractor
from thinkloop.orchestration.plan_stream import CREATE, UPDATE

DOCUMENT = json.dumps({
    "id": "plan-1",
    "steps": [
        {"id": "s1", "name": "Search \"papers\"", "priority": 2, "dependencies": []},
        {"id": "s2", "name": "Résumé ✓ \U0001F600", "priority": -1.5e2, "dependencies": ["s1"]},
    ],
    "done": False,
    "extra": None,
    "tabbed": "a\tb\\c/d",
})


def collect(text: str, pattern: str, chunk_size: int, **flags) -> list:
    events = []
    parser = StreamingJsonParser(**flags)
    parser.on(pattern, lambda path, value: events.append((path, value)))
    for start in range(0, len(text), chunk_size):
        parser.feed(text[start:start + chunk_size])
    parser.end()
    return events


def test_parse_pattern():
    """Test pattern syntax."""
    assert parse_pattern("$") == ()
    assert parse_pattern("") == ()
    assert parse_pattern("steps[*].name") == ("steps", "*", "name")
    assert parse_pattern("$.data.items[0].value") == ("data", "items", 0, "value")
    assert parse_pattern("$['key'][2]") == ("key", 2)

    matcher = PathMatcher("steps[*].name")
    assert matcher.matches(("steps", 3, "name"))
    assert not matcher.matches(("steps", 3))
    assert not matcher.matches(("steps", 3, "name", "x"))
    assert not PathMatcher("items[0]").matches(("items", "0"))

    with pytest.raises(ValueError):
        parse_pattern("steps[0")


def test_result_matches_json_loads():
    """Test that the parsed document equals the standard decoder's result."""
    print("=" * 60)
    print("TEST 1: Parsed document")
    print("=" * 60)

    parser = StreamingJsonParser()
    parser.feed(DOCUMENT)
    result = parser.end()
    print(f"\nParsed: {result}")

    assert result == json.loads(DOCUMENT)
    assert parser.done
    assert parser.result == result
    print("\n[PASS] Document parsed correctly")


def test_chunking_does_not_change_callbacks():
    """Test that every chunk size produces the same callback sequence."""
    print("\n" + "=" * 60)
    print("TEST 2: Chunk-size independence")
    print("=" * 60)

    # escape sequences sit inside the name strings and get split by small chunks
    expected = collect(DOCUMENT, "steps[*].name", len(DOCUMENT))
    print(f"\nWhole-document events: {expected}")
    assert [value for _, value in expected] == ["Search \"papers\"", "Résumé ✓ \U0001F600"]

    for chunk_size in (1, 2, 3, 5, 7, 13):
        assert collect(DOCUMENT, "steps[*].name", chunk_size) == expected

    raw = '{"s": "\\u00e9\\ud83d\\ude00\\n"}'
    for chunk_size in (1, 2, 4, 6):
        assert collect(raw, "s", chunk_size) == [(("s",), "é\U0001F600\n")]
    print("\n[PASS] Same events for every chunk size")


def test_value_kinds_and_container_callbacks():
    """Test callbacks for numbers, literals, arrays and whole objects."""
    priorities = collect(DOCUMENT, "steps[*].priority", 4)
    assert priorities == [(("steps", 0, "priority"), 2), (("steps", 1, "priority"), -150.0)]

    deps = collect(DOCUMENT, "steps[*].dependencies", 4)
    assert [value for _, value in deps] == [[], ["s1"]]

    assert collect(DOCUMENT, "done", 3) == [(("done",), False)]
    assert collect(DOCUMENT, "extra", 3) == [(("extra",), None)]
    assert collect(DOCUMENT, "tabbed", 3) == [(("tabbed",), "a\tb\\c/d")]

    second = collect(DOCUMENT, "steps[1]", 6)
    assert second[0][1]["id"] == "s2"

    root = collect(DOCUMENT, "$", 8)
    assert root == [((), json.loads(DOCUMENT))]


def test_root_scalars():
    """Test root-level numbers, which complete only at end of input."""
    parser = StreamingJsonParser()
    parser.feed("  -12.5e1")
    assert not parser.done
    assert parser.end() == -125.0

    parser = StreamingJsonParser()
    parser.feed('"solo"')
    assert parser.end() == "solo"


def test_realtime_incremental_reconstructs_string():
    """Test that incremental realtime deltas concatenate to the full value."""
    print("\n" + "=" * 60)
    print("TEST 3: Realtime incremental delivery")
    print("=" * 60)

    text = '{"answer": "Hello, \\"world\\" \\u00e9\\ud83d\\ude00!"}'
    for chunk_size in (1, 3, 7):
        events = collect(text, "answer", chunk_size, realtime=True, incremental=True)
        pieces = [value for _, value in events]
        assert "".join(pieces) == 'Hello, "world" é\U0001F600!'
        assert len(pieces) > 1
        assert all(piece for piece in pieces)
    print(f"\nPieces (chunk 1): {pieces[:6]} ...")
    print("\n[PASS] Deltas reconstruct the value")


def test_realtime_full_values_grow():
    """Test realtime non-incremental delivery of the accumulated value."""
    events = collect('{"a": "abc"}', "a", 1, realtime=True)
    assert [value for _, value in events] == ["a", "ab", "abc", "abc"]


def test_incremental_without_realtime_delivers_once():
    events = collect('{"a": "abc", "b": "x"}', "a", 1, incremental=True)
    assert events == [(("a",), "abc")]


def test_callbacks_fire_before_document_completes():
    """Test that values arrive while the document is still open."""
    seen = []
    parser = StreamingJsonParser()
    parser.on("steps[*].id", lambda path, value: seen.append(value))
    parser.feed('{"steps": [{"id": "s1", "name": "first"}, {"id": "s')
    assert seen == ["s1"]
    assert not parser.done
    assert parser.path == ("steps", 1, "id")
    parser.feed('2"}]}')
    assert seen == ["s1", "s2"]


@pytest.mark.parametrize(
    "text",
    [
        '{"a": 1,}',
        '{"a" 1}',
        '[1 2]',
        '{"a": tru}',
        '{"a": 1} x',
        '{1: 2}',
        '}',
    ],
)
def test_malformed_input_raises(text):
    parser = StreamingJsonParser()
    with pytest.raises(MalformedJSONError) as info:
        parser.feed(text)
        parser.end()
    assert info.value.component == "extractor"


def test_incomplete_input_fails_at_end():
    """Test that end() rejects unclosed documents."""
    parser = StreamingJsonParser()
    parser.feed('{"steps": [{"id": "s1"')
    with pytest.raises(MalformedJSONError):
        parser.end()

    parser.reset()
    parser.feed("[]")
    assert parser.end() == []


def test_plan_step_extractor():
    """Test create/update events for streamed plan steps."""
    print("\n" + "=" * 60)
    print("TEST 4: Plan step extractor")
    print("=" * 60)

    text = "Plan follows:\n```json\n" + json.dumps({
        "name": "p",
        "steps": [
            {"id": "a", "name": "First", "assignedSpecialist": "coder", "priority": "3"},
            {"name": "Second", "dependencies": ["a"]},
        ],
    }) + "\n```"

    extractor = PlanStepExtractor()
    events = []
    for start in range(0, len(text), 5):
        events.extend(extractor.feed(text[start:start + 5]))
    print(f"\nEvents: {[(kind, step.id, step.name) for kind, step in events]}")

    assert [kind for kind, _ in events] == [CREATE, UPDATE, UPDATE, UPDATE, CREATE, UPDATE]
    first = events[3][1]
    assert (first.id, first.name, first.assigned_specialist, first.priority) == ("a", "First", "coder", 3)
    second = events[-1][1]
    assert (second.id, second.name, second.dependencies) == ("step_2", "Second", ["a"])

    # snapshots are independent of later updates
    assert events[0][1].name == ""
    assert not extractor.failed
    print("\n[PASS] Plan steps surfaced while streaming")


def test_plan_step_extractor_stops_on_malformed_input():
    extractor = PlanStepExtractor()
    events = extractor.feed('{"steps": [{"id": "a"}, oops')
    assert [kind for kind, _ in events] == [CREATE]
    assert extractor.failed
    assert extractor.feed('{"steps": []}') == []


def main():
    """Run all tests."""
    print("\n" + "=" * 60)
    print("STREAMING EXTRACTOR TESTS")
    print("=" * 60)

    test_parse_pattern()
    test_result_matches_json_loads()
    test_chunking_does_not_change_callbacks()
    test_value_kinds_and_container_callbacks()
    test_root_scalars()
    test_realtime_incremental_reconstructs_string()
    test_realtime_full_values_grow()
    test_incremental_without_realtime_delivers_once()
    test_callbacks_fire_before_document_completes()
    test_incomplete_input_fails_at_end()
    test_plan_step_extractor()
    test_plan_step_extractor_stops_on_malformed_input()

    print("\n" + "=" * 60)
    print("ALL TESTS PASSED!")
    print("=" * 60)


if __name__ == "__main__":
    main()
