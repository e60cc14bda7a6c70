"""
Orchestration Tests

Tests for the host/specialist graph: complexity branching, plan execution
in dependency order, reflection, incremental plan updates, observers and
streaming. The host is a scripted mock chat model; specialists are plain
functions so every step result is deterministic.
"""

import asyncio
import json
from dataclasses import dataclass, field

import pytest

from thinkloop.config import MockChatModel
from thinkloop.errors import CapabilityError, ConfigurationError, PlanParseError, StepMutationError
from thinkloop.llm import Message, MessageRole
from thinkloop.orchestration import (
    CallableSpecialist,
    OrchestrationObserver,
    OrchestrationOptions,
    Orchestrator,
    Specialist,
    Stage,
    StepResult,
    StepStatus,
    TaskComplexity,
)
from thinkloop.storage import ListEventPublisher
from thinkloop.orchestration import EventPublishingObserver


def analysis(complexity: str) -> str:
    return json.dumps({
        "user_intent": "answer the question",
        "key_topics": ["testing"],
        "context_summary": "a test conversation",
        "complexity": complexity,
    })


def plan(*steps: dict) -> str:
    return "Here is the plan:\n" + json.dumps({"id": "p1", "name": "Test plan", "steps": list(steps)})


def step(step_id: str, specialist: str = "worker", dependencies: list | None = None) -> dict:
    return {
        "id": step_id,
        "name": f"Step {step_id}",
        "description": f"do {step_id}",
        "assigned_specialist": specialist,
        "dependencies": dependencies or [],
    }


def feedback(completed: bool = False, needs_update: bool = False) -> str:
    return json.dumps({
        "execution_completed": completed,
        "overall_quality": 0.9,
        "plan_needs_update": needs_update,
        "issues": [],
        "suggestions": [],
        "confidence": 0.8,
        "next_action_reason": "test",
    })


def worker(log: list | None = None) -> CallableSpecialist:
    """Specialist answering '<description> result' and logging the messages it received."""

    def run(messages):
        if log is not None:
            log.append(messages)
        description = next(
            line for line in messages[1].content.splitlines() if line.startswith("Description: ")
        )
        return f"{description[len('Description: '):]} result"

    return CallableSpecialist(name="worker", intended_use="do any step", func=run)


@dataclass(kw_only=True)
class RecordingSpecialist(Specialist):
    """Specialist recording the force_final_answer flag of each call."""

    forced: list = field(default_factory=list)

    async def run(self, messages, *, force_final_answer=False, cancel_event=None) -> StepResult:
        self.forced.append(force_final_answer)
        return self._result("recorded")


class StepRecorder(OrchestrationObserver):
    def __init__(self):
        self.events = []
        self.stages = []

    async def on_stage_start(self, stage, state):
        self.stages.append(stage)

    async def on_plan_step_create(self, state, step):
        self.events.append(("create", step.id))

    async def on_plan_step_update(self, state, step):
        self.events.append(("update", step.id))

    async def on_plan_step_status(self, state, step):
        self.events.append(("status", step.id, step.status))

    async def on_plan_step_delete(self, state, step_id):
        self.events.append(("delete", step_id))

    async def on_plan_step_end(self, state):
        self.events.append(("end",))


def test_simple_request_answers_directly():
    """Test that a simple request skips planning entirely."""
    print("=" * 60)
    print("TEST 1: Simple request -> direct answer")
    print("=" * 60)

    model = MockChatModel([analysis("simple"), "Hello there!"])
    host = Orchestrator(model, [worker()])

    state = asyncio.run(host.run([Message.user("Hi")]))
    print(f"\nAnswer: {state.final_answer.content}")

    assert state.final_answer.content == "Hello there!"
    assert state.final_answer.name == "complete"
    assert state.conversation_context.complexity is TaskComplexity.SIMPLE
    assert state.current_plan is None
    assert state.round_number == 0
    assert len(model.calls) == 2
    print("\n[PASS] Direct answer with two model calls and no plan")


def test_unparseable_analysis_answers_directly():
    """Test that an unreadable analysis degrades to a direct answer."""
    model = MockChatModel(["I think this is easy", "Direct reply"])
    host = Orchestrator(model)

    state = asyncio.run(host.run([Message.user("Hi")]))

    assert state.conversation_context.complexity is TaskComplexity.UNKNOWN
    assert state.final_answer.content == "Direct reply"


def test_complex_request_single_round():
    """Test plan -> execute -> collect -> feedback(completed) -> final answer."""
    print("\n" + "=" * 60)
    print("TEST 2: Complex request, one round")
    print("=" * 60)

    model = MockChatModel([
        analysis("complex"),
        plan(step("s1")),
        feedback(completed=True),
        "Final synthesized answer",
    ])
    host = Orchestrator(model, [worker()])

    state = asyncio.run(host.run([Message.user("Research something")]))
    print(f"\nRounds: {state.round_number}")
    print(f"Answer: {state.final_answer.content}")

    assert state.round_number == 1
    assert state.reflection_count == 1
    assert state.current_plan.get_step("s1").status is StepStatus.COMPLETED
    assert state.specialist_results["s1"].text == "do s1 result"
    assert state.collected_results[0].content == (
        "Specialist Results Summary:\n\ndo s1\n[worker]: do s1 result"
    )
    assert state.final_answer.content == "Final synthesized answer"
    assert state.is_completed
    assert len(model.calls) == 4

    # the final answer prompt carries the collected results
    final_prompt = model.calls[-1][-1].content
    assert "do s1 result" in final_prompt
    print("\n[PASS] One round, then final answer")


def test_dependency_order():
    """Test that a step waits for its dependencies regardless of position."""
    print("\n" + "=" * 60)
    print("TEST 3: Dependency ordering")
    print("=" * 60)

    log = []
    model = MockChatModel([
        analysis("moderate"),
        plan(step("a", dependencies=["b"]), step("b")),
        feedback(),
        feedback(completed=True),
        "done",
    ])
    host = Orchestrator(model, [worker(log)])

    state = asyncio.run(host.run([Message.user("Do a and b")]))
    order = [record.step_id for record in state.execution_history]
    print(f"\nExecution order: {order}")

    assert order == ["b", "a"]
    assert state.round_number == 2
    # a sees the result of the step it depends on
    assert "do b result" in log[1][1].content
    assert log[1][1].content.startswith("Execute the following step:")
    print("\n[PASS] Dependencies respected")


def test_single_dependency_given_as_string():
    """Test that a bare-string dependency still holds the step back."""
    model = MockChatModel([
        analysis("moderate"),
        plan(step("b", dependencies="s1"), step("s1")),
        feedback(),
        feedback(completed=True),
        "done",
    ])
    host = Orchestrator(model, [worker()])

    state = asyncio.run(host.run([Message.user("Do s1 then b")]))
    order = [record.step_id for record in state.execution_history]
    print(f"\nExecution order: {order}")

    assert state.current_plan.get_step("b").dependencies == ["s1"]
    assert order == ["s1", "b"]
    assert model.remaining == 0


def test_malformed_step_fields_raise_plan_parse_error():
    """Test that wrongly typed step fields surface as PlanParseError and can be retried."""
    bad_parameters = {**step("s1"), "parameters": ["x"]}
    bad_dependencies = {**step("s2"), "dependencies": 7}

    for bad_step in (bad_parameters, bad_dependencies):
        model = MockChatModel([analysis("complex"), plan(bad_step)])
        host = Orchestrator(model, [worker()])
        with pytest.raises(PlanParseError) as info:
            asyncio.run(host.run([Message.user("Task")]))
        assert info.value.stage == Stage.PLAN_CREATION.value
        assert info.value.component == "host"

    model = MockChatModel([
        analysis("complex"),
        plan(bad_parameters),
        plan(step("s1")),
        feedback(completed=True),
        "final",
    ])
    host = Orchestrator(model, [worker()], max_parse_retries=1)
    state = asyncio.run(host.run([Message.user("Task")]))
    assert state.final_answer.content == "final"
    assert "parameters must be an object" in model.calls[2][-1].content


def test_round_limit_forces_final_answer():
    """Test that the round limit ends the run and forces specialists to answer."""
    print("\n" + "=" * 60)
    print("TEST 4: Round limit")
    print("=" * 60)

    recorder = RecordingSpecialist(name="worker", intended_use="anything")
    model = MockChatModel([
        analysis("complex"),
        plan(step("s1"), step("s2"), step("s3")),
        feedback(),
        feedback(needs_update=True),
        "limited answer",
    ])
    host = Orchestrator(model, [recorder], max_rounds=2)

    state = asyncio.run(host.run([Message.user("Big task")]))
    print(f"\nRounds: {state.round_number}, forced flags: {recorder.forced}")

    assert state.round_number == 2
    assert recorder.forced == [False, True]
    assert state.current_plan.get_step("s3").status is StepStatus.PENDING
    assert state.final_answer.content == "limited answer"
    print("\n[PASS] Round limit honoured before plan update")


def test_plan_update_preserves_untouched_results():
    """Test incremental revision: only modified/removed steps lose their results."""
    print("\n" + "=" * 60)
    print("TEST 5: Plan update")
    print("=" * 60)

    revision = json.dumps({
        "update_reason": "refine remaining work",
        "operations": [
            {"type": "modify", "step_id": "s2", "step": {"description": "do s2 better"}},
            {"type": "add", "step": step("s4"), "position": {"after": "s3"}},
            {"type": "remove", "step_id": "s3"},
        ],
    })
    model = MockChatModel([
        analysis("complex"),
        plan(step("s1"), step("s2"), step("s3")),
        feedback(needs_update=True),
        revision,
        feedback(completed=True),
        "final",
    ])
    observer = StepRecorder()
    host = Orchestrator(model, [worker()])

    state = asyncio.run(host.run([Message.user("Task")], OrchestrationOptions(observers=[observer])))
    print(f"\nPlan version: {state.current_plan.version}")
    print(f"Steps: {[s.id for s in state.current_plan.steps]}")

    assert state.current_plan.version == 2
    assert len(state.plan_history) == 1
    assert state.plan_history[0].version == 1
    assert [s.id for s in state.current_plan.steps] == ["s1", "s2", "s4"]
    assert state.current_plan.update_history[-1].reason == "refine remaining work"

    # s1 kept its result across the revision; s2 ran with the new description
    assert set(state.specialist_results) == {"s1", "s2"}
    assert state.specialist_results["s2"].text == "do s2 better result"
    assert "do s1 result" in state.collected_results[-1].content

    assert ("create", "s4") in observer.events
    assert ("update", "s2") in observer.events
    assert ("delete", "s3") in observer.events
    print("\n[PASS] Revision applied and results selectively kept")


def test_modifying_completed_step_is_rejected():
    """Test that a revision touching a completed step fails the run."""
    revision = json.dumps({
        "operations": [{"type": "modify", "step_id": "s1", "step": {"description": "redo"}}],
    })
    model = MockChatModel([
        analysis("complex"),
        plan(step("s1"), step("s2")),
        feedback(needs_update=True),
        revision,
    ])
    host = Orchestrator(model, [worker()])

    with pytest.raises(StepMutationError) as info:
        asyncio.run(host.run([Message.user("Task")]))
    assert info.value.step_id == "s1"
    assert info.value.stage == Stage.PLAN_UPDATE.value


def test_plan_steps_streamed_to_observers():
    """Test create/update/status/end events for plan steps."""
    print("\n" + "=" * 60)
    print("TEST 6: Plan step observer events")
    print("=" * 60)

    model = MockChatModel([
        analysis("complex"),
        plan(step("s1"), step("s2", dependencies=["s1"])),
        feedback(),
        feedback(completed=True),
        "final",
    ])
    observer = StepRecorder()
    host = Orchestrator(model, [worker()])

    asyncio.run(host.invoke([Message.user("Task")], OrchestrationOptions(observers=[observer])))
    print(f"\nEvents: {observer.events[:6]} ...")

    creates = [e[1] for e in observer.events if e[0] == "create"]
    assert creates == ["s1", "s2"]
    assert ("update", "s1") in observer.events
    end_index = observer.events.index(("end",))
    first_status = next(i for i, e in enumerate(observer.events) if e[0] == "status")
    assert end_index < first_status
    assert ("status", "s1", StepStatus.RUNNING) in observer.events
    assert ("status", "s2", StepStatus.COMPLETED) in observer.events
    assert observer.stages[0] is Stage.ANALYSIS
    assert observer.stages[-1] is Stage.FINAL_ANSWER
    print("\n[PASS] Observers saw every step event")


def test_event_publishing_observer():
    """Test forwarding of orchestration events to a publisher."""
    publisher = ListEventPublisher()
    model = MockChatModel([analysis("complex"), plan(step("s1")), feedback(completed=True), "final"])
    host = Orchestrator(model, [worker()])

    asyncio.run(host.invoke(
        [Message.user("Task")],
        OrchestrationOptions(observers=[EventPublishingObserver(publisher, run_id="r1")]),
    ))

    assert publisher.of_type("plan_step_create")[0]["id"] == "s1"
    assert publisher.of_type("plan_step_end")[0]["plan"]["steps"][0]["id"] == "s1"
    assert all(e["run_id"] == "r1" for e in publisher.of_type("stage_start"))
    assert [e["status"] for e in publisher.of_type("plan_step_status")] == ["running", "completed"]


def test_plan_parse_error_is_fatal():
    """Test that an unparseable plan stops the run with a parse error."""
    model = MockChatModel([analysis("complex"), "I will just wing it"])
    host = Orchestrator(model, [worker()])

    with pytest.raises(PlanParseError) as info:
        asyncio.run(host.run([Message.user("Task")]))
    assert info.value.stage == Stage.PLAN_CREATION.value


def test_plan_parse_retry():
    """Test that max_parse_retries re-prompts once with the parse error."""
    model = MockChatModel([
        analysis("complex"),
        "not a plan",
        plan(step("s1")),
        feedback(completed=True),
        "final",
    ])
    host = Orchestrator(model, [worker()], max_parse_retries=1)

    state = asyncio.run(host.run([Message.user("Task")]))

    assert state.final_answer.content == "final"
    retry_prompt = model.calls[2]
    assert retry_prompt[-2].role == MessageRole.ASSISTANT
    assert retry_prompt[-2].content == "not a plan"
    assert "could not be parsed" in retry_prompt[-1].content


def test_unknown_specialist_falls_back_to_general():
    """Test that an unassigned step goes to the general specialist (the host model)."""
    model = MockChatModel([
        analysis("complex"),
        plan(step("s1", specialist="nobody")),
        "general specialist output",
        feedback(completed=True),
        "final",
    ])
    host = Orchestrator(model, [worker()])

    state = asyncio.run(host.run([Message.user("Task")]))

    assert state.execution_history[0].specialist == "general_specialist"
    assert state.specialist_results["s1"].text == "general specialist output"
    assert model.calls[2][0].content == "You are a general specialist, you can handle any task."


def test_specialist_failure():
    """Test that a failing specialist marks the step failed and raises."""

    def broken(messages):
        raise RuntimeError("tool backend unavailable")

    model = MockChatModel([analysis("complex"), plan(step("s1", specialist="broken"))])
    host = Orchestrator(model, [CallableSpecialist(name="broken", intended_use="fail", func=broken)])
    observer = StepRecorder()

    with pytest.raises(CapabilityError) as info:
        asyncio.run(host.run([Message.user("Task")], OrchestrationOptions(observers=[observer])))
    assert isinstance(info.value.cause, RuntimeError)
    assert ("status", "s1", StepStatus.FAILED) in observer.events


def test_duplicate_specialists_rejected():
    with pytest.raises(ConfigurationError):
        Orchestrator(MockChatModel(), [worker(), worker()])
    with pytest.raises(ConfigurationError):
        Orchestrator(None)


def test_stream_tags_stages():
    """Test that streamed chunks carry their stage and the final answer comes last."""
    print("\n" + "=" * 60)
    print("TEST 7: Streaming")
    print("=" * 60)

    model = MockChatModel([analysis("simple"), "Streaming direct answer"], chunk_size=4)
    host = Orchestrator(model)

    async def collect():
        return [chunk async for chunk in host.stream([Message.user("Hi")])]

    chunks = asyncio.run(collect())
    names = []
    for chunk in chunks:
        if chunk.name not in names:
            names.append(chunk.name)
    print(f"\nStages seen: {names}")

    assert names == ["conversation_analysis", "direct_answer", "complete"]
    answer_text = "".join(c.content for c in chunks if c.name == "direct_answer")
    assert answer_text == "Streaming direct answer"
    assert chunks[-1].content == "Streaming direct answer"
    print("\n[PASS] Stream chunks tagged by stage")


def main():
    """Run all tests."""
    print("\n" + "=" * 60)
    print("ORCHESTRATION TESTS")
    print("=" * 60)

    test_simple_request_answers_directly()
    test_unparseable_analysis_answers_directly()
    test_complex_request_single_round()
    test_dependency_order()
    test_single_dependency_given_as_string()
    test_malformed_step_fields_raise_plan_parse_error()
    test_round_limit_forces_final_answer()
    test_plan_update_preserves_untouched_results()
    test_modifying_completed_step_is_rejected()
    test_plan_steps_streamed_to_observers()
    test_event_publishing_observer()
    test_plan_parse_error_is_fatal()
    test_plan_parse_retry()
    test_unknown_specialist_falls_back_to_general()
    test_specialist_failure()
    test_duplicate_specialists_rejected()
    test_stream_tags_stages()

    print("\n" + "=" * 60)
    print("ALL TESTS PASSED!")
    print("=" * 60)


if __name__ == "__main__":
    main()
