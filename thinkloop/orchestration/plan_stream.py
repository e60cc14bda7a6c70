"""Surfacing plan steps while the host is still writing the plan."""

from __future__ import annotations

import copy
import logging
from typing import Any

from ..errors import MalformedJSONError
from ..extraction import Path, StreamingJsonParser
from .models import PlanStep, as_int, as_step_ids

logger = logging.getLogger(__name__)

STEP_FIELDS = (
    "id",
    "name",
    "description",
    "assigned_specialist",
    "assignedSpecialist",
    "priority",
    "dependencies",
)

CREATE = "create"
UPDATE = "update"


class PlanStepExtractor:
    """
    Feeds streamed plan text through the streaming JSON parser.

    Text before the first ``{`` (prose, code fences) and after the root
    object is ignored. The first field seen for a step produces a
    ``create`` event, every later field an ``update`` event. Events carry
    snapshots of the step as known so far.
    """

    def __init__(self):
        self.parser = StreamingJsonParser()
        for name in STEP_FIELDS:
            self.parser.on(f"steps[*].{name}", self._on_field)
        self.steps: list[PlanStep] = []
        self._announced: set[int] = set()
        self._events: list[tuple[str, PlanStep]] = []
        self._started = False
        self.failed = False

    def feed(self, chunk: str) -> list[tuple[str, PlanStep]]:
        """
        Consume a chunk of plan text.

        Returns:
            Step events produced by this chunk, in order
        """
        if self.failed or self.parser.done:
            return []

        if not self._started:
            start = chunk.find("{")
            if start == -1:
                return []
            chunk = chunk[start:]
            self._started = True

        for c in chunk:
            if self.parser.done:
                break
            try:
                self.parser.feed(c)
            except MalformedJSONError as e:
                # the full-text parse after the stream decides whether the plan is usable
                logger.warning(f"Plan stream extraction stopped: {e}")
                self.failed = True
                break

        return self.drain()

    def drain(self) -> list[tuple[str, PlanStep]]:
        events, self._events = self._events, []
        return events

    def _ensure_step(self, index: int) -> PlanStep:
        while len(self.steps) <= index:
            self.steps.append(PlanStep(id=f"step_{len(self.steps) + 1}", name=""))
        return self.steps[index]

    def _on_field(self, path: Path, value: Any) -> None:
        index, name = path[1], path[2]
        if not isinstance(index, int):
            return
        step = self._ensure_step(index)

        if name in ("assigned_specialist", "assignedSpecialist"):
            step.assigned_specialist = str(value or "")
        elif name == "priority":
            step.priority = as_int(value)
        elif name == "dependencies":
            try:
                step.dependencies = as_step_ids(value)
            except ValueError:
                step.dependencies = []
        elif name == "id":
            step.id = str(value)
        else:
            setattr(step, name, "" if value is None else str(value))

        kind = UPDATE if index in self._announced else CREATE
        self._announced.add(index)
        self._events.append((kind, copy.deepcopy(step)))
