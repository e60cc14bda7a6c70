"""
Incremental plan revision.

A revision is an ordered list of operations applied to a clone of the
current plan. Operations are all-or-nothing: the first rejected operation
aborts the revision and the current plan is left untouched. After a
successful revision only the results of steps that were modified or
removed are invalidated; every other step keeps its result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from ..errors import ParseError, PlanParseError, StepMutationError
from .models import PlanStep, PlanUpdate, PlanUpdateType, StepResult, StepStatus, TaskPlan
from .parsing import extract_json_object

logger = logging.getLogger(__name__)


class OperationType(str, Enum):
    """Kinds of plan operations."""

    ADD = "add"
    MODIFY = "modify"
    REMOVE = "remove"
    REORDER = "reorder"


_UPDATE_TYPES = {
    OperationType.ADD: PlanUpdateType.STEP_ADD,
    OperationType.MODIFY: PlanUpdateType.STEP_MODIFY,
    OperationType.REMOVE: PlanUpdateType.STEP_REMOVE,
    OperationType.REORDER: PlanUpdateType.STEP_REORDER,
}

# Fields a modify operation may patch
_PATCHABLE = ("name", "description", "assigned_specialist", "priority", "dependencies", "parameters")


@dataclass
class PlanOperation:
    """One operation of a plan revision."""

    type: OperationType
    step_id: str = ""
    step: dict[str, Any] = field(default_factory=dict)
    position: dict[str, Any] = field(default_factory=dict)
    reason: str = ""

    @property
    def target_id(self) -> str:
        return self.step_id or str(self.step.get("id") or "")

    @classmethod
    def from_dict(cls, data: dict) -> PlanOperation:
        """
        Create an operation from model output.

        Raises:
            PlanParseError: If the operation type is unknown
        """
        raw_type = str(data.get("type") or "").strip().lower()
        try:
            op_type = OperationType(raw_type)
        except ValueError:
            raise PlanParseError(f"Unknown plan operation type: {data.get('type')!r}") from None

        step = data.get("step") or data.get("step_data") or {}
        position = data.get("position") or {}
        return cls(
            type=op_type,
            step_id=str(data.get("step_id") or data.get("stepID") or data.get("stepId") or ""),
            step=dict(step) if isinstance(step, dict) else {},
            position=dict(position) if isinstance(position, dict) else {},
            reason=str(data.get("reason") or ""),
        )


@dataclass
class PlanRevision:
    """A parsed plan update: operations plus optional plan metadata."""

    operations: list[PlanOperation] = field(default_factory=list)
    reason: str = ""
    plan_name: str | None = None
    plan_description: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> PlanRevision:
        raw_ops = data.get("operations") or []
        if not isinstance(raw_ops, list):
            raise PlanParseError("'operations' must be a list")

        operations = []
        for raw in raw_ops:
            if not isinstance(raw, dict):
                raise PlanParseError("Each plan operation must be an object")
            operations.append(PlanOperation.from_dict(raw))

        meta = data.get("plan") or data.get("plan_metadata") or {}
        if not isinstance(meta, dict):
            meta = {}
        return cls(
            operations=operations,
            reason=str(data.get("update_reason") or data.get("reason") or ""),
            plan_name=meta.get("name") or None,
            plan_description=meta.get("description") or None,
        )


def parse_plan_revision(text: str) -> PlanRevision:
    """
    Parse the host's plan update output.

    Raises:
        PlanParseError: If the output is not a valid revision
    """
    try:
        data = extract_json_object(text)
    except ParseError as e:
        raise PlanParseError(f"Failed to parse plan update: {e.message}", raw=text, cause=e.cause) from e
    return PlanRevision.from_dict(data)


@dataclass
class RevisionOutcome:
    """What a successful revision changed."""

    plan: TaskPlan
    added: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    reordered: list[str] = field(default_factory=list)

    @property
    def invalidated(self) -> set[str]:
        """Step ids whose results no longer hold."""
        return set(self.modified) | set(self.removed)


def _reject(message: str, step_id: str) -> StepMutationError:
    logger.error(f"Plan revision rejected: {message}")
    return StepMutationError(message, step_id=step_id, stage="plan_update")


def _require_step(plan: TaskPlan, step_id: str) -> PlanStep:
    step = plan.get_step(step_id) if step_id else None
    if step is None:
        raise _reject(f"step {step_id or '<missing id>'} not found", step_id)
    return step


def _insert_index(plan: TaskPlan, position: dict[str, Any], step_id: str) -> int:
    """Resolve a position object to a list index; end of plan when empty."""
    if not position:
        return len(plan.steps)
    if "index" in position:
        try:
            index = int(position["index"])
        except (TypeError, ValueError):
            raise _reject(f"invalid position index {position['index']!r}", step_id) from None
        return max(0, min(index, len(plan.steps)))
    for key, offset in (("before", 0), ("after", 1)):
        if key in position:
            anchor = plan.index_of(str(position[key]))
            if anchor == -1:
                raise _reject(f"position anchor {position[key]} not found", step_id)
            return anchor + offset
    raise _reject(f"unsupported position {position!r}", step_id)


def _apply_add(plan: TaskPlan, op: PlanOperation, outcome: RevisionOutcome) -> None:
    data = dict(op.step)
    if op.step_id and not data.get("id"):
        data["id"] = op.step_id
    if not data.get("id"):
        n = len(plan.steps) + 1
        while plan.get_step(f"step_{n}") is not None:
            n += 1
        data["id"] = f"step_{n}"

    try:
        step = PlanStep.from_dict(data)
    except ValueError as e:
        raise _reject(f"invalid step {data['id']}: {e}", str(data["id"])) from e
    if plan.get_step(step.id) is not None:
        raise _reject(f"step {step.id} already exists", step.id)
    step.status = StepStatus.PENDING
    step.result = None

    plan.steps.insert(_insert_index(plan, op.position, step.id), step)
    outcome.added.append(step.id)


def _apply_modify(plan: TaskPlan, op: PlanOperation, outcome: RevisionOutcome) -> None:
    step = _require_step(plan, op.target_id)
    if step.status is StepStatus.COMPLETED:
        raise _reject(f"cannot modify completed step {step.id}", step.id)

    data = dict(op.step)
    if "assignedSpecialist" in data:
        data["assigned_specialist"] = data.pop("assignedSpecialist")
    try:
        patch = PlanStep.from_dict({**step.to_dict(), **data})
    except ValueError as e:
        raise _reject(f"invalid patch for step {step.id}: {e}", step.id) from e
    for name in _PATCHABLE:
        if name in data and data[name] not in (None, ""):
            setattr(step, name, getattr(patch, name))

    # a revised failed or skipped step gets another chance
    if step.status in (StepStatus.FAILED, StepStatus.SKIPPED):
        step.status = StepStatus.PENDING
        step.result = None
    outcome.modified.append(step.id)


def _apply_remove(plan: TaskPlan, op: PlanOperation, outcome: RevisionOutcome) -> None:
    step = _require_step(plan, op.target_id)
    if step.status is StepStatus.RUNNING:
        raise _reject(f"cannot remove running step {step.id}", step.id)
    if step.status is StepStatus.COMPLETED:
        raise _reject(f"cannot remove completed step {step.id}", step.id)
    dependents = [s.id for s in plan.steps if step.id in s.dependencies]
    if dependents:
        raise _reject(
            f"cannot remove step {step.id}: steps {', '.join(dependents)} depend on it", step.id
        )
    plan.steps.remove(step)
    outcome.removed.append(step.id)


def _apply_reorder(plan: TaskPlan, op: PlanOperation, outcome: RevisionOutcome) -> None:
    step = _require_step(plan, op.target_id)
    if step.status is StepStatus.COMPLETED:
        raise _reject(f"cannot reorder completed step {step.id}", step.id)
    if not op.position:
        raise _reject(f"reorder of step {step.id} needs a position", step.id)
    plan.steps.remove(step)
    plan.steps.insert(_insert_index(plan, op.position, step.id), step)
    outcome.reordered.append(step.id)


_APPLIERS: dict[OperationType, Callable[[TaskPlan, PlanOperation, RevisionOutcome], None]] = {
    OperationType.ADD: _apply_add,
    OperationType.MODIFY: _apply_modify,
    OperationType.REMOVE: _apply_remove,
    OperationType.REORDER: _apply_reorder,
}


def determine_update_type(revision: PlanRevision) -> PlanUpdateType:
    """Single operation kind maps to its type; anything else is a strategy change."""
    kinds = {op.type for op in revision.operations}
    if len(kinds) == 1:
        return _UPDATE_TYPES[kinds.pop()]
    return PlanUpdateType.STRATEGY_CHANGE


def apply_revision(plan: TaskPlan, revision: PlanRevision) -> RevisionOutcome:
    """
    Apply a revision to a clone of ``plan``.

    Args:
        plan: Current plan; never mutated
        revision: Operations to apply in order

    Returns:
        The outcome holding the new plan version

    Raises:
        StepMutationError: On the first rejected operation
    """
    new_plan = plan.clone()
    outcome = RevisionOutcome(plan=new_plan)

    for op in revision.operations:
        _APPLIERS[op.type](new_plan, op, outcome)

    if revision.plan_name:
        new_plan.name = revision.plan_name
    if revision.plan_description:
        new_plan.description = revision.plan_description

    new_plan.version = plan.version + 1
    new_plan.updated_at = datetime.now()
    new_plan.update_history.append(
        PlanUpdate(
            id=f"{new_plan.id}_v{new_plan.version}",
            plan_version=new_plan.version,
            update_type=determine_update_type(revision),
            description=(
                f"{len(outcome.added)} added, {len(outcome.modified)} modified, "
                f"{len(outcome.removed)} removed, {len(outcome.reordered)} reordered"
            ),
            reason=revision.reason,
        )
    )

    logger.info(f"Plan {new_plan.id} revised to version {new_plan.version}: {new_plan.update_history[-1].description}")
    return outcome


def invalidate_results(results: dict[str, StepResult], invalidated: set[str]) -> dict[str, StepResult]:
    """Keep every result except those of invalidated steps."""
    return {step_id: result for step_id, result in results.items() if step_id not in invalidated}
