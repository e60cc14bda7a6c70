"""Data models for the host/specialist orchestration graph."""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Sequence

from ..llm.protocols import Message

if TYPE_CHECKING:
    from ..storage.message_store import MessageStore
    from .observers import OrchestrationObserver

logger = logging.getLogger(__name__)


class TaskComplexity(str, Enum):
    """How much work the host thinks a conversation needs."""

    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"
    VERY_COMPLEX = "very_complex"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> TaskComplexity:
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                logger.warning(f"Unknown complexity: {value}")
        return cls.UNKNOWN


class StepStatus(str, Enum):
    """Status of a plan step."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ExecutionStatus(str, Enum):
    """Where the orchestration run currently is."""

    PENDING = "pending"
    ANALYZING = "analyzing"
    PLANNING = "planning"
    EXECUTING = "executing"
    COLLECTING = "collecting"
    EVALUATING = "evaluating"
    UPDATING = "updating"
    COMPLETED = "completed"
    FAILED = "failed"


class PlanUpdateType(str, Enum):
    """Kind of change recorded in a plan's update history."""

    STEP_ADD = "step_add"
    STEP_MODIFY = "step_modify"
    STEP_REMOVE = "step_remove"
    STEP_REORDER = "step_reorder"
    STRATEGY_CHANGE = "strategy_change"


class Stage(str, Enum):
    """Stages of the orchestration graph."""

    ANALYSIS = "conversation_analysis"
    DIRECT_ANSWER = "direct_answer"
    PLAN_CREATION = "plan_creation"
    PLAN_EXECUTION = "plan_execution"
    SPECIALIST_DISPATCH = "specialist_dispatch"
    RESULT_COLLECTION = "result_collection"
    FEEDBACK = "feedback_evaluation"
    PLAN_UPDATE = "plan_update"
    FINAL_ANSWER = "final_answer"
    END = "end"


@dataclass
class ConversationContext:
    """Result of conversation analysis."""

    user_intent: str = ""
    key_topics: list[str] = field(default_factory=list)
    context_summary: str = ""
    complexity: TaskComplexity = TaskComplexity.UNKNOWN
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class StepResult:
    """Outcome of one specialist run on one step."""

    success: bool
    output: Message | None = None
    specialist: str = ""
    confidence: float = 0.0
    quality_score: float = 0.0
    error: str | None = None

    @property
    def text(self) -> str:
        return self.output.content if self.output is not None else ""


@dataclass
class PlanStep:
    """One unit of work in a plan."""

    id: str
    name: str
    description: str = ""
    assigned_specialist: str = ""
    priority: int = 0
    status: StepStatus = StepStatus.PENDING
    dependencies: list[str] = field(default_factory=list)
    parameters: dict[str, Any] = field(default_factory=dict)
    result: StepResult | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "assigned_specialist": self.assigned_specialist,
            "priority": self.priority,
            "status": self.status.value,
            "dependencies": list(self.dependencies),
            "parameters": dict(self.parameters),
        }

    @classmethod
    def from_dict(cls, data: dict, default_id: str = "") -> PlanStep:
        """Create a step from model output; tolerates camelCase keys.

        Raises:
            ValueError: If dependencies or parameters have the wrong shape
        """
        status = StepStatus.PENDING
        if data.get("status"):
            try:
                status = StepStatus(str(data["status"]).lower())
            except ValueError:
                logger.warning(f"Unknown step status: {data['status']}")

        return cls(
            id=str(data.get("id") or default_id),
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            assigned_specialist=str(
                data.get("assigned_specialist") or data.get("assignedSpecialist") or ""
            ),
            priority=as_int(data.get("priority")),
            status=status,
            dependencies=as_step_ids(data.get("dependencies")),
            parameters=_as_parameters(data.get("parameters")),
        )


def as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value)
    return 0


def as_step_ids(value: Any) -> list[str]:
    """Dependency ids from model output. A single id may be given as a bare string."""
    if value is None or value == "":
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(
        isinstance(v, (str, int)) and not isinstance(v, bool) for v in value
    ):
        return [str(v) for v in value]
    raise ValueError(f"dependencies must be a list of step ids, got {value!r}")


def _as_parameters(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"parameters must be an object, got {value!r}")
    return dict(value)


@dataclass
class PlanUpdate:
    """A recorded plan revision."""

    id: str
    plan_version: int
    update_type: PlanUpdateType
    description: str
    reason: str = ""
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class TaskPlan:
    """An ordered, versioned collection of steps."""

    id: str
    name: str
    description: str = ""
    version: int = 1
    status: str = "active"
    steps: list[PlanStep] = field(default_factory=list)
    update_history: list[PlanUpdate] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def get_step(self, step_id: str) -> PlanStep | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def index_of(self, step_id: str) -> int:
        for i, step in enumerate(self.steps):
            if step.id == step_id:
                return i
        return -1

    def dependencies_completed(self, step: PlanStep) -> bool:
        """True when every dependency that names a step in this plan is completed."""
        for dep_id in step.dependencies:
            dep = self.get_step(dep_id)
            if dep is not None and dep.status is not StepStatus.COMPLETED:
                return False
        return True

    def next_runnable_step(self) -> PlanStep | None:
        """First pending step, in declaration order, whose dependencies are completed."""
        for step in self.steps:
            if step.status is StepStatus.PENDING and self.dependencies_completed(step):
                return step
        return None

    def clone(self) -> TaskPlan:
        return copy.deepcopy(self)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "status": self.status,
            "steps": [step.to_dict() for step in self.steps],
        }


@dataclass
class Feedback:
    """The host's evaluation of one round."""

    execution_completed: bool = False
    overall_quality: float = 0.0
    plan_needs_update: bool = False
    issues: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    confidence: float = 0.0
    next_action_reason: str = ""


@dataclass
class ExecutionRecord:
    """History entry for one dispatched step."""

    step_id: str
    specialist: str = ""
    round_number: int = 0
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: datetime | None = None
    status: StepStatus = StepStatus.RUNNING
    error: str | None = None


@dataclass
class OrchestrationState:
    """State owned by a single orchestration invocation."""

    original_messages: list[Message]
    max_rounds: int
    round_number: int = 0
    conversation_context: ConversationContext | None = None
    current_plan: TaskPlan | None = None
    plan_history: list[TaskPlan] = field(default_factory=list)
    execution_status: ExecutionStatus = ExecutionStatus.PENDING
    current_step_id: str | None = None
    specialist_results: dict[str, StepResult] = field(default_factory=dict)
    preserved_result_ids: set[str] = field(default_factory=set)
    collected_results: list[Message] = field(default_factory=list)
    execution_history: list[ExecutionRecord] = field(default_factory=list)
    feedback_history: list[Feedback] = field(default_factory=list)
    reflection_count: int = 0
    is_completed: bool = False
    final_answer: Message | None = None
    start_time: datetime = field(default_factory=datetime.now)

    @property
    def current_step(self) -> PlanStep | None:
        if self.current_plan is None or self.current_step_id is None:
            return None
        return self.current_plan.get_step(self.current_step_id)

    @property
    def latest_feedback(self) -> Feedback | None:
        return self.feedback_history[-1] if self.feedback_history else None

    @property
    def round_limit_reached(self) -> bool:
        return self.round_number >= self.max_rounds


@dataclass
class OrchestrationOptions:
    """Per-invocation options for the orchestrator."""

    max_rounds: int | None = None
    observers: Sequence[OrchestrationObserver] = ()
    cancel_event: asyncio.Event | None = None
    message_store: MessageStore | None = None
    conversation_id: str | None = None
