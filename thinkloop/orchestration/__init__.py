"""Host/specialist orchestration graph."""

from .models import (
    ConversationContext,
    ExecutionRecord,
    ExecutionStatus,
    Feedback,
    OrchestrationOptions,
    OrchestrationState,
    PlanStep,
    PlanUpdate,
    PlanUpdateType,
    Stage,
    StepResult,
    StepStatus,
    TaskComplexity,
    TaskPlan,
)
from .observers import EventPublishingObserver, OrchestrationObserver
from .orchestrator import Orchestrator
from .parsing import parse_conversation_context, parse_feedback, parse_plan
from .plan_stream import PlanStepExtractor
from .plan_update import (
    OperationType,
    PlanOperation,
    PlanRevision,
    RevisionOutcome,
    apply_revision,
    invalidate_results,
    parse_plan_revision,
)
from .specialists import (
    BoundModelSpecialist,
    CallableSpecialist,
    Specialist,
    SubAgentSpecialist,
    general_specialist,
)

__all__ = [
    # Models
    "ConversationContext",
    "ExecutionRecord",
    "ExecutionStatus",
    "Feedback",
    "OrchestrationOptions",
    "OrchestrationState",
    "PlanStep",
    "PlanUpdate",
    "PlanUpdateType",
    "Stage",
    "StepResult",
    "StepStatus",
    "TaskComplexity",
    "TaskPlan",
    # Observers
    "EventPublishingObserver",
    "OrchestrationObserver",
    # Parsing
    "parse_conversation_context",
    "parse_feedback",
    "parse_plan",
    "PlanStepExtractor",
    # Plan revision
    "OperationType",
    "PlanOperation",
    "PlanRevision",
    "RevisionOutcome",
    "apply_revision",
    "invalidate_results",
    "parse_plan_revision",
    # Specialists
    "BoundModelSpecialist",
    "CallableSpecialist",
    "Specialist",
    "SubAgentSpecialist",
    "general_specialist",
    # Controller
    "Orchestrator",
]
