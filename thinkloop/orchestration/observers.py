"""Observer interface for orchestration runs, plus an event-publishing observer."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..llm.protocols import Message
from .models import OrchestrationState, PlanStep, Stage

if TYPE_CHECKING:
    from ..storage.events import EventPublisher

logger = logging.getLogger(__name__)


class OrchestrationObserver:
    """
    Receives per-stage and per-plan-step notifications.

    Hooks are awaited in registration order, and the orchestrator does not
    continue until every observer has returned. Override the ones you need.
    """

    async def on_stage_start(self, stage: Stage, state: OrchestrationState) -> None:
        """Called before a stage handler runs."""

    async def on_message(self, stage: Stage, message: Message) -> None:
        """Called with the complete output message of a generating stage."""

    async def on_stream_chunk(self, stage: Stage, chunk: Message) -> None:
        """Called with each chunk while a stage streams model output."""

    async def on_plan_step_create(self, state: OrchestrationState, step: PlanStep) -> None:
        """A step's first field became available, or a revision added a step."""

    async def on_plan_step_update(self, state: OrchestrationState, step: PlanStep) -> None:
        """More fields of a step became available, or a revision modified it."""

    async def on_plan_step_status(self, state: OrchestrationState, step: PlanStep) -> None:
        """A step changed status (running, completed, failed)."""

    async def on_plan_step_delete(self, state: OrchestrationState, step_id: str) -> None:
        """A revision removed a step."""

    async def on_plan_step_end(self, state: OrchestrationState) -> None:
        """The plan stream closed; no more step fields will arrive."""


class EventPublishingObserver(OrchestrationObserver):
    """Forwards progressive updates to an event publisher."""

    def __init__(self, publisher: EventPublisher, run_id: str | None = None):
        self.publisher = publisher
        self.run_id = run_id

    async def _publish(self, event_type: str, data: dict) -> None:
        if self.run_id:
            data = {"run_id": self.run_id, **data}
        await self.publisher.publish(event_type, data)

    async def on_stage_start(self, stage: Stage, state: OrchestrationState) -> None:
        await self._publish("stage_start", {"stage": stage.value, "round": state.round_number})

    async def on_message(self, stage: Stage, message: Message) -> None:
        await self._publish("message", {"stage": stage.value, "content": message.content})

    async def on_stream_chunk(self, stage: Stage, chunk: Message) -> None:
        if chunk.content:
            await self._publish("text_delta", {"stage": stage.value, "content": chunk.content})

    async def on_plan_step_create(self, state: OrchestrationState, step: PlanStep) -> None:
        await self._publish("plan_step_create", step.to_dict())

    async def on_plan_step_update(self, state: OrchestrationState, step: PlanStep) -> None:
        await self._publish("plan_step_update", step.to_dict())

    async def on_plan_step_status(self, state: OrchestrationState, step: PlanStep) -> None:
        await self._publish("plan_step_status", {"id": step.id, "status": step.status.value})

    async def on_plan_step_delete(self, state: OrchestrationState, step_id: str) -> None:
        await self._publish("plan_step_delete", {"id": step_id})

    async def on_plan_step_end(self, state: OrchestrationState) -> None:
        plan = state.current_plan
        await self._publish("plan_step_end", {"plan": plan.to_dict() if plan else None})
