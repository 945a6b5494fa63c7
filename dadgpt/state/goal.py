"""Goal lifecycle state machine.

    not_started --START--> in_progress
    in_progress --PAUSE--> paused --RESUME--> in_progress
    in_progress --COMPLETE--> completed       (progress forced to 100)
    not_started | in_progress | paused --ABANDON--> abandoned

UPDATE_PROGRESS (in_progress only) and COMPLETE_MILESTONE (not_started,
in_progress) edit the context without a state change. completed and
abandoned are terminal.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field, model_validator

from dadgpt.state.schemas import EntityContext, Milestone, complete_milestone, record_transition, touch
from dadgpt.utils import utcnow


class GoalState(StrEnum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


TERMINAL_STATES = frozenset({GoalState.COMPLETED, GoalState.ABANDONED})


class GoalEventKind(StrEnum):
    START = "START"
    UPDATE_PROGRESS = "UPDATE_PROGRESS"
    COMPLETE_MILESTONE = "COMPLETE_MILESTONE"
    PAUSE = "PAUSE"
    RESUME = "RESUME"
    COMPLETE = "COMPLETE"
    ABANDON = "ABANDON"


class GoalContext(EntityContext):
    description: str | None = None
    category: str = "Personal"
    progress: int = 0
    milestones: list[Milestone] = Field(default_factory=list)


class Goal(GoalContext):
    state: GoalState = GoalState.NOT_STARTED


class GoalEvent(BaseModel):
    kind: GoalEventKind
    reason: str | None = None
    progress: float | None = None
    milestone_id: str | None = None

    @model_validator(mode="after")
    def _require_payload(self) -> "GoalEvent":
        if self.kind == GoalEventKind.UPDATE_PROGRESS and self.progress is None:
            raise ValueError("UPDATE_PROGRESS requires progress")
        if self.kind == GoalEventKind.COMPLETE_MILESTONE and not self.milestone_id:
            raise ValueError("COMPLETE_MILESTONE requires milestone_id")
        return self


def clamp_progress(value: float) -> int:
    return round(max(0.0, min(100.0, value)))


def transition(
    state: GoalState,
    context: GoalContext,
    event: GoalEvent,
    now: datetime | None = None,
) -> tuple[GoalState, GoalContext]:
    """Apply event to (state, context); invalid events are no-ops."""
    now = now or utcnow()
    S, E = GoalState, GoalEventKind

    match (state, event.kind):
        case (S.NOT_STARTED, E.START):
            return S.IN_PROGRESS, record_transition(context, state, S.IN_PROGRESS, now)
        case (S.IN_PROGRESS, E.UPDATE_PROGRESS):
            progress = clamp_progress(event.progress)
            if progress == context.progress:
                return state, context
            return state, touch(context, now, progress=progress)
        case (S.NOT_STARTED | S.IN_PROGRESS, E.COMPLETE_MILESTONE):
            milestones = complete_milestone(context.milestones, event.milestone_id)
            if milestones is None:
                return state, context
            return state, touch(context, now, milestones=milestones)
        case (S.IN_PROGRESS, E.PAUSE):
            return S.PAUSED, record_transition(context, state, S.PAUSED, now, event.reason)
        case (S.PAUSED, E.RESUME):
            return S.IN_PROGRESS, record_transition(context, state, S.IN_PROGRESS, now, event.reason)
        case (S.IN_PROGRESS, E.COMPLETE):
            return S.COMPLETED, record_transition(context, state, S.COMPLETED, now, progress=100)
        case (S.NOT_STARTED | S.IN_PROGRESS | S.PAUSED, E.ABANDON):
            return S.ABANDONED, record_transition(context, state, S.ABANDONED, now, event.reason)

    return state, context


def apply_event(goal: Goal, event: GoalEvent, now: datetime | None = None) -> tuple[Goal, bool]:
    """Run the machine over a stored Goal. Returns (goal, changed)."""
    state, context = transition(goal.state, goal, event, now)
    if context is goal:
        return goal, False
    return context.model_copy(update={"state": state}), True
