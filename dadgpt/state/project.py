"""Project lifecycle state machine.

    planning --START--> active --PAUSE--> on_hold --RESUME--> active
    active --COMPLETE--> completed
    planning | active | on_hold --CANCEL--> cancelled

ADD_MILESTONE (planning, active) and COMPLETE_MILESTONE (active) edit
the milestone list without a state change.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field, model_validator

from dadgpt.state.schemas import EntityContext, Milestone, complete_milestone, record_transition, touch
from dadgpt.utils import utcnow


class ProjectState(StrEnum):
    PLANNING = "planning"
    ACTIVE = "active"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({ProjectState.COMPLETED, ProjectState.CANCELLED})


class ProjectEventKind(StrEnum):
    START = "START"
    PAUSE = "PAUSE"
    RESUME = "RESUME"
    COMPLETE = "COMPLETE"
    CANCEL = "CANCEL"
    ADD_MILESTONE = "ADD_MILESTONE"
    COMPLETE_MILESTONE = "COMPLETE_MILESTONE"


class ProjectContext(EntityContext):
    description: str = ""
    budget: float | None = None
    goal_id: str | None = None
    todo_ids: list[str] = Field(default_factory=list)
    milestones: list[Milestone] = Field(default_factory=list)


class Project(ProjectContext):
    state: ProjectState = ProjectState.PLANNING


class ProjectEvent(BaseModel):
    kind: ProjectEventKind
    reason: str | None = None
    milestone: Milestone | None = None
    milestone_id: str | None = None

    @model_validator(mode="after")
    def _require_payload(self) -> "ProjectEvent":
        if self.kind == ProjectEventKind.ADD_MILESTONE and self.milestone is None:
            raise ValueError("ADD_MILESTONE requires a milestone")
        if self.kind == ProjectEventKind.COMPLETE_MILESTONE and not self.milestone_id:
            raise ValueError("COMPLETE_MILESTONE requires milestone_id")
        return self


def transition(
    state: ProjectState,
    context: ProjectContext,
    event: ProjectEvent,
    now: datetime | None = None,
) -> tuple[ProjectState, ProjectContext]:
    """Apply event to (state, context); invalid events are no-ops."""
    now = now or utcnow()
    S, E = ProjectState, ProjectEventKind

    match (state, event.kind):
        case (S.PLANNING, E.START):
            return S.ACTIVE, record_transition(context, state, S.ACTIVE, now)
        case (S.ACTIVE, E.PAUSE):
            return S.ON_HOLD, record_transition(context, state, S.ON_HOLD, now, event.reason)
        case (S.ON_HOLD, E.RESUME):
            return S.ACTIVE, record_transition(context, state, S.ACTIVE, now, event.reason)
        case (S.ACTIVE, E.COMPLETE):
            return S.COMPLETED, record_transition(context, state, S.COMPLETED, now)
        case (S.PLANNING | S.ACTIVE | S.ON_HOLD, E.CANCEL):
            return S.CANCELLED, record_transition(context, state, S.CANCELLED, now, event.reason)
        case (S.PLANNING | S.ACTIVE, E.ADD_MILESTONE):
            milestone = event.milestone.model_copy(update={"completed": False})
            return state, touch(context, now, milestones=[*context.milestones, milestone])
        case (S.ACTIVE, E.COMPLETE_MILESTONE):
            milestones = complete_milestone(context.milestones, event.milestone_id)
            if milestones is None:
                return state, context
            return state, touch(context, now, milestones=milestones)

    return state, context


def apply_event(
    project: Project, event: ProjectEvent, now: datetime | None = None
) -> tuple[Project, bool]:
    """Run the machine over a stored Project. Returns (project, changed)."""
    state, context = transition(project.state, project, event, now)
    if context is project:
        return project, False
    return context.model_copy(update={"state": state}), True
