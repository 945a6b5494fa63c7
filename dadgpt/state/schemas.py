"""Pydantic models shared by the Goal, Todo and Project state machines."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, Field

from dadgpt.utils import utcnow

Priority = Literal["high", "medium", "low"]

PRIORITY_WEIGHT: dict[str | None, int] = {"high": 3, "medium": 2, "low": 1, None: 0}


class StateTransition(BaseModel):
    """One entry in an entity's append-only state history."""

    from_state: str
    to_state: str
    at: datetime
    reason: str | None = None


class Milestone(BaseModel):
    id: str
    title: str
    completed: bool = False
    due_date: str | None = None


class EntityContext(BaseModel):
    """Fields every task entity carries, independent of its state."""

    id: str
    title: str
    priority: Priority | None = None
    due_date: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    state_history: list[StateTransition] = Field(default_factory=list)


C = TypeVar("C", bound=EntityContext)


def record_transition(
    context: C,
    from_state: str,
    to_state: str,
    now: datetime,
    reason: str | None = None,
    **updates: Any,
) -> C:
    """Copy context with one history entry appended and updates applied.

    The input context is never mutated: the history list is rebuilt.
    """
    entry = StateTransition(from_state=from_state, to_state=to_state, at=now, reason=reason)
    return context.model_copy(
        update={
            **updates,
            "state_history": [*context.state_history, entry],
            "updated_at": now,
        }
    )


def touch(context: C, now: datetime, **updates: Any) -> C:
    """Copy context with updates applied and no history entry."""
    return context.model_copy(update={**updates, "updated_at": now})


def complete_milestone(milestones: list[Milestone], milestone_id: str) -> list[Milestone] | None:
    """New milestone list with milestone_id marked done, or None if nothing changes."""
    for i, milestone in enumerate(milestones):
        if milestone.id == milestone_id:
            if milestone.completed:
                return None
            updated = list(milestones)
            updated[i] = milestone.model_copy(update={"completed": True})
            return updated
    return None
