"""Todo lifecycle state machine.

    pending --START--> in_progress --COMPLETE--> done
    pending --COMPLETE--> done
    in_progress --BLOCK(reason)--> blocked --UNBLOCK--> in_progress
    pending | in_progress --DEFER--> deferred --ACTIVATE--> pending
    any non-terminal --CANCEL--> cancelled

done and cancelled are terminal.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, model_validator

from dadgpt.state.schemas import EntityContext, record_transition
from dadgpt.utils import utcnow

Timeframe = Literal["today", "this_week", "someday"]

# DEFER without an explicit target moves one step down this table
DEFER_ESCALATION: dict[str, Timeframe] = {
    "today": "this_week",
    "this_week": "someday",
    "someday": "someday",
}


class TodoState(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    DEFERRED = "deferred"
    DONE = "done"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({TodoState.DONE, TodoState.CANCELLED})


class TodoEventKind(StrEnum):
    START = "START"
    COMPLETE = "COMPLETE"
    BLOCK = "BLOCK"
    UNBLOCK = "UNBLOCK"
    DEFER = "DEFER"
    ACTIVATE = "ACTIVATE"
    CANCEL = "CANCEL"


class TodoContext(EntityContext):
    timeframe: Timeframe = "today"
    goal_id: str | None = None
    project_id: str | None = None
    blocked_reason: str | None = None
    completed_at: datetime | None = None


class Todo(TodoContext):
    """A persisted todo: context plus its current state."""

    state: TodoState = TodoState.PENDING


class TodoEvent(BaseModel):
    kind: TodoEventKind
    reason: str | None = None
    timeframe: Timeframe | None = None

    @model_validator(mode="after")
    def _require_block_reason(self) -> "TodoEvent":
        if self.kind == TodoEventKind.BLOCK and not (self.reason and self.reason.strip()):
            raise ValueError("BLOCK requires a non-empty reason")
        return self


def transition(
    state: TodoState,
    context: TodoContext,
    event: TodoEvent,
    now: datetime | None = None,
) -> tuple[TodoState, TodoContext]:
    """Apply event to (state, context).

    Events that are not valid for the current state return the same state
    and the same context object.
    """
    now = now or utcnow()
    S, E = TodoState, TodoEventKind

    match (state, event.kind):
        case (S.PENDING, E.START):
            return S.IN_PROGRESS, record_transition(context, state, S.IN_PROGRESS, now)
        case (S.PENDING | S.IN_PROGRESS, E.COMPLETE):
            return S.DONE, record_transition(context, state, S.DONE, now, completed_at=now)
        case (S.IN_PROGRESS, E.BLOCK) if event.reason and event.reason.strip():
            return S.BLOCKED, record_transition(
                context, state, S.BLOCKED, now, event.reason, blocked_reason=event.reason
            )
        case (S.BLOCKED, E.UNBLOCK):
            return S.IN_PROGRESS, record_transition(
                context, state, S.IN_PROGRESS, now, event.reason, blocked_reason=None
            )
        case (S.PENDING | S.IN_PROGRESS, E.DEFER):
            timeframe = event.timeframe or DEFER_ESCALATION[context.timeframe]
            return S.DEFERRED, record_transition(
                context, state, S.DEFERRED, now, event.reason, timeframe=timeframe
            )
        case (S.DEFERRED, E.ACTIVATE):
            return S.PENDING, record_transition(context, state, S.PENDING, now)
        case (S.PENDING | S.IN_PROGRESS | S.BLOCKED | S.DEFERRED, E.CANCEL):
            return S.CANCELLED, record_transition(context, state, S.CANCELLED, now, event.reason)

    return state, context


def apply_event(todo: Todo, event: TodoEvent, now: datetime | None = None) -> tuple[Todo, bool]:
    """Run the machine over a stored Todo. Returns (todo, changed)."""
    state, context = transition(todo.state, todo, event, now)
    if context is todo:
        return todo, False
    return context.model_copy(update={"state": state}), True
