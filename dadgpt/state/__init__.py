"""Pure lifecycle state machines for goals, todos and projects."""

from dadgpt.state.goal import Goal, GoalEvent, GoalEventKind, GoalState
from dadgpt.state.project import Project, ProjectEvent, ProjectEventKind, ProjectState
from dadgpt.state.schemas import PRIORITY_WEIGHT, Milestone, StateTransition
from dadgpt.state.todo import Todo, TodoEvent, TodoEventKind, TodoState

__all__ = [
    "PRIORITY_WEIGHT",
    "Goal",
    "GoalEvent",
    "GoalEventKind",
    "GoalState",
    "Milestone",
    "Project",
    "ProjectEvent",
    "ProjectEventKind",
    "ProjectState",
    "StateTransition",
    "Todo",
    "TodoEvent",
    "TodoEventKind",
    "TodoState",
]
