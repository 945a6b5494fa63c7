"""Suggestion engine: reminders, warnings and reviews over stored entities.

Checks run over the full goal, todo and family collections:
- birthdays today, tomorrow or within a week
- too many todos in progress, and blocked todos
- goals in progress at 0%, goals not yet started, paused goals
- overdue todos
- an empty today list
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Literal

from pydantic import BaseModel

from dadgpt.state.family import FamilyMember, days_until_birthday
from dadgpt.state.goal import Goal, GoalState
from dadgpt.state.todo import Todo, TodoState
from dadgpt.storage import EntityRepository, JsonStore
from dadgpt.utils import parse_date

logger = logging.getLogger(__name__)

_PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}
_MAX_IN_PROGRESS = 3


class Suggestion(BaseModel):
    type: Literal["reminder", "action", "insight", "warning"]
    priority: Literal["high", "medium", "low"]
    title: str
    message: str
    actionable: dict[str, Any] | None = None


class WeeklyReview(BaseModel):
    completed_goals: int = 0
    completed_todos: int = 0
    in_progress_goals: int = 0
    in_progress_todos: int = 0
    blocked_todos: int = 0
    suggestions: list[str] = []


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count != 1 else ''}"


# ---------------------------------------------------------------------------
# Individual checks (pure)
# ---------------------------------------------------------------------------


def check_birthdays(members: list[FamilyMember], today: date) -> list[Suggestion]:
    suggestions = []
    for member in members:
        if not member.birthday:
            continue
        days = days_until_birthday(member.birthday, today)
        if days is None:
            continue
        if days == 0:
            suggestions.append(Suggestion(
                type="reminder",
                priority="high",
                title="Birthday Today!",
                message=f"Today is {member.name}'s birthday! Don't forget to wish them well.",
            ))
        elif days == 1:
            suggestions.append(Suggestion(
                type="reminder",
                priority="high",
                title="Birthday Tomorrow",
                message=f"{member.name}'s birthday is tomorrow! Time to prepare.",
            ))
        elif days <= 7:
            suggestions.append(Suggestion(
                type="reminder",
                priority="medium",
                title="Upcoming Birthday",
                message=f"{member.name}'s birthday is in {days} days ({member.birthday}).",
            ))
    return suggestions


def check_todo_load(todos: list[Todo]) -> list[Suggestion]:
    suggestions = []
    in_progress = [t for t in todos if t.state == TodoState.IN_PROGRESS]
    blocked = [t for t in todos if t.state == TodoState.BLOCKED]

    if len(in_progress) > _MAX_IN_PROGRESS:
        suggestions.append(Suggestion(
            type="warning",
            priority="medium",
            title="Too Many In Progress",
            message=(
                f"You have {len(in_progress)} todos in progress. "
                "Consider focusing on fewer items to increase completion rate."
            ),
        ))
    if blocked:
        suggestions.append(Suggestion(
            type="action",
            priority="medium",
            title="Blocked Items",
            message=f"You have {_plural(len(blocked), 'blocked todo')}. Review if blockers can be resolved.",
            actionable={"tool": "todo", "action": "list", "args": {"state": "blocked"}},
        ))
    return suggestions


def check_goals(goals: list[Goal]) -> list[Suggestion]:
    suggestions = []
    in_progress = [g for g in goals if g.state == GoalState.IN_PROGRESS]
    not_started = [g for g in goals if g.state == GoalState.NOT_STARTED]
    paused = [g for g in goals if g.state == GoalState.PAUSED]

    for goal in in_progress:
        if goal.progress == 0:
            suggestions.append(Suggestion(
                type="action",
                priority="medium",
                title="Goal Needs Attention",
                message=(
                    f'Goal "{goal.title}" is marked as in progress but has 0% completion. '
                    "Consider updating progress or creating tasks."
                ),
                actionable={"tool": "goal", "action": "update", "args": {"id": goal.id}},
            ))
    if not_started and len(in_progress) < 2:
        suggestions.append(Suggestion(
            type="insight",
            priority="low",
            title="Ready to Start?",
            message=f"You have {_plural(len(not_started), 'goal')} not yet started. Consider picking one to work on.",
        ))
    if paused:
        suggestions.append(Suggestion(
            type="reminder",
            priority="low",
            title="Paused Goals",
            message=f"You have {_plural(len(paused), 'paused goal')}. Review if any should be resumed or abandoned.",
        ))
    return suggestions


def check_overdue(todos: list[Todo], today: date) -> list[Suggestion]:
    suggestions = []
    for todo in todos:
        if todo.state in (TodoState.DONE, TodoState.CANCELLED):
            continue
        due = parse_date(todo.due_date)
        if due is not None and due < today:
            suggestions.append(Suggestion(
                type="warning",
                priority="high",
                title="Overdue Todo",
                message=f'"{todo.title}" was due on {todo.due_date}. Complete, defer, or cancel it.',
                actionable={"tool": "todo", "action": "complete", "args": {"id": todo.id}},
            ))
    return suggestions


def check_empty_today(todos: list[Todo]) -> list[Suggestion]:
    open_today = [
        t for t in todos
        if t.timeframe == "today" and t.state not in (TodoState.DONE, TodoState.CANCELLED)
    ]
    if open_today:
        return []
    this_week = [
        t for t in todos
        if t.timeframe == "this_week" and t.state in (TodoState.PENDING, TodoState.IN_PROGRESS)
    ]
    if this_week:
        return [Suggestion(
            type="action",
            priority="medium",
            title="Plan Your Day",
            message='No todos for today. Consider moving some items from "This Week" to today\'s list.',
        )]
    return [Suggestion(
        type="insight",
        priority="low",
        title="Clear Day",
        message="No pending todos for today. Great time to work on goals or add new tasks!",
    )]


def build_weekly_review(goals: list[Goal], todos: list[Todo]) -> WeeklyReview:
    review = WeeklyReview(
        completed_goals=sum(1 for g in goals if g.state == GoalState.COMPLETED),
        in_progress_goals=sum(1 for g in goals if g.state == GoalState.IN_PROGRESS),
        completed_todos=sum(1 for t in todos if t.state == TodoState.DONE),
        in_progress_todos=sum(1 for t in todos if t.state == TodoState.IN_PROGRESS),
        blocked_todos=sum(1 for t in todos if t.state == TodoState.BLOCKED),
    )
    if review.completed_todos == 0:
        review.suggestions.append("Consider breaking down your tasks into smaller, completable items")
    if review.in_progress_goals > 3:
        review.suggestions.append("Focus on fewer goals at a time for better progress")
    if review.blocked_todos:
        review.suggestions.append(f"Address {review.blocked_todos} blocked todo(s) to maintain momentum")
    if not review.suggestions:
        review.suggestions.append("Keep up the great work!")
    return review


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class SuggestionEngine:
    """Loads entities from storage and runs the checks over them."""

    def __init__(self, store: JsonStore) -> None:
        self._goals: EntityRepository[Goal] = EntityRepository(store, "goals", Goal)
        self._todos: EntityRepository[Todo] = EntityRepository(store, "todos", Todo)
        self._family: EntityRepository[FamilyMember] = EntityRepository(store, "family", FamilyMember)

    async def load(self) -> tuple[list[Goal], list[Todo], list[FamilyMember]]:
        return await self._goals.all(), await self._todos.all(), await self._family.all()

    async def suggestions(self, today: date | None = None) -> list[Suggestion]:
        today = today or date.today()
        goals, todos, members = await self.load()
        found = [
            *check_birthdays(members, today),
            *check_todo_load(todos),
            *check_goals(goals),
            *check_overdue(todos, today),
            *check_empty_today(todos),
        ]
        found.sort(key=lambda s: _PRIORITY_ORDER[s.priority])
        logger.debug("Generated %d suggestions", len(found))
        return found

    async def weekly_review(self) -> WeeklyReview:
        goals, todos, _ = await self.load()
        return build_weekly_review(goals, todos)
