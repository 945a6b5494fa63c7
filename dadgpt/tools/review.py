"""Review tool: suggestions plus daily and weekly summaries."""

from __future__ import annotations

from datetime import date
from typing import Literal

from pydantic import BaseModel, Field

from dadgpt.intelligence import SuggestionEngine
from dadgpt.state.goal import GoalState
from dadgpt.state.todo import TodoState
from dadgpt.tools.base import Tool, ToolContext, ToolResult
from dadgpt.tools.listing import sort_entities

REVIEW_DESCRIPTION = """Review progress. Types:
- suggestions: Context-aware reminders and recommendations
- daily: Today's todos, active goals and urgent reminders
- weekly: Completed and in-progress counts with advice for the week ahead"""

_ICONS = {"reminder": "*", "action": ">", "insight": "i", "warning": "!"}


class ReviewArgs(BaseModel):
    type: Literal["suggestions", "daily", "weekly"] = Field("suggestions", description="Kind of review")


def create_review_tool(engine: SuggestionEngine) -> Tool:
    """Create the review tool around a suggestion engine."""

    async def suggestions(ctx: ToolContext) -> ToolResult:
        found = await engine.suggestions()
        if not found:
            return ToolResult(title="Suggestions", output="Nothing needs your attention right now.")
        lines = [f"{_ICONS[s.type]} [{s.priority}] {s.title}: {s.message}" for s in found]
        return ToolResult(
            title=f"Suggestions ({len(found)})",
            output="\n".join(lines),
            metadata={"count": len(found)},
        )

    async def daily(ctx: ToolContext) -> ToolResult:
        goals, todos, _ = await engine.load()
        today = [
            t for t in todos
            if t.timeframe == "today" and t.state not in (TodoState.DONE, TodoState.CANCELLED)
        ]
        active_goals = [g for g in goals if g.state == GoalState.IN_PROGRESS]
        urgent = [s for s in await engine.suggestions() if s.priority == "high"]

        sections = [f"Daily review for {date.today():%A, %B %d}"]
        if today:
            sections.append("Today:\n" + "\n".join(f"  - {t.title} ({t.state})" for t in sort_entities(today)))
        else:
            sections.append("Today: nothing scheduled")
        if active_goals:
            sections.append(
                "Active goals:\n"
                + "\n".join(f"  - {g.title} {g.progress}%" for g in sort_entities(active_goals))
            )
        if urgent:
            sections.append("Urgent:\n" + "\n".join(f"  ! {s.message}" for s in urgent))
        return ToolResult(
            title="Daily Review",
            output="\n\n".join(sections),
            metadata={"todos_today": len(today), "active_goals": len(active_goals), "urgent": len(urgent)},
        )

    async def weekly(ctx: ToolContext) -> ToolResult:
        review = await engine.weekly_review()
        output = (
            f"Completed: {review.completed_goals} goals, {review.completed_todos} todos\n"
            f"In progress: {review.in_progress_goals} goals, {review.in_progress_todos} todos\n"
            f"Blocked: {review.blocked_todos} todos\n\n"
            "Suggestions:\n" + "\n".join(f"  - {s}" for s in review.suggestions)
        )
        return ToolResult(title="Weekly Review", output=output, metadata=review.model_dump())

    handlers = {"suggestions": suggestions, "daily": daily, "weekly": weekly}

    async def execute(args: ReviewArgs, ctx: ToolContext) -> ToolResult:
        return await handlers[args.type](ctx)

    return Tool(name="review", description=REVIEW_DESCRIPTION, args_model=ReviewArgs, handler=execute)
