"""Goal tool: create, list, update and progress goals."""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, Field

from dadgpt.events import EventBus
from dadgpt.state.goal import TERMINAL_STATES, Goal, GoalEvent, GoalEventKind, GoalState, apply_event
from dadgpt.state.schemas import Milestone, Priority
from dadgpt.storage import EntityRepository, JsonStore
from dadgpt.tools.base import Tool, ToolContext, ToolResult, error_result
from dadgpt.tools.entity import not_found, run_transition
from dadgpt.tools.listing import narrow, sort_entities
from dadgpt.utils import generate_id, utcnow

logger = logging.getLogger(__name__)

GoalAction = Literal[
    "create",
    "list",
    "get",
    "update",
    "start",
    "pause",
    "resume",
    "complete",
    "abandon",
    "complete_milestone",
    "delete",
]

_ACTION_EVENTS: dict[str, GoalEventKind] = {
    "start": GoalEventKind.START,
    "pause": GoalEventKind.PAUSE,
    "resume": GoalEventKind.RESUME,
    "complete": GoalEventKind.COMPLETE,
    "abandon": GoalEventKind.ABANDON,
    "complete_milestone": GoalEventKind.COMPLETE_MILESTONE,
}

GOAL_DESCRIPTION = """Manage goals. Actions:
- create: Create a new goal (title required; optional category, description, due date, milestones)
- list: List goals, optionally filtered by state, category or priority
- get: Show one goal with milestones and history
- update: Update progress (0-100) or details; progress on a not-started goal starts it
- start: Start working on a goal
- pause: Pause a goal
- resume: Resume a paused goal
- complete: Mark a goal as completed
- abandon: Abandon a goal
- complete_milestone: Mark a goal milestone as done
- delete: Permanently delete a goal"""


class GoalArgs(BaseModel):
    action: GoalAction
    id: str | None = Field(None, description="Goal ID")
    title: str | None = Field(None, description="Goal title (for create, or to find a goal by title)")
    category: str | None = Field(None, description="Goal category (Health, Family, Work, Personal, Finance)")
    description: str | None = Field(None, description="Goal description")
    priority: Priority | None = Field(None, description="Priority level")
    due_date: str | None = Field(None, description="Due date, e.g. 2025-12-31")
    progress: float | None = Field(None, description="Progress percentage (0-100)")
    milestones: list[str] | None = Field(None, description="Milestone titles (for create)")
    milestone_id: str | None = Field(None, description="Milestone ID (for complete_milestone)")
    reason: str | None = Field(None, description="Reason for pause or abandon")
    state: GoalState | None = Field(None, description="State filter for list")


def format_goal_line(goal: Goal) -> str:
    line = f"{goal.title} [{goal.category}] {goal.state} {goal.progress}%"
    if goal.priority:
        line += f" ({goal.priority})"
    if goal.due_date:
        line += f" due {goal.due_date}"
    return f"{line} (ID: {goal.id})"


def create_goal_tool(store: JsonStore, bus: EventBus, categories: list[str] | None = None) -> Tool:
    """Create the goal tool with its repository captured in closure context."""
    repo: EntityRepository[Goal] = EntityRepository(store, "goals", Goal, terminal=TERMINAL_STATES)
    known_categories = {c.lower(): c for c in categories or []}

    async def create(args: GoalArgs, ctx: ToolContext) -> ToolResult:
        if not args.title:
            return error_result("Goal title is required")
        category = args.category or "Personal"
        category = known_categories.get(category.lower(), category)
        goal = Goal(
            id=generate_id(),
            title=args.title,
            category=category,
            description=args.description,
            priority=args.priority,
            due_date=args.due_date,
            milestones=[Milestone(id=generate_id("ms"), title=t) for t in args.milestones or []],
        )
        await repo.save(goal)
        bus.publish("goal.created", {"id": goal.id, "title": goal.title}, ctx.session_id)
        return ToolResult(
            title="Goal Created",
            output=f'Created goal "{goal.title}" in category "{goal.category}" (ID: {goal.id})',
            metadata={"id": goal.id},
        )

    async def list_goals(args: GoalArgs, ctx: ToolContext) -> ToolResult:
        goals = narrow(await repo.all(), state=args.state, category=args.category, priority=args.priority)
        if not goals:
            return ToolResult(title="Goals", output="No goals found", metadata={"count": 0})
        ordered = sort_entities(goals)
        return ToolResult(
            title=f"Goals ({len(ordered)})",
            output="\n".join(format_goal_line(g) for g in ordered),
            metadata={"count": len(ordered), "ids": [g.id for g in ordered]},
        )

    async def get(args: GoalArgs, ctx: ToolContext) -> ToolResult:
        goal = await repo.find(args.id, args.title)
        if goal is None:
            return not_found("goal", args.id, args.title)
        lines = [format_goal_line(goal)]
        if goal.description:
            lines.append(goal.description)
        for milestone in goal.milestones:
            mark = "x" if milestone.completed else " "
            lines.append(f"  [{mark}] {milestone.title} (ID: {milestone.id})")
        return ToolResult(title=goal.title, output="\n".join(lines), metadata={"goal": goal.model_dump(mode="json")})

    async def update(args: GoalArgs, ctx: ToolContext) -> ToolResult:
        goal = await repo.find(args.id) if args.id else await repo.find(title=args.title)
        if goal is None:
            return not_found("goal", args.id, args.title)
        if goal.state in TERMINAL_STATES:
            return error_result(
                f'Goal "{goal.title}" is {goal.state} and cannot be changed.', title="Invalid Transition"
            )

        changes: list[str] = []
        note = ""
        if args.progress is not None:
            # Reporting progress on a goal that was never started starts it
            if goal.state == GoalState.NOT_STARTED and args.progress > 0:
                goal, _ = apply_event(goal, GoalEvent(kind=GoalEventKind.START))
                changes.append("state")
            goal, changed = apply_event(goal, GoalEvent(kind=GoalEventKind.UPDATE_PROGRESS, progress=args.progress))
            if changed:
                changes.append("progress")
            elif goal.state != GoalState.IN_PROGRESS:
                note = f" (progress not applied while {goal.state})"

        fields = {
            k: v
            for k, v in {
                "title": args.title if args.id else None,
                "description": args.description,
                "category": args.category,
                "priority": args.priority,
                "due_date": args.due_date,
            }.items()
            if v is not None
        }
        if fields:
            goal = goal.model_copy(update={**fields, "updated_at": utcnow()})
            changes.extend(sorted(fields))

        if not changes:
            return ToolResult(
                title="No Change",
                output=f'Nothing changed on goal "{goal.title}" ({goal.state}, {goal.progress}%).{note}',
                metadata={"id": goal.id, "progress_applied": not note},
            )
        await repo.save(goal)
        bus.publish("goal.updated", {"id": goal.id, "fields": changes}, ctx.session_id)
        return ToolResult(
            title="Goal Updated",
            output=f'Updated goal "{goal.title}": {goal.state}, {goal.progress}%{note}',
            metadata={
                "id": goal.id,
                "state": str(goal.state),
                "progress": goal.progress,
                "progress_applied": not note,
            },
        )

    async def delete(args: GoalArgs, ctx: ToolContext) -> ToolResult:
        goal = await repo.find(args.id, args.title)
        if goal is None:
            return not_found("goal", args.id, args.title)
        await repo.delete(goal.id)
        bus.publish("goal.deleted", {"id": goal.id}, ctx.session_id)
        return ToolResult(title="Goal Deleted", output=f'Deleted goal "{goal.title}"', metadata={"id": goal.id})

    async def transition(args: GoalArgs, ctx: ToolContext) -> ToolResult:
        goal = await repo.find(args.id, args.title)
        if goal is None:
            return not_found("goal", args.id, args.title)
        event = GoalEvent(kind=_ACTION_EVENTS[args.action], reason=args.reason, milestone_id=args.milestone_id)
        return await run_transition(
            label="goal",
            action=args.action,
            entity=goal,
            event=event,
            apply=apply_event,
            terminal=TERMINAL_STATES,
            repo=repo,
            bus=bus,
            ctx=ctx,
        )

    handlers = {
        "create": create,
        "list": list_goals,
        "get": get,
        "update": update,
        "delete": delete,
    }

    async def execute(args: GoalArgs, ctx: ToolContext) -> ToolResult:
        handler = handlers.get(args.action, transition)
        return await handler(args, ctx)

    return Tool(name="goal", description=GOAL_DESCRIPTION, args_model=GoalArgs, handler=execute)
