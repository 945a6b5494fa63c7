"""Project tool: plan projects, track milestones and drive their lifecycle."""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, Field

from dadgpt.events import EventBus
from dadgpt.state.project import (
    TERMINAL_STATES,
    Project,
    ProjectEvent,
    ProjectEventKind,
    ProjectState,
    apply_event,
)
from dadgpt.state.schemas import Milestone, Priority
from dadgpt.storage import EntityRepository, JsonStore
from dadgpt.tools.base import Tool, ToolContext, ToolResult, error_result
from dadgpt.tools.entity import not_found, run_transition
from dadgpt.tools.listing import narrow, sort_entities
from dadgpt.utils import generate_id, utcnow

logger = logging.getLogger(__name__)

ProjectAction = Literal[
    "create",
    "list",
    "get",
    "update",
    "transition",
    "add_milestone",
    "complete_milestone",
    "delete",
]

PROJECT_DESCRIPTION = """Manage projects. Actions:
- create: Create a project in planning (title required)
- list: List projects, optionally filtered by state or priority
- get: Show a project with milestones, linked todos and history
- update: Change title, description, budget, priority, due date or links
- transition: Send a lifecycle event: START, PAUSE, RESUME, COMPLETE or CANCEL
- add_milestone: Add a milestone (planning or active projects)
- complete_milestone: Mark a milestone as done (active projects)
- delete: Permanently delete a project"""


class ProjectArgs(BaseModel):
    action: ProjectAction
    id: str | None = Field(None, description="Project ID")
    title: str | None = Field(None, description="Project title (for create, or to find a project by title)")
    description: str | None = Field(None, description="Project description")
    budget: float | None = Field(None, description="Budget amount")
    priority: Priority | None = Field(None, description="Priority level")
    due_date: str | None = Field(None, description="Due date")
    goal_id: str | None = Field(None, description="Linked goal ID")
    todo_ids: list[str] | None = Field(None, description="Linked todo IDs")
    event: Literal["START", "PAUSE", "RESUME", "COMPLETE", "CANCEL"] | None = Field(
        None, description="Lifecycle event (for transition)"
    )
    milestone_title: str | None = Field(None, description="Milestone title (for add_milestone)")
    milestone_due_date: str | None = Field(None, description="Milestone due date (for add_milestone)")
    milestone_id: str | None = Field(None, description="Milestone ID (for complete_milestone)")
    reason: str | None = Field(None, description="Reason for pause or cancel")
    state: ProjectState | None = Field(None, description="State filter for list")


def format_project_line(project: Project) -> str:
    done = sum(1 for m in project.milestones if m.completed)
    line = f"{project.title} [{project.state}]"
    if project.milestones:
        line += f" {done}/{len(project.milestones)} milestones"
    if project.priority:
        line += f" ({project.priority})"
    if project.due_date:
        line += f" due {project.due_date}"
    return f"{line} (ID: {project.id})"


def create_project_tool(store: JsonStore, bus: EventBus) -> Tool:
    """Create the project tool with its repository captured in closure context."""
    repo: EntityRepository[Project] = EntityRepository(store, "projects", Project, terminal=TERMINAL_STATES)

    async def create(args: ProjectArgs, ctx: ToolContext) -> ToolResult:
        if not args.title:
            return error_result("Project title is required")
        project = Project(
            id=generate_id(),
            title=args.title,
            description=args.description or "",
            budget=args.budget,
            priority=args.priority,
            due_date=args.due_date,
            goal_id=args.goal_id,
            todo_ids=args.todo_ids or [],
        )
        await repo.save(project)
        bus.publish("project.created", {"id": project.id, "title": project.title}, ctx.session_id)
        return ToolResult(
            title="Project Created",
            output=f'Created project "{project.title}" (ID: {project.id})',
            metadata={"id": project.id},
        )

    async def list_projects(args: ProjectArgs, ctx: ToolContext) -> ToolResult:
        projects = narrow(await repo.all(), state=args.state, priority=args.priority)
        if not projects:
            return ToolResult(title="Projects", output="No projects found", metadata={"count": 0})
        ordered = sort_entities(projects)
        return ToolResult(
            title=f"Projects ({len(ordered)})",
            output="\n".join(format_project_line(p) for p in ordered),
            metadata={"count": len(ordered), "ids": [p.id for p in ordered]},
        )

    async def get(args: ProjectArgs, ctx: ToolContext) -> ToolResult:
        project = await repo.find(args.id, args.title)
        if project is None:
            return not_found("project", args.id, args.title)
        lines = [format_project_line(project)]
        if project.description:
            lines.append(project.description)
        if project.budget is not None:
            lines.append(f"Budget: {project.budget:,.2f}")
        for milestone in project.milestones:
            mark = "x" if milestone.completed else " "
            due = f" due {milestone.due_date}" if milestone.due_date else ""
            lines.append(f"  [{mark}] {milestone.title}{due} (ID: {milestone.id})")
        if project.todo_ids:
            lines.append(f"Todos: {', '.join(project.todo_ids)}")
        return ToolResult(
            title=project.title,
            output="\n".join(lines),
            metadata={"project": project.model_dump(mode="json")},
        )

    async def update(args: ProjectArgs, ctx: ToolContext) -> ToolResult:
        project = await repo.find(args.id) if args.id else await repo.find(title=args.title)
        if project is None:
            return not_found("project", args.id, args.title)
        fields = {
            k: v
            for k, v in {
                "title": args.title if args.id else None,
                "description": args.description,
                "budget": args.budget,
                "priority": args.priority,
                "due_date": args.due_date,
                "goal_id": args.goal_id,
                "todo_ids": args.todo_ids,
            }.items()
            if v is not None
        }
        if not fields:
            return ToolResult(title="No Change", output=f'Nothing to update on project "{project.title}".')
        project = await repo.save(project.model_copy(update={**fields, "updated_at": utcnow()}))
        bus.publish("project.updated", {"id": project.id, "fields": sorted(fields)}, ctx.session_id)
        return ToolResult(
            title="Project Updated",
            output=f'Updated project "{project.title}": {", ".join(sorted(fields))}',
            metadata={"id": project.id},
        )

    async def delete(args: ProjectArgs, ctx: ToolContext) -> ToolResult:
        project = await repo.find(args.id, args.title)
        if project is None:
            return not_found("project", args.id, args.title)
        await repo.delete(project.id)
        bus.publish("project.deleted", {"id": project.id}, ctx.session_id)
        return ToolResult(
            title="Project Deleted", output=f'Deleted project "{project.title}"', metadata={"id": project.id}
        )

    async def transition(args: ProjectArgs, ctx: ToolContext) -> ToolResult:
        project = await repo.find(args.id, args.title)
        if project is None:
            return not_found("project", args.id, args.title)

        if args.action == "transition":
            if not args.event:
                return error_result("event is required for transition")
            event = ProjectEvent(kind=ProjectEventKind(args.event), reason=args.reason)
        elif args.action == "add_milestone":
            if not args.milestone_title:
                return error_result("milestone_title is required for add_milestone")
            milestone = Milestone(id=generate_id("ms"), title=args.milestone_title, due_date=args.milestone_due_date)
            event = ProjectEvent(kind=ProjectEventKind.ADD_MILESTONE, milestone=milestone)
        else:
            if not args.milestone_id:
                return error_result("milestone_id is required for complete_milestone")
            event = ProjectEvent(kind=ProjectEventKind.COMPLETE_MILESTONE, milestone_id=args.milestone_id)

        return await run_transition(
            label="project",
            action=str(event.kind).lower(),
            entity=project,
            event=event,
            apply=apply_event,
            terminal=TERMINAL_STATES,
            repo=repo,
            bus=bus,
            ctx=ctx,
        )

    handlers = {
        "create": create,
        "list": list_projects,
        "get": get,
        "update": update,
        "delete": delete,
    }

    async def execute(args: ProjectArgs, ctx: ToolContext) -> ToolResult:
        handler = handlers.get(args.action, transition)
        return await handler(args, ctx)

    return Tool(name="project", description=PROJECT_DESCRIPTION, args_model=ProjectArgs, handler=execute)
