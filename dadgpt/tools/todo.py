"""Todo tool: create, list and move todos through their lifecycle."""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, Field

from dadgpt.events import EventBus
from dadgpt.state.schemas import Priority
from dadgpt.state.todo import (
    TERMINAL_STATES,
    Timeframe,
    Todo,
    TodoEvent,
    TodoEventKind,
    TodoState,
    apply_event,
)
from dadgpt.storage import EntityRepository, JsonStore
from dadgpt.tools.base import Tool, ToolContext, ToolResult, error_result
from dadgpt.tools.entity import not_found, run_transition
from dadgpt.tools.listing import narrow, sort_entities
from dadgpt.utils import generate_id, utcnow

logger = logging.getLogger(__name__)

TodoAction = Literal[
    "create",
    "list",
    "get",
    "update",
    "start",
    "complete",
    "block",
    "unblock",
    "defer",
    "activate",
    "cancel",
    "delete",
]

_ACTION_EVENTS: dict[str, TodoEventKind] = {
    "start": TodoEventKind.START,
    "complete": TodoEventKind.COMPLETE,
    "block": TodoEventKind.BLOCK,
    "unblock": TodoEventKind.UNBLOCK,
    "defer": TodoEventKind.DEFER,
    "activate": TodoEventKind.ACTIVATE,
    "cancel": TodoEventKind.CANCEL,
}

_STATE_ICONS: dict[str, str] = {
    TodoState.PENDING: "[ ]",
    TodoState.IN_PROGRESS: "[>]",
    TodoState.BLOCKED: "[!]",
    TodoState.DEFERRED: "[~]",
    TodoState.DONE: "[x]",
    TodoState.CANCELLED: "[-]",
}

TODO_DESCRIPTION = """Manage todos. Actions:
- create: Create a new todo (title required)
- list: List todos, optionally filtered by state, timeframe or priority
- get: Show one todo with its history
- update: Change title, priority, due date, timeframe or links
- start: Start working on a todo
- complete: Mark a todo as done
- block: Mark an in-progress todo as blocked (reason required)
- unblock: Resume a blocked todo
- defer: Defer a todo to a later timeframe
- activate: Bring a deferred todo back to pending
- cancel: Cancel a todo
- delete: Permanently delete a todo
Todos can be referenced by id, or by a unique part of their title."""


class TodoArgs(BaseModel):
    action: TodoAction
    id: str | None = Field(None, description="Todo ID")
    title: str | None = Field(None, description="Todo title (for create, or to find a todo by title)")
    timeframe: Timeframe | None = Field(None, description="today, this_week or someday")
    priority: Priority | None = Field(None, description="Priority level")
    due_date: str | None = Field(None, description="Due date, e.g. 2025-06-15")
    goal_id: str | None = Field(None, description="Associated goal ID")
    project_id: str | None = Field(None, description="Associated project ID")
    reason: str | None = Field(None, description="Reason for block, defer or cancel")
    state: TodoState | None = Field(None, description="State filter for list")


def format_todo_line(todo: Todo) -> str:
    line = f"{_STATE_ICONS.get(todo.state, '[?]')} {todo.title}"
    if todo.priority:
        line += f" [{todo.priority}]"
    if todo.due_date:
        line += f" (due {todo.due_date})"
    if todo.state == TodoState.BLOCKED and todo.blocked_reason:
        line += f" (blocked: {todo.blocked_reason})"
    return f"{line} (ID: {todo.id})"


def create_todo_tool(store: JsonStore, bus: EventBus) -> Tool:
    """Create the todo tool with its repository captured in closure context."""
    repo: EntityRepository[Todo] = EntityRepository(store, "todos", Todo, terminal=TERMINAL_STATES)

    async def create(args: TodoArgs, ctx: ToolContext) -> ToolResult:
        if not args.title:
            return error_result("Todo title is required")
        todo = Todo(
            id=generate_id(),
            title=args.title,
            timeframe=args.timeframe or "today",
            priority=args.priority,
            due_date=args.due_date,
            goal_id=args.goal_id,
            project_id=args.project_id,
        )
        await repo.save(todo)
        bus.publish("todo.created", {"id": todo.id, "title": todo.title}, ctx.session_id)
        return ToolResult(
            title="Todo Created",
            output=f'Created todo "{todo.title}" for {todo.timeframe.replace("_", " ")} (ID: {todo.id})',
            metadata={"id": todo.id},
        )

    async def list_todos(args: TodoArgs, ctx: ToolContext) -> ToolResult:
        todos = narrow(
            await repo.all(),
            state=args.state,
            timeframe=args.timeframe,
            priority=args.priority,
        )
        if not todos:
            filtered = any(v is not None for v in (args.state, args.timeframe, args.priority))
            return ToolResult(
                title="Todos",
                output="No todos found" + (" matching the filter" if filtered else ""),
                metadata={"count": 0},
            )
        ordered = sort_entities(todos)
        return ToolResult(
            title=f"Todos ({len(ordered)})",
            output="\n".join(format_todo_line(t) for t in ordered),
            metadata={"count": len(ordered), "ids": [t.id for t in ordered]},
        )

    async def get(args: TodoArgs, ctx: ToolContext) -> ToolResult:
        todo = await repo.find(args.id, args.title)
        if todo is None:
            return not_found("todo", args.id, args.title)
        lines = [
            format_todo_line(todo),
            f"State: {todo.state}",
            f"Timeframe: {todo.timeframe}",
        ]
        if todo.goal_id:
            lines.append(f"Goal: {todo.goal_id}")
        if todo.project_id:
            lines.append(f"Project: {todo.project_id}")
        for entry in todo.state_history:
            reason = f" ({entry.reason})" if entry.reason else ""
            lines.append(f"  {entry.at:%Y-%m-%d %H:%M} {entry.from_state} -> {entry.to_state}{reason}")
        return ToolResult(title=todo.title, output="\n".join(lines), metadata={"todo": todo.model_dump(mode="json")})

    async def update(args: TodoArgs, ctx: ToolContext) -> ToolResult:
        # With an id, title is the new title; without one it locates the todo
        todo = await repo.find(args.id) if args.id else await repo.find(title=args.title)
        if todo is None:
            return not_found("todo", args.id, args.title)
        updates = {
            k: v
            for k, v in {
                "title": args.title if args.id else None,
                "priority": args.priority,
                "due_date": args.due_date,
                "timeframe": args.timeframe,
                "goal_id": args.goal_id,
                "project_id": args.project_id,
            }.items()
            if v is not None
        }
        if not updates:
            return ToolResult(title="No Change", output=f'Nothing to update on todo "{todo.title}".')
        todo = await repo.save(todo.model_copy(update={**updates, "updated_at": utcnow()}))
        bus.publish("todo.updated", {"id": todo.id, "fields": sorted(updates)}, ctx.session_id)
        return ToolResult(
            title="Todo Updated",
            output=f'Updated todo "{todo.title}": {", ".join(sorted(updates))}',
            metadata={"id": todo.id},
        )

    async def delete(args: TodoArgs, ctx: ToolContext) -> ToolResult:
        todo = await repo.find(args.id, args.title)
        if todo is None:
            return not_found("todo", args.id, args.title)
        await repo.delete(todo.id)
        bus.publish("todo.deleted", {"id": todo.id}, ctx.session_id)
        return ToolResult(title="Todo Deleted", output=f'Deleted todo "{todo.title}"', metadata={"id": todo.id})

    async def transition(args: TodoArgs, ctx: ToolContext) -> ToolResult:
        todo = await repo.find(args.id, args.title)
        if todo is None:
            return not_found("todo", args.id, args.title)
        event = TodoEvent(kind=_ACTION_EVENTS[args.action], reason=args.reason, timeframe=args.timeframe)
        return await run_transition(
            label="todo",
            action=args.action,
            entity=todo,
            event=event,
            apply=apply_event,
            terminal=TERMINAL_STATES,
            repo=repo,
            bus=bus,
            ctx=ctx,
        )

    handlers = {
        "create": create,
        "list": list_todos,
        "get": get,
        "update": update,
        "delete": delete,
    }

    async def execute(args: TodoArgs, ctx: ToolContext) -> ToolResult:
        handler = handlers.get(args.action, transition)
        return await handler(args, ctx)

    return Tool(name="todo", description=TODO_DESCRIPTION, args_model=TodoArgs, handler=execute)
