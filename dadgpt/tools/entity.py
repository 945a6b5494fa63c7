"""Transition plumbing shared by the goal, todo and project tools."""

from __future__ import annotations

import logging
from collections.abc import Callable, Collection
from typing import Any, TypeVar

from pydantic import BaseModel

from dadgpt.events import EventBus
from dadgpt.storage import EntityRepository
from dadgpt.tools.base import ToolContext, ToolResult, error_result

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

# States whose entry publishes "<entity>.completed" instead of "<entity>.updated"
COMPLETION_STATES = frozenset({"done", "completed"})


def not_found(label: str, entity_id: str | None, title: str | None) -> ToolResult:
    if not entity_id and not title:
        return error_result(f"{label.capitalize()} ID or title is required")
    return error_result(f"{label.capitalize()} not found: {entity_id or title}", title="Not Found")


async def run_transition(
    *,
    label: str,
    action: str,
    entity: T,
    event: BaseModel,
    apply: Callable[[T, Any], tuple[T, bool]],
    terminal: Collection[str],
    repo: EntityRepository[T],
    bus: EventBus,
    ctx: ToolContext,
) -> ToolResult:
    """Send event to an entity's machine, persist and announce the outcome.

    Terminal entities are rejected before the machine runs. A machine
    no-op is reported as "No Change" rather than an error.
    """
    state = entity.state
    if state in terminal:
        return error_result(
            f'{label.capitalize()} "{entity.title}" is {state} and cannot be changed.',
            title="Invalid Transition",
        )

    updated, changed = apply(entity, event)
    if not changed:
        return ToolResult(
            title="No Change",
            output=f'Cannot {action} {label} "{entity.title}" while it is {state}.',
            metadata={"id": entity.id, "state": str(state)},
        )

    await repo.save(updated)
    event_name = f"{label}.completed" if updated.state in COMPLETION_STATES else f"{label}.updated"
    bus.publish(
        event_name,
        {"id": updated.id, "from": str(state), "to": str(updated.state), "action": action},
        ctx.session_id,
    )
    logger.debug("%s %s: %s -> %s", label, updated.id, state, updated.state)

    if updated.state != state:
        output = f'{label.capitalize()} "{updated.title}" moved from {state} to {updated.state}.'
    else:
        output = f'{label.capitalize()} "{updated.title}" updated.'
    return ToolResult(
        title=f"{label.capitalize()} Updated",
        output=output,
        metadata={"id": updated.id, "state": str(updated.state)},
    )
