"""Family tool: keep track of family members and their birthdays."""

from __future__ import annotations

import logging
from datetime import date
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from dadgpt.events import EventBus
from dadgpt.state.family import FamilyMember, check_birthday, days_until_birthday, next_birthday
from dadgpt.storage import EntityRepository, JsonStore
from dadgpt.tools.base import Tool, ToolContext, ToolResult, error_result

logger = logging.getLogger(__name__)

FamilyAction = Literal["list", "add", "get", "update", "remove", "upcoming"]

FAMILY_DESCRIPTION = """Manage family members. Actions:
- list: List all family members
- add: Add a family member (name and relationship required)
- get: Show one family member
- update: Update relationship, birthday or notes
- remove: Remove a family member
- upcoming: Birthdays in the next N days (default 30)
Birthdays use MM-DD or YYYY-MM-DD."""


class FamilyArgs(BaseModel):
    action: FamilyAction
    id: str | None = Field(None, description="Family member ID")
    name: str | None = Field(None, description="Name (for add, or to find a member)")
    relationship: str | None = Field(None, description="Relationship, e.g. spouse, son, mother")
    birthday: str | None = Field(None, description="Birthday as MM-DD or YYYY-MM-DD")
    notes: str | None = Field(None, description="Free-form notes")
    days: int = Field(30, ge=1, le=366, description="Look-ahead window for upcoming")

    @field_validator("birthday")
    @classmethod
    def _validate_birthday(cls, value: str | None) -> str | None:
        return check_birthday(value)


def format_member_line(member: FamilyMember) -> str:
    line = f"{member.name} ({member.relationship})"
    if member.birthday:
        line += f" birthday {member.birthday}"
    return f"{line} (ID: {member.id})"


def create_family_tool(store: JsonStore, bus: EventBus) -> Tool:
    """Create the family tool with its repository captured in closure context."""
    repo: EntityRepository[FamilyMember] = EntityRepository(store, "family", FamilyMember)

    async def find(args: FamilyArgs) -> FamilyMember | None:
        if args.id:
            return await repo.get(args.id)
        if args.name:
            needle = args.name.lower()
            for member in await repo.all():
                if member.name.lower() == needle:
                    return member
        return None

    def missing(args: FamilyArgs) -> ToolResult:
        if not args.id and not args.name:
            return error_result("Family member ID or name is required")
        return error_result(f"Family member not found: {args.id or args.name}", title="Not Found")

    async def list_members(args: FamilyArgs, ctx: ToolContext) -> ToolResult:
        members = sorted(await repo.all(), key=lambda m: m.name.lower())
        if not members:
            return ToolResult(title="Family", output="No family members recorded", metadata={"count": 0})
        return ToolResult(
            title=f"Family ({len(members)})",
            output="\n".join(format_member_line(m) for m in members),
            metadata={"count": len(members)},
        )

    async def add(args: FamilyArgs, ctx: ToolContext) -> ToolResult:
        if not args.name or not args.relationship:
            return error_result("name and relationship are required")
        member = FamilyMember(
            name=args.name,
            relationship=args.relationship,
            birthday=args.birthday,
            notes=args.notes,
        )
        await repo.save(member)
        bus.publish("family.added", {"id": member.id, "name": member.name}, ctx.session_id)
        return ToolResult(
            title="Family Member Added",
            output=f"Added {member.name} ({member.relationship}) (ID: {member.id})",
            metadata={"id": member.id},
        )

    async def get(args: FamilyArgs, ctx: ToolContext) -> ToolResult:
        member = await find(args)
        if member is None:
            return missing(args)
        lines = [format_member_line(member)]
        if member.notes:
            lines.append(member.notes)
        return ToolResult(title=member.name, output="\n".join(lines), metadata={"member": member.model_dump()})

    async def update(args: FamilyArgs, ctx: ToolContext) -> ToolResult:
        member = await find(args)
        if member is None:
            return missing(args)
        fields = {
            k: v
            for k, v in {
                "name": args.name if args.id else None,
                "relationship": args.relationship,
                "birthday": args.birthday,
                "notes": args.notes,
            }.items()
            if v is not None
        }
        if not fields:
            return ToolResult(title="No Change", output=f"Nothing to update for {member.name}.")
        member = await repo.save(member.model_copy(update=fields))
        bus.publish("family.updated", {"id": member.id, "fields": sorted(fields)}, ctx.session_id)
        return ToolResult(
            title="Family Member Updated",
            output=f"Updated {member.name}: {', '.join(sorted(fields))}",
            metadata={"id": member.id},
        )

    async def remove(args: FamilyArgs, ctx: ToolContext) -> ToolResult:
        member = await find(args)
        if member is None:
            return missing(args)
        await repo.delete(member.id)
        bus.publish("family.removed", {"id": member.id}, ctx.session_id)
        return ToolResult(title="Family Member Removed", output=f"Removed {member.name}", metadata={"id": member.id})

    async def upcoming(args: FamilyArgs, ctx: ToolContext) -> ToolResult:
        today = date.today()
        found: list[tuple[int, FamilyMember]] = []
        for member in await repo.all():
            if not member.birthday:
                continue
            days = days_until_birthday(member.birthday, today)
            if days is not None and days <= args.days:
                found.append((days, member))
        if not found:
            return ToolResult(
                title="Upcoming Birthdays",
                output=f"No birthdays in the next {args.days} days",
                metadata={"count": 0},
            )
        found.sort(key=lambda pair: (pair[0], pair[1].name))
        lines = []
        for days, member in found:
            when = "today" if days == 0 else "tomorrow" if days == 1 else f"in {days} days"
            line = f"{member.name} ({member.relationship}) {when}"
            if member.birth_year:
                line += f", turning {next_birthday(member.birthday, today).year - member.birth_year}"
            lines.append(line)
        return ToolResult(
            title="Upcoming Birthdays",
            output="\n".join(lines),
            metadata={"count": len(found)},
        )

    handlers = {
        "list": list_members,
        "add": add,
        "get": get,
        "update": update,
        "remove": remove,
        "upcoming": upcoming,
    }

    async def execute(args: FamilyArgs, ctx: ToolContext) -> ToolResult:
        return await handlers[args.action](args, ctx)

    return Tool(name="family", description=FAMILY_DESCRIPTION, args_model=FamilyArgs, handler=execute)

