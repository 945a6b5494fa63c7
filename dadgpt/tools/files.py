"""File tools: read and write, gated by the permission gate.

Paths are resolved against the context's working directory. Every call
asks the gate for "read:<path>" or "write:<path>" with the resolved
absolute path before touching the filesystem.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from pydantic import BaseModel, Field

from dadgpt.tools.base import Tool, ToolContext, ToolResult, error_result

logger = logging.getLogger(__name__)

# Limits
_MAX_FILE_SIZE = 1 * 1024 * 1024  # 1MB
_MAX_LINE_CHARS = 2000
_DEFAULT_LINE_LIMIT = 2000


def resolve_path(path_str: str, working_directory: str) -> Path:
    path = Path(path_str).expanduser()
    if not path.is_absolute():
        path = Path(working_directory) / path
    return path.resolve()


def permission_denied(capability: str, target: Path) -> ToolResult:
    return error_result(f"Permission denied: {capability} {target}", title="Permission Denied")


# ---------------------------------------------------------------------------
# read
# ---------------------------------------------------------------------------


class ReadArgs(BaseModel):
    path: str = Field(description="File path (absolute, or relative to the working directory)")
    offset: int = Field(0, ge=0, description="Line offset to start reading from (0-indexed)")
    limit: int = Field(_DEFAULT_LINE_LIMIT, ge=1, description="Maximum number of lines to read")


async def read_file(args: ReadArgs, ctx: ToolContext) -> ToolResult:
    target = resolve_path(args.path, ctx.working_directory)
    if not await ctx.check_permission("read", str(target)):
        return permission_denied("read", target)

    if not target.exists():
        return error_result(f"File not found: {args.path}", title="Not Found")
    if not target.is_file():
        return error_result(f"Not a file: {args.path}")

    file_size = target.stat().st_size
    if file_size > _MAX_FILE_SIZE and args.offset == 0 and args.limit == _DEFAULT_LINE_LIMIT:
        return error_result(
            f"File too large: {file_size:,} bytes (limit: {_MAX_FILE_SIZE:,} bytes). "
            "Use offset/limit to read portions."
        )

    content = await asyncio.to_thread(target.read_text, encoding="utf-8", errors="replace")
    lines = content.splitlines()
    selected = lines[args.offset : args.offset + args.limit]

    numbered = []
    for number, line in enumerate(selected, start=args.offset + 1):
        if len(line) > _MAX_LINE_CHARS:
            line = line[:_MAX_LINE_CHARS] + "..."
        numbered.append(f"{number:>6}\t{line}")

    output = "\n".join(numbered) if numbered else "(empty file)"
    remaining = len(lines) - (args.offset + len(selected))
    if remaining > 0:
        output += f"\n\n({remaining} more lines, use offset={args.offset + len(selected)} to continue)"

    return ToolResult(
        title=str(target),
        output=output,
        metadata={"path": str(target), "lines": len(selected), "total_lines": len(lines)},
    )


# ---------------------------------------------------------------------------
# write
# ---------------------------------------------------------------------------


class WriteArgs(BaseModel):
    path: str = Field(description="File path (absolute, or relative to the working directory)")
    content: str = Field(description="Content to write")
    append: bool = Field(False, description="Append instead of overwriting")
    create_directories: bool = Field(True, description="Create missing parent directories")


def _write(target: Path, content: str, append: bool) -> None:
    with target.open("a" if append else "w", encoding="utf-8") as f:
        f.write(content)


async def write_file(args: WriteArgs, ctx: ToolContext) -> ToolResult:
    target = resolve_path(args.path, ctx.working_directory)
    if not await ctx.check_permission("write", str(target)):
        return permission_denied("write", target)

    if not target.parent.exists():
        if not args.create_directories:
            return error_result(f"Directory does not exist: {target.parent}")
        await asyncio.to_thread(target.parent.mkdir, parents=True, exist_ok=True)

    existed = target.exists()
    await asyncio.to_thread(_write, target, args.content, args.append)

    verb = "Appended to" if args.append else ("Overwrote" if existed else "Created")
    return ToolResult(
        title="File Written",
        output=f"{verb} {target}\nSize: {len(args.content):,} characters",
        metadata={"path": str(target), "append": args.append},
    )


def create_file_tools() -> list[Tool]:
    return [
        Tool(
            name="read",
            description="Read a text file with line numbers. Use offset/limit for large files.",
            args_model=ReadArgs,
            handler=read_file,
        ),
        Tool(
            name="write",
            description="Write or append text to a file, creating parent directories as needed.",
            args_model=WriteArgs,
            handler=write_file,
        ),
    ]
