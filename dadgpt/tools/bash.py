"""Shell tool: run a command in the working directory after a permission check."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from pydantic import BaseModel, Field

from dadgpt.tools.base import Tool, ToolContext, ToolResult, error_result

logger = logging.getLogger(__name__)

# Limits
_MAX_BASH_TIMEOUT = 300  # seconds
_MAX_OUTPUT_CHARS = 100 * 1024  # 100KB


class BashArgs(BaseModel):
    command: str = Field(min_length=1, description="Shell command to execute")
    timeout: int = Field(30, description="Timeout in seconds (default 30, max 300)")


def _truncate(text: str, label: str) -> str:
    if len(text) > _MAX_OUTPUT_CHARS:
        return text[:_MAX_OUTPUT_CHARS] + f"\n... [{label} truncated at 100KB]"
    return text


async def run_bash(args: BashArgs, ctx: ToolContext) -> ToolResult:
    if not await ctx.check_permission("bash", args.command):
        return error_result(f"Permission denied: bash {args.command}", title="Permission Denied")

    effective_timeout = max(1, min(args.timeout, _MAX_BASH_TIMEOUT))
    workspace = Path(ctx.working_directory)

    proc = await asyncio.create_subprocess_shell(
        args.command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=str(workspace),
    )

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=effective_timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        return error_result(
            f"Command timed out after {effective_timeout}s.\nCommand: {args.command}",
            title="Timeout",
        )

    stdout_text = _truncate(stdout.decode("utf-8", errors="replace"), "output")
    stderr_text = _truncate(stderr.decode("utf-8", errors="replace"), "stderr")

    parts = []
    if stdout_text:
        parts.append(stdout_text)
    if stderr_text:
        parts.append(f"STDERR:\n{stderr_text}")
    if proc.returncode != 0:
        parts.append(f"Exit code: {proc.returncode}")

    return ToolResult(
        title=f"$ {args.command}",
        output="\n".join(parts) if parts else "(no output)",
        error=proc.returncode != 0,
        metadata={"exit_code": proc.returncode},
    )


def create_bash_tool() -> Tool:
    return Tool(
        name="bash",
        description="Execute a shell command in the working directory (default timeout 30s, max 300s).",
        args_model=BashArgs,
        handler=run_bash,
    )
