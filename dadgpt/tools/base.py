"""Tool contract and registry.

Provides:
- Tool: a named operation with a pydantic argument model and an async handler
- ToolResult: the uniform {title, output, error, metadata} result
- ToolContext: per-call context (session, working directory, permission gate)
- ToolRegistry: registers tools, validates arguments, dispatches calls

Handlers return error results for expected failures (validation, not
found, invalid transition). Storage and OS errors are converted to error
results here. Anything else propagates to the agent loop.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ValidationError

from dadgpt.errors import StorageError, UnknownToolError
from dadgpt.permission import PermissionGate

logger = logging.getLogger(__name__)


@dataclass
class ToolResult:
    title: str
    output: str
    error: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


def error_result(output: str, title: str = "Error") -> ToolResult:
    return ToolResult(title=title, output=output, error=True)


def format_result(result: ToolResult) -> str:
    """Render a result as the text the model sees."""
    text = f"**{result.title}**\n\n{result.output}"
    if result.metadata:
        text += f"\n\nMetadata: {json.dumps(result.metadata, default=str)}"
    return text


@dataclass
class ToolContext:
    session_id: str | None = None
    working_directory: str = "."
    gate: PermissionGate | None = None

    async def check_permission(self, capability: str, resource: str) -> bool:
        """Ask the gate whether "<capability>:<resource>" may proceed."""
        if self.gate is None:
            return True
        return await self.gate.authorize(capability, resource, self.session_id)


ToolHandler = Callable[[Any, ToolContext], Awaitable[ToolResult]]


@dataclass
class Tool:
    name: str
    description: str
    args_model: type[BaseModel]
    handler: ToolHandler

    @property
    def input_schema(self) -> dict[str, Any]:
        schema = self.args_model.model_json_schema()
        schema.pop("title", None)
        return schema


# ---------------------------------------------------------------------------
# ToolRegistry
# ---------------------------------------------------------------------------


class ToolRegistry:
    """Maps tool names to tools and dispatches calls through them."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            logger.warning("Replacing registered tool %s", tool.name)
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def list(self) -> list[Tool]:
        return list(self._tools.values())

    def list_tools(self) -> list[dict[str, Any]]:
        """Tool definitions advertised to the model."""
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.input_schema,
            }
            for tool in self._tools.values()
        ]

    async def execute(self, name: str, args: dict[str, Any], ctx: ToolContext) -> ToolResult:
        """Validate args and run the named tool.

        Raises UnknownToolError for unregistered names.
        """
        tool = self._tools.get(name)
        if tool is None:
            raise UnknownToolError(name)

        try:
            parsed = tool.args_model.model_validate(args or {})
        except ValidationError as e:
            return error_result(_format_validation_error(e), title="Invalid Arguments")

        try:
            return await tool.handler(parsed, ctx)
        except ValidationError as e:
            return error_result(_format_validation_error(e), title="Invalid Arguments")
        except StorageError as e:
            logger.warning("Storage error in tool %s: %s", name, e)
            return error_result(str(e), title="Storage Error")
        except OSError as e:
            logger.warning("I/O error in tool %s: %s", name, e)
            return error_result(f"I/O error: {e}", title="I/O Error")


def _format_validation_error(error: ValidationError) -> str:
    lines = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "input"
        lines.append(f"{location}: {item['msg']}")
    return "\n".join(lines)
