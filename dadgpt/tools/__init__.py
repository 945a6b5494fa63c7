"""Tool registry and the built-in DadGPT tools."""

from __future__ import annotations

from dadgpt.config import Settings
from dadgpt.events import EventBus
from dadgpt.intelligence import SuggestionEngine
from dadgpt.storage import JsonStore
from dadgpt.tools.base import Tool, ToolContext, ToolRegistry, ToolResult, format_result
from dadgpt.tools.bash import create_bash_tool
from dadgpt.tools.family import create_family_tool
from dadgpt.tools.files import create_file_tools
from dadgpt.tools.goal import create_goal_tool
from dadgpt.tools.project import create_project_tool
from dadgpt.tools.review import create_review_tool
from dadgpt.tools.todo import create_todo_tool

__all__ = [
    "Tool",
    "ToolContext",
    "ToolRegistry",
    "ToolResult",
    "format_result",
    "register_builtin_tools",
]


def register_builtin_tools(
    registry: ToolRegistry,
    store: JsonStore,
    bus: EventBus,
    settings: Settings,
) -> None:
    """Register every built-in tool with the registry."""
    registry.register(create_goal_tool(store, bus, settings.goal_categories))
    registry.register(create_todo_tool(store, bus))
    registry.register(create_project_tool(store, bus))
    registry.register(create_family_tool(store, bus))
    registry.register(create_review_tool(SuggestionEngine(store)))
    for tool in create_file_tools():
        registry.register(tool)
    registry.register(create_bash_tool())
