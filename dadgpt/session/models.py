"""Pydantic DTOs for sessions and conversation messages."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from dadgpt.utils import generate_id, utcnow

Role = Literal["user", "assistant", "tool"]

DEFAULT_TITLE = "New Session"


class Usage(BaseModel):
    """Token usage. Addition is field-wise so rounds can be summed."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


class ToolCallRequest(BaseModel):
    id: str
    tool_name: str
    args: dict[str, Any] = Field(default_factory=dict)


class ToolResultRecord(BaseModel):
    tool_call_id: str
    output: str
    is_error: bool = False


class ConversationMessage(BaseModel):
    id: str = Field(default_factory=lambda: generate_id("msg"))
    session_id: str
    role: Role
    content: str = ""
    tool_calls: list[ToolCallRequest] | None = None
    tool_results: list[ToolResultRecord] | None = None
    timestamp: datetime = Field(default_factory=utcnow)
    usage: Usage | None = None
    model: str | None = None


class Session(BaseModel):
    id: str = Field(default_factory=lambda: generate_id("ses"))
    title: str = DEFAULT_TITLE
    directory: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
