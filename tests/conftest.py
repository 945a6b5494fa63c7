"""Shared fixtures: real JsonStore on tmp_path, a bus, and a scripted provider."""

from __future__ import annotations

import uuid
from collections.abc import Callable

import pytest

from dadgpt.agent.provider import StreamEvent
from dadgpt.config import Settings
from dadgpt.events import EventBus
from dadgpt.session.models import ToolCallRequest, Usage
from dadgpt.session.store import SessionStore
from dadgpt.storage import JsonStore
from dadgpt.tools.base import ToolContext

# ---------------------------------------------------------------------------
# Scripted provider
# ---------------------------------------------------------------------------


def text_response(text: str, prompt_tokens: int = 10, completion_tokens: int = 5) -> list[StreamEvent]:
    """A completion that streams text in two chunks and ends the turn."""
    half = len(text) // 2
    events = [StreamEvent(type="text_delta", text=chunk) for chunk in (text[:half], text[half:]) if chunk]
    return [
        *events,
        StreamEvent(
            type="usage",
            usage=Usage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
        ),
        StreamEvent(type="done", stop_reason="end_turn"),
    ]


def tool_response(name: str, args: dict | None = None, text: str = "", call_id: str | None = None) -> list[StreamEvent]:
    """A completion that asks for one tool call."""
    events: list[StreamEvent] = []
    if text:
        events.append(StreamEvent(type="text_delta", text=text))
    events.append(
        StreamEvent(
            type="tool_call",
            tool_call=ToolCallRequest(
                id=call_id or f"toolu_{uuid.uuid4().hex[:12]}", tool_name=name, args=args or {}
            ),
        )
    )
    events.append(StreamEvent(type="usage", usage=Usage(prompt_tokens=10, completion_tokens=5, total_tokens=15)))
    events.append(StreamEvent(type="done", stop_reason="tool_use"))
    return events


class FakeProvider:
    """Replays scripted responses and records every request.

    When the script runs out, `default` builds the next response.
    """

    name = "fake"

    def __init__(
        self,
        responses: list[list[StreamEvent]] | None = None,
        default: Callable[[], list[StreamEvent]] | None = None,
    ) -> None:
        self.responses = list(responses or [])
        self.default = default or (lambda: text_response("ok"))
        self.calls: list[dict] = []
        self.closed = False

    async def stream_completion(self, model, system_prompt, messages, tools, cancel=None):
        self.calls.append({
            "model": model,
            "system_prompt": system_prompt,
            "messages": list(messages),
            "tools": tools,
        })
        events = self.responses.pop(0) if self.responses else self.default()
        for event in events:
            yield event

    async def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        ANTHROPIC_API_KEY="test-key",
        data_dir=tmp_path / "data",
        working_directory=str(tmp_path),
        max_iterations=3,
    )


@pytest.fixture
def store(tmp_path) -> JsonStore:
    return JsonStore(tmp_path / "data")


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def sessions(store, bus) -> SessionStore:
    return SessionStore(store, bus)


@pytest.fixture
def ctx(tmp_path) -> ToolContext:
    return ToolContext(session_id="ses_test", working_directory=str(tmp_path))


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()
