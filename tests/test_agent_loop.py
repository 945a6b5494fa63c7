"""Tests for AgentLoop and ChatService.

A scripted FakeProvider stands in for the LLM; sessions and tools run
against a real JsonStore on tmp_path.
"""

from __future__ import annotations

import asyncio

import pytest
from pydantic import BaseModel

from dadgpt.agent.loop import AgentLoop, LoopState
from dadgpt.agent.service import ChatService
from dadgpt.errors import ProviderError, SessionNotFoundError
from dadgpt.tools import ToolRegistry
from dadgpt.tools.base import Tool, ToolContext, ToolResult
from dadgpt.tools.todo import create_todo_tool

from tests.conftest import FakeProvider, text_response, tool_response

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _NoArgs(BaseModel):
    pass


def _make_registry(store, bus, *extra: Tool) -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(create_todo_tool(store, bus))
    for tool in extra:
        registry.register(tool)
    return registry


def _make_loop(provider, store, bus, sessions, settings, *extra: Tool) -> AgentLoop:
    return AgentLoop(provider, _make_registry(store, bus, *extra), sessions, bus, settings)


async def _session_with_message(sessions, text: str = "hello"):
    session = await sessions.create()
    await sessions.add_message(session.id, "user", text)
    return session


def _exploding_tool() -> Tool:
    async def handler(args, ctx: ToolContext) -> ToolResult:
        raise RuntimeError("kaboom")

    return Tool(name="explode", description="Always raises", args_model=_NoArgs, handler=handler)


# ---------------------------------------------------------------------------
# AgentLoop
# ---------------------------------------------------------------------------


class TestAgentLoop:
    @pytest.mark.asyncio
    async def test_pre_cancelled_makes_no_provider_calls(self, store, bus, sessions, settings, fake_provider):
        loop = _make_loop(fake_provider, store, bus, sessions, settings)
        session = await _session_with_message(sessions)
        cancel = asyncio.Event()
        cancel.set()

        result = await loop.run(session.id, cancel)

        assert (result.content, result.tool_calls, result.aborted) == ("", [], True)
        assert result.state == LoopState.ABORTED
        assert fake_provider.calls == []

    @pytest.mark.asyncio
    async def test_text_only_response(self, store, bus, sessions, settings):
        provider = FakeProvider([text_response("Hi there, how can I help?")])
        loop = _make_loop(provider, store, bus, sessions, settings)
        session = await _session_with_message(sessions)
        chunks: list[str] = []

        result = await loop.run(session.id, on_text_chunk=chunks.append)

        assert result.content == "Hi there, how can I help?"
        assert "".join(chunks) == result.content
        assert result.rounds == 1
        assert not result.aborted
        assert result.state == LoopState.DONE
        assert len(provider.calls) == 1

        messages = await sessions.get_messages(session.id)
        assert [m.role for m in messages] == ["user", "assistant"]
        assert messages[1].content == result.content
        assert messages[1].model == settings.model
        assert messages[1].usage.total_tokens == 15

    @pytest.mark.asyncio
    async def test_history_and_tools_sent_to_provider(self, store, bus, sessions, settings):
        provider = FakeProvider([text_response("ok")])
        loop = _make_loop(provider, store, bus, sessions, settings)
        session = await _session_with_message(sessions, "what's on today?")

        await loop.run(session.id)

        [call] = provider.calls
        assert call["model"] == settings.model
        assert [m.content for m in call["messages"]] == ["what's on today?"]
        assert [t["name"] for t in call["tools"]] == ["todo"]
        assert "DadGPT" in call["system_prompt"]

    @pytest.mark.asyncio
    async def test_tool_round_then_answer(self, store, bus, sessions, settings):
        provider = FakeProvider([
            tool_response("todo", {"action": "create", "title": "Call mom"}, call_id="toolu_1"),
            text_response("Added it."),
        ])
        loop = _make_loop(provider, store, bus, sessions, settings)
        session = await _session_with_message(sessions, "remind me to call mom")
        events = []
        for name in ("tool.start", "tool.complete", "tool.error"):
            bus.subscribe(name, events.append)

        result = await loop.run(session.id)

        assert result.content == "Added it."
        assert result.rounds == 2
        assert [r.tool_id for r in result.tool_calls] == ["todo"]
        assert not result.tool_calls[0].is_error
        assert "Todo Created" in result.tool_calls[0].output
        assert [e.type for e in events] == ["tool.start", "tool.complete"]
        assert events[0].data == {
            "id": "toolu_1",
            "tool": "todo",
            "args": {"action": "create", "title": "Call mom"},
        }
        assert result.usage.total_tokens == 30

        # Second request carries the tool call and its result
        second = provider.calls[1]["messages"]
        assert [m.role for m in second] == ["user", "assistant", "tool"]
        assert second[1].tool_calls[0].id == "toolu_1"
        assert second[2].tool_results[0].tool_call_id == "toolu_1"

        # Only the final answer is persisted
        messages = await sessions.get_messages(session.id)
        assert [m.role for m in messages] == ["user", "assistant"]

    @pytest.mark.asyncio
    async def test_always_tool_model_hits_iteration_cap(self, store, bus, sessions, settings):
        provider = FakeProvider(default=lambda: tool_response("todo", {"action": "list"}))
        loop = _make_loop(provider, store, bus, sessions, settings)
        session = await _session_with_message(sessions)

        result = await loop.run(session.id, max_iterations=4)

        assert result.rounds == 4
        assert len(result.tool_calls) == 4
        assert len(provider.calls) == 4
        assert not result.aborted
        assert result.state == LoopState.DONE
        # Nothing beyond the user message is persisted at the cap
        assert len(await sessions.get_messages(session.id)) == 1

    @pytest.mark.asyncio
    async def test_default_cap_comes_from_settings(self, store, bus, sessions, settings):
        provider = FakeProvider(default=lambda: tool_response("todo", {"action": "list"}))
        loop = _make_loop(provider, store, bus, sessions, settings)
        session = await _session_with_message(sessions)

        result = await loop.run(session.id)

        assert result.rounds == settings.max_iterations

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [0, -2])
    async def test_explicit_cap_below_one_is_rejected(self, store, bus, sessions, settings, fake_provider, value):
        loop = _make_loop(fake_provider, store, bus, sessions, settings)
        session = await _session_with_message(sessions)

        with pytest.raises(ValueError, match="max_iterations"):
            await loop.run(session.id, max_iterations=value)
        assert fake_provider.calls == []

    @pytest.mark.asyncio
    async def test_tool_exception_is_folded_back(self, store, bus, sessions, settings):
        provider = FakeProvider([tool_response("explode"), text_response("Sorry, that failed.")])
        loop = _make_loop(provider, store, bus, sessions, settings, _exploding_tool())
        session = await _session_with_message(sessions)
        errors = []
        bus.subscribe("tool.error", errors.append)
        failed = []

        result = await loop.run(session.id, on_tool_error=failed.append)

        assert result.content == "Sorry, that failed."
        assert result.tool_calls[0].is_error
        assert "kaboom" in result.tool_calls[0].output
        assert errors[0].data["error"] == "kaboom"
        assert failed[0].tool_id == "explode"
        assert provider.calls[1]["messages"][-1].tool_results[0].is_error

    @pytest.mark.asyncio
    async def test_unknown_tool_is_an_error_result(self, store, bus, sessions, settings):
        provider = FakeProvider([tool_response("teleport"), text_response("I can't do that.")])
        loop = _make_loop(provider, store, bus, sessions, settings)
        session = await _session_with_message(sessions)

        result = await loop.run(session.id)

        assert result.tool_calls[0].is_error
        assert "Unknown tool: teleport" in result.tool_calls[0].output
        assert result.content == "I can't do that."

    @pytest.mark.asyncio
    async def test_tools_run_in_request_order(self, store, bus, sessions, settings):
        first = tool_response("todo", {"action": "create", "title": "A"}, call_id="t1")
        second = tool_response("todo", {"action": "list"}, call_id="t2")
        combined = [first[0], second[0], *first[1:]]
        provider = FakeProvider([combined, text_response("done")])
        loop = _make_loop(provider, store, bus, sessions, settings)
        session = await _session_with_message(sessions)

        result = await loop.run(session.id)

        assert [r.id for r in result.tool_calls] == ["t1", "t2"]
        # The list call sees the todo created by the call before it
        assert "] A (ID:" in result.tool_calls[1].output

    @pytest.mark.asyncio
    async def test_cancel_mid_stream_returns_partial(self, store, bus, sessions, settings):
        cancel = asyncio.Event()
        provider = FakeProvider([text_response("abcdef")])
        loop = _make_loop(provider, store, bus, sessions, settings)
        session = await _session_with_message(sessions)

        def on_chunk(text: str) -> None:
            cancel.set()

        result = await loop.run(session.id, cancel, on_text_chunk=on_chunk)

        assert result.aborted
        assert result.content == "abc"
        assert len(await sessions.get_messages(session.id)) == 1

    @pytest.mark.asyncio
    async def test_cancel_before_tool_call(self, store, bus, sessions, settings):
        cancel = asyncio.Event()
        provider = FakeProvider([[
            *tool_response("todo", {"action": "list"}, call_id="t1")[:1],
            *tool_response("todo", {"action": "list"}, call_id="t2"),
        ]])
        loop = _make_loop(provider, store, bus, sessions, settings)
        session = await _session_with_message(sessions)

        result = await loop.run(session.id, cancel, on_tool_complete=lambda record: cancel.set())

        # The dispatched call finishes; the next one never starts
        assert result.aborted
        assert [r.id for r in result.tool_calls] == ["t1"]

    @pytest.mark.asyncio
    async def test_unknown_session_raises(self, store, bus, sessions, settings, fake_provider):
        loop = _make_loop(fake_provider, store, bus, sessions, settings)
        with pytest.raises(SessionNotFoundError):
            await loop.run("ses_missing")

    @pytest.mark.asyncio
    async def test_provider_error_propagates(self, store, bus, sessions, settings):
        class FailingProvider(FakeProvider):
            async def stream_completion(self, *args, **kwargs):
                raise ProviderError("Anthropic API error (429): rate_limit_error")
                yield  # pragma: no cover

        loop = _make_loop(FailingProvider(), store, bus, sessions, settings)
        session = await _session_with_message(sessions)

        with pytest.raises(ProviderError):
            await loop.run(session.id)

    @pytest.mark.asyncio
    async def test_empty_final_text_is_not_persisted(self, store, bus, sessions, settings):
        provider = FakeProvider([text_response("")])
        loop = _make_loop(provider, store, bus, sessions, settings)
        session = await _session_with_message(sessions)

        result = await loop.run(session.id)

        assert result.content == ""
        assert result.state == LoopState.DONE
        assert len(await sessions.get_messages(session.id)) == 1


# ---------------------------------------------------------------------------
# ChatService
# ---------------------------------------------------------------------------


class _GatedProvider(FakeProvider):
    """Streams one chunk, then waits on a gate before finishing."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()
        self.started = asyncio.Event()

    async def stream_completion(self, model, system_prompt, messages, tools, cancel=None):
        self.calls.append({"messages": list(messages)})
        if len(self.calls) == 1:
            yield text_response("slow")[0]
            self.started.set()
            await self.gate.wait()
            yield text_response("slow")[1]
            return
        for event in text_response("fast answer"):
            yield event


class TestChatService:
    @pytest.mark.asyncio
    async def test_send_creates_session(self, store, bus, sessions, settings):
        provider = FakeProvider([text_response("Hello!")])
        service = ChatService(_make_loop(provider, store, bus, sessions, settings), sessions)

        chat = await service.send("Plan my weekend")

        assert chat.result.content == "Hello!"
        assert chat.session.title == "Plan my weekend"
        messages = await sessions.get_messages(chat.session.id)
        assert [m.role for m in messages] == ["user", "assistant"]
        # Nothing is kept per session once the run has finished
        assert not service.is_running(chat.session.id)
        assert service._locks == {}

    @pytest.mark.asyncio
    async def test_send_unknown_session_raises(self, store, bus, sessions, settings, fake_provider):
        service = ChatService(_make_loop(fake_provider, store, bus, sessions, settings), sessions)
        with pytest.raises(SessionNotFoundError):
            await service.send("hi", session_id="ses_missing")

    @pytest.mark.asyncio
    async def test_new_message_cancels_in_flight_run(self, store, bus, sessions, settings):
        provider = _GatedProvider()
        service = ChatService(_make_loop(provider, store, bus, sessions, settings), sessions)
        session = await sessions.create()

        first = asyncio.create_task(service.send("first", session_id=session.id))
        await provider.started.wait()
        assert service.is_running(session.id)

        async def release():
            # Let the first stream observe its cancel flag
            await asyncio.sleep(0)
            provider.gate.set()

        releaser = asyncio.create_task(release())
        second = await service.send("second", session_id=session.id)
        first_result = await first
        await releaser

        assert first_result.result.aborted
        assert second.result.content == "fast answer"
        assert not service.is_running(session.id)

        messages = await sessions.get_messages(session.id)
        assert [(m.role, m.content) for m in messages] == [
            ("user", "first"),
            ("user", "second"),
            ("assistant", "fast answer"),
        ]

    @pytest.mark.asyncio
    async def test_cancel_without_run(self, store, bus, sessions, settings, fake_provider):
        service = ChatService(_make_loop(fake_provider, store, bus, sessions, settings), sessions)
        assert await service.cancel("ses_none") is False

    @pytest.mark.asyncio
    async def test_stream_events(self, store, bus, sessions, settings):
        provider = FakeProvider([
            tool_response("todo", {"action": "list"}, call_id="t1"),
            text_response("Nothing on the list."),
        ])
        service = ChatService(_make_loop(provider, store, bus, sessions, settings), sessions)

        events = [event async for event in service.stream("what's on my list?")]

        types = [e["type"] for e in events]
        assert types[0] == "session"
        assert "tool_start" in types
        assert "tool_complete" in types
        assert types[-1] == "done"
        text = "".join(e["text"] for e in events if e["type"] == "text_delta")
        assert text == "Nothing on the list."
        assert events[-1]["content"] == "Nothing on the list."
        assert events[-1]["session_id"] == events[0]["session_id"]

    @pytest.mark.asyncio
    async def test_stream_reports_errors(self, store, bus, sessions, settings):
        class FailingProvider(FakeProvider):
            async def stream_completion(self, *args, **kwargs):
                raise ProviderError("connection refused")
                yield  # pragma: no cover

        service = ChatService(_make_loop(FailingProvider(), store, bus, sessions, settings), sessions)

        events = [event async for event in service.stream("hi")]

        assert events[-1]["type"] == "error"
        assert events[-1]["code"] == "PROVIDER_ERROR"
