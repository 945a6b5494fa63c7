"""Agent loop: bounded request/tool rounds against a streaming provider.

States: IDLE -> REQUESTING -> (EXECUTING_TOOLS -> REQUESTING)* -> DONE,
with ABORTED and ERROR reachable from any non-terminal state.

One invocation:
1. Return an aborted result immediately if the cancel event is already set.
2. Load the session's ordered history as the conversation.
3. For at most max_iterations rounds: stream a completion; a response
   without tool calls is the final answer. Otherwise run each tool call
   in request order, fold the results back and go again.
4. Hitting the iteration cap returns what was accumulated, not aborted.
5. A final answer with non-empty text is persisted to the session.

Cancellation is checked at the top of each round, between streamed
chunks and before each tool call. A tool call already dispatched always
runs to completion.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from dadgpt.agent.prompts import build_system_prompt
from dadgpt.agent.provider import Provider
from dadgpt.config import Settings
from dadgpt.events import EventBus
from dadgpt.permission import PermissionGate
from dadgpt.session.models import ConversationMessage, ToolCallRequest, ToolResultRecord, Usage
from dadgpt.session.store import SessionStore
from dadgpt.tools.base import ToolContext, ToolRegistry, format_result
from dadgpt.utils import utcnow

logger = logging.getLogger(__name__)


class LoopState(StrEnum):
    IDLE = "idle"
    REQUESTING = "requesting"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    ABORTED = "aborted"
    ERROR = "error"


@dataclass
class ToolCallRecord:
    """Audit entry for one tool call."""

    id: str
    tool_id: str
    input: dict[str, Any]
    output: str = ""
    is_error: bool = False
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None


@dataclass
class LoopResult:
    content: str
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    aborted: bool = False
    usage: Usage = field(default_factory=Usage)
    rounds: int = 0
    state: LoopState = LoopState.DONE


TextCallback = Callable[[str], None]
ToolCallback = Callable[[ToolCallRecord], None]


class AgentLoop:
    """Drives one session's conversation through the provider and tools."""

    def __init__(
        self,
        provider: Provider,
        registry: ToolRegistry,
        sessions: SessionStore,
        bus: EventBus,
        settings: Settings,
        gate: PermissionGate | None = None,
    ) -> None:
        self._provider = provider
        self._registry = registry
        self._sessions = sessions
        self._bus = bus
        self._settings = settings
        self._gate = gate

    @property
    def provider(self) -> Provider:
        return self._provider

    async def run(
        self,
        session_id: str,
        cancel: asyncio.Event | None = None,
        *,
        on_text_chunk: TextCallback | None = None,
        on_tool_start: ToolCallback | None = None,
        on_tool_complete: ToolCallback | None = None,
        on_tool_error: ToolCallback | None = None,
        max_iterations: int | None = None,
    ) -> LoopResult:
        """Run the loop for a session whose latest user message is already stored."""
        if max_iterations is None:
            max_iterations = self._settings.max_iterations
        if max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")

        if cancel is not None and cancel.is_set():
            return LoopResult(content="", aborted=True, state=LoopState.ABORTED)

        def cancelled() -> bool:
            return cancel is not None and cancel.is_set()

        settings = self._settings
        model = settings.model

        # Loop-level failures (unknown session, storage) propagate to the caller
        session = await self._sessions.require(session_id)
        conversation: list[ConversationMessage] = await self._sessions.get_messages(session_id)

        working_directory = session.directory or settings.working_directory
        system_prompt = build_system_prompt(settings.goal_categories, working_directory)
        tools = self._registry.list_tools()
        ctx = ToolContext(session_id=session_id, working_directory=working_directory, gate=self._gate)

        usage = Usage()
        records: list[ToolCallRecord] = []
        content = ""
        rounds = 0
        state = LoopState.IDLE

        def aborted(partial: str) -> LoopResult:
            logger.info("Loop aborted for session %s after %d rounds", session_id, rounds)
            return LoopResult(
                content=partial,
                tool_calls=records,
                aborted=True,
                usage=usage,
                rounds=rounds,
                state=LoopState.ABORTED,
            )

        try:
            while rounds < max_iterations:
                if cancelled():
                    return aborted(content)

                rounds += 1
                state = LoopState.REQUESTING
                text_parts: list[str] = []
                calls: list[ToolCallRequest] = []

                async with aclosing(
                    self._provider.stream_completion(model, system_prompt, conversation, tools, cancel)
                ) as stream:
                    async for event in stream:
                        if cancelled():
                            return aborted("".join(text_parts))
                        if event.type == "text_delta":
                            text_parts.append(event.text)
                            if on_text_chunk:
                                on_text_chunk(event.text)
                        elif event.type == "tool_call" and event.tool_call:
                            calls.append(event.tool_call)
                        elif event.type == "usage" and event.usage:
                            usage = usage + event.usage

                if cancelled():
                    return aborted("".join(text_parts))

                content = "".join(text_parts)
                if not calls:
                    state = LoopState.DONE
                    break

                state = LoopState.EXECUTING_TOOLS
                conversation.append(
                    ConversationMessage(session_id=session_id, role="assistant", content=content, tool_calls=calls)
                )
                results: list[ToolResultRecord] = []
                for call in calls:
                    if cancelled():
                        return aborted(content)
                    record = await self._execute_tool(
                        call, ctx, on_tool_start, on_tool_complete, on_tool_error
                    )
                    records.append(record)
                    results.append(
                        ToolResultRecord(tool_call_id=call.id, output=record.output, is_error=record.is_error)
                    )
                conversation.append(ConversationMessage(session_id=session_id, role="tool", tool_results=results))
            else:
                logger.warning("Agent loop reached max_iterations=%d for session %s", max_iterations, session_id)
                return LoopResult(
                    content=content,
                    tool_calls=records,
                    aborted=False,
                    usage=usage,
                    rounds=rounds,
                    state=LoopState.DONE,
                )

        except Exception:
            logger.exception("Agent loop failed for session %s in state %s", session_id, state)
            raise

        if content:
            await self._sessions.add_message(session_id, "assistant", content, usage=usage, model=model)

        logger.info(
            "Loop done for session %s: %d rounds, %d tool calls, %d tokens",
            session_id,
            rounds,
            len(records),
            usage.total_tokens,
        )
        return LoopResult(
            content=content,
            tool_calls=records,
            aborted=False,
            usage=usage,
            rounds=rounds,
            state=LoopState.DONE,
        )

    async def _execute_tool(
        self,
        call: ToolCallRequest,
        ctx: ToolContext,
        on_start: ToolCallback | None,
        on_complete: ToolCallback | None,
        on_error: ToolCallback | None,
    ) -> ToolCallRecord:
        """Run one tool call. Exceptions become error records, never propagate."""
        record = ToolCallRecord(id=call.id, tool_id=call.tool_name, input=call.args)
        self._bus.publish(
            "tool.start", {"id": call.id, "tool": call.tool_name, "args": call.args}, ctx.session_id
        )
        if on_start:
            on_start(record)

        try:
            result = await self._registry.execute(call.tool_name, call.args, ctx)
        except Exception as e:
            logger.exception("Tool %s raised", call.tool_name)
            record.output = f"Error: {e}"
            record.is_error = True
            record.completed_at = utcnow()
            self._bus.publish(
                "tool.error", {"id": call.id, "tool": call.tool_name, "error": str(e)}, ctx.session_id
            )
            if on_error:
                on_error(record)
            return record

        record.output = format_result(result)
        record.is_error = result.error
        record.completed_at = utcnow()
        self._bus.publish(
            "tool.complete",
            {"id": call.id, "tool": call.tool_name, "title": result.title, "error": result.error},
            ctx.session_id,
        )
        if on_complete:
            on_complete(record)
        return record
