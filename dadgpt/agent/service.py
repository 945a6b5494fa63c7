"""Chat service: one active agent run per session.

A new message for a session cancels the run already in flight for it,
waits for that run to settle, stores the user message and starts a
fresh run. Runs for different sessions are independent.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from dadgpt.agent.loop import AgentLoop, LoopResult, ToolCallRecord
from dadgpt.session.models import Session
from dadgpt.session.store import SessionStore

logger = logging.getLogger(__name__)


@dataclass
class ChatResult:
    session: Session
    result: LoopResult


@dataclass
class _Run:
    cancel: asyncio.Event
    task: asyncio.Task[LoopResult]


class ChatService:
    def __init__(self, loop: AgentLoop, sessions: SessionStore) -> None:
        self._loop = loop
        self._sessions = sessions
        self._runs: dict[str, _Run] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def is_running(self, session_id: str) -> bool:
        run = self._runs.get(session_id)
        return run is not None and not run.task.done()

    async def cancel(self, session_id: str) -> bool:
        """Cancel the in-flight run for a session and wait for it to settle."""
        run = self._runs.get(session_id)
        if run is None or run.task.done():
            return False
        run.cancel.set()
        # The old run reports through its own caller; only wait for it here
        await asyncio.wait({run.task})
        logger.info("Cancelled in-flight run for session %s", session_id)
        return True

    async def _resolve_session(self, session_id: str | None) -> Session:
        if session_id:
            return await self._sessions.require(session_id)
        return await self._sessions.create()

    async def _start(self, session_id: str | None, message: str, **callbacks: Any) -> tuple[Session, _Run]:
        session = await self._resolve_session(session_id)
        lock = self._locks.setdefault(session.id, asyncio.Lock())
        async with lock:
            await self.cancel(session.id)
            await self._sessions.add_message(session.id, "user", message)
            cancel = asyncio.Event()
            task = asyncio.create_task(self._loop.run(session.id, cancel, **callbacks))
            run = _Run(cancel=cancel, task=task)
            self._runs[session.id] = run
        return session, run

    def _finish(self, session_id: str, run: _Run) -> None:
        if self._runs.get(session_id) is run:
            del self._runs[session_id]
            lock = self._locks.get(session_id)
            if lock is not None and not lock.locked():
                del self._locks[session_id]

    async def send(self, message: str, session_id: str | None = None, **callbacks: Any) -> ChatResult:
        """Store a user message, run the agent and return its result.

        Without a session_id a new session is created. Callbacks are passed
        through to AgentLoop.run.
        """
        session, run = await self._start(session_id, message, **callbacks)
        try:
            result = await run.task
        finally:
            self._finish(session.id, run)
        session = await self._sessions.get(session.id) or session
        return ChatResult(session=session, result=result)

    async def stream(self, message: str, session_id: str | None = None) -> AsyncIterator[dict[str, Any]]:
        """Run the agent, yielding text and tool events as they happen.

        The last event is "done" with the final result, or "error".
        """
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

        def on_text(text: str) -> None:
            queue.put_nowait({"type": "text_delta", "text": text})

        def on_tool(kind: str):
            def handler(record: ToolCallRecord) -> None:
                event: dict[str, Any] = {"type": kind, "id": record.id, "tool": record.tool_id}
                if kind != "tool_start":
                    event["is_error"] = record.is_error
                queue.put_nowait(event)
            return handler

        session, run = await self._start(
            session_id,
            message,
            on_text_chunk=on_text,
            on_tool_start=on_tool("tool_start"),
            on_tool_complete=on_tool("tool_complete"),
            on_tool_error=on_tool("tool_error"),
        )
        yield {"type": "session", "session_id": session.id}

        try:
            while True:
                getter = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait({getter, run.task}, return_when=asyncio.FIRST_COMPLETED)
                if getter in done:
                    yield getter.result()
                    continue
                getter.cancel()
                while not queue.empty():
                    yield queue.get_nowait()
                break

            error = run.task.exception()
            if error is not None:
                yield {"type": "error", "text": str(error), "code": getattr(error, "code", None)}
                return
            result = run.task.result()
            yield {
                "type": "done",
                "session_id": session.id,
                "content": result.content,
                "aborted": result.aborted,
                "rounds": result.rounds,
                "usage": result.usage.model_dump(),
            }
        finally:
            if not run.task.done():
                # Consumer went away mid-stream
                run.cancel.set()
                await asyncio.wait({run.task})
            self._finish(session.id, run)

    async def close(self) -> None:
        """Cancel every in-flight run."""
        for session_id in list(self._runs):
            await self.cancel(session_id)
