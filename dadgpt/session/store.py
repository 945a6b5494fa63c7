"""Session persistence on top of JsonStore.

Layout:
    sessions/<session_id>.json
    messages/<session_id>/<message_id>.json
"""

from __future__ import annotations

import logging
from typing import Any

from dadgpt.errors import SessionNotFoundError
from dadgpt.events import EventBus
from dadgpt.session.models import (
    DEFAULT_TITLE,
    ConversationMessage,
    Role,
    Session,
    ToolCallRequest,
    ToolResultRecord,
    Usage,
)
from dadgpt.storage import JsonStore
from dadgpt.utils import utcnow

logger = logging.getLogger(__name__)

_TITLE_MAX = 50


def title_from_message(content: str) -> str:
    """First line of a user message, truncated to fit a session list."""
    line = content.strip().splitlines()[0].strip() if content.strip() else ""
    if not line:
        return DEFAULT_TITLE
    if len(line) > _TITLE_MAX:
        return line[: _TITLE_MAX - 3] + "..."
    return line


class SessionStore:
    """Creates sessions and appends their messages.

    Messages are immutable once written. Appending a message bumps the
    session's updated_at and, for the first user message of an untitled
    session, derives the title.
    """

    def __init__(self, store: JsonStore, bus: EventBus) -> None:
        self._store = store
        self._bus = bus

    async def create(self, title: str | None = None, directory: str | None = None) -> Session:
        session = Session(title=title or DEFAULT_TITLE, directory=directory)
        await self._store.write(["sessions", session.id], session)
        self._bus.publish("session.created", {"id": session.id, "title": session.title}, session.id)
        logger.info("Created session %s", session.id)
        return session

    async def get(self, session_id: str) -> Session | None:
        data = await self._store.read(["sessions", session_id])
        return Session.model_validate(data) if data is not None else None

    async def require(self, session_id: str) -> Session:
        session = await self.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def update(self, session_id: str, **fields: Any) -> Session:
        session = await self.require(session_id)
        session = session.model_copy(update={**fields, "updated_at": utcnow()})
        await self._store.write(["sessions", session_id], session)
        return session

    async def list(self) -> list[Session]:
        """All sessions, most recently updated first."""
        sessions: list[Session] = []
        for session_id in await self._store.list(["sessions"]):
            session = await self.get(session_id)
            if session is not None:
                sessions.append(session)
        sessions.sort(key=lambda s: s.updated_at, reverse=True)
        return sessions

    async def latest(self) -> Session | None:
        sessions = await self.list()
        return sessions[0] if sessions else None

    async def remove(self, session_id: str) -> bool:
        """Delete a session and every message it owns."""
        removed = await self._store.remove(["sessions", session_id])
        await self._store.remove_tree(["messages", session_id])
        if removed:
            logger.info("Removed session %s", session_id)
        return removed

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def add_message(
        self,
        session_id: str,
        role: Role,
        content: str,
        *,
        tool_calls: list[ToolCallRequest] | None = None,
        tool_results: list[ToolResultRecord] | None = None,
        usage: Usage | None = None,
        model: str | None = None,
    ) -> ConversationMessage:
        session = await self.require(session_id)
        message = ConversationMessage(
            session_id=session_id,
            role=role,
            content=content,
            tool_calls=tool_calls,
            tool_results=tool_results,
            usage=usage,
            model=model,
        )
        await self._store.write(["messages", session_id, message.id], message)

        updates: dict[str, Any] = {"updated_at": message.timestamp}
        if role == "user" and session.title == DEFAULT_TITLE:
            updates["title"] = title_from_message(content)
        await self._store.write(["sessions", session_id], session.model_copy(update=updates))

        self._bus.publish(
            "session.message",
            {"id": message.id, "session_id": session_id, "role": role},
            session_id,
        )
        return message

    async def get_messages(self, session_id: str) -> list[ConversationMessage]:
        """Messages for a session ordered by timestamp."""
        messages: list[ConversationMessage] = []
        for message_id in await self._store.list(["messages", session_id]):
            data = await self._store.read(["messages", session_id, message_id])
            if data is not None:
                messages.append(ConversationMessage.model_validate(data))
        messages.sort(key=lambda m: (m.timestamp, m.id))
        return messages
