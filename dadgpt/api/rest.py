"""REST API for DadGPT.

Endpoints:
  POST   /chat                     - Send message, get response
  POST   /chat/stream              - Send message, stream SSE events
  DELETE /chat/{session_id}        - Cancel the in-flight run for a session
  GET    /sessions                 - List sessions, most recent first
  POST   /sessions                 - Create a session
  GET    /sessions/{id}            - Session detail
  DELETE /sessions/{id}            - Delete a session and its messages
  GET    /sessions/{id}/messages   - Ordered messages of a session
  GET    /goals                    - Goals (?state=&category=)
  GET    /todos                    - Todos (?state=&timeframe=&priority=)
  GET    /projects                 - Projects (?state=)
  GET    /suggestions              - Current suggestions
  GET    /health                   - Health check (storage reachable)
"""

from __future__ import annotations

import json
import logging
from typing import Any

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, StreamingResponse
from starlette.routing import Route

from dadgpt.agent.service import ChatService
from dadgpt.config import Settings
from dadgpt.errors import DadGPTError, ProviderError, SessionNotFoundError
from dadgpt.intelligence import SuggestionEngine
from dadgpt.session.store import SessionStore
from dadgpt.state.goal import Goal
from dadgpt.state.project import Project
from dadgpt.state.todo import Todo
from dadgpt.storage import EntityRepository, JsonStore
from dadgpt.tools.listing import narrow, sort_entities

logger = logging.getLogger(__name__)


def _error_response(error: Exception) -> JSONResponse:
    if isinstance(error, SessionNotFoundError):
        return JSONResponse({"error": str(error), "code": error.code}, status_code=404)
    if isinstance(error, ProviderError):
        return JSONResponse(
            {"error": str(error), "code": error.kind, "remediation": error.remediation},
            status_code=502,
        )
    if isinstance(error, DadGPTError):
        return JSONResponse({"error": str(error), "code": error.code}, status_code=500)
    return JSONResponse({"error": str(error)}, status_code=500)


def create_app(
    service: ChatService,
    sessions: SessionStore,
    store: JsonStore,
    settings: Settings,
    lifespan: Any | None = None,
) -> Starlette:
    """Create the Starlette ASGI app with all routes."""
    goals: EntityRepository[Goal] = EntityRepository(store, "goals", Goal)
    todos: EntityRepository[Todo] = EntityRepository(store, "todos", Todo)
    projects: EntityRepository[Project] = EntityRepository(store, "projects", Project)
    engine = SuggestionEngine(store)

    async def _read_message(request: Request) -> tuple[dict[str, Any] | None, JSONResponse | None]:
        try:
            body = await request.json()
        except json.JSONDecodeError:
            return None, JSONResponse({"error": "Invalid JSON body"}, status_code=400)
        if not isinstance(body, dict) or not body.get("message"):
            return None, JSONResponse({"error": "Missing required field: message"}, status_code=400)
        return body, None

    async def chat(request: Request) -> JSONResponse:
        """POST /chat - Send a message, get a response."""
        body, error = await _read_message(request)
        if error is not None:
            return error
        try:
            chat_result = await service.send(body["message"], session_id=body.get("session_id"))
        except Exception as e:
            logger.error("Chat error: %s", e)
            return _error_response(e)

        result = chat_result.result
        return JSONResponse({
            "response": result.content,
            "session_id": chat_result.session.id,
            "aborted": result.aborted,
            "rounds": result.rounds,
            "tool_calls": [
                {"id": r.id, "tool": r.tool_id, "is_error": r.is_error} for r in result.tool_calls
            ],
            "usage": result.usage.model_dump(),
        })

    async def chat_stream(request: Request) -> StreamingResponse | JSONResponse:
        """POST /chat/stream - SSE streaming chat."""
        body, error = await _read_message(request)
        if error is not None:
            return error
        session_id = body.get("session_id")
        if session_id and await sessions.get(session_id) is None:
            return _error_response(SessionNotFoundError(session_id))

        async def event_generator():
            try:
                async for event in service.stream(body["message"], session_id=session_id):
                    yield f"data: {json.dumps(event)}\n\n"
            except Exception as e:
                logger.error("Stream error: %s", e)
                yield f"data: {json.dumps({'type': 'error', 'text': str(e)})}\n\n"

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
            },
        )

    async def cancel_chat(request: Request) -> JSONResponse:
        """DELETE /chat/{session_id} - Cancel the run in flight."""
        session_id = request.path_params["session_id"]
        cancelled = await service.cancel(session_id)
        return JSONResponse({"session_id": session_id, "cancelled": cancelled})

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def list_sessions(request: Request) -> JSONResponse:
        """GET /sessions - Sessions, most recently updated first."""
        items = await sessions.list()
        return JSONResponse({"sessions": [s.model_dump(mode="json") for s in items], "count": len(items)})

    async def create_session(request: Request) -> JSONResponse:
        """POST /sessions - Create an empty session."""
        body: dict[str, Any] = {}
        if await request.body():
            try:
                body = await request.json()
            except json.JSONDecodeError:
                return JSONResponse({"error": "Invalid JSON body"}, status_code=400)
        session = await sessions.create(title=body.get("title"), directory=body.get("directory"))
        return JSONResponse(session.model_dump(mode="json"), status_code=201)

    async def get_session(request: Request) -> JSONResponse:
        session = await sessions.get(request.path_params["id"])
        if session is None:
            return _error_response(SessionNotFoundError(request.path_params["id"]))
        return JSONResponse(session.model_dump(mode="json"))

    async def delete_session(request: Request) -> JSONResponse:
        session_id = request.path_params["id"]
        await service.cancel(session_id)
        if not await sessions.remove(session_id):
            return _error_response(SessionNotFoundError(session_id))
        return JSONResponse({"status": "deleted", "id": session_id})

    async def list_messages(request: Request) -> JSONResponse:
        session_id = request.path_params["id"]
        if await sessions.get(session_id) is None:
            return _error_response(SessionNotFoundError(session_id))
        messages = await sessions.get_messages(session_id)
        return JSONResponse({
            "session_id": session_id,
            "messages": [m.model_dump(mode="json", exclude_none=True) for m in messages],
        })

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    async def list_goals(request: Request) -> JSONResponse:
        """GET /goals - Goals in priority order."""
        params = request.query_params
        items = narrow(await goals.all(), state=params.get("state"), category=params.get("category"))
        return JSONResponse({"goals": [g.model_dump(mode="json") for g in sort_entities(items)], "count": len(items)})

    async def list_todos(request: Request) -> JSONResponse:
        """GET /todos - Todos in priority order."""
        params = request.query_params
        items = narrow(
            await todos.all(),
            state=params.get("state"),
            timeframe=params.get("timeframe"),
            priority=params.get("priority"),
        )
        return JSONResponse({"todos": [t.model_dump(mode="json") for t in sort_entities(items)], "count": len(items)})

    async def list_projects(request: Request) -> JSONResponse:
        """GET /projects - Projects in priority order."""
        items = narrow(await projects.all(), state=request.query_params.get("state"))
        return JSONResponse(
            {"projects": [p.model_dump(mode="json") for p in sort_entities(items)], "count": len(items)}
        )

    async def suggestions(request: Request) -> JSONResponse:
        """GET /suggestions - Reminders and warnings for today."""
        found = await engine.suggestions()
        return JSONResponse({"suggestions": [s.model_dump() for s in found]})

    async def health(request: Request) -> JSONResponse:
        """GET /health - Health check."""
        try:
            await store.list(["sessions"])
        except DadGPTError as e:
            return JSONResponse({"status": "unhealthy", "error": str(e)}, status_code=503)
        return JSONResponse({"status": "healthy", "provider": settings.provider, "model": settings.model})

    routes = [
        Route("/chat", chat, methods=["POST"]),
        Route("/chat/stream", chat_stream, methods=["POST"]),
        Route("/chat/{session_id}", cancel_chat, methods=["DELETE"]),
        Route("/sessions", list_sessions, methods=["GET"]),
        Route("/sessions", create_session, methods=["POST"]),
        Route("/sessions/{id}", get_session, methods=["GET"]),
        Route("/sessions/{id}", delete_session, methods=["DELETE"]),
        Route("/sessions/{id}/messages", list_messages),
        Route("/goals", list_goals),
        Route("/todos", list_todos),
        Route("/projects", list_projects),
        Route("/suggestions", suggestions),
        Route("/health", health),
    ]

    return Starlette(routes=routes, lifespan=lifespan)
