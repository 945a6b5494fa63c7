"""Tests for the REST API.

Runs the real component graph (JsonStore on tmp_path, sessions, tools,
agent loop) with a scripted provider, over httpx ASGITransport.
"""

from __future__ import annotations

import json

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from dadgpt.errors import ProviderError, ProviderErrorKind
from dadgpt.main import build_app, create_components
from dadgpt.state.goal import Goal, GoalState
from dadgpt.state.todo import Todo, TodoState
from dadgpt.storage import EntityRepository
from tests.conftest import FakeProvider, text_response, tool_response

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def components(settings, provider):
    return create_components(settings, provider=provider)


@pytest.fixture
def app(settings, components):
    return build_app(settings, components)


@pytest_asyncio.fixture
async def client(app):
    """Async HTTP client using httpx ASGITransport."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


def _sse_events(body: str) -> list[dict]:
    return [json.loads(line[6:]) for line in body.splitlines() if line.startswith("data: ")]


# ---------------------------------------------------------------------------
# POST /chat
# ---------------------------------------------------------------------------


class TestChat:
    @pytest.mark.asyncio
    async def test_chat_creates_session(self, client, provider):
        provider.responses = [text_response("Hello there!")]

        resp = await client.post("/chat", json={"message": "Hi"})

        assert resp.status_code == 200
        data = resp.json()
        assert data["response"] == "Hello there!"
        assert data["session_id"].startswith("ses_")
        assert data["aborted"] is False
        assert data["rounds"] == 1
        assert data["tool_calls"] == []
        assert data["usage"]["total_tokens"] == 15

    @pytest.mark.asyncio
    async def test_chat_with_tool(self, client, provider, components):
        provider.responses = [
            tool_response("todo", {"action": "create", "title": "Buy milk"}, call_id="toolu_1"),
            text_response("Added it."),
        ]

        resp = await client.post("/chat", json={"message": "Remind me to buy milk"})

        data = resp.json()
        assert data["response"] == "Added it."
        assert data["tool_calls"] == [{"id": "toolu_1", "tool": "todo", "is_error": False}]
        todos = await EntityRepository(components["store"], "todos", Todo).all()
        assert [t.title for t in todos] == ["Buy milk"]

    @pytest.mark.asyncio
    async def test_chat_continues_session(self, client, provider):
        first = await client.post("/chat", json={"message": "One"})
        session_id = first.json()["session_id"]

        second = await client.post("/chat", json={"message": "Two", "session_id": session_id})

        assert second.json()["session_id"] == session_id
        history = [m.content for m in provider.calls[1]["messages"]]
        assert history == ["One", "ok", "Two"]

    @pytest.mark.asyncio
    async def test_missing_message(self, client):
        resp = await client.post("/chat", json={"text": "Hi"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Missing required field: message"

    @pytest.mark.asyncio
    async def test_invalid_json(self, client):
        resp = await client.post("/chat", content=b"{not json", headers={"content-type": "application/json"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid JSON body"

    @pytest.mark.asyncio
    async def test_unknown_session(self, client):
        resp = await client.post("/chat", json={"message": "Hi", "session_id": "ses_missing"})
        assert resp.status_code == 404
        assert resp.json()["code"] == "SESSION_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_provider_error(self, client, provider):
        def fail():
            raise ProviderError("Anthropic API error (401): bad key", ProviderErrorKind.AUTH_ERROR)

        provider.default = fail

        resp = await client.post("/chat", json={"message": "Hi"})

        assert resp.status_code == 502
        data = resp.json()
        assert data["code"] == "AUTH_ERROR"
        assert "API key" in data["remediation"]

    @pytest.mark.asyncio
    async def test_cancel_without_run(self, client):
        resp = await client.delete("/chat/ses_idle")
        assert resp.json() == {"session_id": "ses_idle", "cancelled": False}


# ---------------------------------------------------------------------------
# POST /chat/stream
# ---------------------------------------------------------------------------


class TestChatStream:
    @pytest.mark.asyncio
    async def test_stream_events(self, client, provider):
        provider.responses = [
            tool_response("review", {"type": "suggestions"}, call_id="toolu_1"),
            text_response("All clear."),
        ]

        resp = await client.post("/chat/stream", json={"message": "Anything today?"})

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.headers["cache-control"] == "no-cache"
        events = _sse_events(resp.text)
        types = [e["type"] for e in events]
        assert types[0] == "session"
        assert types[-1] == "done"
        assert "tool_start" in types
        assert "tool_complete" in types
        assert "".join(e["text"] for e in events if e["type"] == "text_delta") == "All clear."
        assert events[-1]["content"] == "All clear."

    @pytest.mark.asyncio
    async def test_stream_unknown_session(self, client):
        resp = await client.post("/chat/stream", json={"message": "Hi", "session_id": "ses_missing"})
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_stream_missing_message(self, client):
        resp = await client.post("/chat/stream", json={})
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class TestSessions:
    @pytest.mark.asyncio
    async def test_create_get_list_delete(self, client):
        created = await client.post("/sessions", json={"title": "Planning"})
        assert created.status_code == 201
        session_id = created.json()["id"]
        assert created.json()["title"] == "Planning"

        fetched = await client.get(f"/sessions/{session_id}")
        assert fetched.json()["id"] == session_id

        listed = await client.get("/sessions")
        assert listed.json()["count"] == 1

        deleted = await client.delete(f"/sessions/{session_id}")
        assert deleted.json() == {"status": "deleted", "id": session_id}
        assert (await client.get(f"/sessions/{session_id}")).status_code == 404
        assert (await client.delete(f"/sessions/{session_id}")).status_code == 404

    @pytest.mark.asyncio
    async def test_create_without_body(self, client):
        resp = await client.post("/sessions")
        assert resp.status_code == 201
        assert resp.json()["title"]

    @pytest.mark.asyncio
    async def test_messages(self, client, provider):
        provider.responses = [text_response("Sure.")]
        session_id = (await client.post("/chat", json={"message": "Help"})).json()["session_id"]

        resp = await client.get(f"/sessions/{session_id}/messages")

        messages = resp.json()["messages"]
        assert [(m["role"], m["content"]) for m in messages] == [("user", "Help"), ("assistant", "Sure.")]

    @pytest.mark.asyncio
    async def test_messages_unknown_session(self, client):
        resp = await client.get("/sessions/ses_missing/messages")
        assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


class TestEntities:
    @pytest.mark.asyncio
    async def test_todos_filtered_and_sorted(self, client, components):
        repo = EntityRepository(components["store"], "todos", Todo)
        await repo.save(Todo(id="a", title="Low", priority="low"))
        await repo.save(Todo(id="b", title="High", priority="high"))
        await repo.save(Todo(id="c", title="Stuck", state=TodoState.BLOCKED, blocked_reason="rain"))

        all_todos = (await client.get("/todos")).json()
        assert all_todos["count"] == 3
        assert [t["id"] for t in all_todos["todos"]] == ["b", "a", "c"]

        blocked = (await client.get("/todos", params={"state": "blocked"})).json()
        assert [t["id"] for t in blocked["todos"]] == ["c"]

    @pytest.mark.asyncio
    async def test_goals_by_category(self, client, components):
        repo = EntityRepository(components["store"], "goals", Goal)
        await repo.save(Goal(id="g1", title="Run", category="Health"))
        await repo.save(Goal(id="g2", title="Save", category="Finance", state=GoalState.IN_PROGRESS))

        resp = (await client.get("/goals", params={"category": "Health"})).json()

        assert resp["count"] == 1
        assert resp["goals"][0]["id"] == "g1"

    @pytest.mark.asyncio
    async def test_projects_empty(self, client):
        assert (await client.get("/projects")).json() == {"projects": [], "count": 0}

    @pytest.mark.asyncio
    async def test_suggestions(self, client):
        resp = await client.get("/suggestions")
        assert [s["title"] for s in resp.json()["suggestions"]] == ["Clear Day"]


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy(self, client, settings):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "healthy", "provider": "anthropic", "model": settings.model}
