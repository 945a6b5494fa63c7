"""Streaming LLM providers over httpx.

Both providers expose one operation, stream_completion(), which yields
StreamEvents:
  text_delta  a chunk of assistant text
  tool_call   a complete tool call with parsed input
  usage       token usage for the request
  done        end of the response, with the stop reason

HTTP and in-stream errors are raised as ProviderError. The agent loop
owns cancellation; providers only stop reading early when the cancel
event is set.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from dadgpt.config import Settings
from dadgpt.errors import ConfigError, ProviderError, ProviderErrorKind
from dadgpt.session.models import ConversationMessage, ToolCallRequest, Usage

logger = logging.getLogger(__name__)

# Anthropic API version header
_API_VERSION = "2023-06-01"


@dataclass
class StreamEvent:
    """A single event from a streaming completion."""

    type: str  # text_delta, tool_call, usage, done
    text: str = ""
    tool_call: ToolCallRequest | None = None
    usage: Usage | None = None
    stop_reason: str = ""


class Provider(Protocol):
    name: str

    def stream_completion(
        self,
        model: str,
        system_prompt: str,
        messages: list[ConversationMessage],
        tools: list[dict[str, Any]],
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[StreamEvent]: ...

    async def close(self) -> None: ...


def _build_timeout(settings: Settings) -> httpx.Timeout:
    return httpx.Timeout(
        connect=settings.api_timeout_connect,
        read=settings.api_timeout_read,
        write=10.0,
        pool=10.0,
    )


def _http_error(provider: str, status_code: int, body: bytes) -> ProviderError:
    text = body.decode("utf-8", errors="replace")[:500]
    try:
        error = json.loads(text).get("error", {})
        detail = f"{error.get('type', 'unknown')} - {error.get('message', text)}"
    except (ValueError, AttributeError):
        detail = text
    message = f"{provider} API error ({status_code}): {detail}"
    if status_code in (401, 403):
        return ProviderError(message, ProviderErrorKind.AUTH_ERROR)
    if status_code == 429:
        return ProviderError(message, ProviderErrorKind.RATE_LIMIT)
    if status_code >= 500:
        return ProviderError(message, ProviderErrorKind.SERVICE_ERROR)
    return ProviderError(message)


async def _iter_sse_data(
    response: httpx.Response, cancel: asyncio.Event | None
) -> AsyncIterator[dict[str, Any]]:
    """Yield decoded JSON payloads of "data: " lines until [DONE] or cancel."""
    async for line in response.aiter_lines():
        if cancel is not None and cancel.is_set():
            return
        if not line.startswith("data: "):
            continue
        payload = line[6:].strip()
        if payload == "[DONE]":
            return
        try:
            yield json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("Skipping malformed SSE payload: %s", payload[:200])


def _parse_tool_input(raw: str) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Tool input was not valid JSON: %s", raw[:200])
        return {}
    return parsed if isinstance(parsed, dict) else {}


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


@dataclass
class _BlockAccumulator:
    id: str
    name: str
    input_parts: list[str] = field(default_factory=list)


class AnthropicProvider:
    """Anthropic Messages API with SSE streaming."""

    name = "anthropic"

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._http = client

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            settings = self._settings
            headers: dict[str, str] = {
                "anthropic-version": _API_VERSION,
                "content-type": "application/json",
            }
            # Auth token (Bearer) takes precedence over api key (x-api-key)
            if settings.anthropic_auth_token:
                headers["authorization"] = f"Bearer {settings.anthropic_auth_token}"
            elif settings.anthropic_api_key:
                headers["x-api-key"] = settings.anthropic_api_key
            else:
                raise ConfigError("Neither ANTHROPIC_API_KEY nor ANTHROPIC_AUTH_TOKEN is set")
            self._http = httpx.AsyncClient(
                base_url=settings.anthropic_base_url,
                headers=headers,
                timeout=_build_timeout(settings),
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            )
        return self._http

    async def close(self) -> None:
        if self._http:
            await self._http.aclose()
            self._http = None

    def build_payload(
        self,
        model: str,
        system_prompt: str,
        messages: list[ConversationMessage],
        tools: list[dict[str, Any]],
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "max_tokens": self._settings.max_tokens,
            "system": system_prompt,
            "messages": format_anthropic_messages(messages),
            "stream": True,
        }
        if tools:
            payload["tools"] = tools
        return payload

    async def stream_completion(
        self,
        model: str,
        system_prompt: str,
        messages: list[ConversationMessage],
        tools: list[dict[str, Any]],
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[StreamEvent]:
        payload = self.build_payload(model, system_prompt, messages, tools)
        blocks: dict[int, _BlockAccumulator] = {}
        usage = Usage()
        stop_reason = ""

        try:
            async with self._client().stream("POST", "/v1/messages", json=payload) as response:
                if response.status_code != 200:
                    raise _http_error("Anthropic", response.status_code, await response.aread())

                async for data in _iter_sse_data(response, cancel):
                    event_type = data.get("type")

                    if event_type == "error":
                        error = data.get("error", {})
                        raise ProviderError(f"{error.get('type', 'unknown')}: {error.get('message', '')}")

                    if event_type == "message_start":
                        tokens = data.get("message", {}).get("usage", {})
                        usage.prompt_tokens = tokens.get("input_tokens", 0)
                        usage.completion_tokens = tokens.get("output_tokens", 0)

                    elif event_type == "content_block_start":
                        block = data.get("content_block", {})
                        if block.get("type") == "tool_use":
                            blocks[data.get("index", 0)] = _BlockAccumulator(
                                id=block.get("id", ""), name=block.get("name", "")
                            )

                    elif event_type == "content_block_delta":
                        delta = data.get("delta", {})
                        if delta.get("type") == "text_delta":
                            yield StreamEvent(type="text_delta", text=delta.get("text", ""))
                        elif delta.get("type") == "input_json_delta":
                            acc = blocks.get(data.get("index", 0))
                            if acc:
                                acc.input_parts.append(delta.get("partial_json", ""))

                    elif event_type == "content_block_stop":
                        acc = blocks.pop(data.get("index", 0), None)
                        if acc:
                            yield StreamEvent(
                                type="tool_call",
                                tool_call=ToolCallRequest(
                                    id=acc.id,
                                    tool_name=acc.name,
                                    args=_parse_tool_input("".join(acc.input_parts)),
                                ),
                            )

                    elif event_type == "message_delta":
                        # stop_reason lives in message_delta.delta, not message_start
                        stop_reason = data.get("delta", {}).get("stop_reason") or stop_reason
                        tokens = data.get("usage", {})
                        if "output_tokens" in tokens:
                            usage.completion_tokens = tokens["output_tokens"]

        except httpx.TimeoutException as e:
            raise ProviderError(f"API request timed out: {e}", ProviderErrorKind.TIMEOUT_ERROR) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Network error: {e}", ProviderErrorKind.NETWORK_ERROR) from e

        usage.total_tokens = usage.prompt_tokens + usage.completion_tokens
        yield StreamEvent(type="usage", usage=usage)
        yield StreamEvent(type="done", stop_reason=stop_reason)


def format_anthropic_messages(messages: list[ConversationMessage]) -> list[dict[str, Any]]:
    """Convert history to Messages API format.

    Tool results become tool_result blocks in a user turn, and consecutive
    turns with the same role are merged, since the API requires
    alternating roles.
    """
    formatted: list[dict[str, Any]] = []

    def append(role: str, blocks: list[dict[str, Any]]) -> None:
        if not blocks:
            return
        if formatted and formatted[-1]["role"] == role:
            formatted[-1]["content"].extend(blocks)
        else:
            formatted.append({"role": role, "content": blocks})

    for message in messages:
        if message.role == "tool":
            append("user", [
                {
                    "type": "tool_result",
                    "tool_use_id": result.tool_call_id,
                    "content": result.output,
                    "is_error": result.is_error,
                }
                for result in message.tool_results or []
            ])
            continue

        blocks: list[dict[str, Any]] = []
        if message.content:
            blocks.append({"type": "text", "text": message.content})
        if message.role == "assistant":
            for call in message.tool_calls or []:
                blocks.append({"type": "tool_use", "id": call.id, "name": call.tool_name, "input": call.args})
        append(message.role, blocks)

    return formatted


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------


class OpenAIProvider:
    """OpenAI Chat Completions API with SSE streaming."""

    name = "openai"

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._http = client

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            if not self._settings.openai_api_key:
                raise ConfigError("OPENAI_API_KEY is not set")
            self._http = httpx.AsyncClient(
                base_url=self._settings.openai_base_url,
                headers={
                    "authorization": f"Bearer {self._settings.openai_api_key}",
                    "content-type": "application/json",
                },
                timeout=_build_timeout(self._settings),
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            )
        return self._http

    async def close(self) -> None:
        if self._http:
            await self._http.aclose()
            self._http = None

    def build_payload(
        self,
        model: str,
        system_prompt: str,
        messages: list[ConversationMessage],
        tools: list[dict[str, Any]],
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "max_tokens": self._settings.max_tokens,
            "messages": [{"role": "system", "content": system_prompt}, *format_openai_messages(messages)],
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t["name"],
                        "description": t["description"],
                        "parameters": t["input_schema"],
                    },
                }
                for t in tools
            ]
        return payload

    async def stream_completion(
        self,
        model: str,
        system_prompt: str,
        messages: list[ConversationMessage],
        tools: list[dict[str, Any]],
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[StreamEvent]:
        payload = self.build_payload(model, system_prompt, messages, tools)
        calls: dict[int, _BlockAccumulator] = {}
        usage = Usage()
        stop_reason = ""

        try:
            async with self._client().stream("POST", "/v1/chat/completions", json=payload) as response:
                if response.status_code != 200:
                    raise _http_error("OpenAI", response.status_code, await response.aread())

                async for data in _iter_sse_data(response, cancel):
                    if "error" in data:
                        error = data["error"] or {}
                        raise ProviderError(f"{error.get('type', 'unknown')}: {error.get('message', '')}")

                    if data.get("usage"):
                        tokens = data["usage"]
                        usage = Usage(
                            prompt_tokens=tokens.get("prompt_tokens", 0),
                            completion_tokens=tokens.get("completion_tokens", 0),
                            total_tokens=tokens.get("total_tokens", 0),
                        )

                    for choice in data.get("choices") or []:
                        delta = choice.get("delta") or {}
                        if delta.get("content"):
                            yield StreamEvent(type="text_delta", text=delta["content"])
                        for part in delta.get("tool_calls") or []:
                            acc = calls.setdefault(part.get("index", 0), _BlockAccumulator(id="", name=""))
                            acc.id = part.get("id") or acc.id
                            function = part.get("function") or {}
                            acc.name = function.get("name") or acc.name
                            if function.get("arguments"):
                                acc.input_parts.append(function["arguments"])
                        if choice.get("finish_reason"):
                            stop_reason = choice["finish_reason"]

        except httpx.TimeoutException as e:
            raise ProviderError(f"API request timed out: {e}", ProviderErrorKind.TIMEOUT_ERROR) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Network error: {e}", ProviderErrorKind.NETWORK_ERROR) from e

        for index in sorted(calls):
            acc = calls[index]
            yield StreamEvent(
                type="tool_call",
                tool_call=ToolCallRequest(
                    id=acc.id, tool_name=acc.name, args=_parse_tool_input("".join(acc.input_parts))
                ),
            )
        yield StreamEvent(type="usage", usage=usage)
        yield StreamEvent(type="done", stop_reason=stop_reason)


def format_openai_messages(messages: list[ConversationMessage]) -> list[dict[str, Any]]:
    formatted: list[dict[str, Any]] = []
    for message in messages:
        if message.role == "tool":
            for result in message.tool_results or []:
                formatted.append({"role": "tool", "tool_call_id": result.tool_call_id, "content": result.output})
            continue
        entry: dict[str, Any] = {"role": message.role, "content": message.content or None}
        if message.role == "assistant" and message.tool_calls:
            entry["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.tool_name, "arguments": json.dumps(call.args)},
                }
                for call in message.tool_calls
            ]
        formatted.append(entry)
    return formatted


def get_provider(settings: Settings) -> Provider:
    """Provider for settings.provider."""
    if settings.provider == "openai":
        return OpenAIProvider(settings)
    return AnthropicProvider(settings)
