"""Agent loop, LLM providers and the chat service."""

from dadgpt.agent.loop import AgentLoop, LoopResult, LoopState, ToolCallRecord
from dadgpt.agent.provider import AnthropicProvider, OpenAIProvider, Provider, StreamEvent, get_provider
from dadgpt.agent.service import ChatResult, ChatService

__all__ = [
    "AgentLoop",
    "AnthropicProvider",
    "ChatResult",
    "ChatService",
    "LoopResult",
    "LoopState",
    "OpenAIProvider",
    "Provider",
    "StreamEvent",
    "ToolCallRecord",
    "get_provider",
]
