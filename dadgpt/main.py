"""DadGPT entry point.

Initializes all components and starts the server:
  Settings -> JsonStore -> EventBus -> Sessions -> PermissionGate
  -> ToolRegistry -> Provider -> AgentLoop -> ChatService -> App -> Uvicorn

Uses Starlette lifespan to manage component lifecycle on the same
event loop as uvicorn.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from starlette.applications import Starlette

from dadgpt.agent.loop import AgentLoop
from dadgpt.agent.provider import Provider, get_provider
from dadgpt.agent.service import ChatService
from dadgpt.api.rest import create_app
from dadgpt.config import Settings
from dadgpt.events import Event, EventBus
from dadgpt.permission import PermissionGate, PermissionRuleset
from dadgpt.session.store import SessionStore
from dadgpt.storage import JsonStore
from dadgpt.tools import ToolRegistry, register_builtin_tools

logger = logging.getLogger(__name__)

_TOOL_EVENTS = ("tool.start", "tool.complete", "tool.error")


def _log_tool_event(event: Event) -> None:
    logger.debug("%s %s (session=%s)", event.type, event.data.get("tool"), event.session_id)


def create_components(settings: Settings, provider: Provider | None = None) -> dict[str, Any]:
    """Build all components in dependency order.

    A provider may be passed in to replace the one chosen from settings.
    """
    store = JsonStore(settings.data_dir)
    bus = EventBus()
    for event_type in _TOOL_EVENTS:
        bus.subscribe(event_type, _log_tool_event)

    sessions = SessionStore(store, bus)
    gate = PermissionGate(
        PermissionRuleset(
            allow=settings.permission_allow,
            deny=settings.permission_deny,
            ask=settings.permission_ask,
        ),
        store,
        bus,
        interactive=settings.interactive,
    )

    registry = ToolRegistry()
    register_builtin_tools(registry, store, bus, settings)

    provider = provider or get_provider(settings)
    loop = AgentLoop(provider, registry, sessions, bus, settings, gate=gate)
    service = ChatService(loop, sessions)

    return {
        "store": store,
        "bus": bus,
        "sessions": sessions,
        "gate": gate,
        "registry": registry,
        "provider": provider,
        "loop": loop,
        "service": service,
    }


async def shutdown_components(components: dict[str, Any]) -> None:
    """Graceful shutdown in reverse order."""
    logger.info("Shutting down DadGPT...")

    service = components.get("service")
    if service:
        await service.close()

    provider = components.get("provider")
    if provider:
        await provider.close()

    bus = components.get("bus")
    if bus:
        bus.clear()

    logger.info("DadGPT shutdown complete.")


def build_app(settings: Settings, components: dict[str, Any] | None = None) -> Starlette:
    """Build the Starlette app; the lifespan closes components on shutdown."""
    components = components or create_components(settings)

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        app.state.components = components
        logger.info("DadGPT started: provider=%s model=%s", settings.provider, settings.model)
        logger.info(
            "Agent: max_iterations=%d, data_dir=%s, cwd=%s",
            settings.max_iterations,
            settings.data_dir,
            settings.working_directory,
        )
        yield
        await shutdown_components(components)

    return create_app(
        service=components["service"],
        sessions=components["sessions"],
        store=components["store"],
        settings=settings,
        lifespan=lifespan,
    )


def main() -> None:
    """Entry point: parse settings, build app, run server."""
    settings = Settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    logger.info("Starting DadGPT")
    logger.info("Model: %s (%s)", settings.model, settings.provider)
    logger.info("Data: %s", settings.data_dir)

    if not settings.api_key:
        logger.warning(
            "No API key set for provider %s; /chat endpoints will fail",
            settings.provider,
        )

    app = build_app(settings)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
