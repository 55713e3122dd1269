"""Application factory for the echo MCP server."""

from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.routing import Route

from echo_mcp_server.builtin_tools import create_tool_manager
from echo_mcp_server.server.dispatcher import ToolDispatcher
from echo_mcp_server.server.lifecycle import LifecycleCoordinator
from echo_mcp_server.server.registry import SessionRegistry
from echo_mcp_server.server.router import SessionRouter
from echo_mcp_server.settings import Settings
from echo_mcp_server.utilities.logging import get_logger

logger = get_logger(__name__)


def create_router(settings: Settings | None = None) -> SessionRouter:
    """Wire a registry, a lifecycle coordinator and a dispatcher into a router.

    Every call returns an independent server: nothing is shared between two
    routers, so several can live in the same process.
    """
    settings = settings or Settings()
    registry = SessionRegistry()
    coordinator = LifecycleCoordinator(
        registry,
        session_idle_timeout=settings.session_idle_timeout,
        cleanup_check_interval=settings.cleanup_check_interval,
    )
    dispatcher = ToolDispatcher(
        settings.server_name,
        settings.server_version,
        tool_manager=create_tool_manager(settings.server_version),
    )
    return SessionRouter(registry, coordinator, dispatcher, settings=settings)


def create_app(settings: Settings | None = None) -> Starlette:
    """Return the Starlette app serving the MCP endpoint.

    The app's lifespan runs the lifecycle coordinator, so leaving it (for
    example when uvicorn receives SIGINT or SIGTERM) closes every open session.
    """
    settings = settings or Settings()
    router = create_router(settings)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        async with router.coordinator.run():
            logger.info(f"{settings.server_name} {settings.server_version} serving {settings.streamable_http_path}")
            try:
                yield
            finally:
                logger.info("Application shutting down...")

    # Expose Mcp-Session-Id to browser-based clients
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST", "DELETE"],
            expose_headers=["Mcp-Session-Id"],
        )
    ]

    app = Starlette(
        debug=settings.debug,
        routes=[Route(settings.streamable_http_path, endpoint=router)],
        middleware=middleware,
        lifespan=lifespan,
    )
    app.state.router = router
    return app
