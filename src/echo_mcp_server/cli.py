"""Command line entry point for the echo MCP server."""

from __future__ import annotations

from typing import Any

import click
import uvicorn

from echo_mcp_server.server import create_app
from echo_mcp_server.settings import Settings
from echo_mcp_server.utilities.logging import configure_logging, get_logger

logger = get_logger(__name__)


@click.command()
@click.option("--host", default=None, help="Host to bind to [default: 127.0.0.1]")
@click.option("--port", type=int, default=None, help="Port to listen on for HTTP [default: 8000, or $PORT]")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Logging level",
)
@click.option(
    "--json-response",
    is_flag=True,
    default=None,
    help="Enable JSON responses instead of SSE streams",
)
@click.option(
    "--session-idle-timeout",
    type=float,
    default=None,
    help="Seconds of inactivity after which a session is closed",
)
def main(
    host: str | None,
    port: int | None,
    log_level: str | None,
    json_response: bool | None,
    session_idle_timeout: float | None,
) -> None:
    """Serve the echo tools over MCP Streamable HTTP."""
    overrides: dict[str, Any] = {
        "host": host,
        "port": port,
        "log_level": log_level.upper() if log_level else None,
        "json_response": json_response,
        "session_idle_timeout": session_idle_timeout,
    }
    settings = Settings(**{key: value for key, value in overrides.items() if value is not None})

    configure_logging(settings.log_level)
    app = create_app(settings)

    logger.info(f"Starting {settings.server_name} on http://{settings.host}:{settings.port}{settings.streamable_http_path}")
    # uvicorn handles SIGINT and SIGTERM; the app lifespan closes open sessions
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        timeout_graceful_shutdown=10,
    )
