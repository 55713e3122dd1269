"""Server settings."""

from __future__ import annotations

import os
from typing import Any

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from echo_mcp_server.utilities.logging import LogLevel

DEFAULT_MAX_BODY_BYTES = 4 * 1024 * 1024


class Settings(BaseSettings):
    """Echo MCP server settings.

    All settings can be configured via environment variables with the prefix
    ECHO_MCP_. For example, ECHO_MCP_JSON_RESPONSE=true will set json_response=True.
    The listen port is also read from the plain PORT variable.
    """

    model_config = SettingsConfigDict(
        env_prefix="ECHO_MCP_",
        env_file=".env",
        extra="ignore",
    )

    server_name: str = "echo-mcp-server"
    server_version: str = "0.0.1"

    debug: bool = False
    log_level: LogLevel = "INFO"

    # HTTP settings
    host: str = "127.0.0.1"
    port: int = 8000
    streamable_http_path: str = "/mcp"

    json_response: bool = False
    """Answer POST requests with a single JSON body instead of an SSE stream."""

    max_body_bytes: int = Field(default=DEFAULT_MAX_BODY_BYTES, gt=0)

    # Session lifecycle
    session_idle_timeout: float = Field(default=300.0, gt=0)
    """Seconds without any request after which a session is closed."""

    cleanup_check_interval: float = Field(default=30.0, gt=0)

    # Streaming
    sse_ping_interval: int = Field(default=15, gt=0)
    stream_buffer_size: int = Field(default=64, gt=0)

    @model_validator(mode="before")
    @classmethod
    def _port_from_plain_env(cls, data: Any) -> Any:
        # ECHO_MCP_PORT and explicit arguments take precedence over PORT
        if isinstance(data, dict) and "port" not in data and os.environ.get("PORT"):
            return {**data, "port": os.environ["PORT"]}
        return data
