"""The tools served by the echo MCP server."""

from __future__ import annotations

from typing import Any

from echo_mcp_server.server.context import RequestContext
from echo_mcp_server.server.tool_manager import ToolManager
from echo_mcp_server.utilities.logging import get_logger

logger = get_logger(__name__)


def create_tool_manager(server_version: str) -> ToolManager:
    tools = ToolManager()

    @tools.tool(
        name="echo",
        description="Echoes back the message provided",
        input_schema={
            "type": "object",
            "required": ["message"],
            "properties": {
                "message": {
                    "type": "string",
                    "description": "The message to echo back",
                }
            },
        },
    )
    async def echo(arguments: dict[str, Any], ctx: RequestContext) -> str:
        message = arguments["message"]
        logger.info(f"Echo tool called with message: {message}")
        await ctx.log("info", f"Echo tool called with message: {message}", logger="echo")
        return message

    @tools.tool(name="ping", description='Returns "pong" when called')
    async def ping(arguments: dict[str, Any], ctx: RequestContext) -> str:
        logger.info("Ping tool called")
        return "pong"

    @tools.tool(name="version", description="Returns the server version")
    async def version(arguments: dict[str, Any], ctx: RequestContext) -> str:
        logger.info("Version tool called")
        return server_version

    return tools
