from __future__ import annotations as _annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from echo_mcp_server import types
from echo_mcp_server.exceptions import McpError, ToolError
from echo_mcp_server.server.context import RequestContext
from echo_mcp_server.utilities.logging import get_logger

logger = get_logger(__name__)

ToolFn = Callable[[dict[str, Any], RequestContext], Awaitable[Any]]


@dataclass(frozen=True)
class RegisteredTool:
    """Internal tool registration info."""

    definition: types.Tool
    fn: ToolFn

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def required_arguments(self) -> list[str]:
        return self.definition.input_schema.required or []


class ToolManager:
    """Holds the tools exposed through ``tools/list`` and ``tools/call``.

    Registration happens once at startup; afterwards the manager is only read,
    so a single instance is shared by every session.
    """

    def __init__(self, warn_on_duplicate_tools: bool = True):
        self._tools: dict[str, RegisteredTool] = {}
        self.warn_on_duplicate_tools = warn_on_duplicate_tools

    def add_tool(
        self,
        fn: ToolFn,
        name: str | None = None,
        description: str | None = None,
        input_schema: dict[str, Any] | None = None,
    ) -> RegisteredTool:
        """Add a tool to the manager."""
        tool_name = name or fn.__name__
        if tool_name == "<lambda>":
            raise ValueError("You must provide a name for lambda functions")

        existing = self._tools.get(tool_name)
        if existing is not None:
            if self.warn_on_duplicate_tools:
                logger.warning(f"Tool already exists: {tool_name}")
            return existing

        definition = types.Tool(
            name=tool_name,
            description=description or fn.__doc__ or "",
            input_schema=types.JsonSchema.model_validate(input_schema or {"type": "object"}),
        )
        tool = RegisteredTool(definition=definition, fn=fn)
        self._tools[tool_name] = tool
        return tool

    def tool(
        self,
        name: str | None = None,
        description: str | None = None,
        input_schema: dict[str, Any] | None = None,
    ) -> Callable[[ToolFn], ToolFn]:
        """Decorator registering an async tool function.

        The function receives the call arguments and the request context::

            @tools.tool(description="Echoes back the message provided")
            async def echo(arguments, ctx):
                return arguments["message"]
        """

        def decorator(fn: ToolFn) -> ToolFn:
            self.add_tool(fn, name=name, description=description, input_schema=input_schema)
            return fn

        return decorator

    def get_tool(self, name: str) -> RegisteredTool | None:
        return self._tools.get(name)

    def list_tools(self) -> list[types.Tool]:
        return [tool.definition for tool in self._tools.values()]

    async def call_tool(self, name: str, arguments: dict[str, Any], ctx: RequestContext) -> types.CallToolResult:
        """Run a tool and convert its return value into a ``CallToolResult``.

        Raises:
            McpError: the tool is unknown or a required argument is missing
        """
        tool = self.get_tool(name)
        if tool is None:
            raise McpError(types.ErrorData(code=types.INVALID_PARAMS, message=f"Unknown tool: {name}"))

        missing = [arg for arg in tool.required_arguments if arg not in arguments]
        if missing:
            raise McpError(
                types.ErrorData(
                    code=types.INVALID_PARAMS,
                    message=f"Missing required argument(s) for {name}: {', '.join(missing)}",
                )
            )

        try:
            value = await tool.fn(arguments, ctx)
        except ToolError as e:
            logger.warning(f"Tool {name} reported an error: {e}")
            return types.CallToolResult(content=[types.TextContent(text=str(e))], is_error=True)

        if isinstance(value, types.CallToolResult):
            return value
        return types.CallToolResult(
            content=[types.TextContent(text=str(value))],
            structured_content={"value": value},
        )
