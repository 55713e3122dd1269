"""Tool-dispatch surface: resolves JSON-RPC methods to handlers.

The dispatcher holds no per-session state. One instance is shared by every
session context, which hands it one message at a time together with a
:class:`RequestContext` describing where the message came from.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, ValidationError

from echo_mcp_server import types
from echo_mcp_server.exceptions import McpError
from echo_mcp_server.server.context import RequestContext
from echo_mcp_server.server.tool_manager import ToolManager
from echo_mcp_server.utilities.logging import get_logger

logger = get_logger(__name__)

RequestHandler = Callable[[dict[str, Any], RequestContext], Awaitable[BaseModel | dict[str, Any]]]


class ToolDispatcher:
    def __init__(
        self,
        name: str,
        version: str,
        tool_manager: ToolManager | None = None,
        instructions: str | None = None,
    ):
        self.name = name
        self.version = version
        self.instructions = instructions
        self.tool_manager = tool_manager or ToolManager()
        self._request_handlers: dict[str, RequestHandler] = {
            "initialize": self._handle_initialize,
            "ping": self._handle_ping,
            "tools/list": self._handle_list_tools,
            "tools/call": self._handle_call_tool,
        }

    async def handle_request(
        self, request: types.JSONRPCRequest, ctx: RequestContext
    ) -> types.JSONRPCResponse | types.JSONRPCError:
        """Run the handler for ``request.method`` and build the response envelope.

        Handler failures never escape: protocol errors become their own error
        response, anything unexpected becomes a generic internal error so that
        no internal detail reaches the client.
        """
        handler = self._request_handlers.get(request.method)
        if handler is None:
            logger.debug(f"Method not found: {request.method}")
            return self._error(request.id, types.METHOD_NOT_FOUND, "Method not found")

        try:
            result = await handler(request.params or {}, ctx)
        except McpError as e:
            return types.JSONRPCError(id=request.id, error=e.error)
        except ValidationError as e:
            logger.debug(f"Invalid params for {request.method}: {e}")
            return self._error(request.id, types.INVALID_PARAMS, "Invalid params")
        except Exception:
            logger.exception(f"Error handling {request.method} in session {ctx.session_id}")
            return self._error(request.id, types.INTERNAL_ERROR, "Internal error")

        if isinstance(result, BaseModel):
            result = result.model_dump(by_alias=True, exclude_none=True, mode="json")
        return types.JSONRPCResponse(id=request.id, result=result)

    async def handle_notification(self, notification: types.JSONRPCNotification, ctx: RequestContext) -> None:
        logger.debug(f"Received notification {notification.method} in session {ctx.session_id}")

    def _error(self, request_id: types.RequestId, code: int, message: str) -> types.JSONRPCError:
        return types.JSONRPCError(id=request_id, error=types.ErrorData(code=code, message=message))

    async def _handle_initialize(self, params: dict[str, Any], ctx: RequestContext) -> types.InitializeResult:
        init_params = types.InitializeRequestParams.model_validate(params)
        requested = init_params.protocol_version
        protocol_version = (
            requested if requested in types.SUPPORTED_PROTOCOL_VERSIONS else types.LATEST_PROTOCOL_VERSION
        )
        logger.info(
            f"Initializing session {ctx.session_id} for {init_params.client_info.name} "
            f"{init_params.client_info.version} (protocol {protocol_version})"
        )
        return types.InitializeResult(
            protocol_version=protocol_version,
            capabilities=types.ServerCapabilities(tools={"listChanged": False}),
            server_info=types.Implementation(name=self.name, version=self.version),
            instructions=self.instructions,
        )

    async def _handle_ping(self, params: dict[str, Any], ctx: RequestContext) -> dict[str, Any]:
        return {}

    async def _handle_list_tools(self, params: dict[str, Any], ctx: RequestContext) -> types.ListToolsResult:
        return types.ListToolsResult(tools=self.tool_manager.list_tools())

    async def _handle_call_tool(self, params: dict[str, Any], ctx: RequestContext) -> types.CallToolResult:
        call = types.CallToolRequestParams.model_validate(params)
        return await self.tool_manager.call_tool(call.name, call.arguments or {}, ctx)
