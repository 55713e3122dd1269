"""Tests for ToolDispatcher."""

from typing import Any
from unittest.mock import AsyncMock

import pytest

from echo_mcp_server import types
from echo_mcp_server.exceptions import ToolError
from echo_mcp_server.server.context import RequestContext
from echo_mcp_server.server.dispatcher import ToolDispatcher
from echo_mcp_server.server.tool_manager import ToolManager

pytestmark = pytest.mark.anyio


@pytest.fixture
def tool_manager() -> ToolManager:
    tools = ToolManager()

    @tools.tool(description="Adds two numbers", input_schema={"type": "object", "required": ["a", "b"]})
    async def add(arguments: dict[str, Any], ctx: RequestContext) -> int:
        return arguments["a"] + arguments["b"]

    @tools.tool()
    async def fails(arguments: dict[str, Any], ctx: RequestContext) -> None:
        """Always reports an error."""
        raise ToolError("nope")

    @tools.tool()
    async def crashes(arguments: dict[str, Any], ctx: RequestContext) -> None:
        raise RuntimeError("secret internal detail")

    return tools


@pytest.fixture
def dispatcher(tool_manager: ToolManager) -> ToolDispatcher:
    return ToolDispatcher("test-server", "1.2.3", tool_manager=tool_manager, instructions="Be nice")


@pytest.fixture
def ctx() -> RequestContext:
    return RequestContext(session_id="abc", request_id=1, send_notification=AsyncMock())


def request(method: str, params: dict[str, Any] | None = None, request_id: types.RequestId = 1) -> types.JSONRPCRequest:
    return types.JSONRPCRequest(id=request_id, method=method, params=params)


@pytest.mark.parametrize(
    "requested, negotiated",
    [
        ("2025-03-26", "2025-03-26"),
        ("1999-01-01", types.LATEST_PROTOCOL_VERSION),
    ],
)
async def test_initialize_negotiates_protocol_version(
    dispatcher: ToolDispatcher, ctx: RequestContext, requested: str, negotiated: str
):
    params = {"protocolVersion": requested, "capabilities": {}, "clientInfo": {"name": "c", "version": "1"}}

    response = await dispatcher.handle_request(request("initialize", params), ctx)

    assert isinstance(response, types.JSONRPCResponse)
    assert response.result == {
        "protocolVersion": negotiated,
        "capabilities": {"tools": {"listChanged": False}},
        "serverInfo": {"name": "test-server", "version": "1.2.3"},
        "instructions": "Be nice",
    }


async def test_initialize_with_invalid_params(dispatcher: ToolDispatcher, ctx: RequestContext):
    response = await dispatcher.handle_request(request("initialize", {"capabilities": {}}), ctx)

    assert isinstance(response, types.JSONRPCError)
    assert response.error.code == types.INVALID_PARAMS


async def test_ping(dispatcher: ToolDispatcher, ctx: RequestContext):
    response = await dispatcher.handle_request(request("ping", request_id="p-1"), ctx)

    assert response == types.JSONRPCResponse(id="p-1", result={})


async def test_list_tools(dispatcher: ToolDispatcher, ctx: RequestContext):
    response = await dispatcher.handle_request(request("tools/list"), ctx)

    assert isinstance(response, types.JSONRPCResponse)
    tools = {tool["name"]: tool for tool in response.result["tools"]}
    assert set(tools) == {"add", "fails", "crashes"}
    assert tools["add"]["inputSchema"] == {"type": "object", "required": ["a", "b"]}
    assert tools["fails"]["description"] == "Always reports an error."


async def test_call_tool(dispatcher: ToolDispatcher, ctx: RequestContext):
    response = await dispatcher.handle_request(
        request("tools/call", {"name": "add", "arguments": {"a": 1, "b": 2}}), ctx
    )

    assert isinstance(response, types.JSONRPCResponse)
    assert response.result == {
        "content": [{"type": "text", "text": "3"}],
        "structuredContent": {"value": 3},
        "isError": False,
    }


async def test_call_unknown_tool(dispatcher: ToolDispatcher, ctx: RequestContext):
    response = await dispatcher.handle_request(request("tools/call", {"name": "missing"}), ctx)

    assert isinstance(response, types.JSONRPCError)
    assert response.error.code == types.INVALID_PARAMS
    assert response.error.message == "Unknown tool: missing"


async def test_call_tool_missing_argument(dispatcher: ToolDispatcher, ctx: RequestContext):
    response = await dispatcher.handle_request(request("tools/call", {"name": "add", "arguments": {"a": 1}}), ctx)

    assert isinstance(response, types.JSONRPCError)
    assert response.error.code == types.INVALID_PARAMS
    assert "b" in response.error.message


async def test_tool_error_is_reported_in_result(dispatcher: ToolDispatcher, ctx: RequestContext):
    response = await dispatcher.handle_request(request("tools/call", {"name": "fails"}), ctx)

    assert isinstance(response, types.JSONRPCResponse)
    assert response.result == {"content": [{"type": "text", "text": "nope"}], "isError": True}


async def test_unexpected_failure_does_not_leak_details(dispatcher: ToolDispatcher, ctx: RequestContext):
    response = await dispatcher.handle_request(request("tools/call", {"name": "crashes"}, request_id=9), ctx)

    assert response == types.JSONRPCError(
        id=9, error=types.ErrorData(code=types.INTERNAL_ERROR, message="Internal error")
    )


async def test_unknown_method(dispatcher: ToolDispatcher, ctx: RequestContext):
    response = await dispatcher.handle_request(request("resources/list"), ctx)

    assert isinstance(response, types.JSONRPCError)
    assert response.error.code == types.METHOD_NOT_FOUND
    assert response.error.message == "Method not found"


async def test_notifications_produce_no_response(dispatcher: ToolDispatcher, ctx: RequestContext):
    notification = types.JSONRPCNotification(method="notifications/initialized")

    assert await dispatcher.handle_notification(notification, ctx) is None
