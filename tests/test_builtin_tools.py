from unittest.mock import AsyncMock

import pytest

from echo_mcp_server import types
from echo_mcp_server.builtin_tools import create_tool_manager
from echo_mcp_server.exceptions import McpError
from echo_mcp_server.server.context import RequestContext
from echo_mcp_server.server.tool_manager import ToolManager


@pytest.fixture
def tools() -> ToolManager:
    return create_tool_manager("9.9.9")


@pytest.fixture
def ctx() -> RequestContext:
    return RequestContext(session_id="abc", request_id=1, send_notification=AsyncMock())


def test_registered_tools(tools: ToolManager):
    listed = {tool.name: tool for tool in tools.list_tools()}

    assert set(listed) == {"echo", "ping", "version"}
    assert listed["echo"].input_schema.required == ["message"]
    assert listed["ping"].description == 'Returns "pong" when called'


@pytest.mark.anyio
async def test_echo_returns_message_and_logs(tools: ToolManager, ctx: RequestContext):
    result = await tools.call_tool("echo", {"message": "hello"}, ctx)

    assert result.content == [types.TextContent(text="hello")]
    assert result.structured_content == {"value": "hello"}

    ctx.send_notification.assert_awaited_once()  # type: ignore[attr-defined]
    notification = ctx.send_notification.await_args.args[0]  # type: ignore[attr-defined]
    assert notification.method == "notifications/message"
    assert notification.params == {"level": "info", "data": "Echo tool called with message: hello", "logger": "echo"}


@pytest.mark.anyio
async def test_echo_requires_message(tools: ToolManager, ctx: RequestContext):
    with pytest.raises(McpError) as excinfo:
        await tools.call_tool("echo", {}, ctx)

    assert excinfo.value.error.code == types.INVALID_PARAMS


@pytest.mark.anyio
async def test_ping(tools: ToolManager, ctx: RequestContext):
    result = await tools.call_tool("ping", {}, ctx)

    assert result.content[0].text == "pong"


@pytest.mark.anyio
async def test_version(tools: ToolManager, ctx: RequestContext):
    result = await tools.call_tool("version", {}, ctx)

    assert result.content[0].text == "9.9.9"


def test_duplicate_tool_keeps_first(tools: ToolManager, caplog: pytest.LogCaptureFixture):
    async def other(arguments, ctx):
        return "other"

    existing = tools.get_tool("echo")
    assert tools.add_tool(other, name="echo") is existing
    assert "Tool already exists: echo" in caplog.text


def test_lambda_needs_a_name(tools: ToolManager):
    with pytest.raises(ValueError, match="You must provide a name for lambda functions"):
        tools.add_tool(lambda arguments, ctx: None)  # type: ignore[arg-type,return-value]
