"""JSON-RPC and MCP types used by the server.

Only the subset of the protocol the server speaks is modelled here: the JSON-RPC
2.0 envelope, the ``initialize`` handshake and the ``tools/*`` methods.
"""

from __future__ import annotations

from typing import Annotated, Any, Final, Literal

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, TypeAdapter, ValidationError

JSONRPC_VERSION: Final[str] = "2.0"

LATEST_PROTOCOL_VERSION: Final[str] = "2025-06-18"
SUPPORTED_PROTOCOL_VERSIONS: Final[tuple[str, ...]] = ("2024-11-05", "2025-03-26", LATEST_PROTOCOL_VERSION)

# Standard JSON-RPC error codes
PARSE_ERROR: Final[int] = -32700
INVALID_REQUEST: Final[int] = -32600
METHOD_NOT_FOUND: Final[int] = -32601
INVALID_PARAMS: Final[int] = -32602
INTERNAL_ERROR: Final[int] = -32603

# Implementation defined server error, used for session addressing failures
SESSION_ERROR: Final[int] = -32000

RequestId = Annotated[int, Field(strict=True)] | str


class MCPModel(BaseModel):
    """Base class for MCP domain types. Allows extra fields for forward compatibility."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class JSONRPCBase(MCPModel):
    """Base class for all JSON-RPC messages."""

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION


class JSONRPCRequest(JSONRPCBase):
    """A request that expects a response."""

    id: RequestId
    method: str
    params: dict[str, Any] | None = None


class JSONRPCNotification(JSONRPCBase):
    """A notification which does not expect a response."""

    method: str
    params: dict[str, Any] | None = None


class ErrorData(BaseModel):
    """Error information in a JSON-RPC error response."""

    model_config = ConfigDict(extra="allow")

    code: int
    message: str
    data: Any | None = None


class JSONRPCResponse(JSONRPCBase):
    """A successful (non-error) response to a request."""

    id: RequestId
    result: dict[str, Any]


class JSONRPCError(JSONRPCBase):
    """A response to a request that indicates an error occurred."""

    id: RequestId | None = None
    error: ErrorData


def _message_kind(value: Any) -> str | None:
    if isinstance(value, dict):
        if "method" in value:
            return "request" if "id" in value else "notification"
        if "error" in value:
            return "error"
        if "result" in value:
            return "response"
        return None
    if isinstance(value, JSONRPCRequest):
        return "request"
    if isinstance(value, JSONRPCNotification):
        return "notification"
    if isinstance(value, JSONRPCError):
        return "error"
    if isinstance(value, JSONRPCResponse):
        return "response"
    return None


JSONRPCMessage = Annotated[
    Annotated[JSONRPCRequest, Tag("request")]
    | Annotated[JSONRPCNotification, Tag("notification")]
    | Annotated[JSONRPCResponse, Tag("response")]
    | Annotated[JSONRPCError, Tag("error")],
    Discriminator(_message_kind),
]

JSONRPCMessageAdapter: TypeAdapter[JSONRPCMessage] = TypeAdapter(JSONRPCMessage)


def error_envelope(code: int, message: str, request_id: RequestId | None = None) -> dict[str, Any]:
    """Build a JSON-RPC error envelope ready to be serialised.

    ``id`` is always present, and is ``null`` when the failing request could not
    be identified.
    """
    envelope = JSONRPCError(id=request_id, error=ErrorData(code=code, message=message))
    return envelope.model_dump(mode="json", exclude={"error": {"data"}})


class Implementation(MCPModel):
    """Describes the name and version of an MCP implementation."""

    name: str
    version: str
    title: str | None = None


class ClientCapabilities(MCPModel):
    """Capabilities that a client may support."""

    experimental: dict[str, Any] | None = None
    roots: dict[str, Any] | None = None
    sampling: dict[str, Any] | None = None
    elicitation: dict[str, Any] | None = None


class ServerCapabilities(MCPModel):
    """Capabilities that a server may support."""

    experimental: dict[str, Any] | None = None
    logging: dict[str, Any] | None = None
    tools: dict[str, Any] | None = None


class InitializeRequestParams(MCPModel):
    """Parameters for the initialize request."""

    protocol_version: Annotated[str, Field(alias="protocolVersion")]
    capabilities: ClientCapabilities
    client_info: Annotated[Implementation, Field(alias="clientInfo")]


class InitializeRequest(JSONRPCRequest):
    """Sent from client to server when first connecting."""

    method: Literal["initialize"] = "initialize"
    params: InitializeRequestParams  # type: ignore[assignment]


class InitializeResult(MCPModel):
    """Server's response to an initialize request."""

    protocol_version: Annotated[str, Field(alias="protocolVersion")]
    capabilities: ServerCapabilities
    server_info: Annotated[Implementation, Field(alias="serverInfo")]
    instructions: str | None = None


def is_initialize_request(payload: Any) -> bool:
    """Return True if ``payload`` is a well-formed ``initialize`` request.

    This is the only body shape that may open a new session. Batches never
    qualify: initialization must be sent on its own.
    """
    if not isinstance(payload, dict) or payload.get("method") != "initialize":
        return False
    try:
        InitializeRequest.model_validate(payload)
    except ValidationError:
        return False
    return True


class JsonSchema(MCPModel):
    """A JSON Schema object."""

    type: Literal["object"] = "object"
    properties: dict[str, Any] | None = None
    required: list[str] | None = None


class Tool(MCPModel):
    """Definition of a tool the server provides."""

    name: str
    input_schema: Annotated[JsonSchema, Field(alias="inputSchema")]
    title: str | None = None
    description: str | None = None


class ListToolsResult(MCPModel):
    """Server's response to a tools/list request."""

    tools: list[Tool]
    next_cursor: Annotated[str | None, Field(alias="nextCursor")] = None


class CallToolRequestParams(MCPModel):
    """Parameters for tools/call request."""

    name: str
    arguments: dict[str, Any] | None = None


class TextContent(MCPModel):
    """Text provided to or from an LLM."""

    type: Literal["text"] = "text"
    text: str


class CallToolResult(MCPModel):
    """Server's response to a tools/call request."""

    content: list[TextContent]
    structured_content: Annotated[dict[str, Any] | None, Field(alias="structuredContent")] = None
    is_error: Annotated[bool, Field(alias="isError")] = False


LoggingLevel = Literal["debug", "info", "notice", "warning", "error", "critical", "alert", "emergency"]


class LoggingMessageNotificationParams(MCPModel):
    """Parameters for notifications/message."""

    level: LoggingLevel
    data: Any
    logger: str | None = None
