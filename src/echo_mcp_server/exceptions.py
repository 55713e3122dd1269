"""Exceptions raised by the echo MCP server."""

from echo_mcp_server.types import ErrorData


class McpError(Exception):
    """Exception carrying a JSON-RPC error to be returned to the peer.

    Attributes:
        error: The ErrorData sent back in the error response
    """

    error: ErrorData

    def __init__(self, error: ErrorData):
        super().__init__(error.message)
        self.error = error


class ToolError(Exception):
    """Error in tool operations, reported to the client as an ``isError`` result."""


class SessionError(Exception):
    """Base error for session lifecycle failures."""

    def __init__(self, session_id: str, message: str | None = None):
        super().__init__(message or f"Session {session_id}")
        self.session_id = session_id


class SessionClosedError(SessionError):
    """The session was closed while a request addressed to it was in flight."""

    def __init__(self, session_id: str):
        super().__init__(session_id, f"Session already closed: {session_id}")


class DuplicateSessionError(SessionError):
    """A session with the same identifier is already registered."""

    def __init__(self, session_id: str):
        super().__init__(session_id, f"Session already registered: {session_id}")


class RegistryClosedError(SessionError):
    """The registry no longer accepts sessions because shutdown has begun."""

    def __init__(self, session_id: str):
        super().__init__(session_id, f"Registry is closed, cannot register session {session_id}")
