from .exceptions import McpError, ToolError
from .server import create_app
from .settings import Settings

__all__ = ["create_app", "McpError", "Settings", "ToolError"]
