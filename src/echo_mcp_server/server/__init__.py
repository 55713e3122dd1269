from .app import create_app, create_router
from .dispatcher import ToolDispatcher
from .lifecycle import LifecycleCoordinator
from .registry import SessionRegistry
from .router import SessionRouter
from .session import SessionContext

__all__ = [
    "create_app",
    "create_router",
    "LifecycleCoordinator",
    "SessionContext",
    "SessionRegistry",
    "SessionRouter",
    "ToolDispatcher",
]
