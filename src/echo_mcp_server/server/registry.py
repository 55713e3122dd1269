"""In-memory registry of live sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING

import anyio

from echo_mcp_server.exceptions import DuplicateSessionError, RegistryClosedError
from echo_mcp_server.utilities.logging import get_logger

if TYPE_CHECKING:
    from echo_mcp_server.server.session import SessionContext

logger = get_logger(__name__)


class SessionRegistry:
    """Maps session identifiers to their session context.

    One registry belongs to one server instance; it is created by the
    application factory and handed to the router and the lifecycle coordinator.

    All mutation goes through a single lock. Lookups read the mapping without
    the lock: the event loop never interleaves inside a dict operation, so a
    reader sees an entry either fully present or absent.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, SessionContext] = {}
        self._lock = anyio.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def create(self, session_id: str, context: SessionContext) -> None:
        """Register ``context`` under ``session_id``.

        Raises:
            DuplicateSessionError: the identifier is already registered
            RegistryClosedError: shutdown has begun
        """
        async with self._lock:
            if self._closed:
                raise RegistryClosedError(session_id)
            if session_id in self._sessions:
                raise DuplicateSessionError(session_id)
            self._sessions[session_id] = context
        logger.debug(f"Registered session {session_id} ({len(self._sessions)} active)")

    def lookup(self, session_id: str | None) -> SessionContext | None:
        if session_id is None:
            return None
        return self._sessions.get(session_id)

    async def remove(self, session_id: str) -> SessionContext | None:
        """Remove the entry for ``session_id``. Removing an absent id is a no-op."""
        async with self._lock:
            context = self._sessions.pop(session_id, None)
        if context is not None:
            logger.debug(f"Removed session {session_id} ({len(self._sessions)} active)")
        return context

    def snapshot(self) -> list[tuple[str, SessionContext]]:
        return list(self._sessions.items())

    async def close(self) -> list[tuple[str, SessionContext]]:
        """Stop accepting sessions and return the entries registered at that moment."""
        async with self._lock:
            self._closed = True
            return list(self._sessions.items())

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
