"""Session teardown: close events, idle reaping and process shutdown."""

from __future__ import annotations

import contextlib
import math
import time
from collections.abc import AsyncIterator

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from echo_mcp_server.server.registry import SessionRegistry
from echo_mcp_server.server.session import SessionClosed
from echo_mcp_server.utilities.logging import get_logger

logger = get_logger(__name__)


class LifecycleCoordinator:
    """
    Owns every path by which a session leaves the registry.

    Session contexts never remove themselves: they emit a ``SessionClosed`` event
    on ``close_events`` and the coordinator performs the removal. It also closes
    sessions that stayed idle for longer than ``session_idle_timeout`` and, on
    shutdown, closes all remaining sessions before the process exits.

    Important: ``run()`` can only be entered once per instance.

    Args:
        registry: The registry shared with the router
        session_idle_timeout: Seconds without activity before a session is closed
        cleanup_check_interval: Seconds between two idle scans
    """

    def __init__(
        self,
        registry: SessionRegistry,
        *,
        session_idle_timeout: float = 300.0,
        cleanup_check_interval: float = 30.0,
    ):
        self.registry = registry
        self.session_idle_timeout = session_idle_timeout
        self.cleanup_check_interval = cleanup_check_interval

        self._close_events_writer: MemoryObjectSendStream[SessionClosed]
        self._close_events_reader: MemoryObjectReceiveStream[SessionClosed]
        self._close_events_writer, self._close_events_reader = anyio.create_memory_object_stream[SessionClosed](
            math.inf
        )

        self._shutting_down = False
        self._run_lock = anyio.Lock()
        self._has_started = False

    @property
    def close_events(self) -> MemoryObjectSendStream[SessionClosed]:
        """Channel handed to every session context for its close announcement."""
        return self._close_events_writer

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    @contextlib.asynccontextmanager
    async def run(self) -> AsyncIterator[None]:
        """
        Run the background tasks for the lifetime of the server.

        Use this in the lifespan of the Starlette app. Leaving the context shuts
        every remaining session down before the tasks are cancelled.
        """
        async with self._run_lock:
            if self._has_started:
                raise RuntimeError(
                    "LifecycleCoordinator .run() can only be called once per instance. "
                    "Create a new instance if you need to run again."
                )
            self._has_started = True

        async with anyio.create_task_group() as tg:
            tg.start_soon(self._consume_close_events)
            tg.start_soon(self._reap_idle_sessions)
            logger.info("Session lifecycle coordinator started")
            try:
                yield
            finally:
                logger.info("Session lifecycle coordinator shutting down")
                with anyio.CancelScope(shield=True):
                    await self.shutdown()
                # Late close() calls see ClosedResourceError and skip the event
                self._close_events_writer.close()
                tg.cancel_scope.cancel()

    async def shutdown(self) -> None:
        """
        Close every remaining session, best effort.

        New sessions are refused from the moment this starts. A session whose
        close fails is logged and removed anyway; it never stops the others from
        being closed.
        """
        self._shutting_down = True
        sessions = await self.registry.close()
        if sessions:
            logger.info(f"Closing {len(sessions)} open session(s)")

        for session_id, context in sessions:
            try:
                await context.close("shutdown")
            except Exception:
                logger.exception(f"Error closing session {session_id} during shutdown")
            finally:
                await self.registry.remove(session_id)

    async def _consume_close_events(self) -> None:
        async with self._close_events_reader:
            async for event in self._close_events_reader:
                removed = await self.registry.remove(event.session_id)
                if removed is not None:
                    logger.info(f"Session {event.session_id} removed from registry ({event.reason})")

    async def _reap_idle_sessions(self) -> None:
        while True:
            await anyio.sleep(self.cleanup_check_interval)
            await self.reap_idle_sessions()

    async def reap_idle_sessions(self) -> int:
        """Close sessions idle for longer than ``session_idle_timeout``. Returns how many."""
        now = time.monotonic()
        reaped = 0
        for session_id, context in self.registry.snapshot():
            if not context.is_idle(now, self.session_idle_timeout):
                continue
            logger.info(f"Session {session_id} idle for more than {self.session_idle_timeout}s, closing")
            reaped += 1
            try:
                await context.close("idle timeout")
            except Exception:
                logger.exception(f"Error closing idle session {session_id}")
            finally:
                await self.registry.remove(session_id)
        return reaped
