"""Per-client session state for the Streamable HTTP endpoint.

A :class:`SessionContext` is created by the router when a client sends an
``initialize`` request and is addressed afterwards through the
``mcp-session-id`` header. It answers POSTs by handing messages to the shared
dispatcher, owns the standalone GET stream used for server-initiated messages,
and announces its own closure on the coordinator's close-event channel instead
of touching the registry itself.
"""

from __future__ import annotations

import contextlib
import time
from collections.abc import AsyncIterator, Iterator
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from pydantic import ValidationError
from sse_starlette import EventSourceResponse
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import Receive, Scope, Send

from echo_mcp_server import types
from echo_mcp_server.exceptions import SessionClosedError
from echo_mcp_server.server.context import NotificationSender, RequestContext
from echo_mcp_server.server.dispatcher import ToolDispatcher
from echo_mcp_server.utilities.logging import get_logger

logger = get_logger(__name__)

MCP_SESSION_ID_HEADER = "mcp-session-id"

OutgoingMessage = types.JSONRPCNotification | types.JSONRPCResponse | types.JSONRPCError


@dataclass(frozen=True)
class SessionClosed:
    """Emitted exactly once by a session context when it closes."""

    session_id: str
    reason: str


class SessionContext:
    def __init__(
        self,
        session_id: str,
        dispatcher: ToolDispatcher,
        close_events: MemoryObjectSendStream[SessionClosed],
        *,
        json_response: bool = False,
        sse_ping_interval: int = 15,
        stream_buffer_size: int = 64,
    ):
        self.session_id = session_id
        self._dispatcher = dispatcher
        self._close_events = close_events
        self._json_response = json_response
        self._sse_ping_interval = sse_ping_interval
        self._stream_buffer_size = stream_buffer_size

        # Guards _closed and _stream_writer
        self._lock = anyio.Lock()
        self._closed = False
        self._initialized = False
        self._stream_writer: MemoryObjectSendStream[OutgoingMessage] | None = None

        self.active_exchanges = 0
        self.last_activity = time.monotonic()

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def has_stream(self) -> bool:
        return self._stream_writer is not None

    def is_idle(self, now: float, timeout: float) -> bool:
        """True when no exchange is in flight and none finished within ``timeout``."""
        return self.active_exchanges == 0 and now - self.last_activity >= timeout

    @contextlib.contextmanager
    def _exchange(self) -> Iterator[None]:
        self.active_exchanges += 1
        self.last_activity = time.monotonic()
        try:
            yield
        finally:
            self.active_exchanges -= 1
            self.last_activity = time.monotonic()

    def _headers(self) -> dict[str, str]:
        return {MCP_SESSION_ID_HEADER: self.session_id}

    async def handle_post(self, scope: Scope, receive: Receive, send: Send, payload: Any) -> None:
        """Answer a POST carrying one JSON-RPC message or a batch.

        Raises:
            SessionClosedError: the session closed before the request arrived
        """
        if self._closed:
            raise SessionClosedError(self.session_id)

        with self._exchange():
            is_batch = isinstance(payload, list)
            raw_messages = payload if is_batch else [payload]
            if not raw_messages:
                await self._send_error(scope, receive, send, "Invalid Request: Empty batch")
                return

            try:
                messages = [types.JSONRPCMessageAdapter.validate_python(raw) for raw in raw_messages]
            except ValidationError as e:
                logger.debug(f"Rejecting malformed message in session {self.session_id}: {e}")
                await self._send_error(scope, receive, send, "Invalid Request")
                return

            requests = [m for m in messages if isinstance(m, types.JSONRPCRequest)]
            if any(r.method == "initialize" for r in requests):
                if len(messages) > 1:
                    await self._send_error(
                        scope, receive, send, "Invalid Request: Only one initialization request is allowed"
                    )
                    return
                if self._initialized:
                    await self._send_error(scope, receive, send, "Invalid Request: Server already initialized")
                    return

            for message in messages:
                if isinstance(message, types.JSONRPCNotification):
                    await self._dispatcher.handle_notification(message, self._request_context(None))
                elif not isinstance(message, types.JSONRPCRequest):
                    logger.debug(f"Ignoring client response in session {self.session_id}")

            if not requests:
                response = Response(status_code=HTTPStatus.ACCEPTED, headers=self._headers())
                await response(scope, receive, send)
                return

            request = Request(scope, receive)
            if self._json_response or "text/event-stream" not in request.headers.get("accept", ""):
                await self._respond_json(scope, receive, send, requests, is_batch)
            else:
                await self._respond_sse(scope, receive, send, requests)

    async def _respond_json(
        self,
        scope: Scope,
        receive: Receive,
        send: Send,
        requests: list[types.JSONRPCRequest],
        is_batch: bool,
    ) -> None:
        responses = [await self._dispatch(request, self.send_notification) for request in requests]
        bodies = [r.model_dump(mode="json", by_alias=True, exclude_none=True) for r in responses]
        response = JSONResponse(bodies if is_batch else bodies[0], headers=self._headers())
        await response(scope, receive, send)

    async def _respond_sse(
        self,
        scope: Scope,
        receive: Receive,
        send: Send,
        requests: list[types.JSONRPCRequest],
    ) -> None:
        sse_stream_writer, sse_stream_reader = anyio.create_memory_object_stream[OutgoingMessage](0)

        async def sse_writer() -> None:
            async with sse_stream_writer:
                try:
                    for request in requests:
                        response = await self._dispatch(request, sse_stream_writer.send)
                        await sse_stream_writer.send(response)
                except (anyio.BrokenResourceError, anyio.ClosedResourceError):
                    logger.debug(f"Client left before the response in session {self.session_id} was sent")
                except Exception:
                    # Headers are already out; the stream just ends
                    logger.exception(f"Error in SSE writer for session {self.session_id}")

        response = EventSourceResponse(
            content=_stream_events(sse_stream_reader),
            data_sender_callable=sse_writer,
            headers=self._headers(),
            ping=self._sse_ping_interval,
        )
        await response(scope, receive, send)

    async def _dispatch(
        self, request: types.JSONRPCRequest, notify: NotificationSender
    ) -> types.JSONRPCResponse | types.JSONRPCError:
        ctx = RequestContext(session_id=self.session_id, request_id=request.id, send_notification=notify)
        response = await self._dispatcher.handle_request(request, ctx)
        if request.method == "initialize" and isinstance(response, types.JSONRPCResponse):
            self._initialized = True
        return response

    def _request_context(self, request_id: types.RequestId | None) -> RequestContext:
        return RequestContext(session_id=self.session_id, request_id=request_id, send_notification=self.send_notification)

    async def _send_error(self, scope: Scope, receive: Receive, send: Send, message: str) -> None:
        response = JSONResponse(
            types.error_envelope(types.INVALID_REQUEST, message),
            status_code=HTTPStatus.BAD_REQUEST,
            headers=self._headers(),
        )
        await response(scope, receive, send)

    async def handle_get(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Open the standalone stream for server-initiated messages.

        The stream lives until the client disconnects or the session closes.
        Only one may be open at a time; once it ends a new GET starts a fresh one.

        Raises:
            SessionClosedError: the session closed before the request arrived
        """
        async with self._lock:
            if self._closed:
                raise SessionClosedError(self.session_id)
            conflict = self._stream_writer is not None
            if not conflict:
                writer, reader = anyio.create_memory_object_stream[OutgoingMessage](self._stream_buffer_size)
                self._stream_writer = writer

        if conflict:
            response = Response(
                "Conflict: Only one SSE stream is allowed per session",
                status_code=HTTPStatus.CONFLICT,
                headers=self._headers(),
            )
            await response(scope, receive, send)
            return

        logger.info(f"Opened standalone SSE stream for session {self.session_id}")
        response = EventSourceResponse(
            content=_stream_events(reader),
            headers=self._headers(),
            ping=self._sse_ping_interval,
        )
        try:
            with self._exchange():
                await response(scope, receive, send)
        finally:
            async with self._lock:
                if self._stream_writer is writer:
                    self._stream_writer = None
            writer.close()
            logger.info(f"Standalone SSE stream for session {self.session_id} ended")

    async def send_notification(self, notification: types.JSONRPCNotification) -> None:
        """Push a server-initiated message onto the standalone stream, if one is open."""
        writer = self._stream_writer
        if writer is None:
            logger.debug(f"No open stream for session {self.session_id}, dropping {notification.method}")
            return
        try:
            writer.send_nowait(notification)
        except anyio.WouldBlock:
            logger.warning(f"Stream buffer full for session {self.session_id}, dropping {notification.method}")
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            logger.debug(f"Stream for session {self.session_id} already closed, dropping {notification.method}")

    async def close(self, reason: str = "terminated") -> None:
        """Close the session. Closing an already closed session is a no-op."""
        async with self._lock:
            if self._closed:
                return
            self._closed = True
            writer, self._stream_writer = self._stream_writer, None

        if writer is not None:
            await writer.aclose()
        logger.info(f"Session {self.session_id} closed ({reason})")

        try:
            self._close_events.send_nowait(SessionClosed(session_id=self.session_id, reason=reason))
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            logger.debug(f"Close event for session {self.session_id} not delivered, coordinator is stopped")


async def _stream_events(reader: MemoryObjectReceiveStream[OutgoingMessage]) -> AsyncIterator[dict[str, Any]]:
    async with reader:
        async for message in reader:
            yield {"event": "message", "data": message.model_dump_json(by_alias=True, exclude_none=True)}
