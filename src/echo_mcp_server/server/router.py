"""Request routing for the single ``/mcp`` resource."""

from __future__ import annotations

import json
from collections.abc import Callable
from http import HTTPStatus
from typing import Any
from uuid import uuid4

from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.types import Message, Receive, Scope, Send

from echo_mcp_server import types
from echo_mcp_server.exceptions import DuplicateSessionError, RegistryClosedError, SessionClosedError
from echo_mcp_server.server.dispatcher import ToolDispatcher
from echo_mcp_server.server.http_body import BodyTooLargeError, read_request_body
from echo_mcp_server.server.lifecycle import LifecycleCoordinator
from echo_mcp_server.server.registry import SessionRegistry
from echo_mcp_server.server.session import MCP_SESSION_ID_HEADER, SessionContext
from echo_mcp_server.settings import Settings
from echo_mcp_server.utilities.logging import get_logger

logger = get_logger(__name__)

INVALID_SESSION_MESSAGE = "Bad Request: No valid session ID provided"
MISSING_SESSION_TEXT = "Invalid or missing session ID"
SHUTTING_DOWN_MESSAGE = "Service Unavailable: Server is shutting down"

_UNPARSEABLE = object()


def new_session_id() -> str:
    """Mint a session identifier: 32 hex characters from a random UUID."""
    return uuid4().hex


class _ResponseTracker:
    """Wraps ASGI ``send`` to remember whether the response has started."""

    def __init__(self, send: Send):
        self._send = send
        self.started = False

    async def __call__(self, message: Message) -> None:
        if message["type"] == "http.response.start":
            self.started = True
        await self._send(message)


class SessionRouter:
    """
    ASGI application serving POST, GET and DELETE on the MCP endpoint.

    The router holds no state of its own. Each request is classified from its
    method, its ``mcp-session-id`` header and, for POST, the shape of its body:

    - POST without a header whose body is an ``initialize`` request creates a
      new session; POST with a known header is forwarded to that session.
    - GET with a known header opens the session's standalone stream.
    - DELETE with a known header closes the session and removes it.

    Anything else is answered with a 4xx and leaves every session untouched.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        coordinator: LifecycleCoordinator,
        dispatcher: ToolDispatcher,
        settings: Settings | None = None,
        session_id_factory: Callable[[], str] = new_session_id,
    ):
        self.registry = registry
        self.coordinator = coordinator
        self.dispatcher = dispatcher
        self.settings = settings or Settings()
        self._session_id_factory = session_id_factory

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self.handle_request(scope, receive, send)

    async def handle_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        tracked_send = _ResponseTracker(send)
        request = Request(scope, receive)
        try:
            if request.method == "POST":
                await self._handle_post(request, tracked_send)
            elif request.method == "GET":
                await self._handle_get(request, tracked_send)
            elif request.method == "DELETE":
                await self._handle_delete(request, tracked_send)
            else:
                response = PlainTextResponse(
                    "Method Not Allowed",
                    status_code=HTTPStatus.METHOD_NOT_ALLOWED,
                    headers={"Allow": "GET, POST, DELETE"},
                )
                await response(scope, receive, tracked_send)
        except Exception:
            logger.exception(f"Error routing {request.method} request")
            if tracked_send.started:
                return
            if request.method == "POST":
                await _json_error(
                    scope,
                    receive,
                    tracked_send,
                    HTTPStatus.INTERNAL_SERVER_ERROR,
                    types.INTERNAL_ERROR,
                    "Internal server error",
                )
            else:
                response = PlainTextResponse("Internal server error", status_code=HTTPStatus.INTERNAL_SERVER_ERROR)
                await response(scope, receive, tracked_send)

    async def _handle_post(self, request: Request, send: _ResponseTracker) -> None:
        scope, receive = request.scope, request.receive
        session_id = request.headers.get(MCP_SESSION_ID_HEADER)

        context: SessionContext | None = None
        if session_id is not None:
            context = self.registry.lookup(session_id)
            if context is None:
                logger.debug(f"POST for unknown session {session_id}")
                await self._reject_invalid_session(scope, receive, send)
                return

        try:
            body = await read_request_body(request, max_body_bytes=self.settings.max_body_bytes)
        except BodyTooLargeError as e:
            logger.debug(f"Rejecting POST: {e}")
            await _json_error(scope, receive, send, HTTPStatus.REQUEST_ENTITY_TOO_LARGE, types.INVALID_REQUEST, str(e))
            return

        try:
            payload: Any = json.loads(body)
        except ValueError:
            payload = _UNPARSEABLE

        if context is not None:
            if payload is _UNPARSEABLE:
                await _json_error(scope, receive, send, HTTPStatus.BAD_REQUEST, types.PARSE_ERROR, "Parse error")
                return
            await self._forward_post(context, scope, receive, send, payload)
            return

        if payload is _UNPARSEABLE or not types.is_initialize_request(payload):
            logger.debug("POST without session ID is not an initialization request")
            await self._reject_invalid_session(scope, receive, send)
            return

        await self._create_session(scope, receive, send, payload)

    async def _forward_post(
        self, context: SessionContext, scope: Scope, receive: Receive, send: _ResponseTracker, payload: Any
    ) -> None:
        try:
            await context.handle_post(scope, receive, send, payload)
        except SessionClosedError:
            logger.debug(f"POST reached session {context.session_id} after it closed")
            if not send.started:
                await self._reject_invalid_session(scope, receive, send)
        except Exception:
            logger.exception(f"Error handling POST for session {context.session_id}")
            if not send.started:
                await _json_error(
                    scope,
                    receive,
                    send,
                    HTTPStatus.INTERNAL_SERVER_ERROR,
                    types.INTERNAL_ERROR,
                    "Internal server error",
                    request_id=_request_id(payload),
                )

    async def _create_session(self, scope: Scope, receive: Receive, send: _ResponseTracker, payload: Any) -> None:
        if self.coordinator.shutting_down:
            await self._reject_shutting_down(scope, receive, send)
            return

        session_id = self._session_id_factory()
        context = SessionContext(
            session_id,
            self.dispatcher,
            self.coordinator.close_events,
            json_response=self.settings.json_response,
            sse_ping_interval=self.settings.sse_ping_interval,
            stream_buffer_size=self.settings.stream_buffer_size,
        )
        try:
            await self.registry.create(session_id, context)
        except RegistryClosedError:
            await self._reject_shutting_down(scope, receive, send)
            return
        except DuplicateSessionError:
            logger.error(f"Generated session ID {session_id} collides with a live session")
            await _json_error(
                scope,
                receive,
                send,
                HTTPStatus.INTERNAL_SERVER_ERROR,
                types.INTERNAL_ERROR,
                "Internal server error",
                request_id=_request_id(payload),
            )
            return

        logger.info(f"Created new session {session_id}")
        try:
            await context.handle_post(scope, receive, send, payload)
        except Exception:
            logger.exception(f"Error initializing session {session_id}")
            await self.registry.remove(session_id)
            await context.close("initialization failed")
            if not send.started:
                await _json_error(
                    scope,
                    receive,
                    send,
                    HTTPStatus.INTERNAL_SERVER_ERROR,
                    types.INTERNAL_ERROR,
                    "Internal server error",
                    request_id=_request_id(payload),
                )

    async def _handle_get(self, request: Request, send: _ResponseTracker) -> None:
        scope, receive = request.scope, request.receive
        context = self.registry.lookup(request.headers.get(MCP_SESSION_ID_HEADER))
        if context is None:
            await _text(scope, receive, send, HTTPStatus.BAD_REQUEST, MISSING_SESSION_TEXT)
            return

        try:
            await context.handle_get(scope, receive, send)
        except SessionClosedError:
            if not send.started:
                await _text(scope, receive, send, HTTPStatus.BAD_REQUEST, MISSING_SESSION_TEXT)
        except Exception:
            logger.exception(f"Error handling GET stream for session {context.session_id}")
            if not send.started:
                await _text(scope, receive, send, HTTPStatus.INTERNAL_SERVER_ERROR, "Error processing SSE request")

    async def _handle_delete(self, request: Request, send: _ResponseTracker) -> None:
        scope, receive = request.scope, request.receive
        session_id = request.headers.get(MCP_SESSION_ID_HEADER)
        context = self.registry.lookup(session_id)
        if session_id is None or context is None:
            await _text(scope, receive, send, HTTPStatus.BAD_REQUEST, MISSING_SESSION_TEXT)
            return

        logger.info(f"Terminating session {session_id} on client request")
        failed = False
        try:
            await context.close("terminated by client")
        except Exception:
            logger.exception(f"Error terminating session {session_id}")
            failed = True
        finally:
            # The entry goes away even if the close handshake failed
            await self.registry.remove(session_id)

        if failed:
            await _text(scope, receive, send, HTTPStatus.INTERNAL_SERVER_ERROR, "Error processing session termination")
        else:
            await Response(status_code=HTTPStatus.OK)(scope, receive, send)

    async def _reject_invalid_session(self, scope: Scope, receive: Receive, send: Send) -> None:
        await _json_error(scope, receive, send, HTTPStatus.BAD_REQUEST, types.SESSION_ERROR, INVALID_SESSION_MESSAGE)

    async def _reject_shutting_down(self, scope: Scope, receive: Receive, send: Send) -> None:
        logger.info("Refusing new session, server is shutting down")
        await _json_error(
            scope, receive, send, HTTPStatus.SERVICE_UNAVAILABLE, types.SESSION_ERROR, SHUTTING_DOWN_MESSAGE
        )


def _request_id(payload: Any) -> types.RequestId | None:
    if isinstance(payload, dict):
        request_id = payload.get("id")
        if isinstance(request_id, str) or (isinstance(request_id, int) and not isinstance(request_id, bool)):
            return request_id
    return None


async def _json_error(
    scope: Scope,
    receive: Receive,
    send: Send,
    status: HTTPStatus,
    code: int,
    message: str,
    request_id: types.RequestId | None = None,
) -> None:
    response = JSONResponse(types.error_envelope(code, message, request_id), status_code=status)
    await response(scope, receive, send)


async def _text(scope: Scope, receive: Receive, send: Send, status: HTTPStatus, text: str) -> None:
    await PlainTextResponse(text, status_code=status)(scope, receive, send)
