from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from echo_mcp_server import types

NotificationSender = Callable[[types.JSONRPCNotification], Awaitable[None]]


@dataclass
class RequestContext:
    """Per-request view handed to dispatch handlers and tools.

    ``send_notification`` delivers a server-initiated message back to the client
    over whichever stream belongs to the request: the POST's own SSE stream, or
    the session's standalone GET stream when the POST is answered with JSON.
    """

    session_id: str
    request_id: types.RequestId | None
    send_notification: NotificationSender

    async def log(self, level: types.LoggingLevel, data: Any, logger: str | None = None) -> None:
        """Send a ``notifications/message`` log notification to the client."""
        params = types.LoggingMessageNotificationParams(level=level, data=data, logger=logger)
        await self.send_notification(
            types.JSONRPCNotification(
                method="notifications/message",
                params=params.model_dump(by_alias=True, exclude_none=True, mode="json"),
            )
        )
