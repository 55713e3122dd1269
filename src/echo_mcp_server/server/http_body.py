"""Bounded reading of POST bodies on the MCP endpoint."""

from __future__ import annotations

from dataclasses import dataclass

from starlette.requests import Request


@dataclass(frozen=True)
class BodyTooLargeError(Exception):
    """The client sent, or announced, more than ``max_body_bytes``."""

    max_body_bytes: int

    def __str__(self) -> str:
        return f"Request body exceeds max_body_bytes={self.max_body_bytes}"


def _declared_length(request: Request) -> int | None:
    header = request.headers.get("content-length")
    if header is None or not header.isdigit():
        return None
    return int(header)


async def read_request_body(request: Request, *, max_body_bytes: int | None) -> bytes:
    """Return the request body, refusing anything larger than ``max_body_bytes``.

    ``None`` disables the cap. An oversized Content-Length fails before the
    first chunk is read; a missing or lying header is caught while streaming,
    so at most ``max_body_bytes`` are ever held in memory.

    Raises:
        BodyTooLargeError: the body is over the cap
        ValueError: ``max_body_bytes`` is zero or negative
    """
    if max_body_bytes is None:
        return await request.body()
    if max_body_bytes <= 0:
        raise ValueError("max_body_bytes must be positive or None")

    declared = _declared_length(request)
    if declared is not None and declared > max_body_bytes:
        raise BodyTooLargeError(max_body_bytes)

    chunks: list[bytes] = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > max_body_bytes:
            raise BodyTooLargeError(max_body_bytes)
        chunks.append(chunk)
    return b"".join(chunks)
