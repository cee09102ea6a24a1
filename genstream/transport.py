"""HTTP transport for /api/generate.

Opens one streaming POST per invocation and exposes the response body
as an async iterator of raw byte chunks. httpx errors are translated
into TransportError; nothing is retried.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx

from genstream.errors import TransportError
from genstream.schemas.request import GenerateRequest

logger = logging.getLogger(__name__)

GENERATE_PATH = "/api/generate"


def _error_detail(body: bytes) -> str:
    """Pull the service's error message out of a failed response body."""
    text = body.decode("utf-8", errors="replace").strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return text[:200]
    if isinstance(data, dict) and isinstance(data.get("error"), str):
        return data["error"]
    return text[:200]


async def _iter_chunks(response: httpx.Response) -> AsyncIterator[bytes]:
    try:
        async for chunk in response.aiter_bytes():
            if chunk:
                yield chunk
    except httpx.HTTPError as e:
        raise TransportError(f"Connection lost while streaming: {e}") from e


@asynccontextmanager
async def open_chunk_stream(
    request: GenerateRequest,
    *,
    host: str,
    connect_timeout: float = 10.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncIterator[AsyncIterator[bytes]]:
    """Send ``request`` and yield the response body as byte chunks.

    The client and response are closed on every exit path, including
    an early exit by the consumer.

    Args:
        request: The generation request to send.
        host: Base URL of the service (e.g. http://localhost:11434).
        connect_timeout: Seconds allowed to establish the connection.
                         Reads are never timed out.
        transport: Optional httpx transport, used by tests.

    Raises:
        TransportError: On connection failure or a non-2xx status.
    """
    url = host.rstrip("/") + GENERATE_PATH
    timeout = httpx.Timeout(None, connect=connect_timeout)
    logger.debug("POST %s (model=%s)", url, request.model)

    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        try:
            async with client.stream("POST", url, json=request.to_payload()) as response:
                logger.debug("Status: %s %s", response.status_code, response.reason_phrase)
                if response.is_error:
                    body = await response.aread()
                    raise TransportError(
                        f"{response.status_code} {response.reason_phrase}: {_error_detail(body)}",
                        status_code=response.status_code,
                    )
                yield _iter_chunks(response)
        except httpx.HTTPError as e:
            raise TransportError(f"Could not reach {url}: {e}") from e
