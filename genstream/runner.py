"""Drives one streamed generation from request to result.

Opens the transport, feeds the byte chunks through a StreamDecoder and
hands each text fragment to the caller as soon as it is decoded.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import aclosing
from typing import Any

import httpx

from genstream.decoder import StreamDecoder
from genstream.errors import IncompleteStream, MalformedRecord
from genstream.schemas.request import GenerateRequest
from genstream.schemas.streaming import StreamResult
from genstream.transport import open_chunk_stream

logger = logging.getLogger(__name__)


async def _notify(callback: Callable[[Any], Any] | None, value: Any) -> None:
    if callback is None:
        return
    result = callback(value)
    if asyncio.iscoroutine(result):
        await result


async def run_generation(
    request: GenerateRequest,
    *,
    host: str,
    on_fragment: Callable[[str], Any] | None = None,
    on_error: Callable[[MalformedRecord], Any] | None = None,
    on_service_error: Callable[[str], Any] | None = None,
    connect_timeout: float = 10.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> StreamResult:
    """Send ``request`` and stream the response.

    Args:
        request: The generation request.
        host: Base URL of the service.
        on_fragment: Called (or awaited) with each text fragment, in
                     arrival order.
        on_error: Called with each malformed record the decoder skips.
        on_service_error: Called with each error message the service
                          reports inside the stream.
        connect_timeout: Seconds allowed to establish the connection.
        transport: Optional httpx transport, used by tests.

    Returns:
        A StreamResult. ``completed`` is False (and ``context`` None)
        when the stream closed before its final record.

    Raises:
        TransportError: If the request or the stream fails.
    """
    decoder = StreamDecoder(on_error=on_error)
    parts: list[str] = []
    errors: list[str] = []

    async with open_chunk_stream(
        request, host=host, connect_timeout=connect_timeout, transport=transport,
    ) as chunks:
        try:
            async with aclosing(decoder.decode(chunks)) as records:
                async for record in records:
                    if record.error:
                        errors.append(record.error)
                        logger.warning("Service reported an error: %s", record.error)
                        await _notify(on_service_error, record.error)
                    if record.text_fragment:
                        parts.append(record.text_fragment)
                        await _notify(on_fragment, record.text_fragment)
        except IncompleteStream:
            logger.debug("Incomplete stream after %d record(s)", decoder.records)

    return StreamResult(
        text="".join(parts),
        context=decoder.context,
        completed=decoder.terminal_seen,
        records=decoder.records,
        malformed=decoder.malformed,
        errors=errors,
    )
