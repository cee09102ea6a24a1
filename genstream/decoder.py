"""Incremental decoder for streamed JSON records.

The service answers /api/generate with a run of small JSON objects,
one per generated fragment. The transport hands us bytes with arbitrary
boundaries: a chunk may end in the middle of a UTF-8 sequence or a JSON
token, or may hold several records at once. StreamDecoder buffers the
bytes and emits each record as soon as it is complete.

The whole buffer is re-parsed from the front on every chunk. Responses
are conversational in size, so this stays cheap; an incremental JSON
tokenizer would be the place to start for much larger payloads.
"""

from __future__ import annotations

import codecs
import json
import logging
import re
from collections.abc import AsyncIterable, AsyncIterator, Callable, Iterable, Iterator
from typing import Any

from pydantic import ValidationError

from genstream.errors import EncodingError, IncompleteStream, MalformedRecord
from genstream.schemas.streaming import DecodedRecord, DecoderState, WireRecord

logger = logging.getLogger(__name__)

_JSON = json.JSONDecoder()
_JSON_WHITESPACE = " \t\n\r"

# Literals json.loads accepts; a buffer ending in a prefix of one is truncated
_LITERALS = ("true", "false", "null", "NaN", "Infinity", "-Infinity")

# What may follow the digits of a number that was cut short: "1.", "1e", "1.5e+"
_NUMBER_TAIL_RE = re.compile(r"(?:\.\d*)?(?:[eE][+-]?\d*)?\Z")

# A \uXXXX escape cut short at the end of the buffer
_UNICODE_ESCAPE_TAIL_RE = re.compile(r"\\u[0-9a-fA-F]{0,4}\Z")

# Keep diagnostics readable when a large run of garbage is dropped
_FRAGMENT_PREVIEW = 80


def _is_truncated(error: json.JSONDecodeError) -> bool:
    """Tell an "unexpected end of input" failure apart from a syntax error.

    The json module raises the same JSONDecodeError for both, so the
    distinction is made from where the parser stopped and why.
    """
    doc, pos = error.doc, error.pos
    if error.msg.startswith("Invalid control character"):
        return False
    if pos >= len(doc.rstrip(_JSON_WHITESPACE)):
        return True
    if error.msg.startswith("Unterminated string"):
        return True
    if error.msg.startswith("Invalid \\uXXXX escape"):
        return _UNICODE_ESCAPE_TAIL_RE.search(doc) is not None

    tail = doc[pos:]
    if any(literal.startswith(tail) for literal in _LITERALS):
        return True
    if pos > 0 and doc[pos - 1].isdigit() and _NUMBER_TAIL_RE.match(tail):
        return True
    return False


def _preview(fragment: bytes) -> str:
    text = fragment.decode("utf-8", errors="replace")
    if len(text) > _FRAGMENT_PREVIEW:
        return text[:_FRAGMENT_PREVIEW] + "..."
    return text


class StreamDecoder:
    """Reassembles JSON records from an arbitrarily chunked byte stream.

    A decoder is single-use: construct a fresh one per response.
    Malformed records are reported through ``on_error`` (and logged at
    WARNING), the buffer is cleared and decoding carries on with the
    next chunk. Only the terminal record (``done: true``) may carry the
    conversation context.

    Usage::

        decoder = StreamDecoder(on_error=print_diagnostic)
        async for record in decoder.decode(chunks):
            ...
    """

    def __init__(self, on_error: Callable[[MalformedRecord], Any] | None = None) -> None:
        self._buffer = bytearray()
        self._on_error = on_error
        self._state = DecoderState.ACCUMULATING
        self._context: Any | None = None
        self._records = 0
        self._malformed = 0
        self._claimed = False

    # ── State ─────────────────────────────────────────────────

    @property
    def state(self) -> DecoderState:
        """Current lifecycle state."""
        return self._state

    @property
    def terminal_seen(self) -> bool:
        """Whether the terminal record has been decoded."""
        return self._state is DecoderState.TERMINAL

    @property
    def context(self) -> Any | None:
        """Context carried by the terminal record, if any."""
        return self._context

    @property
    def records(self) -> int:
        """Number of records emitted so far."""
        return self._records

    @property
    def malformed(self) -> int:
        """Number of malformed records reported so far."""
        return self._malformed

    @property
    def buffered(self) -> int:
        """Number of bytes waiting for the rest of their record."""
        return len(self._buffer)

    # ── Core interface ────────────────────────────────────────

    def feed(self, chunk: bytes) -> list[DecodedRecord]:
        """Append a chunk and return every record it completes.

        Chunks fed after the terminal record are discarded.
        """
        if self._state in (DecoderState.TERMINAL, DecoderState.STREAM_ENDED):
            if chunk:
                logger.debug("Discarding %d bytes after end of stream", len(chunk))
            return []

        self._state = DecoderState.ACCUMULATING
        self._buffer.extend(chunk)

        records: list[DecodedRecord] = []
        while self._buffer and self._state is not DecoderState.TERMINAL:
            try:
                record = self._take_record()
            except MalformedRecord as e:
                self._report(e)
                continue
            if record is None:
                break
            records.append(record)

        # errored and emitted_record are transient within a single feed
        if self._state is not DecoderState.TERMINAL:
            self._state = DecoderState.ACCUMULATING
        return records

    def finish(self) -> None:
        """Signal that the upstream closed.

        Raises:
            IncompleteStream: If the terminal record was never seen.
        """
        if self._state is DecoderState.TERMINAL:
            return
        leftover = bytes(self._buffer).strip()
        self._buffer.clear()
        if leftover:
            self._report(
                MalformedRecord(
                    f"stream ended inside a record: {_preview(leftover)!r}",
                    fragment=leftover,
                )
            )
        self._state = DecoderState.STREAM_ENDED
        logger.warning("Stream ended after %d record(s) without a final record", self._records)
        raise IncompleteStream()

    async def decode(self, chunks: AsyncIterable[bytes]) -> AsyncIterator[DecodedRecord]:
        """Lazily decode records from an async source of byte chunks.

        Stops consuming ``chunks`` once the terminal record is emitted.
        Transport errors raised by ``chunks`` propagate unchanged.

        Raises:
            IncompleteStream: After the last record, if ``chunks`` ended
                              before a terminal record.
            RuntimeError: If this decoder has already been used.
        """
        self._claim()
        try:
            async for chunk in chunks:
                for record in self.feed(chunk):
                    yield record
                if self._state is DecoderState.TERMINAL:
                    return
            self.finish()
        finally:
            self._buffer.clear()

    def iter_decode(self, chunks: Iterable[bytes]) -> Iterator[DecodedRecord]:
        """Synchronous counterpart of decode()."""
        self._claim()
        try:
            for chunk in chunks:
                yield from self.feed(chunk)
                if self._state is DecoderState.TERMINAL:
                    return
            self.finish()
        finally:
            self._buffer.clear()

    # ── Internals ─────────────────────────────────────────────

    def _claim(self) -> None:
        if self._claimed:
            raise RuntimeError("StreamDecoder instances are single-use")
        self._claimed = True

    def _report(self, error: MalformedRecord) -> None:
        self._malformed += 1
        self._state = DecoderState.ERRORED
        logger.warning("Skipping malformed record: %s", error)
        if self._on_error is not None:
            self._on_error(error)

    def _drop_buffer(self) -> bytes:
        fragment = bytes(self._buffer)
        self._buffer.clear()
        return fragment

    def _decode_buffer(self) -> tuple[str, int | None]:
        """Decode the buffer's complete UTF-8 code points.

        A multi-byte sequence cut off at the end is held back rather
        than treated as an error. Returns the text and, if the buffer
        holds invalid UTF-8, the byte offset where it starts.
        """
        decoder = codecs.getincrementaldecoder("utf-8")(errors="strict")
        try:
            return decoder.decode(bytes(self._buffer), final=False), None
        except UnicodeDecodeError as e:
            return bytes(self._buffer[: e.start]).decode("utf-8"), e.start

    def _take_record(self) -> DecodedRecord | None:
        """Parse one record off the front of the buffer.

        Returns None when more bytes are needed.

        Raises:
            MalformedRecord: The front of the buffer is not a valid record.
                             The offending bytes have been dropped.
        """
        text, invalid_at = self._decode_buffer()
        start = len(text) - len(text.lstrip(_JSON_WHITESPACE))

        if start == len(text):
            if invalid_at is not None:
                fragment = self._drop_buffer()
                raise EncodingError(
                    f"invalid UTF-8 at byte {invalid_at}: {_preview(fragment)!r}",
                    fragment=fragment,
                )
            # Only whitespace so far (plus, perhaps, a partial code point)
            del self._buffer[:start]
            return None

        try:
            value, end = _JSON.raw_decode(text, start)
        except json.JSONDecodeError as e:
            if not _is_truncated(e):
                fragment = self._drop_buffer()
                raise MalformedRecord(
                    f"{e.msg} at position {e.pos}: {_preview(fragment)!r}",
                    fragment=fragment,
                ) from e
            if invalid_at is not None:
                # The record runs into bytes that can never decode
                fragment = self._drop_buffer()
                raise EncodingError(
                    f"invalid UTF-8 at byte {invalid_at}: {_preview(fragment)!r}",
                    fragment=fragment,
                ) from e
            return None

        consumed = len(text[:end].encode("utf-8"))
        fragment = bytes(self._buffer[:consumed])
        del self._buffer[:consumed]

        if not isinstance(value, dict):
            raise MalformedRecord(
                f"expected a JSON object, got {type(value).__name__}: {_preview(fragment)!r}",
                fragment=fragment,
            )
        try:
            wire = WireRecord.model_validate(value)
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            raise MalformedRecord(
                f"invalid field(s) {fields}: {_preview(fragment)!r}",
                fragment=fragment,
            ) from e

        record = DecodedRecord.from_wire(wire)
        self._records += 1
        if record.is_final:
            self._state = DecoderState.TERMINAL
            self._context = record.context
            if self._buffer:
                logger.debug("Discarding %d bytes after the final record", len(self._buffer))
            self._buffer.clear()
        else:
            self._state = DecoderState.EMITTED_RECORD
        logger.debug(
            "Decoded record #%d (%d chars, final=%s)",
            self._records, len(record.text_fragment or ""), record.is_final,
        )
        return record
