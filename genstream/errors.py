"""Exception hierarchy for genstream.

Fatal errors (TransportError, MalformedContext) abort the invocation.
MalformedRecord and EncodingError are recovered inside the decoder and
reported as diagnostics. IncompleteStream is a soft failure: the text
already printed stands, but there is no context to save.
"""

from __future__ import annotations


class GenstreamError(Exception):
    """Base exception for all genstream errors."""


class TransportError(GenstreamError):
    """Raised when the byte-chunk source fails (connection, HTTP status)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedRecord(GenstreamError):
    """A buffered byte run could not be parsed as a stream record."""

    def __init__(self, message: str, *, fragment: bytes = b"") -> None:
        super().__init__(message)
        self.fragment = fragment


class EncodingError(MalformedRecord):
    """Buffered bytes believed complete are not valid UTF-8."""


class MalformedContext(GenstreamError):
    """A caller-supplied prior context is not valid JSON."""


class IncompleteStream(GenstreamError):
    """The chunk source closed before a terminal record was observed."""

    def __init__(self, message: str = "stream ended before the final record") -> None:
        super().__init__(message)
