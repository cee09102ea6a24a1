"""genstream — streaming command-line client for a local text-generation service."""

__version__ = "0.1.0"

from .decoder import StreamDecoder
from .errors import (
    EncodingError,
    GenstreamError,
    IncompleteStream,
    MalformedContext,
    MalformedRecord,
    TransportError,
)
from .request import build_request
from .runner import run_generation
from .schemas.streaming import DecodedRecord, StreamResult

__all__ = [
    "StreamDecoder",
    "DecodedRecord",
    "StreamResult",
    "build_request",
    "run_generation",
    "GenstreamError",
    "TransportError",
    "MalformedRecord",
    "EncodingError",
    "MalformedContext",
    "IncompleteStream",
]
