"""genstream schema definitions.

Pydantic v2 models for requests, streamed records and client configuration.
"""

from genstream.schemas.config import ClientConfig
from genstream.schemas.request import GenerateRequest
from genstream.schemas.streaming import (
    DecodedRecord,
    DecoderState,
    StreamResult,
    WireRecord,
)

__all__ = [
    "ClientConfig",
    "GenerateRequest",
    "DecodedRecord",
    "DecoderState",
    "StreamResult",
    "WireRecord",
]
