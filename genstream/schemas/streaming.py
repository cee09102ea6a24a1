"""Streaming schemas for incremental response decoding.

WireRecord validates one JSON object as sent by the service.
DecodedRecord is what the decoder hands to its consumer, and
StreamResult summarises a whole decoded response.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr


class DecoderState(StrEnum):
    """Lifecycle state of a StreamDecoder."""

    ACCUMULATING = "accumulating"
    EMITTED_RECORD = "emitted_record"
    TERMINAL = "terminal"
    ERRORED = "errored"
    STREAM_ENDED = "stream_ended"


class WireRecord(BaseModel):
    """One JSON object from the response body.

    Every field is optional on the wire. Metadata the service adds
    (model, created_at, eval_count, ...) is ignored.
    """

    model_config = ConfigDict(extra="ignore")

    response: StrictStr = ""
    done: StrictBool = False
    context: Any | None = None
    error: StrictStr | None = None


class DecodedRecord(BaseModel):
    """A single record recovered from the byte stream."""

    text_fragment: str | None = Field(
        default=None, description="Text carried by this record, None when empty"
    )
    is_final: bool = Field(default=False, description="True on the terminal record")
    context: Any | None = Field(
        default=None, description="Conversation context, only set on the terminal record"
    )
    error: str | None = Field(
        default=None, description="Error message reported by the service"
    )

    @classmethod
    def from_wire(cls, wire: WireRecord) -> DecodedRecord:
        """Build a DecodedRecord, trusting ``context`` only alongside ``done``."""
        return cls(
            text_fragment=wire.response or None,
            is_final=wire.done,
            context=wire.context if wire.done else None,
            error=wire.error,
        )


class StreamResult(BaseModel):
    """Outcome of one streamed generation."""

    text: str = Field(default="", description="Concatenated text fragments")
    context: Any | None = Field(
        default=None, description="Context from the terminal record, if any"
    )
    completed: bool = Field(
        default=False, description="Whether the terminal record was observed"
    )
    records: int = Field(default=0, ge=0, description="Number of records decoded")
    malformed: int = Field(default=0, ge=0, description="Number of malformed records skipped")
    errors: list[str] = Field(
        default_factory=list, description="Error messages reported by the service"
    )
