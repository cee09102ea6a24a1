"""Request payload schema for the /api/generate endpoint."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class GenerateRequest(BaseModel):
    """A single generation request.

    Optional fields that were never set are omitted from the payload
    entirely; the service treats a missing field differently from an
    empty one. A field set explicitly, even to None, is sent.
    """

    model: str = Field(description="Model identifier (e.g. 'llama3')")
    prompt: str = Field(description="Prompt text")
    system: str | None = Field(default=None, description="Override the model's system prompt")
    template: str | None = Field(default=None, description="Override the prompt template")
    context: Any | None = Field(
        default=None, description="Opaque context from a previous response"
    )
    raw: bool | None = Field(default=None, description="Bypass prompt templating")
    keep_alive: str | int | None = Field(
        default=None, description="How long the model stays loaded after the request"
    )
    stream: bool = Field(default=True, description="Request a streamed response")

    def to_payload(self) -> dict[str, Any]:
        """Return the JSON-ready request body with unset options omitted."""
        payload = self.model_dump(exclude_unset=True)
        payload["stream"] = self.stream
        return payload
