"""Client configuration schema."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

DEFAULT_HOST = "http://localhost:11434"
DEFAULT_MODEL = "llama3"


class ClientConfig(BaseModel):
    """Resolved settings for one invocation.

    Loaded from ~/.genstream/config.toml, overridden by environment
    variables and then by CLI flags.
    """

    host: str = Field(default=DEFAULT_HOST, description="Base URL of the generation service")
    model: str = Field(default=DEFAULT_MODEL, description="Default model identifier")
    keep_alive: str | int | None = Field(
        default=None, description="Default keep-alive directive (e.g. '5m')"
    )
    connect_timeout: float = Field(
        default=10.0, gt=0, description="Seconds allowed to establish the connection"
    )
    save_context_path: str | None = Field(
        default=None, description="Default path for saving the conversation context"
    )

    @field_validator("host")
    @classmethod
    def _normalise_host(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value:
            return DEFAULT_HOST
        if "://" not in value:
            value = f"http://{value}"
        return value
