"""Request builder for /api/generate.

Turns CLI-level options into a GenerateRequest. The only validation
performed is that a prior context given as a string parses as JSON.
"""

from __future__ import annotations

import json
import re
from typing import Any

from genstream.errors import MalformedContext
from genstream.schemas.request import GenerateRequest

# Bare integers are seconds; anything else ("5m", "1h30m") is a duration string
_SECONDS_RE = re.compile(r"^-?\d+$")


def parse_context(raw: str) -> Any:
    """Parse a serialized conversation context.

    Raises:
        MalformedContext: If ``raw`` is not valid JSON.
    """
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedContext(f"Context is not valid JSON: {e}") from e


def _normalise_keep_alive(value: str | int) -> str | int:
    if isinstance(value, str) and _SECONDS_RE.match(value.strip()):
        return int(value.strip())
    return value


def build_request(
    model: str,
    prompt: str,
    *,
    system: str | None = None,
    template: str | None = None,
    context: Any | None = None,
    raw: bool | None = None,
    keep_alive: str | int | None = None,
) -> GenerateRequest:
    """Assemble a generation request.

    Args:
        model: Model identifier.
        prompt: Prompt text.
        system: Optional system prompt override.
        template: Optional prompt template override.
        context: Prior conversation context, either as the JSON text saved
                 by a previous run or as an already-decoded value.
        raw: Bypass the model's prompt template.
        keep_alive: Keep-alive directive; a bare integer string is sent
                    as a number of seconds.

    Returns:
        A GenerateRequest whose payload contains only the supplied options.

    Raises:
        MalformedContext: If ``context`` is a string that is not valid JSON.
    """
    fields: dict[str, Any] = {"model": model, "prompt": prompt}
    if system is not None:
        fields["system"] = system
    if template is not None:
        fields["template"] = template
    if context is not None:
        fields["context"] = parse_context(context) if isinstance(context, str) else context
    if raw is not None:
        fields["raw"] = raw
    if keep_alive is not None:
        fields["keep_alive"] = _normalise_keep_alive(keep_alive)
    return GenerateRequest(**fields)
