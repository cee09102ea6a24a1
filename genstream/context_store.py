"""Reading and writing saved conversation contexts.

A context file holds the opaque JSON value returned on the final record
of a response. Passing it back with the next request resumes the
conversation.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from genstream.errors import MalformedContext
from genstream.request import parse_context

logger = logging.getLogger(__name__)


def load_context(path: Path) -> Any:
    """Load a previously saved context.

    Raises:
        FileNotFoundError: If the file does not exist.
        MalformedContext: If the file does not contain valid JSON.
    """
    if not path.is_file():
        raise FileNotFoundError(f"Context file not found: {path}")
    try:
        raw = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise MalformedContext(f"Context file {path} is not UTF-8 text") from e
    context = parse_context(raw)
    logger.debug("Loaded context from %s", path)
    return context


def save_context(path: Path, context: Any) -> Path:
    """Write ``context`` to ``path`` as pretty-printed JSON.

    Parent directories are created as needed.

    Returns:
        The path written to.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(context, indent=2) + "\n", encoding="utf-8")
    logger.debug("Saved context to %s", path)
    return path
