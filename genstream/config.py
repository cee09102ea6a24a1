"""Configuration loading for genstream.

Settings are resolved with this priority:
  1. CLI flags (applied by the caller via ``overrides``)
  2. Environment variables (OLLAMA_HOST, GENSTREAM_MODEL, ...)
  3. ~/.genstream/config.toml, ``[client]`` table
  4. Built-in defaults

Env files (~/.genstream/env, then .env in the working directory) are
loaded into os.environ first, without overwriting variables already set.
"""

from __future__ import annotations

import logging
import os
import re
import tomllib
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from genstream.schemas.config import ClientConfig

logger = logging.getLogger(__name__)

# Directory for user-level genstream configuration
GENSTREAM_HOME = Path.home() / ".genstream"
CONFIG_FILE = GENSTREAM_HOME / "config.toml"
ENV_FILE = GENSTREAM_HOME / "env"

# Map environment variable to ClientConfig field
ENV_VARS: dict[str, str] = {
    "OLLAMA_HOST": "host",
    "GENSTREAM_MODEL": "model",
    "GENSTREAM_KEEP_ALIVE": "keep_alive",
    "GENSTREAM_CONNECT_TIMEOUT": "connect_timeout",
}

# Shell-style assignment: optional "export", identifier, "=", value
_ASSIGNMENT_RE = re.compile(r"^(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)\s*=\s*(.*)$")


def load_env_files(files: list[Path] | None = None) -> None:
    """Load KEY=VALUE env files into os.environ.

    Existing environment variables are NOT overwritten, and earlier
    files win over later ones.
    """
    for env_file in files if files is not None else [ENV_FILE, Path.cwd() / ".env"]:
        if env_file.is_file():
            _load_env_file(env_file)


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        return value[1:-1]
    # An unquoted value may carry a trailing " # comment"
    return value.split(" #", 1)[0].rstrip()


def _load_env_file(path: Path) -> None:
    """Load one env file into os.environ.

    Lines look like ``OLLAMA_HOST=gpu-box:11434`` and may start with
    ``export``, so a file written for the shell can be reused. A value
    wrapped in matching quotes is taken literally. Blank lines, comments
    and lines that are not assignments are skipped. A variable that is
    already set to a non-empty value is left alone.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.debug("Could not read %s: %s", path, e)
        return

    for lineno, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        match = _ASSIGNMENT_RE.match(line)
        if match is None:
            logger.debug("%s:%d: not an assignment, skipped", path, lineno)
            continue
        key, value = match.group(1), _unquote(match.group(2).strip())
        if os.environ.get(key):
            continue
        os.environ[key] = value
        logger.debug("Loaded %s from %s", key, path)


def _read_config_file(path: Path) -> dict[str, Any]:
    with open(path, "rb") as f:
        try:
            raw = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML in {path}: {e}") from None

    section = raw.get("client", {})
    if not isinstance(section, dict):
        raise ValueError(f"[client] in {path} must be a table")
    return section


def load_client_config(
    config_path: Path | None = None,
    *,
    overrides: dict[str, Any] | None = None,
) -> ClientConfig:
    """Resolve the client configuration.

    Args:
        config_path: Explicit config file. Defaults to ~/.genstream/config.toml,
                     which may be absent.
        overrides: Values from CLI flags; None entries are ignored.

    Returns:
        The resolved ClientConfig.

    Raises:
        FileNotFoundError: If an explicit ``config_path`` does not exist.
        ValueError: If the file or any resolved value is invalid.
    """
    values: dict[str, Any] = {}

    if config_path is not None and not config_path.is_file():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    path = config_path or CONFIG_FILE
    if path.is_file():
        values.update(_read_config_file(path))
        logger.debug("Loaded config from %s", path)

    for env_var, field in ENV_VARS.items():
        env_value = os.environ.get(env_var)
        if env_value:
            values[field] = env_value

    if overrides:
        values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return ClientConfig(**values)
    except ValidationError as e:
        raise ValueError(f"Invalid configuration: {e}") from None
