"""genstream CLI — Typer + Rich terminal interface.

Commands: generate, config show.
Streamed text goes to stdout; diagnostics and errors go to stderr.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

# Model output is arbitrary Unicode; make sure a Windows codepage
# (cp1252) does not turn it into UnicodeEncodeError mid-stream.
if sys.platform == "win32":
    for _stream_name in ("stdout", "stderr"):
        _stream = getattr(sys, _stream_name, None)
        if _stream and hasattr(_stream, "reconfigure"):
            try:
                _stream.reconfigure(encoding="utf-8")
            except (OSError, ValueError):
                pass

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from genstream import __version__
from genstream.config import CONFIG_FILE, load_client_config, load_env_files
from genstream.context_store import load_context, save_context
from genstream.display import FragmentPrinter
from genstream.errors import MalformedContext, MalformedRecord, TransportError
from genstream.request import build_request
from genstream.runner import run_generation
from genstream.schemas.config import ClientConfig

console = Console()
err_console = Console(stderr=True)

# ── App and sub-apps ─────────────────────────────────────────────

app = typer.Typer(
    name="genstream",
    help="Stream completions from a local text-generation service.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

config_app = typer.Typer(
    name="config",
    help="Show client configuration.",
    no_args_is_help=True,
)
app.add_typer(config_app, name="config")


# ── Version callback ───────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"genstream {__version__}")
        raise typer.Exit()


# ── App Callback ────────────────────────────────────────────────


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v",
        help="Log request and decoding details to stderr.",
    ),
) -> None:
    """genstream — stream completions from a local text-generation service."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
            stream=sys.stderr,
        )
    load_env_files()


# ── Helpers ──────────────────────────────────────────────────────


def _fail(message: str) -> typer.Exit:
    err_console.print(f"[red]Error:[/red] {escape(message)}")
    return typer.Exit(1)


def _load_config(config_path: Path | None, **overrides) -> ClientConfig:
    """Resolve the client config, exit on error."""
    try:
        return load_client_config(config_path, overrides=overrides)
    except (FileNotFoundError, ValueError) as e:
        raise _fail(f"Error loading config: {e}") from None


def _read_prompt(prompt: str) -> str:
    if prompt == "-":
        return sys.stdin.read()
    return prompt


# ── genstream generate ───────────────────────────────────────────


@app.command()
def generate(
    prompt: str = typer.Argument(
        ..., help="Prompt text, or '-' to read it from stdin",
    ),
    model: str = typer.Option(
        None, "--model", "-m",
        help="Model to use (default: from config, else llama3)",
    ),
    system: str = typer.Option(
        None, "--system",
        help="Override the model's system prompt",
    ),
    template: str = typer.Option(
        None, "--template",
        help="Override the model's prompt template",
    ),
    context_file: Path = typer.Option(
        None, "--context-file", "-c",
        help="Resume the conversation saved in this file",
    ),
    save_context_path: Path = typer.Option(
        None, "--save-context", "-s",
        help="Save the new conversation context to this file",
    ),
    raw: bool = typer.Option(
        False, "--raw",
        help="Send the prompt without applying the prompt template",
    ),
    keep_alive: str = typer.Option(
        None, "--keep-alive",
        help="How long to keep the model loaded (e.g. 5m, 0, -1)",
    ),
    host: str = typer.Option(
        None, "--host",
        help="Service base URL (default: $OLLAMA_HOST or http://localhost:11434)",
    ),
    config_path: Path = typer.Option(
        None, "--config",
        help="Config file (default: ~/.genstream/config.toml)",
    ),
) -> None:
    """Send a prompt and print the response as it streams in."""
    config = _load_config(config_path, host=host, model=model, keep_alive=keep_alive)

    context = None
    if context_file is not None:
        try:
            context = load_context(context_file)
        except (FileNotFoundError, MalformedContext) as e:
            raise _fail(str(e)) from None

    try:
        request = build_request(
            config.model,
            _read_prompt(prompt),
            system=system,
            template=template,
            context=context,
            raw=True if raw else None,
            keep_alive=config.keep_alive,
        )
    except MalformedContext as e:
        raise _fail(str(e)) from None

    save_path = save_context_path or (
        Path(config.save_context_path).expanduser() if config.save_context_path else None
    )
    printer = FragmentPrinter(console, err_console)

    def _on_malformed(error: MalformedRecord) -> None:
        printer.diagnostic(f"Skipped malformed record: {error}")

    def _on_service_error(message: str) -> None:
        printer.diagnostic(f"Service error: {message}", style="red")

    try:
        result = asyncio.run(
            run_generation(
                request,
                host=config.host,
                on_fragment=printer.write,
                on_error=_on_malformed,
                on_service_error=_on_service_error,
                connect_timeout=config.connect_timeout,
            )
        )
    except TransportError as e:
        if printer.printed:
            printer.finish()
        raise _fail(str(e)) from None
    except KeyboardInterrupt:
        printer.finish()
        err_console.print("[dim]Interrupted.[/dim]")
        raise typer.Exit(130) from None

    printer.finish()

    if result.errors:
        raise typer.Exit(1)

    if not result.completed:
        err_console.print(
            "[yellow]Stream ended before the final record; no context saved.[/yellow]"
        )
        return

    if save_path is None:
        return
    if result.context is None:
        err_console.print("[yellow]No context returned; nothing saved.[/yellow]")
        return
    try:
        written = save_context(save_path, result.context)
    except OSError as e:
        raise _fail(f"Could not save context: {e}") from None
    err_console.print(f"[dim]Context saved to {escape(str(written))}[/dim]")


# ── genstream config ─────────────────────────────────────────────


@config_app.command("show")
def config_show(
    config_path: Path = typer.Option(
        None, "--config",
        help="Config file (default: ~/.genstream/config.toml)",
    ),
) -> None:
    """Show the resolved client configuration."""
    config = _load_config(config_path)

    table = Table(title="Client Configuration", show_header=False, show_lines=True)
    table.add_column("Setting", style="bold")
    table.add_column("Value")

    table.add_row("Config File", str(config_path or CONFIG_FILE))
    table.add_row("Host", config.host)
    table.add_row("Model", config.model)
    table.add_row(
        "Keep Alive",
        str(config.keep_alive) if config.keep_alive is not None else "(service default)",
    )
    table.add_row("Connect Timeout", f"{config.connect_timeout:g}s")
    table.add_row("Save Context Path", config.save_context_path or "(not set)")

    console.print(table)
