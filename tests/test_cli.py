"""Tests for the CLI interface.

Covers --help/--version, option handling for generate, context files,
error exits and config show, with the network layer patched out.
"""

from __future__ import annotations

import json
from functools import partial
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest
from typer.testing import CliRunner

from genstream import __version__
from genstream.cli import app
from genstream.config import ENV_VARS
from genstream.errors import MalformedRecord, TransportError
from genstream.runner import run_generation
from genstream.schemas.request import GenerateRequest
from genstream.schemas.streaming import StreamResult

# NO_COLOR=1 prevents Rich from injecting ANSI codes inside option names,
# which breaks substring matching in CI (headless, no TTY).
# COLUMNS=200 prevents wrapping that could split a flag across lines.
runner = CliRunner(env={"NO_COLOR": "1", "COLUMNS": "200"})


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch, tmp_path):
    for env_var in ENV_VARS:
        monkeypatch.delenv(env_var, raising=False)
    monkeypatch.setattr("genstream.config.CONFIG_FILE", tmp_path / "absent.toml")
    monkeypatch.setattr("genstream.config.ENV_FILE", tmp_path / "absent.env")
    monkeypatch.chdir(tmp_path)


# ── Factories ──────────────────────────────────────────────────────


def _fake_run(
    result: StreamResult,
    fragments: list[str] | None = None,
    *,
    malformed: list[str] | None = None,
):
    """Build a stand-in for run_generation that records its request."""
    calls: list[dict] = []

    async def fake(request: GenerateRequest, *, host, on_fragment=None, on_error=None,
                   on_service_error=None, connect_timeout=10.0, transport=None):
        calls.append({"request": request, "host": host, "connect_timeout": connect_timeout})
        for message in malformed or []:
            on_error(MalformedRecord(message))
        for fragment in fragments if fragments is not None else [result.text]:
            on_fragment(fragment)
        for message in result.errors:
            on_service_error(message)
        return result

    return fake, calls


def _completed(text: str = "Hi there", context=None) -> StreamResult:
    return StreamResult(text=text, context=context, completed=True, records=2)


def _interrupted_run(exc: BaseException, fragments: list[str]):
    """Build a stand-in for run_generation that prints, then raises."""

    def fake(request, *, on_fragment=None, **kwargs):
        for fragment in fragments:
            on_fragment(fragment)
        raise exc

    return fake


def _mock_service(chunks: list[bytes], requests: list[httpx.Request]):
    """Real run_generation wired to an in-process service that streams ``chunks``."""

    async def body():
        for chunk in chunks:
            yield chunk

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, content=body())

    return partial(run_generation, transport=httpx.MockTransport(handler))


_RECHUNKED = [
    b'{"resp',
    b'onse":"Hi","done":false}',
    b'{"response":" there","done":true,"context":[1,2,3]}',
]


# ── Top level ──────────────────────────────────────────────────────


class TestApp:
    def test_help(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "generate" in result.output
        assert "config" in result.output

    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"genstream {__version__}" in result.output

    def test_generate_help_lists_options(self):
        result = runner.invoke(app, ["generate", "--help"])
        assert result.exit_code == 0
        for flag in ["--model", "--system", "--template", "--context-file",
                     "--save-context", "--raw", "--keep-alive", "--host"]:
            assert flag in result.output


# ── genstream generate ─────────────────────────────────────────────


class TestGenerate:
    def test_prints_streamed_text(self):
        fake, calls = _fake_run(_completed(), ["Hi", " there"])
        with patch("genstream.cli.run_generation", fake):
            result = runner.invoke(app, ["generate", "Why is the sky blue?"])
        assert result.exit_code == 0
        assert "Hi there\n" in result.output
        assert calls[0]["request"].prompt == "Why is the sky blue?"
        assert calls[0]["request"].model == "llama3"
        assert calls[0]["host"] == "http://localhost:11434"

    def test_options_reach_payload(self):
        fake, calls = _fake_run(_completed())
        with patch("genstream.cli.run_generation", fake):
            result = runner.invoke(app, [
                "generate", "hi",
                "--model", "mistral",
                "--system", "Be brief.",
                "--template", "{{ .Prompt }}",
                "--raw",
                "--keep-alive", "300",
                "--host", "gpu-box:11434",
            ])
        assert result.exit_code == 0
        assert calls[0]["request"].to_payload() == {
            "model": "mistral",
            "prompt": "hi",
            "system": "Be brief.",
            "template": "{{ .Prompt }}",
            "raw": True,
            "keep_alive": 300,
            "stream": True,
        }
        assert calls[0]["host"] == "http://gpu-box:11434"

    def test_unset_options_omitted(self):
        fake, calls = _fake_run(_completed())
        with patch("genstream.cli.run_generation", fake):
            runner.invoke(app, ["generate", "hi"])
        assert set(calls[0]["request"].to_payload()) == {"model", "prompt", "stream"}

    def test_prompt_from_stdin(self):
        fake, calls = _fake_run(_completed())
        with patch("genstream.cli.run_generation", fake):
            result = runner.invoke(app, ["generate", "-"], input="piped prompt")
        assert result.exit_code == 0
        assert calls[0]["request"].prompt == "piped prompt"

    def test_model_from_environment(self, monkeypatch):
        monkeypatch.setenv("GENSTREAM_MODEL", "phi3")
        fake, calls = _fake_run(_completed())
        with patch("genstream.cli.run_generation", fake):
            runner.invoke(app, ["generate", "hi"])
        assert calls[0]["request"].model == "phi3"

    def test_malformed_record_diagnostic(self):
        fake, _ = _fake_run(_completed("ok"), ["ok"], malformed=["Expecting value"])
        with patch("genstream.cli.run_generation", fake):
            result = runner.invoke(app, ["generate", "hi"])
        assert result.exit_code == 0
        assert "Skipped malformed record: Expecting value" in result.output
        assert "ok" in result.output

    def test_service_error_exits_nonzero(self):
        fake, _ = _fake_run(StreamResult(errors=["model 'x' not found"]), [])
        with patch("genstream.cli.run_generation", fake):
            result = runner.invoke(app, ["generate", "hi"])
        assert result.exit_code == 1
        assert "Service error: model 'x' not found" in result.output

    def test_transport_error(self):
        async def failing(request, **kwargs):
            raise TransportError("Could not reach http://localhost:11434/api/generate")

        with patch("genstream.cli.run_generation", failing):
            result = runner.invoke(app, ["generate", "hi"])
        assert result.exit_code == 1
        assert "Could not reach" in result.output

    def test_interrupt_ends_line_and_exits_130(self):
        fake = _interrupted_run(KeyboardInterrupt(), ["partial"])
        with patch("genstream.cli.run_generation", fake):
            result = runner.invoke(app, ["generate", "hi"])
        assert result.exit_code == 130
        assert "partial\n" in result.output
        assert "Interrupted." in result.output

    def test_transport_error_after_output_ends_line(self):
        fake = _interrupted_run(
            TransportError("Connection lost while streaming: reset"), ["partial"]
        )
        with patch("genstream.cli.run_generation", fake):
            result = runner.invoke(app, ["generate", "hi"])
        assert result.exit_code == 1
        assert "partial\n" in result.output
        assert "Connection lost while streaming" in result.output

    def test_invalid_config_file(self, tmp_path):
        bad = tmp_path / "bad.toml"
        bad.write_text("[client\n", encoding="utf-8")
        result = runner.invoke(app, ["generate", "hi", "--config", str(bad)])
        assert result.exit_code == 1
        assert "Error loading config" in result.output


# ── Context files ──────────────────────────────────────────────────


class TestContextFiles:
    def test_context_file_resumes_conversation(self, tmp_path):
        ctx = tmp_path / "ctx.json"
        ctx.write_text("[1, 2, 3]", encoding="utf-8")
        fake, calls = _fake_run(_completed())
        with patch("genstream.cli.run_generation", fake):
            result = runner.invoke(app, ["generate", "again", "--context-file", str(ctx)])
        assert result.exit_code == 0
        assert calls[0]["request"].context == [1, 2, 3]

    def test_malformed_context_file(self, tmp_path):
        ctx = tmp_path / "ctx.json"
        ctx.write_text("[1, 2", encoding="utf-8")
        fake, calls = _fake_run(_completed())
        with patch("genstream.cli.run_generation", fake):
            result = runner.invoke(app, ["generate", "again", "-c", str(ctx)])
        assert result.exit_code == 1
        assert "not valid JSON" in result.output
        assert calls == []

    def test_missing_context_file(self, tmp_path):
        fake, calls = _fake_run(_completed())
        with patch("genstream.cli.run_generation", fake):
            result = runner.invoke(app, ["generate", "x", "-c", str(tmp_path / "nope.json")])
        assert result.exit_code == 1
        assert "Context file not found" in result.output
        assert calls == []

    def test_saves_terminal_context(self, tmp_path):
        out = tmp_path / "saved" / "ctx.json"
        fake, _ = _fake_run(_completed(context=[7, 8, 9]))
        with patch("genstream.cli.run_generation", fake):
            result = runner.invoke(app, ["generate", "hi", "--save-context", str(out)])
        assert result.exit_code == 0
        assert json.loads(out.read_text(encoding="utf-8")) == [7, 8, 9]
        assert "Context saved" in result.output

    def test_incomplete_stream_saves_nothing(self, tmp_path):
        out = tmp_path / "ctx.json"
        fake, _ = _fake_run(StreamResult(text="partial", completed=False, records=1))
        with patch("genstream.cli.run_generation", fake):
            result = runner.invoke(app, ["generate", "hi", "-s", str(out)])
        assert result.exit_code == 0
        assert "partial" in result.output
        assert "no context saved" in result.output
        assert not out.exists()

    def test_no_context_returned(self, tmp_path):
        out = tmp_path / "ctx.json"
        fake, _ = _fake_run(_completed(context=None))
        with patch("genstream.cli.run_generation", fake):
            result = runner.invoke(app, ["generate", "hi", "-s", str(out)])
        assert result.exit_code == 0
        assert not out.exists()

    def test_save_path_from_config(self, tmp_path):
        out = tmp_path / "from-config.json"
        config = tmp_path / "config.toml"
        config.write_text(f'[client]\nsave_context_path = "{out.as_posix()}"\n', encoding="utf-8")
        fake, _ = _fake_run(_completed(context=[1]))
        with patch("genstream.cli.run_generation", fake):
            result = runner.invoke(app, ["generate", "hi", "--config", str(config)])
        assert result.exit_code == 0
        assert json.loads(out.read_text(encoding="utf-8")) == [1]


# ── genstream config ───────────────────────────────────────────────


class TestConfigShow:
    def test_shows_defaults(self):
        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert "http://localhost:11434" in result.output
        assert "llama3" in result.output

    def test_shows_environment_host(self, monkeypatch):
        monkeypatch.setenv("OLLAMA_HOST", "localhost:9999")
        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert "http://localhost:9999" in result.output

    def test_missing_config_file(self, tmp_path):
        result = runner.invoke(app, ["config", "show", "--config", str(tmp_path / "x.toml")])
        assert result.exit_code == 1
        assert "Config file not found" in result.output


# ── End to end over a mock service ─────────────────────────────────


class TestGenerateEndToEnd:
    def test_rechunked_stream_printed_verbatim(self):
        requests: list[httpx.Request] = []
        with patch("genstream.cli.run_generation", _mock_service(_RECHUNKED, requests)):
            result = runner.invoke(app, ["generate", "Why is the sky blue?"])
        assert result.exit_code == 0
        assert result.stdout == "Hi there\n"
        assert len(requests) == 1
        assert requests[0].url == "http://localhost:11434/api/generate"
        assert json.loads(requests[0].content) == {
            "model": "llama3",
            "prompt": "Why is the sky blue?",
            "stream": True,
        }

    def test_terminal_context_saved(self, tmp_path):
        out = tmp_path / "ctx.json"
        requests: list[httpx.Request] = []
        with patch("genstream.cli.run_generation", _mock_service(_RECHUNKED, requests)):
            result = runner.invoke(app, ["generate", "hi", "-s", str(out)])
        assert result.exit_code == 0
        assert result.stdout.startswith("Hi there\n")
        assert json.loads(out.read_text(encoding="utf-8")) == [1, 2, 3]

    def test_saved_context_resumes_next_run(self, tmp_path):
        ctx = tmp_path / "ctx.json"
        ctx.write_text("[1, 2, 3]\n", encoding="utf-8")
        requests: list[httpx.Request] = []
        chunks = [b'{"response":"Again","done":true,"context":[4]}']
        with patch("genstream.cli.run_generation", _mock_service(chunks, requests)):
            result = runner.invoke(app, ["generate", "more", "-c", str(ctx), "-s", str(ctx)])
        assert result.exit_code == 0
        assert json.loads(requests[0].content)["context"] == [1, 2, 3]
        assert json.loads(ctx.read_text(encoding="utf-8")) == [4]

    def test_stream_cut_short_saves_nothing(self, tmp_path):
        out = tmp_path / "ctx.json"
        requests: list[httpx.Request] = []
        with patch("genstream.cli.run_generation", _mock_service(_RECHUNKED[:2], requests)):
            result = runner.invoke(app, ["generate", "hi", "-s", str(out)])
        assert result.exit_code == 0
        assert result.stdout.startswith("Hi\n")
        assert "no context saved" in result.output
        assert not out.exists()
