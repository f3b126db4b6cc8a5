"""Tests for the ``python -m react_agent`` command line."""

from __future__ import annotations

import argparse
import json
import subprocess
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from react_agent import __main__ as cli

from conftest import ScriptedGenerator, decision, direct_action

CLI_CMDS = [
    ["--help"],
    ["run", "--help"],
    ["approve", "--help"],
    ["reject", "--help"],
    ["stop", "--help"],
]


def test_cli_help_smoke() -> None:
    for cmd in CLI_CMDS:
        proc = subprocess.run(
            [sys.executable, "-m", "react_agent", *cmd],
            capture_output=True,
            text=True,
            check=False,
        )
        assert proc.returncode == 0, f"command failed: {cmd}\nstdout={proc.stdout}\nstderr={proc.stderr}"
        assert "usage:" in proc.stdout.lower()


# ---------------------------------------------------------------------------
# load_tools
# ---------------------------------------------------------------------------


class TestLoadTools:
    def test_none(self):
        assert cli.load_tools(None) == []

    def test_single_callable(self):
        assert cli.load_tools("json:dumps") == [json.dumps]

    def test_list(self, tmp_path, monkeypatch):
        (tmp_path / "cli_tools_mod.py").write_text(
            "def first(x: str) -> str:\n    return x\n\nTOOLS = [first]\n", encoding="utf-8"
        )
        monkeypatch.syspath_prepend(str(tmp_path))
        tools = cli.load_tools("cli_tools_mod:TOOLS")
        assert [t.__name__ for t in tools] == ["first"]

    def test_bad_spec(self):
        with pytest.raises(ValueError, match="module:attribute"):
            cli.load_tools("json")


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


def _run_args(**overrides) -> argparse.Namespace:
    args = cli.build_parser().parse_args(["run", "say hi"])
    for key, value in overrides.items():
        setattr(args, key, value)
    return args


class TestRun:
    @pytest.mark.asyncio
    async def test_prints_request_id_and_summary(self, monkeypatch, capsys):
        monkeypatch.delenv("REACT_AGENT_REDIS_URL", raising=False)
        generator = ScriptedGenerator(thinking=decision(direct_action("hello there")))
        with patch.object(cli, "LiteLLMGenerator", return_value=generator):
            code = await cli.cmd_run(_run_args(model="test-model", max_iterations=3))

        assert code == 0
        out = capsys.readouterr().out
        first_line = json.loads(out.splitlines()[0])
        assert "requestId" in first_line
        assert '"kind": "agent:complete"' in out
        assert "agent:thinking_delta" not in out
        summary = json.loads(out[out.rindex("{\n"):])
        assert summary["success"] is True
        assert summary["answer"] == "hello there"
        assert summary["reason"] == "COMPLETED"

    @pytest.mark.asyncio
    async def test_failed_run_exit_code(self, monkeypatch, capsys):
        monkeypatch.delenv("REACT_AGENT_REDIS_URL", raising=False)
        generator = ScriptedGenerator(thinking="no json")
        with patch.object(cli, "LiteLLMGenerator", return_value=generator):
            code = await cli.cmd_run(_run_args())
        assert code == 1
        assert '"reason": "NO_ACTIONS"' in capsys.readouterr().out


class TestDecide:
    @pytest.mark.asyncio
    async def test_approve_delivered(self, capsys):
        transport = MagicMock()
        transport.approve = AsyncMock(return_value=True)
        args = cli.build_parser().parse_args(["approve", "abc"])
        with patch.object(cli, "RedisConfirmationTransport", return_value=transport):
            assert await cli.cmd_decide(args) == 0
        transport.approve.assert_awaited_once_with("abc")
        assert "approved abc" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_reject_not_pending(self, capsys):
        transport = MagicMock()
        transport.reject = AsyncMock(return_value=False)
        args = cli.build_parser().parse_args(["reject", "abc"])
        with patch.object(cli, "RedisConfirmationTransport", return_value=transport):
            assert await cli.cmd_decide(args) == 1
        assert "No pending confirmation abc" in capsys.readouterr().err


class TestStop:
    @pytest.mark.asyncio
    async def test_stop(self, capsys):
        signal = MagicMock()
        signal.request_stop = AsyncMock()
        args = cli.build_parser().parse_args(["stop", "req-1", "--redis-url", "redis://x:6379/0"])
        with patch.object(cli, "RedisStopSignal", return_value=signal) as factory:
            assert await cli.cmd_stop(args) == 0
        factory.assert_called_once_with(url="redis://x:6379/0")
        signal.request_stop.assert_awaited_once_with("req-1")


def test_main_without_command_exits():
    with pytest.raises(SystemExit) as exc_info:
        cli.main([])
    assert exc_info.value.code == 1
