"""Unit tests for the CLI — command registration and end-to-end demo runs.

Exercises the Typer app via typer.testing.CliRunner against a temporary
ledger and artifact store.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

import pytest
from typer.testing import CliRunner

from greenshift.cli.app import app
from greenshift.core.run_ledger import RunLedger

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Run every command from an empty directory and restore root logging."""
    monkeypatch.chdir(tmp_path)
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def _demo(tmp_path: Path, *extra: str):
    return runner.invoke(
        app,
        [
            "demo",
            "--ledger",
            str(tmp_path / "ledger.db"),
            "--artifacts",
            str(tmp_path / "artifacts"),
            *extra,
        ],
    )


def _latest_execution(tmp_path: Path) -> str:
    return RunLedger(tmp_path / "ledger.db").get_all_execution_ids()[0]


# ---------------------------------------------------------------------------
# Test: CLI help and registration
# ---------------------------------------------------------------------------


class TestCliApp:
    """The CLI must register all expected commands and show help."""

    def test_help_lists_commands(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("demo", "monitor", "policies", "verify"):
            assert command in result.output

    @pytest.mark.parametrize("command", ["demo", "monitor", "policies", "verify"])
    def test_command_help(self, command: str):
        result = runner.invoke(app, [command, "--help"])
        assert result.exit_code == 0

    def test_policies(self):
        result = runner.invoke(app, ["policies"])
        assert result.exit_code == 0
        assert "Traffic-Shift Policies" in result.output


# ---------------------------------------------------------------------------
# Test: demo
# ---------------------------------------------------------------------------


class TestDemo:
    def test_default_release_succeeds(self, tmp_path: Path):
        result = _demo(tmp_path)
        assert result.exit_code == 0, result.output
        assert "Demo Summary" in result.output
        assert "succeeded" in result.output

        ledger = RunLedger(tmp_path / "ledger.db")
        execution_id = _latest_execution(tmp_path)
        assert ledger.verify_chain(execution_id)

    def test_unhealthy_release_exits_nonzero(self, tmp_path: Path):
        result = _demo(
            tmp_path, "--policy", "CodeDeployDefault.ECSAllAtOnce", "--fail-at", "100"
        )
        assert result.exit_code == 1
        assert "unhealthy" in result.output

    def test_stuck_termination_exits_nonzero(self, tmp_path: Path):
        result = _demo(tmp_path, "--policy", "CodeDeployDefault.ECSAllAtOnce", "--stuck")
        assert result.exit_code == 1
        assert "STUCK" in result.output

    def test_unknown_policy_rejected(self, tmp_path: Path):
        result = _demo(tmp_path, "--policy", "CodeDeployDefault.Nope")
        assert result.exit_code != 0


# ---------------------------------------------------------------------------
# Test: verify and monitor
# ---------------------------------------------------------------------------


class TestVerifyAndMonitor:
    def test_verify_valid_chain(self, tmp_path: Path):
        _demo(tmp_path, "--policy", "CodeDeployDefault.ECSAllAtOnce")
        execution_id = _latest_execution(tmp_path)

        result = runner.invoke(
            app, ["verify", execution_id, "--ledger", str(tmp_path / "ledger.db")]
        )
        assert result.exit_code == 0
        assert "is valid" in result.output
        assert "entries checked" in result.output

    def test_verify_detects_tampering(self, tmp_path: Path):
        _demo(tmp_path, "--policy", "CodeDeployDefault.ECSAllAtOnce")
        execution_id = _latest_execution(tmp_path)
        with sqlite3.connect(str(tmp_path / "ledger.db")) as conn:
            conn.execute(
                "UPDATE run_ledger SET output_hash = 'forged' WHERE subject = 'build'"
            )
            conn.commit()

        result = runner.invoke(
            app, ["verify", execution_id, "--ledger", str(tmp_path / "ledger.db")]
        )
        assert result.exit_code == 1
        assert "BROKEN" in result.output

    def test_verify_missing_ledger(self, tmp_path: Path):
        result = runner.invoke(
            app, ["verify", "gs-x", "--ledger", str(tmp_path / "missing.db")]
        )
        assert result.exit_code == 1
        assert "Ledger not found" in result.output

    def test_monitor_snapshot(self, tmp_path: Path):
        _demo(tmp_path, "--policy", "CodeDeployDefault.ECSAllAtOnce")
        execution_id = _latest_execution(tmp_path)

        result = runner.invoke(
            app,
            ["monitor", execution_id, "--verify-chain", "--ledger", str(tmp_path / "ledger.db")],
        )
        assert result.exit_code == 0
        assert "Release Monitor" in result.output
        assert "is valid" in result.output

    def test_monitor_unknown_execution_lists_available(self, tmp_path: Path):
        _demo(tmp_path, "--policy", "CodeDeployDefault.ECSAllAtOnce")
        execution_id = _latest_execution(tmp_path)

        result = runner.invoke(
            app, ["monitor", "gs-unknown", "--ledger", str(tmp_path / "ledger.db")]
        )
        assert result.exit_code == 1
        assert "Execution not found" in result.output
        assert execution_id in result.output
