"""
Tests for the CLI interface.
"""
import os
from datetime import datetime

import pytest
from typer.testing import CliRunner

from oracle_guard.cli.main import app, EXIT_CODE_PASS, EXIT_CODE_FAIL
from oracle_guard.core.replay import CallType, ReplayLogger
from oracle_guard.core.results import OracleResult, ProviderType
from oracle_guard.storage.models import UsageEntry
from oracle_guard.storage.repository import UsageRepository

runner = CliRunner()


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    """Run each command in an empty directory without ambient credentials."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    return tmp_path


def _save_log(path, outputs):
    log = ReplayLogger()
    for tick, output in enumerate(outputs):
        log.record_call(tick, CallType.NPC_CONVERSATION, "hello", OracleResult(
            success=True, text=output, input_tokens=3, completion_tokens=2, provider=ProviderType.OLLAMA,
        ))
    return str(log.save(path))


class TestCLI:
    """Test CLI commands."""

    def test_no_command_shows_hint(self, workdir):
        """Test running without a command."""
        result = runner.invoke(app, [])
        assert result.exit_code == EXIT_CODE_PASS
        assert "Use --help" in result.output

    def test_status_masks_api_key(self, workdir):
        """Test status shows configuration without the key."""
        result = runner.invoke(app, ["status"], env={"OPENAI_API_KEY": "sk-very-secret"})
        assert result.exit_code == EXIT_CODE_PASS
        assert "Oracle Guard Configuration" in result.output
        assert "<set>" in result.output
        assert "sk-very-secret" not in result.output

    def test_missing_config_file(self, workdir):
        """Test an explicit missing config file fails."""
        result = runner.invoke(app, ["--config", "missing.yaml", "status"])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Config file not found" in result.output

    def test_init_creates_ledger(self, workdir):
        """Test init creates the ledger database."""
        result = runner.invoke(app, ["init", "--db", "ledger.db"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "Usage ledger initialized successfully" in result.output
        assert os.path.exists(workdir / "ledger.db")

    def test_usage_without_ledger(self, workdir):
        """Test usage on a database with no table."""
        result = runner.invoke(app, ["usage", "--db", "fresh.db"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "No usage data found" in result.output

    def test_usage_empty_ledger(self, workdir):
        """Test usage on an initialized but empty ledger."""
        UsageRepository(str(workdir / "ledger.db"))
        result = runner.invoke(app, ["usage", "--db", "ledger.db"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "No usage recorded" in result.output

    def test_usage_table(self, workdir):
        """Test usage lists per call type totals."""
        repository = UsageRepository(str(workdir / "ledger.db"))
        repository.record(UsageEntry(
            timestamp=datetime.now(), model="gpt-4", call_type="CRISIS_GENERATION",
            input_tokens=100, completion_tokens=50, cost=0.006,
        ))
        result = runner.invoke(app, ["usage", "--db", "ledger.db", "--days", "7"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "CRISIS_GENERATION" in result.output
        assert "$0.006000" in result.output

    def test_ask_offline(self, workdir):
        """Test ask answers from templates when offline."""
        result = runner.invoke(app, ["ask", "allocate food", "--offline"])
        assert result.exit_code == EXIT_CODE_PASS
        assert '"action": "allocate"' in result.output
        assert "Oracle Usage Summary" in result.output

    def test_ask_invalid_priority(self, workdir):
        """Test ask rejects unknown priorities."""
        result = runner.invoke(app, ["ask", "hello", "--priority", "urgent", "--offline"])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "invalid priority" in result.output

    def test_fallback(self, workdir):
        """Test the offline narrative command."""
        result = runner.invoke(app, ["fallback", "RESOURCE_SCARCITY", "0.9"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "Resources are becoming scarce." in result.output


class TestReplayCommands:
    """Test replay log commands."""

    def test_replay_stats(self, workdir):
        """Test replay-stats summarizes a log."""
        path = _save_log(workdir / "run.json", ["a", "b"])
        result = runner.invoke(app, ["replay-stats", path])
        assert result.exit_code == EXIT_CODE_PASS
        assert "call_count" in result.output
        assert "NPC_CONVERSATION" in result.output

    def test_replay_stats_bad_file(self, workdir):
        """Test replay-stats rejects unreadable logs."""
        (workdir / "bad.json").write_text("{")
        result = runner.invoke(app, ["replay-stats", "bad.json"])
        assert result.exit_code == EXIT_CODE_FAIL

    def test_compare_identical(self, workdir):
        """Test identical logs compare clean."""
        first = _save_log(workdir / "a.json", ["x"])
        second = _save_log(workdir / "b.json", ["x"])
        result = runner.invoke(app, ["compare-logs", first, second])
        assert result.exit_code == EXIT_CODE_PASS
        assert "Logs are identical" in result.output

    def test_compare_divergent(self, workdir):
        """Test divergent logs fail the comparison."""
        first = _save_log(workdir / "a.json", ["x"])
        second = _save_log(workdir / "b.json", ["y"])
        result = runner.invoke(app, ["compare-logs", first, second])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Logs diverge" in result.output

    def test_compare_missing_file(self, workdir):
        """Test a missing log fails the comparison."""
        first = _save_log(workdir / "a.json", ["x"])
        result = runner.invoke(app, ["compare-logs", first, "missing.json"])
        assert result.exit_code == EXIT_CODE_FAIL
