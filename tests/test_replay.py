"""
Unit tests for deterministic replay.

Tests call logging, persistence, replay lookups and log comparison.
"""

import json
import shutil
import tempfile
from pathlib import Path

import pytest

from oracle_guard.core.replay import (
    CallRecord,
    CallType,
    RecordedRandom,
    ReplayLogger,
    ReplayValidator,
    compare_logs,
    diff_logs,
)
from oracle_guard.core.results import ErrorType, OracleResult, ProviderType


def _result(text="ok"):
    return OracleResult(
        success=True,
        text=text,
        input_tokens=12,
        completion_tokens=8,
        latency_ms=40,
        provider=ProviderType.OLLAMA,
        provider_name="ollama",
        model="llama",
    )


class TestReplayLogger:
    """Test recording and persistence."""

    def setup_method(self):
        """Set up temp directory."""
        self.temp_dir = tempfile.mkdtemp()
        self.path = Path(self.temp_dir) / "run.json"

    def teardown_method(self):
        """Clean up temp directory."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_record_and_lookup(self):
        """Calls are retrievable by tick and type."""
        log = ReplayLogger()
        log.record_call(5, CallType.DECISION_INTERPRETATION, "allocate food", _result("a"))
        log.record_call(5, CallType.NPC_CONVERSATION, "hello", _result("b"))
        log.record_call(6, CallType.DECISION_INTERPRETATION, "rest", _result("c"))

        assert len(log.calls_at_tick(5)) == 2
        assert log.call_at_tick(5, CallType.NPC_CONVERSATION).output == "b"
        assert log.call_at_tick(7, CallType.NPC_CONVERSATION) is None
        assert log.validate_replay_at_tick(5, 2)
        assert not log.validate_replay_at_tick(5, 3)

    def test_disabled_logger_records_nothing(self):
        """A disabled logger ignores calls and decisions."""
        log = ReplayLogger(enabled=False)
        assert log.record_call(1, CallType.UNKNOWN, "p", _result()) is None
        assert log.record_random_decision(1, "weather", "rain", 0.3, 7) is None
        assert log.calls == []

    def test_save_and_load(self):
        """A saved log loads back with the same records."""
        log = ReplayLogger()
        for tick in range(5):
            log.record_call(tick, CallType.WORLD_STATE_NARRATIVE, f"state {tick}", _result(f"out {tick}"))
        log.record_failure(5, CallType.CRISIS_GENERATION, "famine", "backend down")
        log.record_random_decision(3, "weather", "rain", 0.25, 42)
        log.save(self.path)

        loaded = ReplayLogger.from_file(self.path)
        assert not loaded.enabled
        assert loaded.calls == log.calls
        assert loaded.random_decisions == log.random_decisions
        for tick in range(5):
            assert loaded.validate_replay_at_tick(tick, 1)
        assert loaded.random_decision_at_tick(3, "weather").value == 0.25
        assert loaded.random_decision_at_tick(3, "weather", "snow") is None

    def test_failure_keeps_error_type(self):
        """A recorded failure replays with its error type and status code."""
        log = ReplayLogger()
        limited = OracleResult.failure(
            ErrorType.RATE_LIMITED, "slow down", provider=ProviderType.OPENAI,
            provider_name="openai", status_code=429,
        )
        log.record_call(4, CallType.NPC_CONVERSATION, "hello", limited, attempt=1, retry_delay_ms=2000)
        log.save(self.path)

        validator = ReplayValidator.from_file(self.path)
        validator.enable()
        result = validator.next_response(4, CallType.NPC_CONVERSATION, "hello")
        assert not result.success
        assert result.error_type == ErrorType.RATE_LIMITED
        assert result.status_code == 429
        assert result.provider == ProviderType.REPLAY
        assert result.provider_name == "openai"

    def test_saved_format(self):
        """The JSON file carries a version and summary counts."""
        log = ReplayLogger()
        log.record_call(1, CallType.DECISION_INTERPRETATION, "p", _result())
        log.record_failure(2, CallType.DECISION_INTERPRETATION, "q", "boom")
        log.save(self.path)

        with open(self.path) as f:
            data = json.load(f)
        assert data["version"] == 1
        assert data["call_count"] == 2
        assert data["failed_calls"] == 1
        assert data["calls"][0]["call_type"] == "DECISION_INTERPRETATION"
        assert data["calls"][0]["provider"] == "ollama"
        assert data["calls"][0]["total_tokens"] == 20

    def test_load_rejects_bad_files(self):
        """Invalid JSON and unknown versions are rejected."""
        self.path.write_text("not json")
        with pytest.raises(ValueError):
            ReplayLogger.from_file(self.path)

        self.path.write_text(json.dumps({"version": 99, "calls": []}))
        with pytest.raises(ValueError, match="Unsupported replay log version"):
            ReplayLogger.from_file(self.path)

        with pytest.raises(FileNotFoundError):
            ReplayLogger.from_file(Path(self.temp_dir) / "missing.json")

    def test_statistics(self):
        """Statistics summarize calls and tokens."""
        log = ReplayLogger()
        log.record_call(3, CallType.NPC_CONVERSATION, "a", _result())
        log.record_call(9, CallType.NPC_CONVERSATION, "b", _result())
        stats = log.statistics()
        assert stats["call_count"] == 2
        assert stats["total_tokens"] == 40
        assert stats["calls_by_type"] == {"NPC_CONVERSATION": 2}
        assert (stats["first_tick"], stats["last_tick"]) == (3, 9)

        log.clear()
        assert log.statistics()["first_tick"] is None


class TestReplayValidator:
    """Test replay lookups and divergence detection."""

    def setup_method(self):
        """Set up a validator over a small log."""
        self.calls = [
            CallRecord(tick=10, call_type=CallType.NPC_CONVERSATION, prompt="first", output="one"),
            CallRecord(tick=10, call_type=CallType.NPC_CONVERSATION, prompt="second", output="two"),
            CallRecord(tick=11, call_type=CallType.CRISIS_GENERATION, prompt="famine",
                       success=False, error_message="backend down"),
        ]
        self.validator = ReplayValidator(self.calls)
        self.validator.enable()

    def test_records_replay_in_order(self):
        """Several calls of one type in a tick replay in sequence."""
        assert self.validator.next_response(10, CallType.NPC_CONVERSATION, "first").text == "one"
        assert self.validator.next_response(10, CallType.NPC_CONVERSATION, "second").text == "two"
        assert self.validator.divergence_count == 0

    def test_missing_record_is_divergence(self):
        """A call with no record reports a divergence."""
        assert self.validator.check_for_divergence(12, CallType.UNKNOWN) is not None
        result = self.validator.next_response(12, CallType.UNKNOWN, "anything")
        assert not result.success
        assert result.provider == ProviderType.REPLAY
        assert "Replay divergence at tick 12" in result.error_message
        assert self.validator.divergence_count == 1

    def test_recorded_failure_replays_as_failure(self):
        """Failures replay as failures with their message."""
        result = self.validator.next_response(11, CallType.CRISIS_GENERATION, "famine")
        assert not result.success
        assert result.error_type == ErrorType.UNKNOWN
        assert result.error_message == "backend down"

    def test_prompt_mismatch_counted(self):
        """A different prompt still replays but is counted."""
        self.validator.next_response(10, CallType.NPC_CONVERSATION, "other")
        stats = self.validator.statistics()
        assert stats["prompt_mismatches"] == 1
        assert stats["replayed_calls"] == 1

    def test_enable_rewinds(self):
        """Re-enabling replays the log from the start."""
        self.validator.next_response(10, CallType.NPC_CONVERSATION, "first")
        self.validator.enable()
        assert self.validator.next_response(10, CallType.NPC_CONVERSATION, "first").text == "one"


class TestRecordedRandom:
    """Test logged and replayed random draws."""

    def test_draws_are_logged(self):
        """Each draw is appended to the logger."""
        log = ReplayLogger()
        rng = RecordedRandom(seed=42, logger=log)
        value = rng.random(1, "weather", "rain")
        assert 0 <= value < 1
        assert log.random_decisions[0].value == value
        assert log.random_decisions[0].seed == 42

    def test_replay_returns_recorded_values(self):
        """In replay the recorded value wins over the generator."""
        log = ReplayLogger()
        recorder = RecordedRandom(seed=1, logger=log)
        recorded = [recorder.random(tick, "events", "raid") for tick in range(3)]

        validator = ReplayValidator(decisions=log.random_decisions)
        validator.enable()
        replayer = RecordedRandom(seed=999, validator=validator)
        assert [replayer.random(tick, "events", "raid") for tick in range(3)] == recorded

    def test_missing_record_falls_back_to_seed(self):
        """Without a record the seeded generator is used."""
        validator = ReplayValidator()
        validator.enable()
        value = RecordedRandom(seed=5, validator=validator).random(1, "events", "raid")
        assert value == RecordedRandom(seed=5).random(1, "events", "raid")
        assert validator.divergence_count == 1

    def test_generator_stays_in_step_with_recording(self):
        """A draw missing mid-log falls back to the value recorded at that point."""
        log = ReplayLogger()
        recorder = RecordedRandom(seed=11, logger=log)
        recorded = [recorder.random(tick, "events", "raid") for tick in range(3)]

        validator = ReplayValidator(decisions=log.random_decisions[:2])
        validator.enable()
        replayer = RecordedRandom(seed=11, validator=validator)
        assert [replayer.random(tick, "events", "raid") for tick in range(3)] == recorded
        assert validator.divergence_count == 1


class TestCompareLogs:
    """Test log comparison."""

    def setup_method(self):
        """Set up temp directory."""
        self.temp_dir = Path(tempfile.mkdtemp())

    def teardown_method(self):
        """Clean up temp directory."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _save(self, name, outputs):
        log = ReplayLogger()
        for tick, output in enumerate(outputs):
            log.record_call(tick, CallType.DECISION_INTERPRETATION, "p", _result(output))
        return log.save(self.temp_dir / name)

    def test_identical_logs(self):
        """Identical runs compare equal."""
        a = self._save("a.json", ["x", "y"])
        b = self._save("b.json", ["x", "y"])
        assert diff_logs(a, b) == []
        assert "Logs are identical" in compare_logs(a, b)

    def test_divergent_logs(self):
        """The first differing call is reported."""
        a = self._save("a.json", ["x", "y"])
        b = self._save("b.json", ["x", "z", "w"])
        differences = diff_logs(a, b)
        assert differences[0] == "Call count differs: 2 vs 3"
        assert differences[1].startswith("First divergent call #1")
        assert "Logs diverge (2 difference(s))" in compare_logs(a, b)
