"""
Deterministic replay.

Records every oracle call and every consumed random decision by simulation
tick, persists the log as JSON, and replays it so a run can be reproduced
and audited frame by frame.
"""

import json
import logging
import random
import threading
from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from .results import CallType, ErrorType, OracleResult, ProviderType

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1

__all__ = [
    "CallType",
    "CallRecord",
    "RandomDecisionRecord",
    "ReplayLogger",
    "ReplayValidator",
    "RecordedRandom",
    "compare_logs",
    "diff_logs",
]


@dataclass(frozen=True)
class CallRecord:
    """One oracle call as observed by the simulation."""
    tick: int
    call_type: CallType
    prompt: str
    output: str = ""
    input_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: int = 0
    provider: ProviderType = ProviderType.UNKNOWN
    provider_name: str = ""
    model: str = ""
    success: bool = True
    error_message: str = ""
    error_type: Optional[ErrorType] = None
    status_code: int = 0
    attempt: int = 1
    retry_delay_ms: int = 0  # > 0 when the call was deferred for a later retry

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.completion_tokens

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data["call_type"] = self.call_type.value
        data["provider"] = self.provider.value
        data["error_type"] = self.error_type.value if self.error_type else None
        data["total_tokens"] = self.total_tokens
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "CallRecord":
        return cls(
            tick=int(data["tick"]),
            call_type=CallType(data.get("call_type", CallType.UNKNOWN.value)),
            prompt=str(data.get("prompt", "")),
            output=str(data.get("output", "")),
            input_tokens=int(data.get("input_tokens", 0)),
            completion_tokens=int(data.get("completion_tokens", 0)),
            latency_ms=int(data.get("latency_ms", 0)),
            provider=ProviderType(data.get("provider", ProviderType.UNKNOWN.value)),
            provider_name=str(data.get("provider_name", "")),
            model=str(data.get("model", "")),
            success=bool(data.get("success", True)),
            error_message=str(data.get("error_message", "")),
            error_type=ErrorType(data["error_type"]) if data.get("error_type") else None,
            status_code=int(data.get("status_code", 0)),
            attempt=int(data.get("attempt", 1)),
            retry_delay_ms=int(data.get("retry_delay_ms", 0)),
        )

    def to_result(self) -> OracleResult:
        """The recorded call as a replayed result.

        Text, tokens and errors are those the caller originally saw; the
        provider is REPLAY since no backend was contacted.
        """
        return OracleResult(
            success=self.success,
            text=self.output,
            input_tokens=self.input_tokens,
            completion_tokens=self.completion_tokens,
            latency_ms=self.latency_ms,
            provider=ProviderType.REPLAY,
            provider_name=self.provider_name,
            model=self.model,
            error_message=self.error_message,
            error_type=None if self.success else (self.error_type or ErrorType.UNKNOWN),
            status_code=self.status_code,
        )


@dataclass(frozen=True)
class RandomDecisionRecord:
    """One random value consumed by a simulation subsystem."""
    tick: int
    system: str
    decision: str
    value: float
    seed: int
    was_used: bool = True

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "RandomDecisionRecord":
        return cls(
            tick=int(data["tick"]),
            system=str(data["system"]),
            decision=str(data.get("decision", "")),
            value=float(data["value"]),
            seed=int(data.get("seed", 0)),
            was_used=bool(data.get("was_used", True)),
        )


class ReplayLogger:
    """Append-only log of calls and random decisions."""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._calls: List[CallRecord] = []
        self._decisions: List[RandomDecisionRecord] = []
        self._lock = threading.Lock()

    def enable(self) -> None:
        self.enabled = True

    def disable(self) -> None:
        self.enabled = False

    @property
    def calls(self) -> List[CallRecord]:
        with self._lock:
            return list(self._calls)

    @property
    def random_decisions(self) -> List[RandomDecisionRecord]:
        with self._lock:
            return list(self._decisions)

    def record_call(
        self,
        tick: int,
        call_type: CallType,
        prompt: str,
        result: OracleResult,
        attempt: int = 1,
        retry_delay_ms: int = 0,
    ) -> Optional[CallRecord]:
        """Append a call. Returns None while logging is disabled.

        A positive retry_delay_ms marks a failed attempt that was re-queued.
        """
        if not self.enabled:
            return None
        record = CallRecord(
            tick=tick,
            call_type=call_type,
            prompt=prompt,
            output=result.text,
            input_tokens=result.input_tokens,
            completion_tokens=result.completion_tokens,
            latency_ms=result.latency_ms,
            provider=result.provider,
            provider_name=result.provider_name,
            model=result.model,
            success=result.success,
            error_message=result.error_message,
            error_type=result.error_type,
            status_code=result.status_code,
            attempt=attempt,
            retry_delay_ms=retry_delay_ms,
        )
        with self._lock:
            self._calls.append(record)
        return record

    def record_failure(
        self,
        tick: int,
        call_type: CallType,
        prompt: str,
        error_message: str,
        attempt: int = 1,
    ) -> Optional[CallRecord]:
        if not self.enabled:
            return None
        record = CallRecord(
            tick=tick,
            call_type=call_type,
            prompt=prompt,
            success=False,
            error_message=error_message,
            attempt=attempt,
        )
        with self._lock:
            self._calls.append(record)
        return record

    def record_random_decision(
        self,
        tick: int,
        system: str,
        decision: str,
        value: float,
        seed: int,
    ) -> Optional[RandomDecisionRecord]:
        if not self.enabled:
            return None
        record = RandomDecisionRecord(
            tick=tick, system=system, decision=decision, value=value, seed=seed
        )
        with self._lock:
            self._decisions.append(record)
        return record

    def calls_at_tick(self, tick: int) -> List[CallRecord]:
        with self._lock:
            return [record for record in self._calls if record.tick == tick]

    def call_at_tick(self, tick: int, call_type: CallType) -> Optional[CallRecord]:
        """First call of the given type at a tick."""
        with self._lock:
            for record in self._calls:
                if record.tick == tick and record.call_type == call_type:
                    return record
        return None

    def random_decision_at_tick(
        self,
        tick: int,
        system: str,
        decision: Optional[str] = None,
    ) -> Optional[RandomDecisionRecord]:
        with self._lock:
            for record in self._decisions:
                if record.tick != tick or record.system != system:
                    continue
                if decision is None or record.decision == decision:
                    return record
        return None

    def validate_replay_at_tick(self, tick: int, expected_count: int) -> bool:
        """True when exactly `expected_count` calls were recorded at the tick."""
        return len(self.calls_at_tick(tick)) == expected_count

    def to_dict(self) -> Dict[str, object]:
        with self._lock:
            calls = list(self._calls)
            decisions = list(self._decisions)
        successful = sum(1 for record in calls if record.success)
        return {
            "version": FORMAT_VERSION,
            "generated_at": datetime.now().isoformat(),
            "call_count": len(calls),
            "successful_calls": successful,
            "failed_calls": len(calls) - successful,
            "random_decision_count": len(decisions),
            "calls": [record.to_dict() for record in calls],
            "random_decisions": [record.to_dict() for record in decisions],
        }

    def save(self, path: Union[str, Path]) -> Path:
        """Write the log as JSON. Returns the written path."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.info("Saved replay log with %d calls to %s", len(self._calls), target)
        return target

    def load(self, path: Union[str, Path]) -> None:
        """Replace the current contents with a saved log.

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the file is not a valid replay log
        """
        calls, decisions = read_log(path)
        with self._lock:
            self._calls = calls
            self._decisions = decisions

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ReplayLogger":
        replay_logger = cls(enabled=False)
        replay_logger.load(path)
        return replay_logger

    def clear(self) -> None:
        with self._lock:
            self._calls.clear()
            self._decisions.clear()

    def statistics(self) -> Dict[str, object]:
        with self._lock:
            calls = list(self._calls)
            decision_count = len(self._decisions)
        by_type: Dict[str, int] = defaultdict(int)
        for record in calls:
            by_type[record.call_type.value] += 1
        successful = sum(1 for record in calls if record.success)
        ticks = [record.tick for record in calls]
        return {
            "enabled": self.enabled,
            "call_count": len(calls),
            "successful_calls": successful,
            "failed_calls": len(calls) - successful,
            "random_decision_count": decision_count,
            "total_tokens": sum(record.total_tokens for record in calls),
            "calls_by_type": dict(by_type),
            "first_tick": min(ticks) if ticks else None,
            "last_tick": max(ticks) if ticks else None,
        }


def read_log(path: Union[str, Path]) -> Tuple[List[CallRecord], List[RandomDecisionRecord]]:
    """Parse a replay log file.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is not a valid replay log
    """
    with open(path, "r") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid replay log {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ValueError(f"Invalid replay log {path}: expected a JSON object")
    version = data.get("version")
    if version != FORMAT_VERSION:
        raise ValueError(f"Unsupported replay log version: {version}")

    try:
        calls = [CallRecord.from_dict(item) for item in data.get("calls", [])]
        decisions = [RandomDecisionRecord.from_dict(item) for item in data.get("random_decisions", [])]
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError(f"Malformed record in replay log {path}: {exc}") from exc
    return calls, decisions


class ReplayValidator:
    """Serves recorded answers in place of providers and random sources.

    Records are consumed in log order per (tick, call type) for calls and per
    (tick, system, decision) for random values, so several calls of the same
    type in one tick replay in sequence.
    """

    def __init__(
        self,
        calls: Optional[List[CallRecord]] = None,
        decisions: Optional[List[RandomDecisionRecord]] = None,
    ):
        self._calls: Dict[Tuple[int, CallType], List[CallRecord]] = defaultdict(list)
        for record in calls or []:
            self._calls[(record.tick, record.call_type)].append(record)
        self._decisions: Dict[Tuple[int, str, str], List[RandomDecisionRecord]] = defaultdict(list)
        for decision in decisions or []:
            self._decisions[(decision.tick, decision.system, decision.decision)].append(decision)
        self._call_cursor: Dict[Tuple[int, CallType], int] = defaultdict(int)
        self._decision_cursor: Dict[Tuple[int, str, str], int] = defaultdict(int)
        self.enabled = False
        self.divergence_count = 0
        self._replayed_calls = 0
        self._replayed_decisions = 0
        self._prompt_mismatches = 0
        self._lock = threading.Lock()

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ReplayValidator":
        calls, decisions = read_log(path)
        return cls(calls, decisions)

    def enable(self) -> None:
        """Turn replay on and rewind to the start of the log."""
        with self._lock:
            self.enabled = True
            self._call_cursor.clear()
            self._decision_cursor.clear()

    def disable(self) -> None:
        self.enabled = False

    def next_record(self, tick: int, call_type: CallType, prompt: str) -> Optional[CallRecord]:
        """Consume the next recorded call of this type at this tick.

        Returns None on divergence, which is counted and logged.
        """
        key = (tick, call_type)
        with self._lock:
            records = self._calls.get(key, [])
            index = self._call_cursor[key]
            if index >= len(records):
                self.divergence_count += 1
                record = None
            else:
                self._call_cursor[key] = index + 1
                self._replayed_calls += 1
                record = records[index]
                if record.prompt != prompt:
                    self._prompt_mismatches += 1

        if record is None:
            logger.warning(self._divergence_message(tick, call_type))
        elif record.prompt != prompt:
            logger.warning("Replay prompt mismatch at tick %d (%s)", tick, call_type.value)
        return record

    def next_response(self, tick: int, call_type: CallType, prompt: str) -> OracleResult:
        """Recorded result for the next call of this type at this tick.

        A missing record is a divergence: the returned result is a failure
        whose error message describes it.
        """
        record = self.next_record(tick, call_type, prompt)
        if record is None:
            return OracleResult.failure(
                ErrorType.PROVIDER_UNAVAILABLE,
                self._divergence_message(tick, call_type),
                provider=ProviderType.REPLAY,
            )
        return record.to_result()

    def next_random(self, tick: int, system: str, decision: str) -> Optional[float]:
        """Recorded value for the next draw of this decision, None if missing."""
        key = (tick, system, decision)
        with self._lock:
            records = self._decisions.get(key, [])
            index = self._decision_cursor[key]
            if index < len(records):
                self._decision_cursor[key] = index + 1
                self._replayed_decisions += 1
                return records[index].value
            self.divergence_count += 1
        logger.warning(
            "Divergence at tick %d: no recorded random decision %s/%s", tick, system, decision
        )
        return None

    def check_for_divergence(self, tick: int, call_type: CallType) -> Optional[str]:
        """Describe the divergence a call would hit now, or None if it would replay."""
        key = (tick, call_type)
        with self._lock:
            if self._call_cursor[key] < len(self._calls.get(key, [])):
                return None
        return self._divergence_message(tick, call_type)

    def has_pending(self, tick: int, call_type: CallType) -> bool:
        """True while an unconsumed call of this type is recorded at the tick."""
        return self.check_for_divergence(tick, call_type) is None

    def has_pending_after(self, tick: int, call_type: CallType) -> bool:
        """True if an unconsumed call of this type is recorded at a later tick."""
        with self._lock:
            return any(
                key[0] > tick and key[1] == call_type and self._call_cursor[key] < len(records)
                for key, records in self._calls.items()
            )

    def statistics(self) -> Dict[str, object]:
        with self._lock:
            return {
                "enabled": self.enabled,
                "recorded_calls": sum(len(records) for records in self._calls.values()),
                "recorded_decisions": sum(len(records) for records in self._decisions.values()),
                "replayed_calls": self._replayed_calls,
                "replayed_decisions": self._replayed_decisions,
                "divergences": self.divergence_count,
                "prompt_mismatches": self._prompt_mismatches,
            }

    @staticmethod
    def _divergence_message(tick: int, call_type: CallType) -> str:
        return f"Replay divergence at tick {tick}: no recorded {call_type.value} call"


class RecordedRandom:
    """Seeded random source whose draws are logged or replayed."""

    def __init__(
        self,
        seed: int,
        logger: Optional[ReplayLogger] = None,
        validator: Optional[ReplayValidator] = None,
    ):
        self.seed = seed
        self.replay_logger = logger
        self.validator = validator
        self._rng = random.Random(seed)

    def random(self, tick: int, system: str, decision: str) -> float:
        """A value in [0, 1) for one named decision at one tick.

        In replay mode the recorded value is returned; a missing record falls
        back to the seeded generator, which advances on every draw so it
        stays in step with the recording.
        """
        value = self._rng.random()
        if self.validator is not None and self.validator.enabled:
            recorded = self.validator.next_random(tick, system, decision)
            if recorded is not None:
                return recorded
        if self.replay_logger is not None:
            self.replay_logger.record_random_decision(tick, system, decision, value, self.seed)
        return value


def diff_logs(path_a: Union[str, Path], path_b: Union[str, Path]) -> List[str]:
    """List the differences between two replay logs; empty if identical."""
    calls_a, decisions_a = read_log(path_a)
    calls_b, decisions_b = read_log(path_b)
    differences = []

    if len(calls_a) != len(calls_b):
        differences.append(f"Call count differs: {len(calls_a)} vs {len(calls_b)}")
    for index, (a, b) in enumerate(zip(calls_a, calls_b)):
        if (a.tick, a.call_type, a.prompt, a.output, a.success) != \
                (b.tick, b.call_type, b.prompt, b.output, b.success):
            differences.append(
                f"First divergent call #{index}: tick {a.tick} {a.call_type.value} "
                f"vs tick {b.tick} {b.call_type.value}"
            )
            break

    if len(decisions_a) != len(decisions_b):
        differences.append(
            f"Random decision count differs: {len(decisions_a)} vs {len(decisions_b)}"
        )
    for index, (a, b) in enumerate(zip(decisions_a, decisions_b)):
        if (a.tick, a.system, a.decision, a.value) != (b.tick, b.system, b.decision, b.value):
            differences.append(
                f"First divergent random decision #{index}: tick {a.tick} "
                f"{a.system}/{a.decision}={a.value} vs tick {b.tick} "
                f"{b.system}/{b.decision}={b.value}"
            )
            break

    return differences


def compare_logs(path_a: Union[str, Path], path_b: Union[str, Path]) -> str:
    """Human-readable comparison report of two replay logs."""
    lines = [
        "Comparing replay logs:",
        f"  File 1: {path_a}",
        f"  File 2: {path_b}",
    ]
    differences = diff_logs(path_a, path_b)
    if not differences:
        lines.append("  Logs are identical")
    else:
        lines.append(f"  Logs diverge ({len(differences)} difference(s)):")
        lines.extend(f"    - {difference}" for difference in differences)
    return "\n".join(lines)
