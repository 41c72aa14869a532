"""
Oracle request orchestration.

Composition root tying the rate limiter, cache, priority queue, failover
controller, replay log and cost tracker into the tick-driven interface
the simulation calls.
"""

import dataclasses
import itertools
import logging
import math
import random
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Sequence, Union

from .cost_tracker import CostTracker
from .failover import CallOutcome, FailoverController
from .rate_limiter import TokenBucketRateLimiter
from .recovery import ErrorRecoveryManager, RecoveryAction
from .replay import RecordedRandom, ReplayLogger, ReplayValidator
from .request_queue import OracleRequest, Priority, RequestQueue
from .response_cache import ResponseCache
from .results import CallType, ErrorType, OracleResult, ProviderType

if TYPE_CHECKING:
    from ..config.loader import OracleConfig
    from ..providers.base import Provider

logger = logging.getLogger(__name__)

DEFAULT_TICKS_PER_SECOND = 60


@dataclass
class _InFlight:
    """A request handed to the worker pool."""
    sequence: int
    request: OracleRequest
    future: Future
    dispatch_tick: int


class OracleOrchestrator:
    """Tick-driven front door to the oracle.

    Every submitted request gets exactly one callback: a cached answer, a
    provider or offline answer, a TIMEOUT, or a "cleared" failure. With
    `max_workers=0` providers are called inline from `tick()`; otherwise
    calls run on a thread pool and their callbacks are delivered from a
    later `tick()` in dispatch order within each priority.

    `tick()` and callbacks belong to the simulation thread. The cache is
    bypassed while recording or replaying because its expiry runs on wall
    clock time. Recording and replay always call providers inline, and
    replay dispatches on the ticks the log recorded instead of asking the
    rate limiter.
    """

    def __init__(
        self,
        failover: Optional[FailoverController] = None,
        limiter: Optional[TokenBucketRateLimiter] = None,
        cache: Optional[ResponseCache] = None,
        cost_tracker: Optional[CostTracker] = None,
        replay_logger: Optional[ReplayLogger] = None,
        ticks_per_second: int = DEFAULT_TICKS_PER_SECOND,
        max_workers: int = 0,
        seed: Optional[int] = None,
        cache_offline_results: bool = False,
    ):
        """Initialize the orchestrator.

        Args:
            failover: Provider chain; an offline-only chain if omitted
            limiter: Admission control; 60 requests/minute if omitted
            cache: Response cache
            cost_tracker: Usage and budget accounting
            replay_logger: Call log used when recording
            ticks_per_second: Simulation tick rate, for converting retry delays
            max_workers: Worker threads for provider calls, 0 for inline calls
            seed: Seed of the recorded random source
            cache_offline_results: Also cache template answers (never expiring)
        """
        if ticks_per_second <= 0:
            raise ValueError("ticks_per_second must be > 0")
        if max_workers < 0:
            raise ValueError("max_workers cannot be negative")
        self.failover = failover if failover is not None else FailoverController()
        self.limiter = limiter if limiter is not None else TokenBucketRateLimiter()
        self.cache = cache if cache is not None else ResponseCache()
        self.cost_tracker = cost_tracker if cost_tracker is not None else CostTracker()
        self.replay_logger = replay_logger if replay_logger is not None else ReplayLogger(enabled=False)
        self.queue = RequestQueue(on_timeout=self._on_queue_timeout)
        self.ticks_per_second = ticks_per_second
        self.cache_offline_results = cache_offline_results
        self.validator: Optional[ReplayValidator] = None
        self.seed = seed if seed is not None else random.randrange(2 ** 31)
        self.random = RecordedRandom(self.seed)
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="oracle"
        ) if max_workers > 0 else None
        self._in_flight: Dict[int, _InFlight] = {}
        self._sequence = itertools.count()
        self._recording_path: Optional[Path] = None
        self._current_tick = 0

    @classmethod
    def from_config(
        cls,
        config: "OracleConfig",
        providers: Optional[Sequence["Provider"]] = None,
    ) -> "OracleOrchestrator":
        """Build a fully wired orchestrator.

        Args:
            config: Validated configuration
            providers: Provider chain in priority order; built from the
                configuration when omitted
        """
        from ..providers.factory import build_providers
        from ..storage.repository import UsageRepository

        rng = random.Random(config.seed) if config.seed is not None else None
        recovery = ErrorRecoveryManager(config.recovery_config(), rng=rng)
        failover = FailoverController(recovery)
        chain = list(providers) if providers is not None else build_providers(config)
        for priority, provider in enumerate(chain):
            failover.add_provider(provider, priority)

        repository = UsageRepository(config.ledger_path) if config.ledger_path else None
        cost_tracker = CostTracker(
            budget_limit=config.budget_limit,
            alert_threshold=config.budget_alert_threshold,
            repository=repository,
        )
        logger.info(
            "Oracle configured with providers [%s], %.0f requests/minute",
            ", ".join(provider.name for provider in chain) or "offline only",
            config.rate_limit_per_minute,
        )
        return cls(
            failover=failover,
            limiter=TokenBucketRateLimiter(config.rate_limit_per_minute),
            cache=ResponseCache(ttl_seconds=config.cache_ttl_seconds),
            cost_tracker=cost_tracker,
            ticks_per_second=config.ticks_per_second,
            max_workers=config.max_workers,
            seed=config.seed,
            cache_offline_results=config.cache_offline_results,
        )

    @property
    def current_tick(self) -> int:
        return self._current_tick

    @property
    def replay_active(self) -> bool:
        return self.validator is not None and self.validator.enabled

    @property
    def recording(self) -> bool:
        return self.replay_logger.enabled

    def submit(
        self,
        prompt: str,
        priority: Priority = Priority.MEDIUM,
        timeout_ticks: Optional[int] = None,
        callback: Optional[Callable[[OracleResult], None]] = None,
        call_type: CallType = CallType.UNKNOWN,
        current_tick: Optional[int] = None,
    ) -> bool:
        """Ask the oracle a question.

        A cache hit invokes the callback immediately. Otherwise the request
        is queued for a later `tick()`.

        Args:
            prompt: Prompt text
            priority: Queue priority
            timeout_ticks: Ticks the request may wait; priority default if None
            callback: Receives the result exactly once
            call_type: Call category for templates, replay and cost tagging
            current_tick: Tick of submission; the last ticked value if None

        Returns:
            False if the request was neither answered nor queued
        """
        if current_tick is not None:
            self._current_tick = current_tick

        if not self._cache_bypassed():
            cached = self.cache.get(prompt)
            if cached is not None:
                logger.debug("Cache hit for %s request", call_type.value)
                if callback is not None:
                    callback(dataclasses.replace(cached, cached=True))
                return True

        request = OracleRequest(
            prompt=prompt,
            priority=priority,
            enqueued_tick=self._current_tick,
            timeout_ticks=timeout_ticks,
            callback=callback,
            call_type=call_type,
            max_attempts=self.failover.recovery.config.max_retries + 1,
        )
        return self.queue.enqueue(request)

    def tick(self, current_tick: int) -> None:
        """Advance the oracle by one simulation tick.

        Sweeps timeouts, evicts expired cache entries, lets degraded mode
        expire, delivers finished worker results and dispatches ready
        requests while the rate limiter (or, in replay, the log) admits them.
        """
        self._current_tick = current_tick
        self.queue.process_timeouts(current_tick)
        self._expire_in_flight(current_tick)
        self.cache.evict_expired()
        self.failover.recovery.is_degraded()
        self._collect_finished(current_tick)

        while self.queue.has_ready(current_tick) and self._admit(current_tick):
            request = self.queue.dequeue_next(current_tick)
            if request is None:
                break
            self._dispatch(request, current_tick)

    def _admit(self, tick: int) -> bool:
        """Admission for the next ready request.

        In replay the log decides: a request is sent on the tick its call was
        recorded and held while its call type has a record at a later tick.
        A request with no record left is let through to diverge.
        """
        if not self.replay_active:
            return self.limiter.try_admit()
        request = self.queue.peek_next(tick)
        if request is None:
            return False
        if self.validator.has_pending(tick, request.call_type):
            return True
        return not self.validator.has_pending_after(tick, request.call_type)

    def random_decision(self, system: str, decision: str) -> float:
        """A recorded or replayed random value in [0, 1) for this tick."""
        return self.random.random(self._current_tick, system, decision)

    def enable_recording(self, path: Union[str, Path]) -> None:
        """Start a fresh call log that `save_recording()` writes to path."""
        self.disable_replay()
        self._recording_path = Path(path)
        self.replay_logger.clear()
        self.replay_logger.enable()
        self.random = RecordedRandom(self.seed, logger=self.replay_logger)
        logger.info("Recording oracle calls to %s", self._recording_path)

    def save_recording(self) -> Optional[Path]:
        """Write the call log. Returns None if recording was never enabled."""
        if self._recording_path is None:
            return None
        return self.replay_logger.save(self._recording_path)

    def enable_replay(self, path: Union[str, Path]) -> None:
        """Answer calls and random decisions from a recorded log.

        Raises:
            FileNotFoundError: If the log does not exist
            ValueError: If the log is malformed
        """
        validator = ReplayValidator.from_file(path)
        self.replay_logger.disable()
        self._recording_path = None
        validator.enable()
        self.validator = validator
        self.random = RecordedRandom(self.seed, validator=validator)
        logger.info("Replaying oracle calls from %s", path)

    def disable_replay(self) -> None:
        """Return to live operation, stopping replay and recording."""
        if self.validator is not None:
            self.validator.disable()
            self.validator = None
        self.replay_logger.disable()
        self.random = RecordedRandom(self.seed)

    def clear_pending(self) -> int:
        """Drop queued and in-flight requests, failing each callback.

        Returns:
            Number of requests dropped
        """
        dropped = self.queue.clear()
        dropped.extend(entry.request for entry in self._pop_in_flight())
        for request in dropped:
            self._deliver(request, OracleResult.failure(
                ErrorType.UNKNOWN, "Request cleared before completion"
            ))
        if dropped:
            logger.info("Cleared %d pending oracle requests", len(dropped))
        return len(dropped)

    def shutdown(self, wait: bool = True) -> None:
        """Stop the worker pool and fail whatever is still pending."""
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            if wait:
                self._collect_finished(self._current_tick)
            self._executor = None
        self.clear_pending()

    def get_usage_summary(self) -> Dict[str, object]:
        """Cost, cache, queue, recovery and provider statistics."""
        usage = self.failover.token_usage()
        return {
            "cost": self.cost_tracker.summary(),
            "cache": self.cache.statistics(),
            "queue": {
                "size": self.queue.size(),
                "by_priority": {priority.name: self.queue.size(priority) for priority in Priority},
                "in_flight": len(self._in_flight),
            },
            "rate_limiter": {
                "available_tokens": self.limiter.available_tokens(),
                "capacity": self.limiter.capacity,
            },
            "recovery": self.failover.recovery.statistics(),
            "providers": self.failover.provider_states(),
            "token_usage": dataclasses.asdict(usage),
            "replay": {
                "recording": self.recording,
                "replaying": self.replay_active,
                "recorded": self.replay_logger.statistics(),
                "validator": self.validator.statistics() if self.validator else None,
            },
        }

    def delay_to_ticks(self, delay_ms: int) -> int:
        """Convert a retry delay to whole ticks, at least one."""
        return max(1, math.ceil(delay_ms * self.ticks_per_second / 1000))

    def _dispatch(self, request: OracleRequest, tick: int) -> None:
        if self.replay_active:
            self._dispatch_replay(request, tick)
        elif self._executor is not None and not self.recording:
            future = self._executor.submit(
                self.failover.execute, request.prompt, request.attempt_count, request.call_type
            )
            entry = _InFlight(next(self._sequence), request, future, tick)
            self._in_flight[request.request_id] = entry
        else:
            self._handle_outcome(request, self._execute(request), tick)

    def _execute(self, request: OracleRequest) -> CallOutcome:
        try:
            return self.failover.execute(request.prompt, request.attempt_count, request.call_type)
        except Exception as e:
            logger.exception("Provider chain raised for request %s", request.request_id)
            return CallOutcome(
                result=OracleResult.failure(ErrorType.UNKNOWN, str(e)),
                action=RecoveryAction.FAIL,
                attempt=request.attempt_count,
            )

    def _dispatch_replay(self, request: OracleRequest, tick: int) -> None:
        record = self.validator.next_record(tick, request.call_type, request.prompt)
        if record is None:
            outcome = self.failover.offline_outcome(
                request.prompt, request.call_type,
                RecoveryAction.USE_FALLBACK, request.attempt_count,
            )
            self._complete(request, outcome.result, tick)
            return
        if record.retry_delay_ms > 0:
            self._retry_later(request, record.to_result(), record.retry_delay_ms, record.attempt, tick)
            return
        self._complete(request, record.to_result(), tick)

    def _handle_outcome(self, request: OracleRequest, outcome: CallOutcome, tick: int) -> None:
        if outcome.retry_later:
            self._retry_later(request, outcome.result, outcome.delay_ms, outcome.attempt, tick)
            return
        self._complete(request, outcome.result, tick)

    def _retry_later(
        self,
        request: OracleRequest,
        result: OracleResult,
        delay_ms: int,
        next_attempt: int,
        tick: int,
    ) -> None:
        request.attempt_count = next_attempt
        request.next_retry_tick = tick + self.delay_to_ticks(delay_ms)
        if request.attempt_count < request.max_attempts and self.queue.requeue(request):
            # only deferrals that were actually requeued are logged; otherwise
            # the offline completion below is the call's single record
            if self.recording:
                self.replay_logger.record_call(
                    tick, request.call_type, request.prompt, result,
                    attempt=next_attempt, retry_delay_ms=delay_ms,
                )
            logger.info(
                "Request %s deferred to tick %d (attempt %d)",
                request.request_id, request.next_retry_tick, request.attempt_count + 1,
            )
            return
        outcome = self.failover.offline_outcome(
            request.prompt, request.call_type, RecoveryAction.USE_FALLBACK, request.attempt_count
        )
        self._complete(request, outcome.result, tick)

    def _complete(self, request: OracleRequest, result: OracleResult, tick: int) -> None:
        # replayed answers are not charged again
        if result.provider != ProviderType.REPLAY:
            self.cost_tracker.record_usage(
                model=result.model or "unknown",
                call_type=request.call_type,
                input_tokens=result.input_tokens,
                completion_tokens=result.completion_tokens,
                success=result.success,
                provider_name=result.provider_name,
            )
        if self.recording:
            self.replay_logger.record_call(
                tick, request.call_type, request.prompt, result,
                attempt=request.attempt_count + 1,
            )
        self._maybe_cache(request.prompt, result)
        self._deliver(request, result)

    def _maybe_cache(self, prompt: str, result: OracleResult) -> None:
        if self._cache_bypassed() or not result.success:
            return
        if result.used_live_backend:
            self.cache.put(prompt, result)
        elif self.cache_offline_results and result.provider == ProviderType.OFFLINE:
            self.cache.put(prompt, result, ttl_seconds=0)

    def _cache_bypassed(self) -> bool:
        return self.replay_active or self.recording

    def _deliver(self, request: OracleRequest, result: OracleResult) -> None:
        if request.callback is not None:
            request.callback(result)

    def _on_queue_timeout(self, request: OracleRequest, current_tick: int) -> None:
        self._deliver(request, OracleResult.timed_out(current_tick - request.enqueued_tick))

    def _expire_in_flight(self, tick: int) -> None:
        expired = [
            entry for entry in self._in_flight.values()
            if entry.request.is_timed_out(tick) and not entry.future.done()
        ]
        for entry in sorted(expired, key=lambda item: item.sequence):
            del self._in_flight[entry.request.request_id]
            entry.future.cancel()
            logger.info(
                "In-flight request %s timed out; a late result will be discarded",
                entry.request.request_id,
            )
            self._on_queue_timeout(entry.request, tick)

    def _collect_finished(self, tick: int) -> None:
        """Deliver finished worker calls, in dispatch order per priority."""
        if not self._in_flight:
            return
        ordered = sorted(self._in_flight.values(), key=lambda item: item.sequence)
        for priority in Priority:
            for entry in ordered:
                if entry.request.priority != priority:
                    continue
                if not entry.future.done():
                    break
                del self._in_flight[entry.request.request_id]
                self._handle_outcome(entry.request, self._outcome_of(entry), tick)

    def _outcome_of(self, entry: _InFlight) -> CallOutcome:
        error = entry.future.exception()
        if error is None:
            return entry.future.result()
        logger.error(
            "Provider chain raised for request %s: %s", entry.request.request_id, error
        )
        return CallOutcome(
            result=OracleResult.failure(ErrorType.UNKNOWN, str(error)),
            action=RecoveryAction.FAIL,
            attempt=entry.request.attempt_count,
        )

    def _pop_in_flight(self) -> List[_InFlight]:
        entries = sorted(self._in_flight.values(), key=lambda item: item.sequence)
        self._in_flight.clear()
        for entry in entries:
            entry.future.cancel()
        return entries
