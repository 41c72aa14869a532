"""
Provider failover.

Runs a call across an ordered list of providers, consults the recovery
manager after failures and answers from the offline templates when no
live provider can.
"""

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional

from .recovery import ErrorRecoveryManager, RecoveryAction
from .results import CallError, CallType, ErrorType, OracleResult

if TYPE_CHECKING:
    from ..providers.base import Provider, ProviderUsage
    from ..providers.offline import OfflineProvider

logger = logging.getLogger(__name__)

UNHEALTHY_AFTER_FAILURES = 3


@dataclass
class ProviderEntry:
    """Registration of one provider in the failover chain."""
    provider: "Provider"
    priority: int = 0
    failure_count: int = 0
    healthy: bool = True


@dataclass(frozen=True)
class CallOutcome:
    """Result of one dispatch through the controller.

    `action` is None for a live success. RETRY_LATER carries the delay the
    caller should wait before dispatching attempt number `attempt` again.
    """
    result: OracleResult
    action: Optional[RecoveryAction] = None
    delay_ms: int = 0
    attempt: int = 0

    @property
    def retry_later(self) -> bool:
        return self.action == RecoveryAction.RETRY_LATER


class FailoverController:
    """Ordered provider chain with health tracking."""

    def __init__(
        self,
        recovery: Optional[ErrorRecoveryManager] = None,
        fallback: Optional["OfflineProvider"] = None,
    ):
        """Initialize with no providers.

        Args:
            recovery: Recovery policy; a default one is created if omitted
            fallback: Offline provider used for synthetic answers
        """
        if fallback is None:
            from ..providers.offline import OfflineProvider
            fallback = OfflineProvider()
        self.recovery = recovery or ErrorRecoveryManager()
        self.fallback = fallback
        self._entries: List[ProviderEntry] = []
        self._lock = threading.Lock()

    def add_provider(self, provider: "Provider", priority: int = 0) -> None:
        """Register a provider. Lower priority values are tried first."""
        with self._lock:
            self._entries.append(ProviderEntry(provider=provider, priority=priority))
            self._entries.sort(key=lambda entry: entry.priority)

    def execute(
        self,
        prompt: str,
        attempt: int = 0,
        call_type: CallType = CallType.UNKNOWN,
    ) -> CallOutcome:
        """Answer a prompt, retrying immediately where the policy allows.

        Args:
            prompt: Prompt text
            attempt: Zero-based attempt number this dispatch starts at
            call_type: Call category, used to pick offline templates

        Returns:
            CallOutcome describing the answer or the deferred retry
        """
        if self.recovery.is_degraded():
            logger.debug("Degraded mode: answering offline")
            return self.offline_outcome(prompt, call_type, RecoveryAction.USE_FALLBACK, attempt)

        while True:
            result = self._try_providers(prompt)
            if result is None:
                logger.warning("No healthy providers available")
                return self.offline_outcome(prompt, call_type, RecoveryAction.USE_FALLBACK, attempt)

            if result.success:
                self.recovery.record_success()
                return CallOutcome(result=result, attempt=attempt)

            error = CallError.from_result(result, attempt)
            action = self.recovery.handle_error(error, attempt)

            if action == RecoveryAction.RETRY_NOW:
                logger.info("Retrying immediately after %s", error)
                attempt += 1
                continue
            if action == RecoveryAction.RETRY_LATER:
                delay_ms = self.recovery.retry_delay_ms(attempt)
                logger.info("Retrying in %dms after %s", delay_ms, error)
                return CallOutcome(
                    result=result,
                    action=action,
                    delay_ms=delay_ms,
                    attempt=attempt + 1,
                )
            if action == RecoveryAction.USE_FALLBACK or self.recovery.config.fallback_enabled:
                return self.offline_outcome(prompt, call_type, action, attempt)

            logger.warning("Call failed without fallback: %s", error)
            return CallOutcome(result=result, action=RecoveryAction.FAIL, attempt=attempt)

    def mark_healthy(self, name: str) -> bool:
        """External success signal: put a provider back in rotation."""
        with self._lock:
            for entry in self._entries:
                if entry.provider.name == name:
                    entry.failure_count = 0
                    entry.healthy = True
                    logger.info("Provider %s marked healthy", name)
                    return True
        return False

    def provider_states(self) -> List[Dict[str, object]]:
        with self._lock:
            return [
                {
                    "name": entry.provider.name,
                    "type": entry.provider.provider_type.value,
                    "model": entry.provider.model,
                    "priority": entry.priority,
                    "failure_count": entry.failure_count,
                    "healthy": entry.healthy,
                }
                for entry in self._entries
            ]

    def is_available(self) -> bool:
        """A call can always be answered while offline fallback is enabled."""
        if self.recovery.config.fallback_enabled:
            return True
        with self._lock:
            entries = [entry for entry in self._entries if entry.healthy]
        return any(entry.provider.is_available() for entry in entries)

    def token_usage(self) -> "ProviderUsage":
        """Token usage summed over every provider, fallback included."""
        with self._lock:
            providers = [entry.provider for entry in self._entries]
        total = self.fallback.token_usage()
        for provider in providers:
            total = total + provider.token_usage()
        return total

    def reset_token_usage(self) -> None:
        with self._lock:
            providers = [entry.provider for entry in self._entries]
        for provider in providers + [self.fallback]:
            provider.reset_token_usage()

    def _try_providers(self, prompt: str) -> Optional[OracleResult]:
        """One pass over the healthy providers. None if none are healthy."""
        with self._lock:
            entries = [entry for entry in self._entries if entry.healthy]
        last_failure = None
        for entry in entries:
            result = entry.provider.invoke(prompt)
            with self._lock:
                if result.success:
                    entry.failure_count = 0
                    entry.healthy = True
                    return result
                entry.failure_count += 1
                if entry.failure_count >= UNHEALTHY_AFTER_FAILURES and entry.healthy:
                    entry.healthy = False
                    logger.warning(
                        "Provider %s marked unhealthy after %d consecutive failures",
                        entry.provider.name, entry.failure_count,
                    )
            logger.debug("Provider %s failed: %s", entry.provider.name, result.error_message)
            last_failure = result
        return last_failure

    def offline_outcome(
        self,
        prompt: str,
        call_type: CallType,
        action: RecoveryAction,
        attempt: int,
    ) -> CallOutcome:
        """Synthetic answer from the offline templates, or a failure if disabled."""
        if not self.recovery.config.fallback_enabled:
            failure = OracleResult.failure(
                ErrorType.PROVIDER_UNAVAILABLE, "No provider could answer and fallback is disabled"
            )
            return CallOutcome(result=failure, action=RecoveryAction.FAIL, attempt=attempt)
        return CallOutcome(
            result=self.fallback.answer(prompt, call_type),
            action=action,
            attempt=attempt,
        )
