"""
Provider contract.

Abstract base class shared by every backend the failover controller can
call, with per-provider token usage accounting.
"""

import dataclasses
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

from ..core.results import OracleResult, ProviderType


@dataclass(frozen=True)
class ProviderUsage:
    """Running token counts for one provider."""
    total_input_tokens: int = 0
    total_completion_tokens: int = 0
    total_requests: int = 0
    failed_requests: int = 0

    @property
    def total_tokens(self) -> int:
        return self.total_input_tokens + self.total_completion_tokens

    def __add__(self, other: "ProviderUsage") -> "ProviderUsage":
        return ProviderUsage(
            total_input_tokens=self.total_input_tokens + other.total_input_tokens,
            total_completion_tokens=self.total_completion_tokens + other.total_completion_tokens,
            total_requests=self.total_requests + other.total_requests,
            failed_requests=self.failed_requests + other.failed_requests,
        )


class Provider(ABC):
    """A backend capable of answering a prompt.

    Subclasses implement `_call`. Backend failures must come back as failed
    results tagged with an ErrorType, never as exceptions, so the failover
    controller can classify them.
    """

    def __init__(self, name: str, model: str):
        if not name or not name.strip():
            raise ValueError("name is required and cannot be empty")
        self._name = name
        self._model = model
        self._usage = ProviderUsage()
        self._usage_lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def model(self) -> str:
        return self._model

    @property
    @abstractmethod
    def provider_type(self) -> ProviderType:
        """Origin tag stamped on this provider's results."""

    @abstractmethod
    def is_available(self) -> bool:
        """Cheap check whether the backend can be called at all."""

    @abstractmethod
    def _call(self, prompt: str) -> OracleResult:
        """Perform one backend call."""

    def invoke(self, prompt: str) -> OracleResult:
        """Call the backend once, timing it and recording token usage.

        Blocking; timeouts are enforced by the backend client.
        """
        started = time.perf_counter()
        result = self._call(prompt)
        if result.latency_ms == 0:
            elapsed_ms = int((time.perf_counter() - started) * 1000)
            result = dataclasses.replace(result, latency_ms=elapsed_ms)
        self._record(result)
        return result

    def token_usage(self) -> ProviderUsage:
        with self._usage_lock:
            return self._usage

    def reset_token_usage(self) -> None:
        with self._usage_lock:
            self._usage = ProviderUsage()

    def _record(self, result: OracleResult) -> None:
        with self._usage_lock:
            self._usage = self._usage + ProviderUsage(
                total_input_tokens=result.input_tokens,
                total_completion_tokens=result.completion_tokens,
                total_requests=1,
                failed_requests=0 if result.success else 1,
            )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self._name!r}, model={self._model!r})"
