"""
Call results and error taxonomy.

Defines the immutable result of a backend call and the classified
errors the recovery layer reasons about.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ProviderType(Enum):
    """Origin of a result."""
    OPENAI = "openai"
    OLLAMA = "ollama"
    OFFLINE = "offline"
    REPLAY = "replay"
    UNKNOWN = "unknown"


class CallType(Enum):
    """What the simulation asked the oracle for."""
    DECISION_INTERPRETATION = "DECISION_INTERPRETATION"  # player input
    WORLD_STATE_NARRATIVE = "WORLD_STATE_NARRATIVE"
    NPC_CONVERSATION = "NPC_CONVERSATION"
    CRISIS_GENERATION = "CRISIS_GENERATION"
    UNKNOWN = "UNKNOWN"


class ErrorType(Enum):
    """Failure classes for a single call attempt."""
    NETWORK = "network"
    TIMEOUT = "timeout"
    API_ERROR = "api_error"
    INVALID_RESPONSE = "invalid_response"
    RATE_LIMITED = "rate_limited"
    PARSE_ERROR = "parse_error"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class OracleResult:
    """Outcome of one request, immutable once produced."""
    success: bool
    text: str = ""
    input_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: int = 0
    provider: ProviderType = ProviderType.UNKNOWN
    provider_name: str = ""
    model: str = ""
    error_message: str = ""
    error_type: Optional[ErrorType] = None
    status_code: int = 0
    cached: bool = False

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.completion_tokens

    @property
    def used_live_backend(self) -> bool:
        """True only when a real backend produced this answer just now."""
        if not self.success or self.cached:
            return False
        return self.provider in (ProviderType.OPENAI, ProviderType.OLLAMA)

    @classmethod
    def failure(
        cls,
        error_type: ErrorType,
        message: str,
        provider: ProviderType = ProviderType.UNKNOWN,
        provider_name: str = "",
        status_code: int = 0,
        latency_ms: int = 0,
        model: str = "",
    ) -> "OracleResult":
        return cls(
            success=False,
            error_message=message,
            error_type=error_type,
            provider=provider,
            provider_name=provider_name,
            status_code=status_code,
            latency_ms=latency_ms,
            model=model,
        )

    @classmethod
    def timed_out(cls, waited_ticks: int) -> "OracleResult":
        return cls.failure(
            ErrorType.TIMEOUT,
            f"Request timed out in queue after {waited_ticks} ticks",
        )


@dataclass
class CallError:
    """A classified failure of one call attempt."""
    error_type: ErrorType
    message: str = ""
    status_code: int = 0
    attempt: int = 0
    retryable: bool = True  # only consulted for UNKNOWN errors
    provider_name: str = ""
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def from_result(cls, result: OracleResult, attempt: int) -> "CallError":
        return cls(
            error_type=result.error_type or ErrorType.UNKNOWN,
            message=result.error_message,
            status_code=result.status_code,
            attempt=attempt,
            provider_name=result.provider_name,
        )

    def __str__(self) -> str:
        return (
            f"CallError(type={self.error_type.value}, status={self.status_code}, "
            f"attempt={self.attempt}, provider={self.provider_name or '-'}, "
            f"message={self.message!r})"
        )
