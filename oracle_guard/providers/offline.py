"""
Offline provider.

Wraps the deterministic template engine in the provider contract so it
can sit at the end of a failover chain or answer degraded calls.
"""

from ..core import offline_fallback
from ..core.results import CallType, OracleResult, ProviderType
from ..core.token_counter import estimate_tokens
from .base import Provider

OFFLINE_MODEL = "offline-fallback"


class OfflineProvider(Provider):
    """Always-available provider backed by templates."""

    def __init__(self, name: str = "offline"):
        super().__init__(name, OFFLINE_MODEL)

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.OFFLINE

    def is_available(self) -> bool:
        return True

    def answer(self, prompt: str, call_type: CallType = CallType.UNKNOWN) -> OracleResult:
        """Template answer for a prompt of a known call type.

        Token counts are estimated from text length; latency is reported as
        zero so identical inputs produce identical results.
        """
        text = offline_fallback.respond(prompt, call_type)
        result = OracleResult(
            success=True,
            text=text,
            input_tokens=estimate_tokens(prompt),
            completion_tokens=estimate_tokens(text),
            provider=ProviderType.OFFLINE,
            provider_name=self.name,
            model=self.model,
        )
        self._record(result)
        return result

    def _call(self, prompt: str) -> OracleResult:
        text = offline_fallback.respond(prompt)
        return OracleResult(
            success=True,
            text=text,
            input_tokens=estimate_tokens(prompt),
            completion_tokens=estimate_tokens(text),
            provider=ProviderType.OFFLINE,
            provider_name=self.name,
            model=self.model,
        )
