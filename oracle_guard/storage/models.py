"""
Data models for storage layer.

Defines the usage ledger entity.
"""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class UsageEntry:
    """Immutable record of one oracle call for cost tracking.

    Append-only entries that create an auditable ledger of token spend.
    Once written, these records must never be modified.
    """
    timestamp: datetime
    model: str
    call_type: str
    input_tokens: int
    completion_tokens: int
    cost: float
    success: bool = True
    provider_name: str = ""

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.completion_tokens
