"""
Token counting and usage tracking.

Holds language-model token counts for cost calculation and estimates
counts for backends that do not report them.
"""

from dataclasses import dataclass

# Rough characters-per-token ratio for English prose
CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class TokenUsage:
    """Token usage data for cost calculation.

    Contains exact token counts as reported by the backend.
    """
    input_tokens: int
    completion_tokens: int

    @property
    def total_tokens(self) -> int:
        """Total tokens used (input + completion)."""
        return self.input_tokens + self.completion_tokens


def estimate_tokens(text: str) -> int:
    """Estimate the token count of text that no backend has measured."""
    return len(text) // CHARS_PER_TOKEN
