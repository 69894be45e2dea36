"""
Token counting and usage tracking.

Inference services bill per token, but the monitor mostly sees characters,
so token counts are estimated from text length where exact counts are absent.
"""

import math
from dataclasses import dataclass

CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class TokenUsage:
    """Token usage data for cost calculation."""
    prompt_tokens: int
    completion_tokens: int

    def __post_init__(self):
        if self.prompt_tokens < 0 or self.completion_tokens < 0:
            raise ValueError("token counts must be >= 0")

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens

    @classmethod
    def from_text(cls, prompt: str, completion: str = "") -> "TokenUsage":
        """Rough usage estimate for a prompt/completion pair."""
        return cls(
            prompt_tokens=estimate_tokens(prompt),
            completion_tokens=estimate_tokens(completion),
        )


def estimate_tokens(text: str) -> int:
    """Roughly one token per four characters, rounded up."""
    return math.ceil(len(text or "") / CHARS_PER_TOKEN)
