"""Token estimation for prompt sizing."""

from __future__ import annotations

import math

# Rough characters per token for GPT-style tokenizers on English text
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Estimate the token count of ``text`` as ``ceil(len / 4)``.

    This is a sizing signal for logs and budgets, never a hard limit.
    """
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


__all__ = ["CHARS_PER_TOKEN", "estimate_tokens"]
