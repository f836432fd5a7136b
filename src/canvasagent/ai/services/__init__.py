"""Read-only services feeding the reasoning prompt."""

from .summarizer import CanvasStateSummarizer, Digest, estimate_digest_tokens, format_for_prompt, summarize

__all__ = ["CanvasStateSummarizer", "Digest", "estimate_digest_tokens", "format_for_prompt", "summarize"]
