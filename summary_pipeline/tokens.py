"""
summary_pipeline.tokens — Character-based token estimation.
"""

# Per-item prompt scaffolding and reserved response tokens
ITEM_PROMPT_TOKENS = 500
ITEM_OUTPUT_TOKENS = 1000

HANGUL_START = 0xAC00
HANGUL_END = 0xD7AF


def estimate_tokens(text: str) -> int:
    """Hangul syllables cost ~3 tokens each; everything else ~1 token per 2 chars."""
    hangul = sum(1 for ch in text if HANGUL_START <= ord(ch) <= HANGUL_END)
    other = len(text) - hangul
    return hangul * 3 + other // 2


def estimate_total_tokens(content: str) -> int:
    """Estimated cost of one item in a request, including its share of the response."""
    return ITEM_PROMPT_TOKENS + estimate_tokens(content) + ITEM_OUTPUT_TOKENS
