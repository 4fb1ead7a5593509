"""
summary_pipeline.truncate — Shrink oversized items to fit a token budget.
"""

from summary_pipeline.models import Item
from summary_pipeline.settings import BatchBuildConfig

TRUNCATION_MARKER = "\n\n[content truncated]"


class ItemTruncator:
    def __init__(self, config: BatchBuildConfig):
        self.config = config

    def truncate(self, item: Item, max_tokens: int) -> Item:
        """Cut content to ``max_tokens // tokens_per_char`` chars plus a marker; short items pass through."""
        max_chars = max_tokens // self.config.tokens_per_char
        if len(item.content) <= max_chars:
            return item
        return item.copy(content=item.content[:max_chars] + TRUNCATION_MARKER, truncated=True)

    def calculate_max_tokens_for_truncation(self) -> int:
        return self.config.max_tokens_per_request - self.config.truncation_buffer_tokens
