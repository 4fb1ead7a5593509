"""
summary_pipeline.pager — Resumable keyset pagination over an ordered item source.

The cursor ``(last_timestamp, last_id)`` is a strict lower bound for the next
page, so concurrent inserts can neither duplicate nor skip items the way
offset paging would. The cursor is round-tripped through a plain dict
checkpoint so any store with ``load``/``save`` can persist it. A checkpoint
only outlives a run that did not finish; ``reset`` clears it once a run
completes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterator, Optional, Protocol

from summary_pipeline.models import Item

logger = logging.getLogger(__name__)

MIN_CONTENT_LENGTH = 100


@dataclass
class Cursor:
    last_timestamp: Optional[datetime] = None
    last_id: Optional[str] = None
    processed_count: int = 0

    @property
    def is_empty(self) -> bool:
        return self.last_timestamp is None or self.last_id is None

    def to_checkpoint(self, prefix: str) -> dict:
        blob: dict = {f"{prefix}.readCount": self.processed_count}
        if self.last_timestamp is not None:
            blob[f"{prefix}.cursor.timestamp"] = self.last_timestamp.isoformat()
        if self.last_id is not None:
            blob[f"{prefix}.cursor.id"] = self.last_id
        return blob

    @classmethod
    def from_checkpoint(cls, blob: Optional[dict], prefix: str) -> "Cursor":
        blob = blob or {}
        ts_key = f"{prefix}.cursor.timestamp"
        id_key = f"{prefix}.cursor.id"
        cursor = cls(processed_count=int(blob.get(f"{prefix}.readCount", 0)))
        if ts_key in blob and id_key in blob:
            cursor.last_timestamp = datetime.fromisoformat(blob[ts_key])
            cursor.last_id = str(blob[id_key])
        return cursor


class CheckpointStore(Protocol):
    def load(self) -> Optional[dict]: ...

    def save(self, blob: dict) -> None: ...


class InMemoryCheckpointStore:
    """Checkpoint store backed by a dict, for local runs and tests."""

    def __init__(self, blob: Optional[dict] = None):
        self.blob = dict(blob) if blob else None

    def load(self) -> Optional[dict]:
        return dict(self.blob) if self.blob is not None else None

    def save(self, blob: dict) -> None:
        self.blob = dict(blob)


FetchPage = Callable[[Cursor, int], list[Item]]


def is_valid_for_summary(item: Item, min_content_length: int = MIN_CONTENT_LENGTH) -> bool:
    if not item.content or not item.content.strip():
        logger.warning("Item %s has blank content, skipping", item.id)
        return False
    if len(item.content) < min_content_length:
        logger.warning("Item %s content too short (%d chars), skipping", item.id, len(item.content))
        return False
    if not item.title or not item.title.strip():
        logger.warning("Item %s has blank title, skipping", item.id)
        return False
    return True


class CursorPager:
    """
    Reads pages of at most ``min(page_size, max_count - processed_count)``
    items strictly after the cursor, ordered by ``(timestamp, id)``.

    ``fetch_page(after, limit)`` must return items in that order. Errors it
    raises propagate to the caller; the checkpoint only moves on ``update``.
    """

    def __init__(
        self,
        fetch_page: FetchPage,
        prefix: str,
        max_count: int,
        page_size: int = 100,
        item_filter: Optional[Callable[[Item], bool]] = is_valid_for_summary,
    ):
        self.fetch_page = fetch_page
        self.prefix = prefix
        self.max_count = max_count
        self.page_size = page_size
        self.item_filter = item_filter
        self.cursor = Cursor()

    def open(self, store: CheckpointStore) -> None:
        self.cursor = Cursor.from_checkpoint(store.load(), self.prefix)
        if self.cursor.is_empty:
            logger.info("[%s] Starting from beginning (no cursor found)", self.prefix)
        else:
            logger.info(
                "[%s] Resumed from cursor: timestamp=%s, id=%s",
                self.prefix, self.cursor.last_timestamp, self.cursor.last_id,
            )
        logger.info("[%s] Initial read count: %d", self.prefix, self.cursor.processed_count)

    def has_reached_limit(self) -> bool:
        return self.cursor.processed_count >= self.max_count

    def read(self) -> Optional[list[Item]]:
        while not self.has_reached_limit():
            limit = min(self.page_size, self.max_count - self.cursor.processed_count)
            page = self.fetch_page(self.cursor, limit)
            if not page:
                return None

            last = page[-1]
            self.cursor.last_timestamp = last.timestamp
            self.cursor.last_id = last.id
            self.cursor.processed_count += len(page)

            items = [i for i in page if self.item_filter(i)] if self.item_filter else list(page)
            logger.info(
                "[%s] Loaded %d items (%d valid), cursor: timestamp=%s, id=%s",
                self.prefix, len(page), len(items), last.timestamp, last.id,
            )
            if items:
                return items
        return None

    def update(self, store: CheckpointStore) -> None:
        store.save(self.cursor.to_checkpoint(self.prefix))

    def reset(self, store: CheckpointStore) -> None:
        """Clear the saved cursor so the next run starts from the beginning."""
        store.save(Cursor().to_checkpoint(self.prefix))
        logger.info("[%s] Checkpoint reset after completed run", self.prefix)

    def close(self) -> None:
        logger.info(
            "[%s] Closed reader: processed %d/%d items (final cursor: timestamp=%s, id=%s)",
            self.prefix, self.cursor.processed_count, self.max_count,
            self.cursor.last_timestamp, self.cursor.last_id,
        )

    def __iter__(self) -> Iterator[list[Item]]:
        while True:
            page = self.read()
            if page is None:
                return
            yield page
