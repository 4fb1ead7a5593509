"""
summary_pipeline.retry_queue — Failure annotation and the delayed-retry queue.

Failed items are handed back to the writer with their failure context so
they stay "not summarized" and the next run's pager picks them up again.
Retryable failures additionally get a ``RetryQueueEntry`` whose
``next_retry_at`` backs off exponentially; the entry is dropped once the
item succeeds or runs out of retries.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Mapping, Sequence

from summary_pipeline.models import BatchFailure, Item, RetryQueueEntry
from summary_pipeline.settings import RetryQueueConfig

logger = logging.getLogger(__name__)


def map_failures_to_items(
    original_items: Sequence[Item],
    successes: Iterable[Item],
    failures: Iterable[BatchFailure],
) -> list[Item]:
    """Every original item that did not succeed, stamped with its failure context."""
    failure_map = {f.item.id: f for f in failures}
    success_ids = {s.id for s in successes}

    failed = []
    for item in original_items:
        if item.id in success_ids:
            continue
        failure = failure_map.get(item.id)
        if failure is None:
            failed.append(item)
            continue
        failed.append(item.copy(
            failure_error_type=failure.error_type,
            failure_error_message=failure.reason,
            failure_batch_size=failure.batch_size,
            failure_is_batch_failure=failure.is_batch_failure,
        ))
    return failed


def _utcnow() -> datetime:
    # naive UTC, comparable with TIMESTAMP_NTZ values read back from Snowflake
    return datetime.now(timezone.utc).replace(tzinfo=None)


class RetryQueue:
    def __init__(self, config: RetryQueueConfig, clock: Callable[[], datetime] = _utcnow):
        self.config = config
        self._clock = clock

    def new_entry(self, failure: BatchFailure) -> RetryQueueEntry:
        now = self._clock()
        return RetryQueueEntry(
            item_id=failure.item.id,
            reason=failure.reason[:1000],
            error_type=failure.error_type,
            next_retry_at=now + timedelta(seconds=self.config.base_delay_seconds),
            created_at=now,
            max_retries=self.config.max_retries,
        )

    def record_failures(
        self,
        existing: Mapping[str, RetryQueueEntry],
        failures: Iterable[BatchFailure],
    ) -> tuple[list[RetryQueueEntry], list[str]]:
        """
        Decide queue changes for a set of final failures.

        Returns ``(entries_to_upsert, item_ids_to_delete)``. Non-retryable
        failures are never queued, and an existing entry for such an item is
        dropped as well.
        """
        upserts: list[RetryQueueEntry] = []
        deletes: list[str] = []
        now = self._clock()

        for failure in failures:
            item_id = failure.item.id
            entry = existing.get(item_id)

            if not failure.retryable:
                if entry is not None:
                    deletes.append(item_id)
                continue

            if entry is None:
                upserts.append(self.new_entry(failure))
                continue

            updated = entry.increment_retry(now, self.config.base_delay_seconds)
            if updated.is_exhausted():
                logger.warning(
                    "Item %s exhausted %d retries (%s), dropping from retry queue",
                    item_id, updated.max_retries, failure.error_type.value,
                )
                deletes.append(item_id)
            else:
                upserts.append(updated)

        return upserts, deletes

    def resolve_successes(
        self,
        existing: Mapping[str, RetryQueueEntry],
        successes: Iterable[Item],
    ) -> list[str]:
        return [s.id for s in successes if s.id in existing]

    def partition_due(
        self,
        items: Sequence[Item],
        existing: Mapping[str, RetryQueueEntry],
    ) -> tuple[list[Item], list[Item]]:
        """Split items into ``(ready, deferred)``; queued items wait until ``next_retry_at``."""
        now = self._clock()
        ready: list[Item] = []
        deferred: list[Item] = []
        for item in items:
            entry = existing.get(item.id)
            if entry is None or entry.should_retry(now):
                ready.append(item)
            else:
                deferred.append(item)
        return ready, deferred
