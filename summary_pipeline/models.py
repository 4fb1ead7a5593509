"""
summary_pipeline.models — Items, batches, dispatch results and retry-queue records.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Optional

from summary_pipeline.errors import ErrorType


@dataclass
class Item:
    """A content item awaiting summarization."""

    id: str
    title: str
    content: str
    timestamp: datetime
    url: Optional[str] = None
    token_estimate: Optional[int] = None
    truncated: bool = False

    # Filled in on success
    summary: Optional[str] = None
    categories: list[str] = field(default_factory=list)
    preview: Optional[str] = None

    # Carried forward for the next run when summarization fails
    failure_error_type: Optional[ErrorType] = None
    failure_error_message: Optional[str] = None
    failure_batch_size: Optional[int] = None
    failure_is_batch_failure: Optional[bool] = None

    def copy(self, **changes) -> "Item":
        return replace(self, **changes)


@dataclass
class Batch:
    items: list[Item]
    estimated_tokens: int

    def __len__(self) -> int:
        return len(self.items)


@dataclass
class BatchRequest:
    id: str
    items: list[Item]
    estimated_tokens: int
    priority: int = 0


@dataclass
class SummaryOutcome:
    """Per-item answer from the summarization API."""

    success: bool
    summary: Optional[str] = None
    categories: list[str] = field(default_factory=list)
    preview: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[ErrorType] = None


@dataclass
class BatchFailure:
    item: Item
    reason: str
    retryable: bool
    error_type: ErrorType
    batch_size: int = 1
    is_batch_failure: bool = False


@dataclass
class BatchMetrics:
    total_items: int
    success_count: int
    failure_count: int
    api_call_count: int
    tokens_used: int
    duration_ms: int
    attempts: int = 1


@dataclass
class BatchResult:
    request_id: str
    successes: list[Item]
    failures: list[BatchFailure]
    metrics: BatchMetrics

    @property
    def total(self) -> int:
        return len(self.successes) + len(self.failures)


@dataclass
class RetryQueueEntry:
    """Delayed-retry record for an item whose summarization failed transiently."""

    item_id: str
    reason: str
    error_type: ErrorType
    next_retry_at: datetime
    created_at: datetime
    retry_count: int = 0
    max_retries: int = 5
    last_retry_at: Optional[datetime] = None

    def should_retry(self, now: datetime) -> bool:
        return self.retry_count < self.max_retries and now > self.next_retry_at

    def is_exhausted(self) -> bool:
        return self.retry_count >= self.max_retries

    def increment_retry(self, now: datetime, base_delay_seconds: int = 300) -> "RetryQueueEntry":
        """Return the next record: one more attempt, exponentially later."""
        return replace(
            self,
            retry_count=self.retry_count + 1,
            next_retry_at=now + timedelta(seconds=base_delay_seconds * (2 ** self.retry_count)),
            last_retry_at=now,
        )
