"""
summary_pipeline — Token-bounded batching, rate limiting and retry handling
for LLM summarization of crawled content.

Re-exports the public symbols so callers can use
``from summary_pipeline import DynamicBatchBuilder`` directly.
"""

from summary_pipeline.settings import (
    BatchBuildConfig,
    JitterConfig,
    PagerConfig,
    ProcessingConfig,
    RateLimitTier,
    RetryConfig,
    RetryQueueConfig,
    Settings,
    default_tiers,
    load_settings,
)

from summary_pipeline.errors import (
    ErrorType,
    RETRYABLE_ERROR_TYPES,
    PipelineError,
    RateLimitExceeded,
    SummarizerError,
    classify_error,
    is_retryable,
)

from summary_pipeline.models import (
    Batch,
    BatchFailure,
    BatchMetrics,
    BatchRequest,
    BatchResult,
    Item,
    RetryQueueEntry,
    SummaryOutcome,
)

from summary_pipeline.tokens import estimate_tokens, estimate_total_tokens

from summary_pipeline.limits import BatchLimitChecker

from summary_pipeline.truncate import ItemTruncator, TRUNCATION_MARKER

from summary_pipeline.builder import DynamicBatchBuilder

from summary_pipeline.pager import Cursor, CursorPager, InMemoryCheckpointStore

from summary_pipeline.ratelimit import DomainRateLimiterManager, SlidingWindowLimiter

from summary_pipeline.orchestrator import BatchSummarizationOrchestrator

from summary_pipeline.retry_queue import RetryQueue, map_failures_to_items

from summary_pipeline.job import SummarizationJob
