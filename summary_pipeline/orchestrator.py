"""
summary_pipeline.orchestrator — Concurrent, retrying dispatch of batches to the summarization API.

Each ``BatchRequest`` runs in its own task under a shared semaphore of
``concurrency_limit`` slots. An attempt is bounded by ``timeout_ms``; a
retryable failure waits a class-specific backoff (outside the semaphore)
and tries again, up to ``max_retry_attempts`` retries. Whatever happens to
one task is captured as a ``BatchResult`` and never reaches its siblings.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Awaitable, Callable, Mapping, Optional, Protocol, Sequence

import tenacity

from summary_pipeline.builder import DynamicBatchBuilder
from summary_pipeline.errors import ErrorType, classify_error, is_retryable
from summary_pipeline.models import BatchRequest, BatchResult, Item, SummaryOutcome
from summary_pipeline.results import SummaryValidator, create_failure_result, process_batch_response
from summary_pipeline.settings import ProcessingConfig

logger = logging.getLogger(__name__)


class Summarizer(Protocol):
    async def summarize(self, items: Sequence[Item]) -> Mapping[str, SummaryOutcome]: ...


class BatchSummarizationOrchestrator:
    def __init__(
        self,
        summarizer: Summarizer,
        config: ProcessingConfig,
        validator: Optional[SummaryValidator] = None,
        builder: Optional[DynamicBatchBuilder] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.summarizer = summarizer
        self.config = config
        self.validator = validator
        self.builder = builder
        self._sleep = sleep
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._semaphore_loop: Optional[asyncio.AbstractEventLoop] = None

    # Retry policy

    def backoff_delay_ms(self, error_type: ErrorType, retry_count: int) -> int:
        retry = self.config.retry
        if error_type is ErrorType.RATE_LIMIT:
            base = retry.rate_limit_base_delay_ms
        elif error_type is ErrorType.TIMEOUT:
            base = retry.other_error_base_delay_ms
        else:
            base = retry.base_delay_ms
        return base * (retry_count + 1)

    def _wait(self, retry_state: tenacity.RetryCallState) -> float:
        exc = retry_state.outcome.exception()
        return self.backoff_delay_ms(classify_error(exc), retry_state.attempt_number - 1) / 1000.0

    # Dispatch

    async def process_batches(self, requests: Sequence[BatchRequest]) -> list[BatchResult]:
        total_items = sum(len(r.items) for r in requests)
        logger.info("Processing %d batches with %d items in total", len(requests), total_items)
        if not requests:
            return []

        ordered = sorted(requests, key=lambda r: r.priority, reverse=True)
        outcomes = await asyncio.gather(
            *(self._process_with_retry(r) for r in ordered), return_exceptions=True
        )

        results = []
        for request, outcome in zip(ordered, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                logger.error("Batch %s crashed outside the retry loop: %r", request.id, outcome)
                outcome = create_failure_result(request, str(outcome) or type(outcome).__name__,
                                                classify_error(outcome))
            results.append(outcome)
        return results

    async def summarize_items(self, items: Sequence[Item]) -> list[BatchResult]:
        """Pack ``items`` with the configured builder and dispatch the batches."""
        if self.builder is None:
            raise ValueError("summarize_items needs a DynamicBatchBuilder")
        batches = self.builder.build_batches(items)
        requests = [
            BatchRequest(id=str(uuid.uuid4()), items=b.items, estimated_tokens=b.estimated_tokens)
            for b in batches
        ]
        logger.info("Created %d API batches from %d items", len(requests), len(items))
        return await self.process_batches(requests)

    def _gate(self) -> asyncio.Semaphore:
        """One concurrency gate per event loop, shared by overlapping ``process_batches`` calls."""
        loop = asyncio.get_running_loop()
        if self._semaphore is None or self._semaphore_loop is not loop:
            self._semaphore = asyncio.Semaphore(self.config.concurrency_limit)
            self._semaphore_loop = loop
        return self._semaphore

    async def _call(self, request: BatchRequest) -> Mapping[str, SummaryOutcome]:
        async with self._gate():
            return await asyncio.wait_for(
                self.summarizer.summarize(request.items),
                timeout=self.config.timeout_ms / 1000.0,
            )

    async def _process_with_retry(self, request: BatchRequest) -> BatchResult:
        started = time.perf_counter()
        attempts = 0
        item_ids = ", ".join(i.id for i in request.items)

        def before_sleep(state: tenacity.RetryCallState) -> None:
            exc = state.outcome.exception()
            logger.warning(
                "Batch %s [%s] failed (%s: %s). Retrying after %.0fms (attempt %d/%d)",
                request.id, item_ids, classify_error(exc).value, exc,
                state.next_action.sleep * 1000, state.attempt_number, self.config.max_retry_attempts,
            )

        retrying = tenacity.AsyncRetrying(
            sleep=self._sleep,
            retry=tenacity.retry_if_exception(lambda e: is_retryable(classify_error(e))),
            wait=self._wait,
            stop=tenacity.stop_after_attempt(self.config.max_retry_attempts + 1),
            before_sleep=before_sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    outcomes = await self._call(request)
        except Exception as exc:
            error_type = classify_error(exc)
            reason = str(exc) or type(exc).__name__
            if error_type is ErrorType.TIMEOUT and not str(exc):
                reason = f"Timeout after {self.config.timeout_ms}ms"
            logger.error(
                "Batch %s [%s] failed permanently after %d attempt(s): %s (%s)",
                request.id, item_ids, attempts, reason, error_type.value,
            )
            return create_failure_result(request, reason, error_type, started, attempts)

        result = process_batch_response(request, outcomes, started, self.validator, attempts)
        if result.failures:
            logger.warning(
                "Batch %s returned partial results: %d ok, %d item-level failures",
                request.id, len(result.successes), len(result.failures),
            )
        logger.info("Batch %s completed in %dms", request.id, result.metrics.duration_ms)
        return result
