"""
summary_pipeline.job — One summarization run: read → pack → dispatch → write → checkpoint.

The pager, builder and writer run on a single coordinating sequence; only the
API dispatch inside ``BatchSummarizationOrchestrator`` is concurrent. The
checkpoint is advanced after a page's batches are fully resolved and written,
so a crash replays at most one page. A completed run resets the checkpoint;
a failed run leaves it for the next run to resume from.
"""

from __future__ import annotations

import logging
from typing import Optional

from summary_pipeline import db
from summary_pipeline.builder import DynamicBatchBuilder
from summary_pipeline.errors import make_error_payload
from summary_pipeline.models import Item
from summary_pipeline.observability import (
    evaluate_alerts,
    finish_pipeline_run,
    record_batch_results,
    start_pipeline_run,
)
from summary_pipeline.orchestrator import BatchSummarizationOrchestrator, Summarizer
from summary_pipeline.pager import CheckpointStore, CursorPager, FetchPage, is_valid_for_summary
from summary_pipeline.results import validate_summary
from summary_pipeline.retry_queue import RetryQueue, map_failures_to_items
from summary_pipeline.settings import Settings
from summary_pipeline.writer import write_results

logger = logging.getLogger(__name__)

DEFAULT_JOB_NAME = "summarize_items"


class SummarizationJob:
    def __init__(
        self,
        cursor,
        summarizer: Summarizer,
        settings: Settings,
        name: str = DEFAULT_JOB_NAME,
        max_count: Optional[int] = None,
        fetch_page: Optional[FetchPage] = None,
        checkpoint_store: Optional[CheckpointStore] = None,
        persist_metrics: bool = True,
    ):
        self.cursor = cursor
        self.settings = settings
        self.name = name
        self.persist_metrics = persist_metrics

        pager_cfg = settings.pager
        self.checkpoint_store = checkpoint_store or db.SnowflakeCheckpointStore(cursor, name)
        self.pager = CursorPager(
            fetch_page or (lambda after, limit: db.fetch_unsummarized_page(cursor, after, limit)),
            prefix=name,
            max_count=max_count if max_count is not None else pager_cfg.max_count,
            page_size=pager_cfg.page_size,
            item_filter=lambda item: is_valid_for_summary(item, pager_cfg.min_content_length),
        )
        self.orchestrator = BatchSummarizationOrchestrator(
            summarizer,
            settings.processing,
            validator=validate_summary,
            builder=DynamicBatchBuilder(settings.build),
        )
        self.retry_queue = RetryQueue(settings.retry_queue)

    async def run(self) -> dict:
        metrics = start_pipeline_run(self.name)
        self.pager.open(self.checkpoint_store)
        try:
            for page in self.pager:
                await self._process_page(page, metrics)
                self.pager.update(self.checkpoint_store)
            # Failed and deferred items stay unsummarized behind the cursor;
            # the next run has to start over to pick them up.
            self.pager.reset(self.checkpoint_store)
        except Exception as e:
            metrics["status"] = "failed"
            metrics["error_message"] = str(e)[:4000]
            logger.error("Run failed: %s", make_error_payload(self.name, e, {"run_id": metrics["run_id"]}))
            self._finish(metrics)
            raise
        finally:
            self.pager.close()

        return self._finish(metrics)

    async def _process_page(self, page: list[Item], metrics: dict) -> None:
        metrics["items_read"] += len(page)

        existing = db.load_retry_entries(self.cursor, [i.id for i in page])
        ready, deferred = self.retry_queue.partition_due(page, existing)
        metrics["items_deferred"] += len(deferred)
        if deferred:
            logger.info("Deferred %d items whose retry is not due yet", len(deferred))
        if not ready:
            return

        results = await self.orchestrator.summarize_items(ready)
        record_batch_results(metrics, results)

        successes = [s for r in results for s in r.successes]
        failures = [f for r in results for f in r.failures]
        if len(successes) + len(failures) != len(ready):
            logger.error(
                "Result count mismatch: %d items dispatched, %d successes + %d failures",
                len(ready), len(successes), len(failures),
            )

        failed_items = map_failures_to_items(ready, successes, failures)
        write_results(self.cursor, successes, failed_items)

        upserts, deletes = self.retry_queue.record_failures(existing, failures)
        deletes.extend(self.retry_queue.resolve_successes(existing, successes))
        db.upsert_retry_entries(self.cursor, upserts)
        db.delete_retry_entries(self.cursor, deletes)
        metrics["retry_enqueued"] += len(upserts)
        metrics["retry_dropped"] += len(deletes)

        logger.info("Page complete: %d successes, %d failures", len(successes), len(failures))
        if failures:
            retryable = sum(1 for f in failures if f.retryable)
            logger.warning(
                "%d items failed: %d retryable, %d non-retryable",
                len(failures), retryable, len(failures) - retryable,
            )
            for failure in failures[:5]:
                logger.debug("Failed item %s: %s (retryable: %s)", failure.item.id, failure.reason, failure.retryable)

    def _finish(self, metrics: dict) -> dict:
        finish_pipeline_run(metrics)
        if self.persist_metrics:
            historical = db.get_historical_avg_duration(self.cursor)
            db.save_metrics(self.cursor, metrics)
            alerts = evaluate_alerts(metrics, historical)
            db.save_alerts(self.cursor, alerts)
            for alert in alerts:
                logger.warning("[%s] %s", alert["severity"], alert["message"])
        logger.info(
            "Run %s %s: read=%d success=%d failed=%d deferred=%d",
            metrics["run_id"], metrics["status"], metrics["items_read"],
            metrics["summarize_success"], metrics["summarize_failed"], metrics["items_deferred"],
        )
        return metrics
