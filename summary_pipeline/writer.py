"""
summary_pipeline.writer — Write summaries and failure context back to CONTENT_ITEMS.

Both statements are MERGEs keyed by item ID, so replaying a page after a
crash (at-least-once dispatch) leaves the same rows behind.
"""

from __future__ import annotations

from typing import Sequence

from summary_pipeline.db import ITEMS_TABLE
from summary_pipeline.models import Item


def write_successes(cursor, items: Sequence[Item]) -> int:
    """Mark items summarized and clear any failure context from earlier runs."""
    for item in items:
        cursor.execute(
            f"""
            MERGE INTO {ITEMS_TABLE} AS tgt
            USING (
                SELECT %(id)s AS ID, %(summary)s AS SUMMARY,
                       %(categories)s AS CATEGORIES, %(preview)s AS PREVIEW
            ) AS src
            ON tgt.ID = src.ID
            WHEN MATCHED THEN UPDATE SET
                tgt.IS_SUMMARIZED            = TRUE,
                tgt.SUMMARY                  = src.SUMMARY,
                tgt.CATEGORIES               = src.CATEGORIES,
                tgt.PREVIEW                  = src.PREVIEW,
                tgt.SUMMARIZED_AT            = CURRENT_TIMESTAMP(),
                tgt.FAILURE_ERROR_TYPE       = NULL,
                tgt.FAILURE_ERROR_MESSAGE    = NULL,
                tgt.FAILURE_BATCH_SIZE       = NULL,
                tgt.FAILURE_IS_BATCH_FAILURE = NULL;
            """,
            {
                "id": item.id,
                "summary": item.summary,
                "categories": ",".join(item.categories),
                "preview": item.preview,
            },
        )
    return len(items)


def write_failures(cursor, items: Sequence[Item]) -> int:
    """Keep items unsummarized, recording why the last attempt failed."""
    for item in items:
        cursor.execute(
            f"""
            MERGE INTO {ITEMS_TABLE} AS tgt
            USING (
                SELECT %(id)s AS ID, %(error_type)s AS FAILURE_ERROR_TYPE,
                       %(message)s AS FAILURE_ERROR_MESSAGE,
                       %(batch_size)s AS FAILURE_BATCH_SIZE,
                       %(is_batch_failure)s AS FAILURE_IS_BATCH_FAILURE
            ) AS src
            ON tgt.ID = src.ID
            WHEN MATCHED THEN UPDATE SET
                tgt.IS_SUMMARIZED            = FALSE,
                tgt.FAILURE_ERROR_TYPE       = src.FAILURE_ERROR_TYPE,
                tgt.FAILURE_ERROR_MESSAGE    = src.FAILURE_ERROR_MESSAGE,
                tgt.FAILURE_BATCH_SIZE       = src.FAILURE_BATCH_SIZE,
                tgt.FAILURE_IS_BATCH_FAILURE = src.FAILURE_IS_BATCH_FAILURE,
                tgt.LAST_FAILED_AT           = CURRENT_TIMESTAMP();
            """,
            {
                "id": item.id,
                "error_type": item.failure_error_type.value if item.failure_error_type else None,
                "message": (item.failure_error_message or "")[:4000] or None,
                "batch_size": item.failure_batch_size,
                "is_batch_failure": item.failure_is_batch_failure,
            },
        )
    return len(items)


def write_results(cursor, successes: Sequence[Item], failed_items: Sequence[Item]) -> tuple[int, int]:
    return write_successes(cursor, successes), write_failures(cursor, failed_items)
