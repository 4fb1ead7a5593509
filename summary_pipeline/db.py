"""
summary_pipeline.db — Snowflake DDL, keyset reads, checkpoints, retry queue, metrics/alerts.

All helpers take a DB-API cursor (``snowflake.connector`` uses the
``pyformat`` paramstyle, hence ``%(name)s`` placeholders).
"""

from __future__ import annotations

import json
from typing import Iterable, Optional, Sequence

from summary_pipeline.errors import ErrorType
from summary_pipeline.models import Item, RetryQueueEntry
from summary_pipeline.pager import Cursor

ITEMS_TABLE = "CONTENT_ITEMS"
CHECKPOINT_TABLE = "PIPELINE_CHECKPOINTS"
RETRY_QUEUE_TABLE = "SUMMARY_RETRY_QUEUE"
METRICS_TABLE = "PIPELINE_METRICS"
ALERTS_TABLE = "PIPELINE_ALERTS"

ITEM_COLUMNS = ("ID", "TITLE", "CONTENT", "PUBLISHED_AT", "URL")
RETRY_COLUMNS = (
    "ITEM_ID", "REASON", "ERROR_TYPE", "RETRY_COUNT", "NEXT_RETRY_AT",
    "MAX_RETRIES", "CREATED_AT", "LAST_RETRY_AT",
)


def create_items_table(cursor):
    cursor.execute(f"""
    CREATE TABLE IF NOT EXISTS {ITEMS_TABLE} (
        ID                        VARCHAR(64)    NOT NULL PRIMARY KEY,
        TITLE                     VARCHAR(1000)  NOT NULL,
        CONTENT                   VARCHAR(16777216),
        PUBLISHED_AT              TIMESTAMP_NTZ  NOT NULL,
        URL                       VARCHAR(2000),
        IS_SUMMARIZED             BOOLEAN        DEFAULT FALSE,
        SUMMARY                   VARCHAR(16777216),
        CATEGORIES                VARCHAR(1000),
        PREVIEW                   VARCHAR(4000),
        SUMMARIZED_AT             TIMESTAMP_NTZ,
        FAILURE_ERROR_TYPE        VARCHAR(30),
        FAILURE_ERROR_MESSAGE     VARCHAR(4000),
        FAILURE_BATCH_SIZE        NUMBER,
        FAILURE_IS_BATCH_FAILURE  BOOLEAN,
        LAST_FAILED_AT            TIMESTAMP_NTZ
    )
    """)


def create_checkpoint_table(cursor):
    cursor.execute(f"""
    CREATE TABLE IF NOT EXISTS {CHECKPOINT_TABLE} (
        NAME        VARCHAR(200)   NOT NULL PRIMARY KEY,
        CHECKPOINT  VARCHAR(4000)  NOT NULL,
        UPDATED_AT  TIMESTAMP_NTZ  NOT NULL DEFAULT CURRENT_TIMESTAMP()
    )
    """)


def create_retry_queue_table(cursor):
    cursor.execute(f"""
    CREATE TABLE IF NOT EXISTS {RETRY_QUEUE_TABLE} (
        ITEM_ID        VARCHAR(64)    NOT NULL PRIMARY KEY,
        REASON         VARCHAR(1000)  NOT NULL,
        ERROR_TYPE     VARCHAR(30)    NOT NULL,
        RETRY_COUNT    NUMBER         DEFAULT 0,
        NEXT_RETRY_AT  TIMESTAMP_NTZ  NOT NULL,
        MAX_RETRIES    NUMBER         DEFAULT 5,
        CREATED_AT     TIMESTAMP_NTZ  NOT NULL,
        LAST_RETRY_AT  TIMESTAMP_NTZ
    )
    """)


def create_metrics_table(cursor):
    """Create PIPELINE_METRICS to capture run-level statistics."""
    cursor.execute(f"""
    CREATE TABLE IF NOT EXISTS {METRICS_TABLE} (
        RUN_ID                VARCHAR(36)    NOT NULL PRIMARY KEY,
        RUN_START             TIMESTAMP_NTZ  NOT NULL,
        RUN_END               TIMESTAMP_NTZ,
        DURATION_SECONDS      NUMBER,
        STAGE                 VARCHAR(50)    NOT NULL,
        ITEMS_READ            NUMBER         DEFAULT 0,
        ITEMS_DEFERRED        NUMBER         DEFAULT 0,
        BATCHES_DISPATCHED    NUMBER         DEFAULT 0,
        SUMMARIZE_SUCCESS     NUMBER         DEFAULT 0,
        SUMMARIZE_FAILED      NUMBER         DEFAULT 0,
        SUMMARIZE_RETRYABLE   NUMBER         DEFAULT 0,
        RETRY_ENQUEUED        NUMBER         DEFAULT 0,
        RETRY_DROPPED         NUMBER         DEFAULT 0,
        FAILURE_RATE_PCT      FLOAT,
        AVG_BATCH_MS          FLOAT,
        STATUS                VARCHAR(20)    DEFAULT 'running',
        ERROR_MESSAGE         VARCHAR(4000)
    )
    """)


def create_alerts_table(cursor):
    """Create PIPELINE_ALERTS to store triggered alert records."""
    cursor.execute(f"""
    CREATE TABLE IF NOT EXISTS {ALERTS_TABLE} (
        ALERT_ID       VARCHAR(36)    NOT NULL PRIMARY KEY,
        RUN_ID         VARCHAR(36),
        CREATED_AT     TIMESTAMP_NTZ  NOT NULL DEFAULT CURRENT_TIMESTAMP(),
        SEVERITY       VARCHAR(10)    NOT NULL,
        CATEGORY       VARCHAR(50)    NOT NULL,
        CONDITION_NAME VARCHAR(100)   NOT NULL,
        MESSAGE        VARCHAR(4000)  NOT NULL,
        METRIC_VALUE   FLOAT,
        THRESHOLD      FLOAT,
        ACKNOWLEDGED   BOOLEAN        DEFAULT FALSE
    )
    """)


def create_all_tables(cursor):
    for create in (create_items_table, create_checkpoint_table, create_retry_queue_table,
                   create_metrics_table, create_alerts_table):
        create(cursor)


# Items

def _row_to_item(row: Sequence) -> Item:
    item_id, title, content, published_at, url = row
    return Item(id=str(item_id), title=title or "", content=content or "", timestamp=published_at, url=url)


def fetch_unsummarized_page(cursor, after: Cursor, limit: int) -> list[Item]:
    """Next ``limit`` unsummarized items strictly after ``(after.last_timestamp, after.last_id)``."""
    columns = ", ".join(ITEM_COLUMNS)
    if after.is_empty:
        cursor.execute(
            f"""
            SELECT {columns}
            FROM {ITEMS_TABLE}
            WHERE IS_SUMMARIZED = FALSE
            ORDER BY PUBLISHED_AT ASC, ID ASC
            LIMIT %(limit)s
            """,
            {"limit": limit},
        )
    else:
        cursor.execute(
            f"""
            SELECT {columns}
            FROM {ITEMS_TABLE}
            WHERE IS_SUMMARIZED = FALSE
              AND (PUBLISHED_AT > %(ts)s OR (PUBLISHED_AT = %(ts)s AND ID > %(id)s))
            ORDER BY PUBLISHED_AT ASC, ID ASC
            LIMIT %(limit)s
            """,
            {"ts": after.last_timestamp, "id": after.last_id, "limit": limit},
        )
    return [_row_to_item(row) for row in cursor.fetchall()]


# Checkpoints

class SnowflakeCheckpointStore:
    """Checkpoint blob stored as JSON under a pipeline name."""

    def __init__(self, cursor, name: str):
        self.cursor = cursor
        self.name = name

    def load(self) -> Optional[dict]:
        self.cursor.execute(
            f"SELECT CHECKPOINT FROM {CHECKPOINT_TABLE} WHERE NAME = %(name)s",
            {"name": self.name},
        )
        row = self.cursor.fetchone()
        if row is None or row[0] is None:
            return None
        return json.loads(row[0])

    def save(self, blob: dict) -> None:
        self.cursor.execute(
            f"""
            MERGE INTO {CHECKPOINT_TABLE} AS tgt
            USING (SELECT %(name)s AS NAME, %(checkpoint)s AS CHECKPOINT) AS src
            ON tgt.NAME = src.NAME
            WHEN MATCHED THEN UPDATE SET
                tgt.CHECKPOINT = src.CHECKPOINT,
                tgt.UPDATED_AT = CURRENT_TIMESTAMP()
            WHEN NOT MATCHED THEN INSERT (NAME, CHECKPOINT, UPDATED_AT)
                VALUES (src.NAME, src.CHECKPOINT, CURRENT_TIMESTAMP());
            """,
            {"name": self.name, "checkpoint": json.dumps(blob, sort_keys=True)},
        )


# Retry queue

def _row_to_entry(row: Sequence) -> RetryQueueEntry:
    item_id, reason, error_type, retry_count, next_retry_at, max_retries, created_at, last_retry_at = row
    try:
        parsed_type = ErrorType(error_type)
    except ValueError:
        parsed_type = ErrorType.UNKNOWN
    return RetryQueueEntry(
        item_id=str(item_id),
        reason=reason,
        error_type=parsed_type,
        retry_count=int(retry_count or 0),
        next_retry_at=next_retry_at,
        max_retries=int(max_retries),
        created_at=created_at,
        last_retry_at=last_retry_at,
    )


def load_retry_entries(cursor, item_ids: Iterable[str]) -> dict[str, RetryQueueEntry]:
    ids = list(item_ids)
    if not ids:
        return {}
    placeholders = ", ".join(f"%(id{i})s" for i in range(len(ids)))
    cursor.execute(
        f"SELECT {', '.join(RETRY_COLUMNS)} FROM {RETRY_QUEUE_TABLE} WHERE ITEM_ID IN ({placeholders})",
        {f"id{i}": item_id for i, item_id in enumerate(ids)},
    )
    return {e.item_id: e for e in (_row_to_entry(r) for r in cursor.fetchall())}


def upsert_retry_entries(cursor, entries: Iterable[RetryQueueEntry]):
    for entry in entries:
        cursor.execute(
            f"""
            MERGE INTO {RETRY_QUEUE_TABLE} AS tgt
            USING (
                SELECT %(item_id)s AS ITEM_ID, %(reason)s AS REASON, %(error_type)s AS ERROR_TYPE,
                       %(retry_count)s AS RETRY_COUNT, %(next_retry_at)s AS NEXT_RETRY_AT,
                       %(max_retries)s AS MAX_RETRIES, %(created_at)s AS CREATED_AT,
                       %(last_retry_at)s AS LAST_RETRY_AT
            ) AS src
            ON tgt.ITEM_ID = src.ITEM_ID
            WHEN MATCHED THEN UPDATE SET
                tgt.REASON        = src.REASON,
                tgt.ERROR_TYPE    = src.ERROR_TYPE,
                tgt.RETRY_COUNT   = src.RETRY_COUNT,
                tgt.NEXT_RETRY_AT = src.NEXT_RETRY_AT,
                tgt.LAST_RETRY_AT = src.LAST_RETRY_AT
            WHEN NOT MATCHED THEN INSERT ({', '.join(RETRY_COLUMNS)})
                VALUES (src.ITEM_ID, src.REASON, src.ERROR_TYPE, src.RETRY_COUNT,
                        src.NEXT_RETRY_AT, src.MAX_RETRIES, src.CREATED_AT, src.LAST_RETRY_AT);
            """,
            {
                "item_id": entry.item_id,
                "reason": entry.reason,
                "error_type": entry.error_type.value,
                "retry_count": entry.retry_count,
                "next_retry_at": entry.next_retry_at,
                "max_retries": entry.max_retries,
                "created_at": entry.created_at,
                "last_retry_at": entry.last_retry_at,
            },
        )


def delete_retry_entries(cursor, item_ids: Iterable[str]):
    ids = list(item_ids)
    if not ids:
        return
    placeholders = ", ".join(f"%(id{i})s" for i in range(len(ids)))
    cursor.execute(
        f"DELETE FROM {RETRY_QUEUE_TABLE} WHERE ITEM_ID IN ({placeholders})",
        {f"id{i}": item_id for i, item_id in enumerate(ids)},
    )


# Metrics & alerts

def save_metrics(cursor, metrics: dict):
    """INSERT a finalised metrics dict into PIPELINE_METRICS."""
    cursor.execute(
        f"""
        INSERT INTO {METRICS_TABLE} (
            RUN_ID, RUN_START, RUN_END, DURATION_SECONDS, STAGE,
            ITEMS_READ, ITEMS_DEFERRED, BATCHES_DISPATCHED,
            SUMMARIZE_SUCCESS, SUMMARIZE_FAILED, SUMMARIZE_RETRYABLE,
            RETRY_ENQUEUED, RETRY_DROPPED,
            FAILURE_RATE_PCT, AVG_BATCH_MS, STATUS, ERROR_MESSAGE
        ) VALUES (
            %(run_id)s, %(run_start)s, %(run_end)s, %(duration_seconds)s, %(stage)s,
            %(items_read)s, %(items_deferred)s, %(batches_dispatched)s,
            %(summarize_success)s, %(summarize_failed)s, %(summarize_retryable)s,
            %(retry_enqueued)s, %(retry_dropped)s,
            %(failure_rate_pct)s, %(avg_batch_ms)s, %(status)s, %(error_message)s
        )
        """,
        metrics,
    )


def save_alerts(cursor, alerts: list[dict]):
    """Batch-INSERT alert dicts into PIPELINE_ALERTS."""
    for alert in alerts:
        cursor.execute(
            f"""
            INSERT INTO {ALERTS_TABLE} (
                ALERT_ID, RUN_ID, CREATED_AT, SEVERITY, CATEGORY,
                CONDITION_NAME, MESSAGE, METRIC_VALUE, THRESHOLD, ACKNOWLEDGED
            ) VALUES (
                %(alert_id)s, %(run_id)s, %(created_at)s, %(severity)s, %(category)s,
                %(condition_name)s, %(message)s, %(metric_value)s, %(threshold)s, FALSE
            )
            """,
            alert,
        )


def get_historical_avg_duration(cursor) -> Optional[float]:
    """Return average DURATION_SECONDS of the last 10 completed runs, or None."""
    cursor.execute(f"""
        SELECT AVG(DURATION_SECONDS)
        FROM (
            SELECT DURATION_SECONDS
            FROM {METRICS_TABLE}
            WHERE STATUS = 'completed' AND DURATION_SECONDS IS NOT NULL
            ORDER BY RUN_END DESC
            LIMIT 10
        )
    """)
    row = cursor.fetchone()
    return float(row[0]) if row and row[0] is not None else None
