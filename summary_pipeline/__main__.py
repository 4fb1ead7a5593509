"""
summary_pipeline.__main__ — ``python -m summary_pipeline``: run one summarization pass.

Snowflake credentials come from ``SNOWFLAKE_ACCOUNT``, ``SNOWFLAKE_USER``,
``SNOWFLAKE_PASSWORD``, ``SNOWFLAKE_WAREHOUSE``, ``SNOWFLAKE_DATABASE`` and
``SNOWFLAKE_SCHEMA``; pipeline options from ``SUMMARY_PIPELINE_*`` (a ``.env``
file in the working directory is loaded first).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from typing import Optional, Sequence

import snowflake.connector
from dotenv import load_dotenv

from summary_pipeline import db
from summary_pipeline.client import HttpBatchSummarizer
from summary_pipeline.job import DEFAULT_JOB_NAME, SummarizationJob
from summary_pipeline.log import configure_logging
from summary_pipeline.settings import load_settings

logger = logging.getLogger("summary_pipeline")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="summary_pipeline", description=__doc__.strip().splitlines()[0])
    parser.add_argument("--limit", type=int, default=None, help="maximum items to read this run")
    parser.add_argument("--name", default=DEFAULT_JOB_NAME, help="pipeline name (checkpoint key)")
    parser.add_argument("--create-tables", action="store_true", help="run CREATE TABLE IF NOT EXISTS first")
    parser.add_argument("--log-level", default="INFO")
    return parser.parse_args(argv)


def connect():
    return snowflake.connector.connect(
        account=os.environ["SNOWFLAKE_ACCOUNT"],
        user=os.environ["SNOWFLAKE_USER"],
        password=os.environ["SNOWFLAKE_PASSWORD"],
        warehouse=os.environ.get("SNOWFLAKE_WAREHOUSE"),
        database=os.environ.get("SNOWFLAKE_DATABASE"),
        schema=os.environ.get("SNOWFLAKE_SCHEMA"),
    )


async def _run(cursor, args: argparse.Namespace) -> dict:
    settings = load_settings()
    if not settings.summarizer_url:
        raise SystemExit("SUMMARY_PIPELINE_SUMMARIZER_URL is not set")

    async with HttpBatchSummarizer(settings.summarizer_url, api_key=settings.summarizer_api_key) as summarizer:
        job = SummarizationJob(cursor, summarizer, settings, name=args.name, max_count=args.limit)
        return await job.run()


def main(argv: Optional[Sequence[str]] = None) -> int:
    load_dotenv()
    args = parse_args(argv)
    configure_logging(args.log_level)

    conn = connect()
    try:
        cursor = conn.cursor()
        if args.create_tables:
            db.create_all_tables(cursor)
        metrics = asyncio.run(_run(cursor, args))
        conn.commit()
    finally:
        conn.close()

    return 0 if metrics["status"] == "completed" else 1


if __name__ == "__main__":
    sys.exit(main())
