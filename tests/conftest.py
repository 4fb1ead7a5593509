"""
tests/conftest.py — Shared fixtures, fakes and item factories for the test suite.
"""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from summary_pipeline.models import Item, SummaryOutcome
from summary_pipeline.settings import BatchBuildConfig, ProcessingConfig, RetryConfig

BASE_TS = datetime(2025, 12, 1, 9, 0, 0)

LONG_TEXT = "Kafka consumer groups rebalance when members join or leave. " * 5


def make_item(item_id, tokens=None, content=LONG_TEXT, title=None, minutes=0):
    return Item(
        id=str(item_id),
        title=title if title is not None else f"Post {item_id}",
        content=content,
        timestamp=BASE_TS + timedelta(minutes=minutes),
        token_estimate=tokens,
    )


def ok_outcome(item_id):
    return SummaryOutcome(
        success=True,
        summary=f"summary of {item_id}",
        categories=["BACKEND"],
        preview=f"preview of {item_id}",
    )


class FakeSummarizer:
    """
    Scripted stand-in for the summarization API.

    ``script`` is consumed one entry per call: an exception instance is
    raised, a callable is called with the items, anything else (or an
    exhausted script) means "summarize every item".
    """

    def __init__(self, script=None, delay=0.0):
        self.script = list(script or [])
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def summarize(self, items):
        self.calls.append([i.id for i in items])
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            step = self.script.pop(0) if self.script else None
            if isinstance(step, BaseException):
                raise step
            if callable(step):
                return step(items)
            return {i.id: ok_outcome(i.id) for i in items}
        finally:
            self.in_flight -= 1


class RecordingSleep:
    """Async sleep replacement that records requested delays and returns immediately."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start
        self.slept = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.slept.append(seconds)
        self.now += seconds


@pytest.fixture
def mock_cursor():
    """A fresh ``MagicMock`` mimicking a Snowflake cursor."""
    cursor = MagicMock()
    cursor.fetchall.return_value = []
    cursor.fetchone.return_value = None
    return cursor


@pytest.fixture
def build_config():
    """Small, round numbers so packing decisions are easy to follow."""
    return BatchBuildConfig(
        max_tokens_per_request=100,
        max_batch_size=3,
        base_prompt_tokens=0,
        truncation_buffer_tokens=10,
        tokens_per_char=3,
    )


@pytest.fixture
def processing_config():
    return ProcessingConfig(
        concurrency_limit=2,
        timeout_ms=1000,
        max_retry_attempts=2,
        retry=RetryConfig(base_delay_ms=100, rate_limit_base_delay_ms=1000, other_error_base_delay_ms=500),
    )


@pytest.fixture
def fake_clock():
    return FakeClock()
