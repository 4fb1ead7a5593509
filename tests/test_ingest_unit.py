"""
Unit tests — Rate-limited page fetching (fetch_document).
"""

import random
from unittest.mock import MagicMock, patch

import pytest
import requests

from summary_pipeline.errors import RateLimitExceeded
from summary_pipeline.ingest import fetch_document, fetch_documents
from summary_pipeline.ratelimit import DomainRateLimiterManager
from summary_pipeline.settings import BACKOFF_BASE, MAX_FETCH_RETRIES, JitterConfig, RateLimitTier


def _manager(jitter=False, limit=100):
    """Roomy tiers by default so the limiter never blocks inside these tests."""
    roomy = RateLimitTier(limit_for_period=limit, refresh_period_seconds=60, timeout_seconds=1)
    return DomainRateLimiterManager(
        tiers={"conservative": roomy, "standard": roomy, "ultraSafe": roomy},
        jitter=JitterConfig(enabled=jitter),
        rng=random.Random(1),
    )


def _response(status, body=None):
    ctx = MagicMock()
    ctx.__enter__ = MagicMock(return_value=ctx)
    ctx.__exit__ = MagicMock(return_value=False)
    ctx.status_code = status
    if body is not None:
        ctx.iter_content = MagicMock(return_value=[body])
    return ctx


class TestFetchDocument:
    """summary_pipeline.ingest.fetch_document — limiter, jitter and backoff behavior."""

    @patch("summary_pipeline.ingest.time.sleep")
    @patch("summary_pipeline.ingest.requests.get")
    def test_success_takes_a_permit(self, mock_get, mock_sleep):
        mock_get.return_value = _response(200, "<html>OK</html>")
        manager = _manager(limit=1)

        result = fetch_document("https://example.com/page", manager)

        assert result["fetch_status"] == "success"
        assert result["content"] == "<html>OK</html>"
        assert result["content_size_bytes"] == len("<html>OK</html>")
        mock_sleep.assert_not_called()
        with pytest.raises(RateLimitExceeded):
            manager.get_limiter("https://example.com/other").acquire(timeout=0)

    @patch("summary_pipeline.ingest.time.sleep")
    @patch("summary_pipeline.ingest.requests.get")
    def test_jitter_sleeps_before_request(self, mock_get, mock_sleep):
        mock_get.return_value = _response(200, "OK")

        fetch_document("https://example.com/page", _manager(jitter=True))

        assert mock_sleep.call_count == 1
        delay = mock_sleep.call_args[0][0]
        assert 0.5 <= delay <= 2.0

    @patch("summary_pipeline.ingest.time.sleep")
    @patch("summary_pipeline.ingest.requests.get")
    def test_transient_error_triggers_backoff(self, mock_get, mock_sleep):
        """A 503 on first attempt → backoff sleep before retry."""
        mock_get.side_effect = [_response(503), _response(200, "OK")]

        result = fetch_document("https://example.com/page", _manager())

        assert result["fetch_status"] == "success"
        assert result["retry_count"] == 1
        mock_sleep.assert_any_call(BACKOFF_BASE ** 1)

    @patch("summary_pipeline.ingest.time.sleep")
    @patch("summary_pipeline.ingest.requests.get")
    def test_all_retries_exhausted_returns_failed(self, mock_get, mock_sleep):
        mock_get.return_value = _response(500)

        result = fetch_document("https://example.com/page", _manager())

        assert result["fetch_status"] == "failed"
        assert result["retry_count"] == MAX_FETCH_RETRIES
        assert result["retryable"] is True
        assert mock_get.call_count == MAX_FETCH_RETRIES + 1

    @patch("summary_pipeline.ingest.time.sleep")
    @patch("summary_pipeline.ingest.requests.get", side_effect=requests.exceptions.Timeout("timed out"))
    def test_timeout_classified_correctly(self, mock_get, mock_sleep):
        result = fetch_document("https://example.com/slow", _manager())
        assert result["fetch_status"] == "timeout"
        assert result["content"] is None

    @patch("summary_pipeline.ingest.time.sleep")
    @patch("summary_pipeline.ingest.requests.get")
    def test_non_transient_error_no_retry(self, mock_get, mock_sleep):
        """404 is non-transient → single attempt, no retries."""
        mock_get.return_value = _response(404)

        result = fetch_document("https://example.com/missing", _manager())

        assert result["fetch_status"] == "failed"
        assert result["retry_count"] == 0
        assert result["http_status"] == 404
        assert result["retryable"] is False

    @patch("summary_pipeline.ingest.requests.get")
    def test_permit_timeout_is_retryable_and_skips_request(self, mock_get):
        limiter = MagicMock()
        limiter.acquire.side_effect = RateLimitExceeded("example.com-ultraSafe", 300)
        manager = MagicMock()
        manager.get_limiter.return_value = limiter
        manager.apply_jitter.return_value = 0.0

        result = fetch_document("https://example.com/page", manager)

        assert result["fetch_status"] == "rate_limited"
        assert result["retryable"] is True
        assert "example.com-ultraSafe" in result["error"]
        mock_get.assert_not_called()

    @patch("summary_pipeline.ingest.time.sleep")
    @patch("summary_pipeline.ingest.requests.get")
    def test_canonical_url_fetched(self, mock_get, mock_sleep):
        mock_get.return_value = _response(200, "OK")

        result = fetch_document("HTTPS://Example.com:443/page/?utm_source=rss#comments", _manager())

        assert result["url"] == "https://example.com/page"
        assert mock_get.call_args[0][0] == "https://example.com/page"


class TestFetchDocuments:

    @patch("summary_pipeline.ingest.time.sleep")
    @patch("summary_pipeline.ingest.requests.get")
    def test_results_keep_input_order(self, mock_get, mock_sleep):
        mock_get.side_effect = lambda url, **kwargs: _response(200, url)
        urls = [f"https://example.com/p{n}" for n in range(6)]

        results = fetch_documents(urls, _manager(), max_workers=3)

        assert [r["url"] for r in results] == urls
        assert all(r["fetch_status"] == "success" for r in results)
