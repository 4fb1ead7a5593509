"""
summary_pipeline.ingest — Rate-limited fetch of third-party pages.

Every request goes through the host's shared limiter, preceded by jitter so
concurrent fetchers targeting the same host do not fire in lockstep.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable

import requests

from summary_pipeline.errors import RateLimitExceeded
from summary_pipeline.normalize import canonical_url
from summary_pipeline.ratelimit import DomainRateLimiterManager
from summary_pipeline.settings import (
    BACKOFF_BASE,
    FETCH_HEADERS,
    MAX_CONTENT_SIZE,
    MAX_FETCH_RETRIES,
    MAX_FETCH_WORKERS,
    REQUEST_TIMEOUT,
    TRANSIENT_STATUS_CODES,
)

logger = logging.getLogger(__name__)


def _result(url, content, status, http_status, attempt, retryable=False, error=None) -> dict:
    return {
        "url": url,
        "content": content,
        "content_size_bytes": len(content.encode("utf-8", errors="replace")) if content else 0,
        "http_status": http_status,
        "fetch_status": status,
        "retry_count": attempt,
        "retryable": retryable,
        "error": error,
    }


def fetch_document(url: str, limiter_manager: DomainRateLimiterManager) -> dict:
    """
    Fetch a single page with jitter, per-host rate limiting, streaming and retries.
    """
    url = canonical_url(url)
    limiter = limiter_manager.get_limiter(url)
    last_exception = None
    http_status = None

    for attempt in range(MAX_FETCH_RETRIES + 1):
        try:
            if attempt > 0:
                time.sleep(BACKOFF_BASE ** attempt)

            limiter_manager.apply_jitter(sleep=time.sleep)
            limiter.acquire(sleep=time.sleep)

            with requests.get(url, headers=FETCH_HEADERS, timeout=REQUEST_TIMEOUT, stream=True) as resp:
                http_status = resp.status_code

                if resp.status_code >= 400 and resp.status_code not in TRANSIENT_STATUS_CODES:
                    return _result(url, None, "failed", http_status, attempt,
                                   error=f"HTTP {resp.status_code}")

                if resp.status_code in TRANSIENT_STATUS_CODES:
                    last_exception = f"HTTP {resp.status_code}"
                    logger.warning("Transient HTTP %s for %s (attempt %d)", resp.status_code, url, attempt + 1)
                    continue

                chunks = []
                total_size = 0
                truncated = False
                for chunk in resp.iter_content(chunk_size=64 * 1024, decode_unicode=True):
                    if chunk:
                        total_size += len(chunk.encode("utf-8", errors="replace"))
                        if total_size <= MAX_CONTENT_SIZE:
                            chunks.append(chunk)
                        else:
                            truncated = True
                            break

                content = "".join(chunks)
                if truncated:
                    content += f"\n\n[TRUNCATED at {MAX_CONTENT_SIZE / (1024*1024):.0f} MB]"

                return _result(url, content, "success", http_status, attempt)

        except RateLimitExceeded as e:
            logger.warning("Rate limit permit not granted for %s: %s", url, e)
            return _result(url, None, "rate_limited", None, attempt, retryable=True, error=str(e))
        except requests.exceptions.Timeout:
            last_exception = "timeout"
            http_status = None
        except requests.exceptions.ConnectionError as e:
            last_exception = f"connection_error: {e}"
            http_status = None
        except requests.exceptions.RequestException as e:
            last_exception = str(e)
            http_status = None

    is_timeout = "timeout" in str(last_exception).lower()
    logger.error("Giving up on %s after %d attempts: %s", url, MAX_FETCH_RETRIES + 1, last_exception)
    return _result(url, None, "timeout" if is_timeout else "failed", http_status, MAX_FETCH_RETRIES,
                   retryable=True, error=last_exception)


def fetch_documents(urls: Iterable[str], limiter_manager: DomainRateLimiterManager,
                    max_workers: int = MAX_FETCH_WORKERS) -> list[dict]:
    """Fan out across pages; requests to one host still serialize on its limiter."""
    urls = list(urls)
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        return list(pool.map(lambda u: fetch_document(u, limiter_manager), urls))
