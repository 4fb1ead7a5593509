"""
summary_pipeline.settings — Batch sizing, dispatch, rate-limit and retry configuration.

Every option has a default and can be overridden through an environment
variable prefixed with ``SUMMARY_PIPELINE_`` (see ``load_settings``).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

ENV_PREFIX = "SUMMARY_PIPELINE_"

# Crawl fetch
REQUEST_TIMEOUT = 30
MAX_FETCH_RETRIES = 3
BACKOFF_BASE = 2
MAX_CONTENT_SIZE = 5 * 1024 * 1024        # 5 MB
MAX_FETCH_WORKERS = 5
TRANSIENT_STATUS_CODES = {408, 429, 500, 502, 503, 504}

FETCH_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; SummaryPipelineBot/1.0)",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}


@dataclass
class BatchBuildConfig:
    max_tokens_per_request: int = 200_000
    max_batch_size: int = 7
    base_prompt_tokens: int = 500
    avg_tokens_per_summary: int = 2500
    json_overhead_tokens: int = 500
    output_safety_margin: float = 0.9
    truncation_buffer_tokens: int = 2000
    tokens_per_char: int = 3
    provider_max_output_tokens: int = 65_536
    enforce_output_limit: bool = False


@dataclass
class RetryConfig:
    base_delay_ms: int = 2000
    rate_limit_base_delay_ms: int = 10_000
    other_error_base_delay_ms: int = 5000


@dataclass
class ProcessingConfig:
    concurrency_limit: int = 2
    timeout_ms: int = 60_000
    max_retry_attempts: int = 2
    retry: RetryConfig = field(default_factory=RetryConfig)


@dataclass
class RateLimitTier:
    """Permits per refresh window, and how long an acquire may block."""

    limit_for_period: int
    refresh_period_seconds: float
    timeout_seconds: float


@dataclass
class JitterConfig:
    enabled: bool = True
    min_ms: int = 500
    max_ms: int = 2000


@dataclass
class RetryQueueConfig:
    base_delay_seconds: int = 300
    max_retries: int = 5


@dataclass
class PagerConfig:
    page_size: int = 100
    max_count: int = 1000
    min_content_length: int = 100


ULTRA_SAFE_TIER = "ultraSafe"


def default_tiers() -> dict[str, RateLimitTier]:
    return {
        "conservative": RateLimitTier(limit_for_period=10, refresh_period_seconds=60, timeout_seconds=300),
        "standard": RateLimitTier(limit_for_period=15, refresh_period_seconds=60, timeout_seconds=300),
        ULTRA_SAFE_TIER: RateLimitTier(limit_for_period=5, refresh_period_seconds=60, timeout_seconds=300),
    }


@dataclass
class Settings:
    build: BatchBuildConfig = field(default_factory=BatchBuildConfig)
    processing: ProcessingConfig = field(default_factory=ProcessingConfig)
    tiers: dict[str, RateLimitTier] = field(default_factory=default_tiers)
    jitter: JitterConfig = field(default_factory=JitterConfig)
    retry_queue: RetryQueueConfig = field(default_factory=RetryQueueConfig)
    pager: PagerConfig = field(default_factory=PagerConfig)
    summarizer_url: Optional[str] = None
    summarizer_api_key: Optional[str] = None


def _coerce(name: str, raw: str, default):
    """Convert ``raw`` to the type of ``default``; raise ValueError naming the variable."""
    try:
        if isinstance(default, bool):
            lowered = raw.strip().lower()
            if lowered in ("1", "true", "yes", "on"):
                return True
            if lowered in ("0", "false", "no", "off"):
                return False
            raise ValueError(raw)
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
    except ValueError:
        raise ValueError(f"Invalid value for {name}: {raw!r}") from None
    return raw


def _apply_env(obj, prefix: str, env: Mapping[str, str]) -> None:
    for attr, current in vars(obj).items():
        if not isinstance(current, (bool, int, float)):
            continue
        name = f"{prefix}{attr.upper()}"
        if name in env:
            setattr(obj, attr, _coerce(name, env[name], current))


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build ``Settings`` from defaults plus ``SUMMARY_PIPELINE_*`` overrides.

    Examples of recognised variables::

        SUMMARY_PIPELINE_MAX_TOKENS_PER_REQUEST=100000
        SUMMARY_PIPELINE_CONCURRENCY_LIMIT=4
        SUMMARY_PIPELINE_RETRY_RATE_LIMIT_BASE_DELAY_MS=20000
        SUMMARY_PIPELINE_JITTER_ENABLED=false
        SUMMARY_PIPELINE_TIER_CONSERVATIVE_LIMIT_FOR_PERIOD=8
    """
    env = os.environ if env is None else env
    settings = Settings()

    _apply_env(settings.build, ENV_PREFIX, env)
    _apply_env(settings.processing, ENV_PREFIX, env)
    _apply_env(settings.processing.retry, f"{ENV_PREFIX}RETRY_", env)
    _apply_env(settings.jitter, f"{ENV_PREFIX}JITTER_", env)
    _apply_env(settings.retry_queue, f"{ENV_PREFIX}RETRY_QUEUE_", env)
    _apply_env(settings.pager, f"{ENV_PREFIX}PAGER_", env)
    for tier_name, tier in settings.tiers.items():
        _apply_env(tier, f"{ENV_PREFIX}TIER_{tier_name.upper()}_", env)

    settings.summarizer_url = env.get(f"{ENV_PREFIX}SUMMARIZER_URL")
    settings.summarizer_api_key = env.get(f"{ENV_PREFIX}SUMMARIZER_API_KEY")
    return settings
