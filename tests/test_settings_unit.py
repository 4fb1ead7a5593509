"""
Unit tests — Defaults and environment overrides (load_settings).
"""

import pytest

from summary_pipeline.settings import load_settings


class TestDefaults:

    def test_batch_defaults(self):
        build = load_settings({}).build
        assert build.max_tokens_per_request == 200_000
        assert build.max_batch_size == 7
        assert build.base_prompt_tokens == 500
        assert build.avg_tokens_per_summary == 2500
        assert build.json_overhead_tokens == 500
        assert build.output_safety_margin == 0.9
        assert build.truncation_buffer_tokens == 2000
        assert build.tokens_per_char == 3
        assert build.enforce_output_limit is False

    def test_processing_defaults(self):
        processing = load_settings({}).processing
        assert processing.concurrency_limit == 2
        assert processing.timeout_ms == 60_000
        assert processing.max_retry_attempts == 2
        assert processing.retry.rate_limit_base_delay_ms == 10_000

    def test_tier_and_queue_defaults(self):
        settings = load_settings({})
        assert settings.tiers["ultraSafe"].limit_for_period == 5
        assert settings.tiers["conservative"].limit_for_period == 10
        assert settings.tiers["standard"].limit_for_period == 15
        assert settings.retry_queue.base_delay_seconds == 300
        assert settings.retry_queue.max_retries == 5
        assert settings.jitter.enabled is True
        assert settings.summarizer_url is None


class TestEnvOverrides:

    def test_overrides_are_typed(self):
        settings = load_settings({
            "SUMMARY_PIPELINE_MAX_BATCH_SIZE": "4",
            "SUMMARY_PIPELINE_OUTPUT_SAFETY_MARGIN": "0.8",
            "SUMMARY_PIPELINE_ENFORCE_OUTPUT_LIMIT": "true",
            "SUMMARY_PIPELINE_CONCURRENCY_LIMIT": "5",
            "SUMMARY_PIPELINE_RETRY_RATE_LIMIT_BASE_DELAY_MS": "20000",
            "SUMMARY_PIPELINE_JITTER_ENABLED": "off",
            "SUMMARY_PIPELINE_RETRY_QUEUE_MAX_RETRIES": "3",
            "SUMMARY_PIPELINE_PAGER_PAGE_SIZE": "50",
            "SUMMARY_PIPELINE_TIER_CONSERVATIVE_LIMIT_FOR_PERIOD": "8",
            "SUMMARY_PIPELINE_TIER_ULTRASAFE_TIMEOUT_SECONDS": "120",
            "SUMMARY_PIPELINE_SUMMARIZER_URL": "https://summarizer.internal/v1",
        })

        assert settings.build.max_batch_size == 4
        assert settings.build.output_safety_margin == 0.8
        assert settings.build.enforce_output_limit is True
        assert settings.processing.concurrency_limit == 5
        assert settings.processing.retry.rate_limit_base_delay_ms == 20_000
        assert settings.jitter.enabled is False
        assert settings.retry_queue.max_retries == 3
        assert settings.pager.page_size == 50
        assert settings.tiers["conservative"].limit_for_period == 8
        assert settings.tiers["ultraSafe"].timeout_seconds == 120
        assert settings.summarizer_url == "https://summarizer.internal/v1"

    def test_unrelated_variables_ignored(self):
        settings = load_settings({"MAX_BATCH_SIZE": "99", "PATH": "/usr/bin"})
        assert settings.build.max_batch_size == 7

    @pytest.mark.parametrize("name,value", [
        ("SUMMARY_PIPELINE_MAX_BATCH_SIZE", "seven"),
        ("SUMMARY_PIPELINE_JITTER_ENABLED", "maybe"),
        ("SUMMARY_PIPELINE_OUTPUT_SAFETY_MARGIN", "high"),
    ])
    def test_invalid_value_names_the_variable(self, name, value):
        with pytest.raises(ValueError, match=name):
            load_settings({name: value})
