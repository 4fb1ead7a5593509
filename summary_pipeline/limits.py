"""
summary_pipeline.limits — Input/output token ceilings and batch-size predicates.

Providers cap both the request payload and the response, so the two are
checked independently: ``exceeds_input_limit`` against the request budget
and ``exceeds_output_limit`` against the expected size of the JSON answer.
"""

from summary_pipeline.settings import BatchBuildConfig


class BatchLimitChecker:
    def __init__(self, config: BatchBuildConfig):
        self.config = config
        self.max_output_tokens_allowed = int(
            config.provider_max_output_tokens * config.output_safety_margin
        )

    def exceeds_input_limit(self, current_tokens: int, additional_tokens: int) -> bool:
        return current_tokens + additional_tokens > self.config.max_tokens_per_request

    def exceeds_max_tokens(self, tokens: int) -> bool:
        return tokens > self.config.max_tokens_per_request

    def exceeds_batch_size(self, current_size: int) -> bool:
        return current_size >= self.config.max_batch_size

    def estimate_output_tokens(self, batch_size: int) -> int:
        return batch_size * self.config.avg_tokens_per_summary + self.config.json_overhead_tokens

    def exceeds_output_limit(self, batch_size: int) -> bool:
        return self.estimate_output_tokens(batch_size) > self.max_output_tokens_allowed
