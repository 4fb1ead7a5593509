"""
summary_pipeline.builder — Pack ordered items into token-bounded batches.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence

from summary_pipeline.limits import BatchLimitChecker
from summary_pipeline.models import Batch, Item
from summary_pipeline.settings import BatchBuildConfig
from summary_pipeline.tokens import estimate_total_tokens
from summary_pipeline.truncate import ItemTruncator

logger = logging.getLogger(__name__)

TokenEstimator = Callable[[str], int]


class DynamicBatchBuilder:
    """
    Single-pass, order-preserving packer.

    Items are appended to an accumulator until the next one would push the
    running estimate past ``max_tokens_per_request`` or the accumulator is
    already ``max_batch_size`` long; the accumulator is then flushed as a
    ``Batch``. An item that alone exceeds the request ceiling is truncated
    and emitted as its own one-item batch.

    An item's ``token_estimate`` is used as-is when set, otherwise the
    configured estimator is applied to its content.
    """

    def __init__(
        self,
        config: BatchBuildConfig,
        limit_checker: Optional[BatchLimitChecker] = None,
        truncator: Optional[ItemTruncator] = None,
        estimator: TokenEstimator = estimate_total_tokens,
    ):
        self.config = config
        self.limit_checker = limit_checker or BatchLimitChecker(config)
        self.truncator = truncator or ItemTruncator(config)
        self.estimator = estimator

    def estimate(self, item: Item) -> int:
        if item.token_estimate is not None:
            return item.token_estimate
        return self.estimator(item.content)

    def build_batches(self, items: Sequence[Item]) -> list[Batch]:
        batches: list[Batch] = []
        current: list[Item] = []
        current_tokens = self.config.base_prompt_tokens

        for item in items:
            item_tokens = self.estimate(item)

            # an item that cannot share a request with the base prompt is truncated alone
            if self.limit_checker.exceeds_input_limit(self.config.base_prompt_tokens, item_tokens):
                if current:
                    batches.append(Batch(current, current_tokens))
                batches.append(self._truncated_batch(item))
                current = []
                current_tokens = self.config.base_prompt_tokens
                continue

            if self._should_start_new_batch(len(current), current_tokens, item_tokens):
                batches.append(Batch(current, current_tokens))
                current = []
                current_tokens = self.config.base_prompt_tokens

            current.append(item)
            current_tokens += item_tokens

        if current:
            batches.append(Batch(current, current_tokens))

        avg = len(items) // len(batches) if batches else 0
        logger.info(
            "Built %d batches from %d items (avg batch size %d, max output tokens %d)",
            len(batches), len(items), avg, self.limit_checker.max_output_tokens_allowed,
        )
        return batches

    def _should_start_new_batch(self, current_size: int, current_tokens: int, item_tokens: int) -> bool:
        if current_size == 0:
            return False

        exceeds_input = self.limit_checker.exceeds_input_limit(current_tokens, item_tokens)
        exceeds_size = self.limit_checker.exceeds_batch_size(current_size)
        exceeds_output = False
        if self.config.enforce_output_limit:
            exceeds_output = self.limit_checker.exceeds_output_limit(current_size + 1)
            if exceeds_output:
                logger.debug(
                    "Starting new batch: output estimate %d > %d",
                    self.limit_checker.estimate_output_tokens(current_size + 1),
                    self.limit_checker.max_output_tokens_allowed,
                )

        return exceeds_input or exceeds_size or exceeds_output

    def _truncated_batch(self, item: Item) -> Batch:
        logger.warning("Item %s too large, truncating", item.id)
        max_tokens = self.truncator.calculate_max_tokens_for_truncation()
        truncated = self.truncator.truncate(item, max_tokens)
        tokens = self.estimator(truncated.content)
        truncated = truncated.copy(token_estimate=tokens)
        return Batch([truncated], tokens)
