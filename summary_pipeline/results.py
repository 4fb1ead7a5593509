"""
summary_pipeline.results — Turn API responses into ``BatchResult``s.

Two kinds of failure come out of here: batch-level (the whole request
failed, every item shares the reason) and item-level (the request worked but
one item was rejected or missing from the response).
"""

from __future__ import annotations

import time
from typing import Callable, Mapping, Optional, Sequence

from summary_pipeline.errors import ErrorType, is_retryable
from summary_pipeline.models import (
    BatchFailure,
    BatchMetrics,
    BatchRequest,
    BatchResult,
    Item,
    SummaryOutcome,
)

# Returns a list of validation errors; empty means valid
SummaryValidator = Callable[[Item, SummaryOutcome], Sequence[str]]

NO_RESULT_REASON = "No result returned"


def validate_summary(item: Item, outcome: SummaryOutcome) -> list[str]:
    errors = []
    if not outcome.summary or not outcome.summary.strip():
        errors.append("summary is empty")
    if not outcome.categories:
        errors.append("categories are empty")
    return errors


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _item_failure(item: Item, reason: str, error_type: ErrorType, batch_size: int) -> BatchFailure:
    return BatchFailure(
        item=item,
        reason=reason,
        retryable=is_retryable(error_type),
        error_type=error_type,
        batch_size=batch_size,
        is_batch_failure=False,
    )


def process_batch_response(
    request: BatchRequest,
    outcomes: Mapping[str, SummaryOutcome],
    started: float,
    validator: Optional[SummaryValidator] = None,
    attempts: int = 1,
) -> BatchResult:
    successes: list[Item] = []
    failures: list[BatchFailure] = []
    batch_size = len(request.items)

    for item in request.items:
        outcome = outcomes.get(item.id)
        if outcome is None:
            failures.append(_item_failure(item, NO_RESULT_REASON, ErrorType.VALIDATION_ERROR, batch_size))
            continue

        if not outcome.success:
            failures.append(_item_failure(
                item,
                outcome.error or "Unknown error",
                outcome.error_type or ErrorType.VALIDATION_ERROR,
                batch_size,
            ))
            continue

        errors = list(validator(item, outcome)) if validator else []
        if errors:
            failures.append(_item_failure(item, ", ".join(errors), ErrorType.VALIDATION_ERROR, batch_size))
            continue

        successes.append(item.copy(
            summary=outcome.summary,
            categories=list(outcome.categories),
            preview=outcome.preview,
            failure_error_type=None,
            failure_error_message=None,
            failure_batch_size=None,
            failure_is_batch_failure=None,
        ))

    return BatchResult(
        request_id=request.id,
        successes=successes,
        failures=failures,
        metrics=BatchMetrics(
            total_items=batch_size,
            success_count=len(successes),
            failure_count=len(failures),
            api_call_count=attempts,
            tokens_used=request.estimated_tokens,
            duration_ms=_elapsed_ms(started),
            attempts=attempts,
        ),
    )


def create_failure_result(
    request: BatchRequest,
    reason: str,
    error_type: ErrorType,
    started: Optional[float] = None,
    attempts: int = 1,
) -> BatchResult:
    """Every item fails together with the batch's shared reason."""
    batch_size = len(request.items)
    failures = [
        BatchFailure(
            item=item,
            reason=reason,
            retryable=is_retryable(error_type),
            error_type=error_type,
            batch_size=batch_size,
            is_batch_failure=True,
        )
        for item in request.items
    ]
    return BatchResult(
        request_id=request.id,
        successes=[],
        failures=failures,
        metrics=BatchMetrics(
            total_items=batch_size,
            success_count=0,
            failure_count=batch_size,
            api_call_count=attempts,
            tokens_used=0,
            duration_ms=_elapsed_ms(started) if started is not None else 0,
            attempts=attempts,
        ),
    )
