"""
summary_pipeline.observability — Run metrics lifecycle and alert evaluation.

Threshold Rationale
-------------------
FAILURE_RATE_WARNING  (10 %)   — A healthy run summarizes >95 % of items. 10 %
    points at provider trouble (throttling, overload) worth a look.
FAILURE_RATE_CRITICAL (25 %)   — A quarter of the backlog is not moving.
EMPTY_RESULT_MIN_ITEMS   (1)   — A run that summarized nothing while items
    were dispatched is suspicious.
PERF_DEGRADATION_FACTOR (2.0)  — Twice the recent average run time.
"""

import uuid
from datetime import datetime, timezone
from typing import Iterable, Optional

from summary_pipeline.models import BatchResult

FAILURE_RATE_WARNING = 10.0
FAILURE_RATE_CRITICAL = 25.0
EMPTY_RESULT_MIN_ITEMS = 1
PERF_DEGRADATION_FACTOR = 2.0


def start_pipeline_run(stage: str) -> dict:
    """Begin a new pipeline run.  Returns a metrics dict to populate."""
    return {
        "run_id": str(uuid.uuid4()),
        "run_start": datetime.now(timezone.utc),
        "run_end": None,
        "duration_seconds": None,
        "stage": stage,
        "items_read": 0,
        "items_deferred": 0,
        "batches_dispatched": 0,
        "summarize_success": 0,
        "summarize_failed": 0,
        "summarize_retryable": 0,
        "retry_enqueued": 0,
        "retry_dropped": 0,
        "failure_rate_pct": None,
        "avg_batch_ms": None,
        "batch_durations_ms": [],
        "status": "running",
        "error_message": None,
    }


def record_batch_results(metrics: dict, results: Iterable[BatchResult]) -> dict:
    for result in results:
        metrics["batches_dispatched"] += 1
        metrics["summarize_success"] += len(result.successes)
        metrics["summarize_failed"] += len(result.failures)
        metrics["summarize_retryable"] += sum(1 for f in result.failures if f.retryable)
        metrics["batch_durations_ms"].append(result.metrics.duration_ms)
    return metrics


def finish_pipeline_run(metrics: dict) -> dict:
    """Finalise metrics: compute duration, failure rate, mark completed."""
    metrics["run_end"] = datetime.now(timezone.utc)
    elapsed = (metrics["run_end"] - metrics["run_start"]).total_seconds()
    metrics["duration_seconds"] = round(elapsed, 2)

    total = metrics["summarize_success"] + metrics["summarize_failed"]
    if total > 0:
        metrics["failure_rate_pct"] = round(metrics["summarize_failed"] / total * 100, 2)
    else:
        metrics["failure_rate_pct"] = 0.0

    durations = metrics.get("batch_durations_ms") or []
    metrics["avg_batch_ms"] = round(sum(durations) / len(durations), 1) if durations else None

    if metrics["status"] == "running":
        metrics["status"] = "completed"

    return metrics


def _make_alert(run_id, severity, category, condition, message, metric_value, threshold):
    """Build a single alert dict."""
    return {
        "alert_id": str(uuid.uuid4()),
        "run_id": run_id,
        "created_at": datetime.now(timezone.utc),
        "severity": severity,
        "category": category,
        "condition_name": condition,
        "message": message,
        "metric_value": metric_value,
        "threshold": threshold,
    }


def evaluate_alerts(metrics: dict, historical_avg_duration: Optional[float] = None) -> list[dict]:
    """
    Evaluate alert conditions against a finished metrics dict.
    Returns zero or more alert dicts.
    """
    alerts: list[dict] = []
    run_id = metrics["run_id"]
    failure_rate = metrics.get("failure_rate_pct", 0.0) or 0.0

    # 1. Anomalous failure rate
    if failure_rate >= FAILURE_RATE_CRITICAL:
        alerts.append(_make_alert(
            run_id, "CRITICAL", "failure_rate", "failure_rate_critical",
            f"Failure rate {failure_rate:.1f}% exceeds critical threshold "
            f"({FAILURE_RATE_CRITICAL}%)",
            failure_rate, FAILURE_RATE_CRITICAL,
        ))
    elif failure_rate >= FAILURE_RATE_WARNING:
        alerts.append(_make_alert(
            run_id, "WARNING", "failure_rate", "failure_rate_warning",
            f"Failure rate {failure_rate:.1f}% exceeds warning threshold "
            f"({FAILURE_RATE_WARNING}%)",
            failure_rate, FAILURE_RATE_WARNING,
        ))

    # 2. Items were dispatched but nothing was summarized
    dispatched = metrics["items_read"] - metrics.get("items_deferred", 0)
    if dispatched > 0 and metrics["summarize_success"] < EMPTY_RESULT_MIN_ITEMS:
        alerts.append(_make_alert(
            run_id, "CRITICAL", "empty_results", "no_items_summarized",
            f"Dispatched {dispatched} items but summarized "
            f"{metrics['summarize_success']} (minimum expected: {EMPTY_RESULT_MIN_ITEMS})",
            float(metrics["summarize_success"]), float(EMPTY_RESULT_MIN_ITEMS),
        ))

    # 3. Performance degradation
    duration = metrics.get("duration_seconds")
    if duration is not None and historical_avg_duration is not None and historical_avg_duration > 0:
        ratio = duration / historical_avg_duration
        if ratio >= PERF_DEGRADATION_FACTOR:
            alerts.append(_make_alert(
                run_id, "WARNING", "performance", "performance_degradation",
                f"Run took {duration:.1f}s, {ratio:.1f}x the historical "
                f"average ({historical_avg_duration:.1f}s)",
                duration, historical_avg_duration * PERF_DEGRADATION_FACTOR,
            ))

    return alerts
