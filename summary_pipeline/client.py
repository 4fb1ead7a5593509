"""
summary_pipeline.client — HTTP client for the batch summarization API.

This is the only place provider error shapes are known. HTTP statuses,
transport failures and per-item finish reasons are mapped to ``ErrorType``
here so the orchestrator stays provider-agnostic.

Request body::

    {"articles": [{"id": "...", "title": "...", "content": "..."}]}

Response body::

    {"results": [{"id": "...", "success": true, "summary": "...",
                  "categories": ["..."], "preview": "..."},
                 {"id": "...", "success": false, "error": "...",
                  "finish_reason": "SAFETY"}]}
"""

from __future__ import annotations

import logging
import time
from typing import Mapping, Optional, Sequence

import httpx

from summary_pipeline.errors import ErrorType, SummarizerError, classify_status_code
from summary_pipeline.models import Item, SummaryOutcome

logger = logging.getLogger(__name__)

FINISH_REASON_ERROR_TYPES = {
    "SAFETY": ErrorType.SAFETY_BLOCKED,
    "BLOCKLIST": ErrorType.SAFETY_BLOCKED,
    "PROHIBITED_CONTENT": ErrorType.SAFETY_BLOCKED,
    "MAX_TOKENS": ErrorType.LENGTH_LIMIT,
    "LENGTH": ErrorType.LENGTH_LIMIT,
    "RECITATION": ErrorType.CONTENT_ERROR,
}


def _error_type_for(entry: Mapping) -> ErrorType:
    raw = entry.get("error_type")
    if raw:
        try:
            return ErrorType(str(raw).upper())
        except ValueError:
            return ErrorType.UNKNOWN
    finish = str(entry.get("finish_reason") or "").upper()
    return FINISH_REASON_ERROR_TYPES.get(finish, ErrorType.VALIDATION_ERROR)


def parse_results(payload: Mapping) -> dict[str, SummaryOutcome]:
    """Parse a response body into outcomes keyed by item id; ids absent from it stay absent."""
    results = payload.get("results") if isinstance(payload, Mapping) else None
    if not isinstance(results, list):
        raise SummarizerError("Malformed response: 'results' is missing", ErrorType.API_ERROR)

    outcomes: dict[str, SummaryOutcome] = {}
    for entry in results:
        if not isinstance(entry, Mapping) or "id" not in entry:
            logger.warning("Skipping result entry without id: %r", entry)
            continue
        item_id = str(entry["id"])
        if entry.get("success", True) and not entry.get("error"):
            outcomes[item_id] = SummaryOutcome(
                success=True,
                summary=entry.get("summary"),
                categories=list(entry.get("categories") or []),
                preview=entry.get("preview"),
            )
        else:
            outcomes[item_id] = SummaryOutcome(
                success=False,
                error=entry.get("error") or "Unknown error",
                error_type=_error_type_for(entry),
            )
    return outcomes


class HttpBatchSummarizer:
    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self.model = model
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = client or httpx.AsyncClient(
            headers=headers,
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
            transport=transport,
        )

    async def summarize(self, items: Sequence[Item]) -> dict[str, SummaryOutcome]:
        body: dict = {"articles": [{"id": i.id, "title": i.title, "content": i.content} for i in items]}
        if self.model:
            body["model"] = self.model

        t0 = time.perf_counter()
        try:
            resp = await self._client.post(self.base_url, json=body)
        except httpx.TimeoutException as e:
            raise SummarizerError(f"Summarization request timed out: {e}", ErrorType.TIMEOUT) from e
        except httpx.TransportError as e:
            raise SummarizerError(f"Summarization transport error: {e}", ErrorType.API_ERROR) from e

        latency_ms = int((time.perf_counter() - t0) * 1000)
        if resp.status_code >= 400:
            error_type = classify_status_code(resp.status_code)
            logger.error("Summarization API error | status=%s | latency=%dms | items=%d",
                         resp.status_code, latency_ms, len(items))
            raise SummarizerError(
                f"HTTP {resp.status_code}: {resp.text[:500]}", error_type, status_code=resp.status_code
            )

        try:
            payload = resp.json()
        except ValueError as e:
            raise SummarizerError("Malformed response: body is not JSON", ErrorType.API_ERROR) from e

        outcomes = parse_results(payload)
        logger.debug("Summarization OK | latency=%dms | items=%d | results=%d",
                     latency_ms, len(items), len(outcomes))
        return outcomes

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpBatchSummarizer":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()
