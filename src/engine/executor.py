"""
Aggregation executor -- sends AggregationRequests to a data backend and
normalises whatever comes back.

Backend payloads arrive in several shapes (JSON string, ``{"data": [...]}``,
a bare list, ``{"error": "..."}``).  ``normalize_response`` is the only place
that knows about them; everything downstream sees ``AggregationRow``.

A batch runs its requests sequentially unless ``concurrency > 1``; in that
case an ``asyncio.Semaphore`` bounds the in-flight calls.  Either way each
request's outcome is recorded separately and a failing request never
affects the others.
"""
from __future__ import annotations

import asyncio
import json
import logging
import math
import uuid
from dataclasses import dataclass, field
from typing import Any, Sequence

from src.backend.base import AggregationBackend, AggregationError
from src.core.logging import batch_logger, get_logger
from src.core.utils import timer
from src.engine.models import AggregationRequest, AggregationRow, Scope

logger = get_logger(__name__)

_GROUP_KEYS = ("group", "primary_group", "label", "name")
_SECONDARY_KEYS = ("secondary_group", "secondary")

ALL_ROWS = "all"


# ── Payload boundary ─────────────────────────────────────


def _first_present(raw: dict[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def _to_row(raw: Any) -> AggregationRow | None:
    if not isinstance(raw, dict):
        raise AggregationError(f"Malformed row: expected an object, got {type(raw).__name__}")

    group = _first_present(raw, _GROUP_KEYS)
    value = raw.get("value")
    if group is None or value is None:
        return None

    try:
        numeric = float(value)
    except (TypeError, ValueError) as exc:
        raise AggregationError(f"Non-numeric value {value!r} for group {group!r}") from exc
    if not math.isfinite(numeric):
        raise AggregationError(f"Non-finite value {value!r} for group {group!r}")

    count = raw.get("count")
    try:
        support = int(count) if count is not None else 1
    except (TypeError, ValueError, OverflowError) as exc:
        raise AggregationError(f"Non-integer count {count!r} for group {group!r}") from exc

    secondary = _first_present(raw, _SECONDARY_KEYS)
    return AggregationRow(
        group_value=str(group),
        secondary_group_value=str(secondary) if secondary is not None else None,
        value=numeric,
        support_count=max(support, 0),
    )


def normalize_response(payload: Any) -> list[AggregationRow]:
    """Turn any backend payload into rows, or raise ``AggregationError``.

    Rows without a group or a value are skipped; a missing count counts as 1.
    """
    if payload is None:
        return []

    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8")
    # RPC endpoints may return a JSON-encoded JSON string
    for _ in range(2):
        if not isinstance(payload, str):
            break
        if not payload.strip():
            return []
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise AggregationError(f"Backend returned invalid JSON: {exc}") from exc

    if isinstance(payload, dict):
        if payload.get("error"):
            raise AggregationError(str(payload["error"]))
        data = payload.get("data")
        if data is None:
            return []
    elif isinstance(payload, list):
        data = payload
    else:
        raise AggregationError(f"Unexpected payload type {type(payload).__name__}")

    if not isinstance(data, list):
        raise AggregationError(f"'data' must be a list, got {type(data).__name__}")

    rows: list[AggregationRow] = []
    for raw in data:
        row = _to_row(raw)
        if row is not None:
            rows.append(row)
    return rows


# ── Batch results ────────────────────────────────────────


@dataclass
class RequestOutcome:
    """What happened to one request of a batch."""
    request: AggregationRequest
    rows: list[AggregationRow] = field(default_factory=list)
    error: str | None = None
    elapsed_ms: int = 0

    @property
    def label(self) -> str:
        return self.request.term or ALL_ROWS

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def is_empty(self) -> bool:
        return self.ok and not self.rows


@dataclass
class BatchResult:
    batch_id: str
    outcomes: list[RequestOutcome] = field(default_factory=list)

    @property
    def per_term(self) -> dict[str, list[AggregationRow]]:
        """Rows of every successful, non-empty request, in request order."""
        return {o.label: o.rows for o in self.outcomes if o.ok and o.rows}

    @property
    def failures(self) -> dict[str, str]:
        return {o.label: o.error for o in self.outcomes if o.error is not None}

    @property
    def empty_terms(self) -> list[str]:
        return [o.label for o in self.outcomes if o.is_empty]

    @property
    def all_failed(self) -> bool:
        return bool(self.outcomes) and all(not o.ok for o in self.outcomes)

    @property
    def has_rows(self) -> bool:
        return any(o.rows for o in self.outcomes)

    def summary(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "requests": len(self.outcomes),
            "succeeded": sum(1 for o in self.outcomes if o.ok and o.rows),
            "empty": len(self.empty_terms),
            "failed": len(self.failures),
        }


def new_batch_id() -> str:
    return uuid.uuid4().hex


# ── Executor ─────────────────────────────────────────────


class AggregationExecutor:
    """Runs AggregationRequests against one backend on behalf of one scope."""

    def __init__(self, backend: AggregationBackend, scope: Scope | None = None, concurrency: int = 1):
        self._backend = backend
        self._scope = scope or Scope()
        self._concurrency = max(1, concurrency)

    async def execute(self, request: AggregationRequest) -> list[AggregationRow]:
        """Single request → rows.  Raises ``AggregationError``."""
        logger.info(
            "Aggregate table=%s group_by=%s metric=%s agg=%s filters=%d term=%s",
            request.table, request.group_by, request.metric_field,
            request.aggregation_fn, len(request.filters), request.term,
        )
        payload = await self._backend.aggregate(request, self._scope)
        return normalize_response(payload)

    async def _run_one(self, request: AggregationRequest, log: logging.LoggerAdapter) -> RequestOutcome:
        outcome = RequestOutcome(request=request)
        with timer() as t:
            try:
                outcome.rows = await self.execute(request)
            except AggregationError as exc:
                outcome.error = str(exc)
                log.warning("Request for '%s' failed -- skipping: %s", outcome.label, exc)
        outcome.elapsed_ms = t["elapsed_ms"]
        if outcome.is_empty:
            log.info("Request for '%s' returned no rows", outcome.label)
        return outcome

    async def run_batch(
        self, requests: Sequence[AggregationRequest], batch_id: str | None = None,
    ) -> BatchResult:
        """Execute *requests*; results stay attributed to their request."""
        result = BatchResult(batch_id=batch_id or new_batch_id())
        log = batch_logger(logger, result.batch_id)

        if self._concurrency == 1:
            for request in requests:
                result.outcomes.append(await self._run_one(request, log))
        else:
            semaphore = asyncio.Semaphore(self._concurrency)

            async def bounded(request: AggregationRequest) -> RequestOutcome:
                async with semaphore:
                    return await self._run_one(request, log)

            result.outcomes = list(await asyncio.gather(*(bounded(r) for r in requests)))

        log.info("Batch done %s", result.summary())
        return result
