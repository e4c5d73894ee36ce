"""
Validates an AggregationRequest against the caller's visible catalog.

Checks performed:
  1. One or two group-by fields, each a known column
  2. Aggregation function is supported
  3. Metric field exists; non-count aggregations need a numeric metric
  4. Every filter field is known and every value is non-empty
  5. Limit is positive and within the configured maximum
"""
from __future__ import annotations

from typing import Sequence

from src.catalog.loader import Column
from src.core.config import get_settings
from src.engine.models import AGGREGATIONS, AggregationRequest


def _by_backend_field(columns: Sequence[Column]) -> dict[str, Column]:
    return {c.backend_field: c for c in columns}


def validate_request(
    request: AggregationRequest,
    columns: Sequence[Column],
    max_limit: int | None = None,
    date_field: str | None = None,
) -> list[str]:
    """Return a list of validation error messages (empty list = request is valid).

    Parameters
    ----------
    request : AggregationRequest
        The request about to be sent to the backend.
    columns : list[Column]
        The visibility-filtered catalog.
    max_limit : int, optional
        Upper bound for ``request.limit``; defaults to settings.
    date_field : str, optional
        Field always accepted in filters (the date-range clause).
    """
    if max_limit is None:
        max_limit = get_settings().max_limit

    known = _by_backend_field(columns)
    errors: list[str] = []

    if not 1 <= len(request.group_by_fields) <= 2:
        errors.append(
            f"Expected 1 or 2 group-by fields, got {len(request.group_by_fields)}."
        )
    for name in request.group_by_fields:
        if name not in known:
            errors.append(f"Unknown group-by field '{name}'.")

    if request.aggregation_fn not in AGGREGATIONS:
        errors.append(
            f"Unknown aggregation '{request.aggregation_fn}'. "
            f"Allowed: {', '.join(AGGREGATIONS)}"
        )

    metric = known.get(request.metric_field)
    if metric is None:
        errors.append(f"Unknown metric field '{request.metric_field}'.")
    elif request.aggregation_fn != "count" and not metric.is_numeric:
        errors.append(
            f"Metric '{request.metric_field}' is not numeric and cannot be "
            f"aggregated with '{request.aggregation_fn}'."
        )

    for clause in request.filters:
        if clause.field not in known and clause.field != date_field:
            errors.append(f"Filter field '{clause.field}' is not a recognized column.")
        if not clause.value.strip():
            errors.append(f"Filter '{clause.field}' has an empty value.")

    if request.limit <= 0:
        errors.append(f"Limit must be positive, got {request.limit}.")
    elif request.limit > max_limit:
        errors.append(
            f"Requested limit ({request.limit}) exceeds maximum allowed ({max_limit})."
        )

    return errors
