"""
In-memory backend -- evaluates ``mcp_aggregate`` over lists of records with
pandas.  Used by the test-suite and by local development (records loaded
from the JSON file written by ``pipelines/seed/seed_data.py``).

Records for the item-level table are denormalised: each line item carries
its shipment's fields, so any shipment field can filter or group items.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pandas as pd

from src.backend.base import AggregationBackend, AggregationError
from src.core.logging import get_logger
from src.engine.models import AggregationRequest, FilterClause, Scope

logger = get_logger(__name__)

_PANDAS_AGG: dict[str, str] = {
    "sum": "sum",
    "avg": "mean",
    "min": "min",
    "max": "max",
}


def _text(series: pd.Series) -> pd.Series:
    return series.astype(str).str.lower()


def _filter_mask(df: pd.DataFrame, clause: FilterClause) -> pd.Series:
    if clause.field not in df.columns:
        raise AggregationError(f"Unknown filter field '{clause.field}'")
    col = df[clause.field]
    present = col.notna()
    value = clause.value

    if clause.operator == "eq":
        return present & (_text(col) == value.lower())

    if clause.operator in ("gte", "lte"):
        numeric = pd.to_numeric(col, errors="coerce")
        try:
            target: Any = float(value)
            left = numeric
        except ValueError:
            # ISO dates compare correctly as strings
            target, left = value, col.astype(str)
        cmp = left >= target if clause.operator == "gte" else left <= target
        return present & cmp

    if clause.operator == "ilike":
        needle = value.strip("%").lower()
        return present & _text(col).str.contains(needle, regex=False)

    if clause.operator == "contains_any":
        needles = [v.strip().lower() for v in value.split(",") if v.strip()]
        mask = pd.Series(False, index=df.index)
        for needle in needles:
            mask |= _text(col).str.contains(needle, regex=False)
        return present & mask

    raise AggregationError(f"Unsupported operator '{clause.operator}'")


def aggregate_records(
    records: list[dict[str, Any]], request: AggregationRequest, scope: Scope,
) -> dict[str, Any]:
    """Evaluate *request* over *records*; returns ``{"data": [...]}``."""
    if not records:
        return {"data": []}
    df = pd.DataFrame.from_records(records)

    if scope.customer_id and not scope.is_admin and "customer_id" in df.columns:
        df = df[df["customer_id"] == scope.customer_id]

    for clause in request.filters:
        df = df[_filter_mask(df, clause)]

    fields = list(request.group_by_fields)
    missing = [f for f in fields + [request.metric_field] if f not in df.columns]
    if missing:
        raise AggregationError(f"Unknown field(s): {', '.join(missing)}")

    if request.aggregation_fn != "count":
        df = df.assign(**{request.metric_field: pd.to_numeric(df[request.metric_field], errors="coerce")})
        df = df.dropna(subset=[request.metric_field])
    if df.empty:
        return {"data": []}

    grouped = df.groupby(fields, dropna=True)[request.metric_field]
    counts = grouped.size()
    values = counts if request.aggregation_fn == "count" else grouped.agg(_PANDAS_AGG[request.aggregation_fn])
    out = pd.DataFrame({"value": values, "count": counts}).reset_index()
    out = out.sort_values("value", ascending=request.order_dir == "asc", kind="stable")
    out = out.head(request.limit)

    data: list[dict[str, Any]] = []
    for rec in out.to_dict(orient="records"):
        row: dict[str, Any] = {
            "group": str(rec[fields[0]]),
            "value": float(rec["value"]),
            "count": int(rec["count"]),
        }
        if len(fields) == 2:
            row["secondary_group"] = str(rec[fields[1]])
        data.append(row)
    return {"data": data}


class MemoryBackend(AggregationBackend):
    """Aggregates over ``{table name: [record, ...]}`` held in memory."""

    name = "memory"

    def __init__(self, tables: dict[str, list[dict[str, Any]]] | None = None):
        self._tables = {k: list(v) for k, v in (tables or {}).items()}
        self.calls: list[AggregationRequest] = []

    @classmethod
    def from_file(cls, path: str | Path) -> "MemoryBackend":
        path = Path(path)
        if not path.exists():
            logger.warning("Sample data not found at %s -- starting with empty tables", path)
            return cls()
        with open(path) as f:
            tables = json.load(f)
        logger.info("Loaded sample data %s (%s)", path,
                    ", ".join(f"{k}={len(v)}" for k, v in tables.items()))
        return cls(tables)

    async def aggregate(self, request: AggregationRequest, scope: Scope) -> Any:
        self.calls.append(request)
        if request.table not in self._tables:
            return {"error": f"Unknown table '{request.table}'"}
        return aggregate_records(self._tables[request.table], request, scope)
