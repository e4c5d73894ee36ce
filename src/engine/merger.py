"""
Multi-dimension merger -- folds backend rows into chart-ready rows.

Per-term fan-out results are collapsed to one primary group per term; a
consolidated two-field response is pivoted on its own primary group.  Both
produce ``{"primaryGroup": ..., <secondary group>: value, ...}`` rows plus
the sorted list of distinct secondary groups.  A (primary, secondary) pair
with no data is absent from the row, never zero.

Re-aggregation across rows is owned by ``Accumulator``:
  sum    Σ value
  count  Σ support
  avg    Σ(value × support) / Σ support, 0 when there is no support
  other  mean of values (min and max included)
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from src.core.utils import round2
from src.engine.models import AggregationRow

PRIMARY_KEY = "primaryGroup"
UNKNOWN_GROUP = "Unknown"


class Accumulator:
    """Combines partial aggregates of one group into a single value."""

    def __init__(self, aggregation: str):
        self.aggregation = aggregation
        self._total = 0.0
        self._weighted = 0.0
        self._support = 0
        self._n = 0

    def add(self, value: float, support: int = 1) -> None:
        self._n += 1
        self._total += value
        self._weighted += value * support
        self._support += support

    @property
    def support(self) -> int:
        return self._support

    @property
    def empty(self) -> bool:
        return self._n == 0

    def result(self) -> float | None:
        if self._n == 0:
            return None
        agg = self.aggregation
        if agg == "sum":
            return self._total
        if agg == "count":
            return float(self._support)
        if agg == "avg":
            return self._weighted / self._support if self._support > 0 else 0.0
        # min, max and anything else: mean of the partial values
        return self._total / self._n


@dataclass
class MergeResult:
    rows: list[dict[str, Any]] = field(default_factory=list)
    secondary_groups: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.rows

    def to_dict(self) -> dict[str, Any]:
        return {"rows": self.rows, "secondary_groups": self.secondary_groups}


def _grouped(
    pairs: Iterable[tuple[str, str, AggregationRow]], aggregation: str,
) -> MergeResult:
    accumulators: dict[str, dict[str, Accumulator]] = {}
    for primary, secondary, row in pairs:
        per_primary = accumulators.setdefault(primary, {})
        per_primary.setdefault(secondary, Accumulator(aggregation)).add(row.value, row.support_count)

    rows: list[dict[str, Any]] = []
    secondaries: set[str] = set()
    for primary, per_secondary in accumulators.items():
        entry: dict[str, Any] = {PRIMARY_KEY: primary}
        for secondary, acc in per_secondary.items():
            value = acc.result()
            if value is None:
                continue
            entry[secondary] = round2(value)
            secondaries.add(secondary)
        rows.append(entry)
    return MergeResult(rows=rows, secondary_groups=sorted(secondaries))


def merge(per_term: Mapping[str, list[AggregationRow]], aggregation: str) -> MergeResult:
    """Collapse per-term two-field results into one row per term.

    Terms whose list is empty are left out; callers report them separately.
    """
    return _grouped(
        (
            (term, row.secondary_group_value or UNKNOWN_GROUP, row)
            for term, rows in per_term.items()
            for row in rows
        ),
        aggregation,
    )


def pivot(rows: Iterable[AggregationRow], aggregation: str) -> MergeResult:
    """Pivot a consolidated two-field response on its primary group."""
    return _grouped(
        ((row.group_value, row.secondary_group_value or UNKNOWN_GROUP, row) for row in rows),
        aggregation,
    )


def _series(
    pairs: Iterable[tuple[str, AggregationRow]], aggregation: str, order_dir: str | None,
) -> list[dict[str, Any]]:
    accumulators: dict[str, Accumulator] = {}
    for label, row in pairs:
        accumulators.setdefault(label, Accumulator(aggregation)).add(row.value, row.support_count)

    series = [
        {"label": label, "value": round2(acc.result())}
        for label, acc in accumulators.items()
        if not acc.empty
    ]
    if order_dir is not None:
        series.sort(key=lambda r: r["value"], reverse=order_dir == "desc")
    return series


def merge_single(
    per_term: Mapping[str, list[AggregationRow]], aggregation: str, order_dir: str | None = None,
) -> list[dict[str, Any]]:
    """One ``{label, value}`` per term (single-dimension fan-out)."""
    return _series(
        ((term, row) for term, rows in per_term.items() for row in rows), aggregation, order_dir,
    )


def flatten(
    rows: Iterable[AggregationRow], aggregation: str, order_dir: str | None = None,
) -> list[dict[str, Any]]:
    """``{label, value}`` series of a consolidated single-field response."""
    return _series(((row.group_value, row) for row in rows), aggregation, order_dir)
