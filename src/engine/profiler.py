"""
Data profiler -- describes a result set so the visualisation scorer and the
description generator can reason about it.

  - column type from the first non-null value (numeric / temporal /
    geographic / categorical)
  - numeric stats (population std) and 2σ outliers
  - trend: rows sorted on the first temporal column, then the mean of the
    first third vs the last third of the first numeric column, ±10%
    threshold, at least three rows; no temporal column means no trend
  - geographic coverage: distinct US state codes in geographic columns
    (or used as column names, as in pivoted rows)

``profile`` never raises; anything it cannot interpret becomes
"categorical" with no stats.
"""
from __future__ import annotations

import datetime
import re
from dataclasses import dataclass, field
from typing import Any, Sequence

import pandas as pd

from src.core.logging import get_logger
from src.core.utils import round2

logger = get_logger(__name__)

TYPE_NUMERIC = "numeric"
TYPE_TEMPORAL = "temporal"
TYPE_GEOGRAPHIC = "geographic"
TYPE_CATEGORICAL = "categorical"

TREND_THRESHOLD = 0.10
OUTLIER_SIGMA = 2.0

_DATE_RE = re.compile(r"^\d{4}-\d{2}(?:-\d{2})?(?:[T ].*)?$|^\d{4}-W\d{1,2}$")

US_STATE_CODES = frozenset(
    "AL AK AZ AR CA CO CT DE DC FL GA HI ID IL IN IA KS KY LA ME MD MA MI MN MS MO "
    "MT NE NV NH NJ NM NY NC ND OH OK OR PA RI SC SD TN TX UT VT VA WA WV WI WY".split()
)


@dataclass
class ColumnStats:
    min: float
    max: float
    mean: float
    median: float
    std: float
    sum: float


@dataclass
class ColumnProfile:
    name: str
    type: str
    cardinality: int
    null_percent: float
    stats: ColumnStats | None = None
    outlier_count: int = 0


@dataclass
class GeographicCoverage:
    state_count: int
    states: list[str] = field(default_factory=list)


@dataclass
class DataProfile:
    row_count: int = 0
    columns: list[ColumnProfile] = field(default_factory=list)
    has_trend: bool = False
    trend_direction: str = "flat"  # up | down | flat
    has_outliers: bool = False
    geographic_coverage: GeographicCoverage | None = None

    def column(self, name: str) -> ColumnProfile | None:
        for col in self.columns:
            if col.name == name:
                return col
        return None

    def first_of(self, *types: str) -> ColumnProfile | None:
        for col in self.columns:
            if col.type in types:
                return col
        return None


# ── Type inference ───────────────────────────────────────

def _infer_type(value: Any) -> str:
    if pd.api.types.is_bool(value):
        return TYPE_CATEGORICAL
    if pd.api.types.is_number(value):
        return TYPE_NUMERIC
    if isinstance(value, (datetime.date, datetime.datetime)):
        return TYPE_TEMPORAL
    text = str(value).strip()
    if _DATE_RE.match(text):
        return TYPE_TEMPORAL
    if text.upper() in US_STATE_CODES and len(text) == 2:
        return TYPE_GEOGRAPHIC
    return TYPE_CATEGORICAL


def _first_non_null(series: pd.Series) -> Any:
    non_null = series.dropna()
    return non_null.iloc[0] if not non_null.empty else None


def _profile_column(name: str, series: pd.Series) -> ColumnProfile:
    total = len(series)
    null_percent = round2(series.isna().sum() * 100.0 / total) if total else 0.0
    first = _first_non_null(series)
    col_type = _infer_type(first) if first is not None else TYPE_CATEGORICAL
    cardinality = int(series.dropna().astype(str).nunique())

    profile = ColumnProfile(name=name, type=col_type, cardinality=cardinality, null_percent=null_percent)
    if col_type != TYPE_NUMERIC:
        return profile

    numeric = pd.to_numeric(series, errors="coerce").dropna()
    if numeric.empty:
        profile.type = TYPE_CATEGORICAL
        return profile

    mean = float(numeric.mean())
    std = float(numeric.std(ddof=0))
    profile.stats = ColumnStats(
        min=round2(numeric.min()),
        max=round2(numeric.max()),
        mean=round2(mean),
        median=round2(numeric.median()),
        std=round2(std),
        sum=round2(numeric.sum()),
    )
    if std > 0:
        profile.outlier_count = int(((numeric - mean).abs() > OUTLIER_SIGMA * std).sum())
    return profile


# ── Patterns ─────────────────────────────────────────────

def _trend(values: pd.Series) -> str:
    """``up`` / ``down`` / ``flat`` from first third vs last third."""
    values = values.dropna()
    n = len(values)
    if n < 3:
        return "flat"
    third = max(1, n // 3)
    first = float(values.iloc[:third].mean())
    last = float(values.iloc[-third:].mean())
    if first == 0:
        return "up" if last > 0 else "down" if last < 0 else "flat"
    change = (last - first) / abs(first)
    if change > TREND_THRESHOLD:
        return "up"
    if change < -TREND_THRESHOLD:
        return "down"
    return "flat"


def _geographic_coverage(df: pd.DataFrame, columns: list[ColumnProfile]) -> GeographicCoverage | None:
    # pivoted rows carry states as column names
    states: set[str] = {c.name for c in columns if c.name in US_STATE_CODES}
    for col in columns:
        if col.type != TYPE_GEOGRAPHIC:
            continue
        for value in df[col.name].dropna().astype(str):
            code = value.strip().upper()
            if code in US_STATE_CODES:
                states.add(code)
    if not states:
        return None
    return GeographicCoverage(state_count=len(states), states=sorted(states))


# ── Public API ───────────────────────────────────────────

def profile(rows: Sequence[dict[str, Any]], columns: Sequence[str] | None = None) -> DataProfile:
    """Profile *rows* (optionally only *columns*).  Never raises."""
    if not rows:
        return DataProfile()
    try:
        df = pd.DataFrame.from_records(list(rows))
        names = [c for c in (columns or list(df.columns)) if c in df.columns]
        col_profiles = [_profile_column(name, df[name]) for name in names]

        result = DataProfile(row_count=len(df), columns=col_profiles)
        result.has_outliers = any(c.outlier_count for c in col_profiles)

        temporal = result.first_of(TYPE_TEMPORAL)
        numeric = result.first_of(TYPE_NUMERIC)
        if temporal is not None and numeric is not None:
            ordered = df.sort_values(temporal.name, key=lambda s: s.astype(str), kind="stable")
            result.trend_direction = _trend(pd.to_numeric(ordered[numeric.name], errors="coerce"))
            result.has_trend = result.trend_direction != "flat"

        result.geographic_coverage = _geographic_coverage(df, col_profiles)
        return result
    except Exception:
        logger.warning("Profiling failed -- returning empty profile", exc_info=True)
        return DataProfile(row_count=len(rows))
