"""
Visualisation recommendation.

Scores every supported chart type against the ParsedQuery and the
DataProfile of the merged rows, and returns the best one plus up to three
alternatives scoring ≥ 40.

Supported chart types:
  - choropleth   (state-level geography present)
  - grouped_bar  (two grouping dimensions)
  - bar          (categorical comparison / breakdown)
  - line         (temporal axis)
  - pie          (single dimension, few categories)
  - table        (many rows)
  - kpi          (single value)
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from src.core.logging import get_logger
from src.engine.models import ParsedQuery
from src.engine.profiler import TYPE_CATEGORICAL, TYPE_GEOGRAPHIC, TYPE_TEMPORAL, DataProfile

logger = get_logger(__name__)

# ── Chart types ─────────────────────────────────────────

CHART_CHOROPLETH = "choropleth"
CHART_GROUPED_BAR = "grouped_bar"
CHART_BAR = "bar"
CHART_LINE = "line"
CHART_PIE = "pie"
CHART_TABLE = "table"
CHART_KPI = "kpi"

_BASE_SCORE = 50
_ALTERNATIVE_MIN_SCORE = 40


@dataclass(frozen=True)
class _ChartRule:
    requires_geographic: bool = False
    requires_temporal: bool = False
    requires_multi_dimension: bool = False
    requires_single_row: bool = False
    cardinality: tuple[float, float] | None = None
    intents: tuple[str, ...] = ()


_CHART_RULES: dict[str, _ChartRule] = {
    CHART_GROUPED_BAR: _ChartRule(requires_multi_dimension=True, cardinality=(2, 15), intents=("compare",)),
    CHART_CHOROPLETH: _ChartRule(requires_geographic=True, cardinality=(10, 60)),
    CHART_BAR: _ChartRule(cardinality=(2, 15), intents=("compare", "breakdown")),
    CHART_LINE: _ChartRule(requires_temporal=True, intents=("trend",)),
    CHART_PIE: _ChartRule(cardinality=(2, 6), intents=("breakdown",)),
    CHART_TABLE: _ChartRule(cardinality=(20, float("inf"))),
    CHART_KPI: _ChartRule(requires_single_row=True, intents=("summarize",)),
}


@dataclass
class ChartRecommendation:
    chart_type: str
    score: int
    reasoning: list[str] = field(default_factory=list)
    config: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "chart_type": self.chart_type,
            "score": self.score,
            "reasoning": ". ".join(self.reasoning),
            "config": self.config,
        }


@dataclass
class VisualizationPlan:
    primary: ChartRecommendation
    alternatives: list[ChartRecommendation] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "primary": self.primary.to_dict(),
            "alternatives": [a.to_dict() for a in self.alternatives],
        }


# ── Scoring ─────────────────────────────────────────────


def _missing_requirement(
    rule: _ChartRule, profile: DataProfile, multi_dimension: bool,
) -> str | None:
    if rule.requires_geographic and profile.geographic_coverage is None:
        return "Requires geographic data"
    if rule.requires_temporal and profile.first_of(TYPE_TEMPORAL) is None:
        return "Requires temporal data"
    if rule.requires_multi_dimension and not multi_dimension:
        return "Requires two grouping dimensions"
    if rule.requires_single_row and profile.row_count != 1:
        return "Requires a single value"
    return None


def _score_chart(
    chart: str, rule: _ChartRule, parsed: ParsedQuery, profile: DataProfile, multi_dimension: bool,
) -> ChartRecommendation:
    missing = _missing_requirement(rule, profile, multi_dimension)
    if missing:
        return ChartRecommendation(chart_type=chart, score=0, reasoning=[missing])

    score = _BASE_SCORE
    reasoning: list[str] = []

    if chart == CHART_CHOROPLETH and profile.geographic_coverage is not None:
        states = profile.geographic_coverage.state_count
        score += 30
        reasoning.append(f"Geographic coverage: {states} states")
        if states >= 15:
            score += 10
            reasoning.append("Good state coverage")

    if chart == CHART_GROUPED_BAR:
        score += 35
        reasoning.append("Two grouping dimensions")

    if chart == CHART_LINE:
        score += 25
        reasoning.append("Temporal data present")
        if profile.has_trend:
            score += 10
            reasoning.append(f"Trend detected: {profile.trend_direction}")

    if chart == CHART_KPI:
        score += 40
        reasoning.append("Single value")

    if parsed.intent in rule.intents:
        score += 15
        reasoning.append(f"Matches intent: {parsed.intent}")

    primary_dimension = profile.first_of(TYPE_CATEGORICAL, TYPE_GEOGRAPHIC)
    if primary_dimension is not None and rule.cardinality is not None:
        low, high = rule.cardinality
        if low <= primary_dimension.cardinality <= high:
            score += 10
            reasoning.append(f"Cardinality ({primary_dimension.cardinality}) fits well")

    if chart == CHART_PIE and (multi_dimension or (primary_dimension and primary_dimension.cardinality > 6)):
        score -= 30
        reasoning.append("Too many categories for pie chart")

    return ChartRecommendation(chart_type=chart, score=max(0, min(100, score)), reasoning=reasoning)


def _chart_config(chart: str, parsed: ParsedQuery, profile: DataProfile) -> dict[str, Any]:
    config: dict[str, Any] = {
        "title": build_title(parsed),
        "metrics": list(parsed.metrics),
        "dimensions": list(parsed.dimensions),
    }
    metric = parsed.metrics[0] if parsed.metrics else ""
    if chart == CHART_CHOROPLETH:
        config["scenario"] = {
            "shipments": "demand-density",
            "transit": "transit-time",
        }.get(metric, "cost-to-serve")
    elif chart == CHART_LINE:
        temporal = profile.first_of(TYPE_TEMPORAL)
        config["x_axis"] = temporal.name if temporal else "date"
        config["show_trend_line"] = profile.has_trend
    return config


def build_title(parsed: ParsedQuery) -> str:
    """Descriptive chart title, e.g. ``Avg Cost by Product, State (last 30 days)``."""
    metric = parsed.metrics[0] if parsed.metrics else "value"
    parts = [f"{parsed.aggregation.title()} {metric.replace('_', ' ').title()}"]
    md = parsed.multi_dimension
    dims = [md.primary, md.secondary] if md else parsed.dimensions
    if dims:
        parts.append("by " + ", ".join(d.replace("_", " ").title() for d in dims))
    if parsed.time_range is not None and parsed.time_range.label:
        parts.append(f"({parsed.time_range.label})")
    return " ".join(parts)


# ── Public API ──────────────────────────────────────────


def recommend(parsed: ParsedQuery, profile: DataProfile, multi_dimension: bool = False) -> VisualizationPlan:
    """Score every chart type; highest wins, ties keep table order."""
    if profile.row_count == 0:
        table = ChartRecommendation(
            chart_type=CHART_TABLE, score=0, reasoning=["No rows"],
            config=_chart_config(CHART_TABLE, parsed, profile),
        )
        return VisualizationPlan(primary=table)

    scored = [
        _score_chart(chart, rule, parsed, profile, multi_dimension)
        for chart, rule in _CHART_RULES.items()
    ]
    scored.sort(key=lambda r: r.score, reverse=True)
    for rec in scored[:4]:
        rec.config = _chart_config(rec.chart_type, parsed, profile)

    primary = scored[0]
    alternatives = [r for r in scored[1:4] if r.score >= _ALTERNATIVE_MIN_SCORE]
    logger.info("Visualisation -> %s (%d)", primary.chart_type, primary.score)
    return VisualizationPlan(primary=primary, alternatives=alternatives)
