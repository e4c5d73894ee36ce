"""
Unit tests -- chart recommendation.
"""
import datetime

from src.engine.models import MultiDimension, ParsedQuery, TimeRange
from src.engine.profiler import profile
from src.engine.visualization import (
    CHART_BAR,
    CHART_CHOROPLETH,
    CHART_GROUPED_BAR,
    CHART_KPI,
    CHART_LINE,
    CHART_PIE,
    CHART_TABLE,
    build_title,
    recommend,
)

STATES = ["AL", "AZ", "CA", "CO", "FL", "GA", "IL", "IN", "KY", "MI", "MN", "MO", "NC", "NJ", "NY", "OH"]


def _scores(plan):
    return {r.chart_type: r.score for r in [plan.primary, *plan.alternatives]}


def test_no_rows_gives_table():
    plan = recommend(ParsedQuery(), profile([]))
    assert plan.primary.chart_type == CHART_TABLE
    assert plan.alternatives == []


def test_single_value_gives_kpi():
    parsed = ParsedQuery(intent="summarize", metrics=["cost"])
    plan = recommend(parsed, profile([{"label": "all", "value": 42.0}]))
    assert plan.primary.chart_type == CHART_KPI
    assert plan.primary.score == 100


def test_temporal_trend_gives_line():
    parsed = ParsedQuery(intent="trend", metrics=["shipments"])
    rows = [{"label": f"2025-0{m}", "value": m * 10} for m in range(1, 7)]
    plan = recommend(parsed, profile(rows))
    assert plan.primary.chart_type == CHART_LINE
    assert plan.primary.config["x_axis"] == "label"
    assert plan.primary.config["show_trend_line"] is True


def test_multi_dimension_gives_grouped_bar():
    parsed = ParsedQuery(
        metrics=["cost"],
        multi_dimension=MultiDimension(primary="product", secondary="carrier", metric="cost"),
    )
    rows = [{"primaryGroup": "Drawer", "Saia": 1.0, "Estes": 2.0}, {"primaryGroup": "CargoGlide", "Saia": 3.0}]
    plan = recommend(parsed, profile(rows), multi_dimension=True)
    assert plan.primary.chart_type == CHART_GROUPED_BAR
    assert CHART_PIE not in _scores(plan)


def test_many_states_gives_choropleth():
    parsed = ParsedQuery(metrics=["shipments"], dimensions=["state"])
    rows = [{"label": s, "value": i} for i, s in enumerate(STATES)]
    plan = recommend(parsed, profile(rows))
    assert plan.primary.chart_type == CHART_CHOROPLETH
    assert plan.primary.score == 100
    assert plan.primary.config["scenario"] == "demand-density"
    assert "16 states" in plan.primary.to_dict()["reasoning"]


def test_breakdown_few_categories():
    parsed = ParsedQuery(intent="breakdown", metrics=["cost"], dimensions=["mode"])
    rows = [{"label": m, "value": v} for m, v in (("LTL", 1), ("TL", 2), ("Parcel", 3))]
    scores = _scores(recommend(parsed, profile(rows)))
    assert scores[CHART_BAR] == 75
    assert scores[CHART_PIE] == 75


def test_alternatives_at_least_forty():
    parsed = ParsedQuery(metrics=["cost"], dimensions=["carrier"])
    rows = [{"label": c, "value": i} for i, c in enumerate("abcdefgh")]
    plan = recommend(parsed, profile(rows))
    assert len(plan.alternatives) <= 3
    assert all(a.score >= 40 for a in plan.alternatives)
    assert plan.to_dict()["primary"]["chart_type"] == plan.primary.chart_type


def test_build_title():
    parsed = ParsedQuery(
        metrics=["cost"],
        aggregation="avg",
        multi_dimension=MultiDimension(primary="product", secondary="state", metric="cost"),
        time_range=TimeRange(
            start=datetime.date(2025, 5, 31), end=datetime.date(2025, 6, 30), label="last 30 days",
        ),
    )
    assert build_title(parsed) == "Avg Cost by Product, State (last 30 days)"


def test_build_title_single_dimension():
    parsed = ParsedQuery(metrics=["weight"], aggregation="sum", dimensions=["carrier"])
    assert build_title(parsed) == "Sum Weight by Carrier"
