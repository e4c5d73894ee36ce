"""
Unit tests -- aggregation request builder.
"""
import datetime

import pytest

from src.core.config import Settings
from src.engine.builder import (
    ManualSelection,
    build_manual,
    build_requests,
    date_filters,
    effective_date_range,
    route_table,
)
from src.engine.models import DateRange, FilterClause, MultiDimension, ParsedQuery, TimeRange

TODAY = datetime.date(2025, 6, 30)
WINDOW = DateRange(start=datetime.date(2025, 6, 1), end=TODAY)


@pytest.fixture
def columns(catalog):
    return catalog.visible_columns(is_admin=False)


def _parsed(**kwargs) -> ParsedQuery:
    kwargs.setdefault("metrics", ["cost"])
    return ParsedQuery(**kwargs)


def _term_clauses(request):
    return [f for f in request.filters if f.field == "description"]


# ── Date range ───────────────────────────────────────────

def test_override_wins():
    parsed = _parsed(time_range=TimeRange(start=datetime.date(2024, 1, 1), end=datetime.date(2024, 2, 1)))
    assert effective_date_range(parsed, override=WINDOW, today=TODAY) == WINDOW


def test_parsed_range_used():
    parsed = _parsed(time_range=TimeRange(start=datetime.date(2024, 1, 1), end=datetime.date(2024, 2, 1)))
    dr = effective_date_range(parsed, today=TODAY)
    assert (dr.start, dr.end) == (datetime.date(2024, 1, 1), datetime.date(2024, 2, 1))


def test_default_window():
    dr = effective_date_range(_parsed(), today=TODAY, default_days=30)
    assert (dr.start, dr.end) == (datetime.date(2025, 5, 31), TODAY)


def test_date_filters():
    clauses = date_filters("pickup_date", WINDOW)
    assert [(c.operator, c.value) for c in clauses] == [("gte", "2025-06-01"), ("lte", "2025-06-30")]


# ── Table routing ────────────────────────────────────────

def test_route_table(catalog):
    assert route_table(["carrier_name"], catalog) == "shipment"
    assert route_table(["carrier_name", "description"], catalog) == "shipment_item"


# ── Fan-out ──────────────────────────────────────────────

def test_fan_out_one_request_per_term(columns, catalog, settings):
    parsed = _parsed(dimensions=["product"], terms=["Drawer", "CargoGlide", "Tool Box"])
    plan = build_requests(parsed, columns, catalog, WINDOW, settings)

    assert plan.fan_out
    assert len(plan.requests) == 3
    assert [r.term for r in plan.requests] == ["Drawer", "CargoGlide", "Tool Box"]
    for request, term in zip(plan.requests, ["Drawer", "CargoGlide", "Tool Box"]):
        assert request.table == "shipment_item"
        assert request.group_by_fields == ["description"]
        clauses = _term_clauses(request)
        assert len(clauses) == 1
        assert (clauses[0].operator, clauses[0].value) == ("ilike", term)


def test_fan_out_with_secondary_dimension(columns, catalog, settings):
    parsed = _parsed(
        dimensions=["state"], terms=["Drawer System", "CargoGlide"],
        multi_dimension=MultiDimension(primary="product", secondary="state", metric="cost"),
    )
    plan = build_requests(parsed, columns, catalog, WINDOW, settings)
    assert plan.is_multi_dimension
    assert all(r.group_by_fields == ["description", "origin_state"] for r in plan.requests)


def test_fan_out_primary_is_always_product(columns, catalog, settings):
    parsed = _parsed(
        terms=["Drawer", "CargoGlide"],
        multi_dimension=MultiDimension(primary="carrier", secondary="mode", metric="cost"),
    )
    plan = build_requests(parsed, columns, catalog, WINDOW, settings)
    assert plan.requests[0].group_by_fields == ["description", "carrier_name"]
    assert plan.dropped_dimensions == ["mode"]


def test_fan_out_disabled_uses_contains_any(columns, catalog):
    settings = Settings(fan_out_threshold=10)
    parsed = _parsed(dimensions=["product"], terms=["Drawer", "CargoGlide"])
    plan = build_requests(parsed, columns, catalog, WINDOW, settings)

    assert not plan.fan_out
    assert len(plan.requests) == 1
    clauses = _term_clauses(plan.requests[0])
    assert (clauses[0].operator, clauses[0].value) == ("contains_any", "Drawer,CargoGlide")


@pytest.mark.parametrize("threshold", [0, 1, 2])
def test_single_term_never_fans_out(columns, catalog, threshold):
    parsed = _parsed(dimensions=["carrier"], terms=["Drawer"])
    plan = build_requests(parsed, columns, catalog, WINDOW, Settings(fan_out_threshold=threshold))
    assert not plan.fan_out
    assert len(plan.requests) == 1
    request = plan.requests[0]
    assert request.group_by_fields == ["carrier_name"]
    assert request.table == "shipment_item"
    assert _term_clauses(request)[0].operator == "ilike"


def test_every_request_carries_date_range(columns, catalog, settings):
    parsed = _parsed(dimensions=["product"], terms=["Drawer", "CargoGlide"])
    plan = build_requests(parsed, columns, catalog, WINDOW, settings)
    for request in plan.requests:
        dated = [(f.operator, f.value) for f in request.filters if f.field == "pickup_date"]
        assert dated == [("gte", "2025-06-01"), ("lte", "2025-06-30")]


# ── Binding ──────────────────────────────────────────────

def test_metric_falls_back_to_visible_candidate(catalog, settings):
    parsed = _parsed(dimensions=["carrier"])
    plan = build_requests(parsed, catalog.visible_columns(False), catalog, WINDOW, settings)
    assert plan.requests[0].metric_field == "retail"

    plan = build_requests(parsed, catalog.visible_columns(True), catalog, WINDOW, settings)
    assert plan.requests[0].metric_field == "cost"


def test_consolidated_single_dimension(columns, catalog, settings):
    parsed = _parsed(dimensions=["carrier"], aggregation="sum", limit=5, sort="asc")
    plan = build_requests(parsed, columns, catalog, WINDOW, settings)
    request = plan.requests[0]
    assert request.table == "shipment"
    assert request.group_by_fields == ["carrier_name"]
    assert request.aggregation_fn == "sum"
    assert request.limit == 5
    assert request.order_dir == "asc"
    assert request.term is None


def test_limit_clamped(columns, catalog, settings):
    plan = build_requests(_parsed(dimensions=["carrier"], limit=5000), columns, catalog, WINDOW, settings)
    assert plan.requests[0].limit == 200


def test_filters_bound_to_backend_fields(columns, catalog, settings):
    parsed = _parsed(dimensions=["carrier"], filters=[FilterClause(field="state", value="TX")])
    request = build_requests(parsed, columns, catalog, WINDOW, settings).requests[0]
    assert FilterClause(field="origin_state", operator="eq", value="TX") in request.filters


def test_time_granularity_as_dimension(columns, catalog, settings):
    parsed = _parsed(intent="trend")
    plan = build_requests(parsed, columns, catalog, WINDOW, settings)
    assert plan.requests[0].group_by_fields == ["pickup_month"]


# ── Selection required ───────────────────────────────────

def test_no_dimension_needs_selection(columns, catalog, settings):
    plan = build_requests(_parsed(), columns, catalog, WINDOW, settings)
    assert plan.needs_selection
    assert plan.requests == []
    assert plan.unresolved == ["group_by:"]


def test_unresolvable_filter_needs_selection(columns, catalog, settings):
    parsed = _parsed(dimensions=["carrier"], filters=[FilterClause(field="planet", value="mars")])
    plan = build_requests(parsed, columns, catalog, WINDOW, settings)
    assert plan.unresolved == ["filter:planet"]
    assert plan.requests == []


def test_restricted_metric_without_candidate_needs_selection(columns, catalog, settings):
    plan = build_requests(_parsed(metrics=["margin"], dimensions=["carrier"]), columns, catalog, WINDOW, settings)
    assert plan.unresolved == ["metric:margin"]


# ── Manual selection ─────────────────────────────────────

def test_manual_selection(columns, catalog, settings):
    selection = ManualSelection(group_by="carrier", secondary_group_by="mode", metric="weight", aggregation="sum")
    plan = build_manual(selection, columns, catalog, WINDOW, settings)
    request = plan.requests[0]
    assert request.group_by_fields == ["carrier_name", "mode_name"]
    assert request.metric_field == "weight"
    assert plan.is_multi_dimension
    assert plan.dropped_dimensions == []


def test_manual_selection_fans_out_terms(columns, catalog, settings):
    selection = ManualSelection(group_by="product", metric="retail", terms=["Drawer", " ", "Tool Box"])
    plan = build_manual(selection, columns, catalog, WINDOW, settings)
    assert plan.fan_out
    assert [r.term for r in plan.requests] == ["Drawer", "Tool Box"]
    assert plan.dropped_dimensions == []


def test_manual_group_by_replaced_under_fan_out_is_recorded(columns, catalog, settings):
    selection = ManualSelection(group_by="carrier", metric="retail", terms=["Drawer", "CargoGlide"])
    plan = build_manual(selection, columns, catalog, WINDOW, settings)
    assert plan.requests[0].group_by_fields == ["description"]
    assert plan.dropped_dimensions == ["carrier_name"]


def test_manual_selection_unresolved(columns, catalog, settings):
    selection = ManualSelection(group_by="zzz", metric="retail")
    plan = build_manual(selection, columns, catalog, WINDOW, settings)
    assert plan.unresolved == ["group_by:zzz"]
