"""
Unit tests -- heuristic intent parser.
"""
import datetime

import pytest

from src.engine.parser import IntentParser, Rule, detect_time_range, first_match, parse

TODAY = datetime.date(2025, 6, 30)


# ── Rule dispatch ────────────────────────────────────────

def test_first_match_respects_order():
    rules = [
        Rule("a", lambda t: "x" in t, lambda t: "A"),
        Rule("b", lambda t: True, lambda t: "B"),
    ]
    assert first_match(rules, "xyz") == ("a", "A")
    assert first_match(rules, "yz") == ("b", "B")


def test_first_match_skips_empty_extraction():
    rules = [
        Rule("a", lambda t: True, lambda t: None),
        Rule("b", lambda t: True, lambda t: 42),
    ]
    assert first_match(rules, "anything") == ("b", 42)


def test_first_match_none():
    assert first_match([Rule("a", lambda t: False, lambda t: 1)], "text") is None


# ── Intent ───────────────────────────────────────────────

@pytest.mark.parametrize("question,intent", [
    ("show me cost by carrier", "analyze"),
    ("compare drawers versus cargoglides", "compare"),
    ("shipment trend over time", "trend"),
    ("breakdown of cost by mode", "breakdown"),
    ("top 5 carriers by cost", "find"),
    ("summary of weight by state", "summarize"),
])
def test_intent(question, intent):
    assert parse(question, today=TODAY).intent == intent


def test_unknown_text_yields_defaults():
    parsed = parse("xyzzy", today=TODAY)
    assert parsed.intent == "analyze"
    assert parsed.metrics == ["cost"]
    assert parsed.dimensions == []
    assert parsed.terms == []
    assert parsed.time_range is None
    assert parsed.multi_dimension is None


def test_empty_text_never_fails():
    parsed = parse("", today=TODAY)
    assert parsed.question == ""
    assert parsed.intent == "analyze"


# ── Metrics / dimensions / aggregation ───────────────────

def test_metrics_and_dimensions():
    parsed = parse("total weight and miles by carrier", today=TODAY)
    assert parsed.metrics == ["weight", "miles"]
    assert parsed.dimensions == ["carrier"]
    assert parsed.aggregation == "sum"


def test_catalog_default_aggregation_for_metric():
    # shipments default to count in the catalog
    assert parse("shipments by state", today=TODAY).aggregation == "count"


def test_aggregation_keyword_wins_over_default():
    assert parse("average shipments by state", today=TODAY).aggregation == "avg"


def test_fallback_metric_configurable():
    parser = IntentParser(fallback_metric="weight")
    assert parser.parse("by carrier", today=TODAY).metrics == ["weight"]


# ── Time ranges ──────────────────────────────────────────

def test_last_n_days():
    tr = parse("cost by carrier last 30 days", today=TODAY).time_range
    assert tr.start == datetime.date(2025, 5, 31)
    assert tr.end == TODAY
    assert tr.granularity == "day"
    assert tr.label == "last 30 days"


def test_last_n_months_clamps_day():
    tr, _ = detect_time_range("past 4 months", datetime.date(2025, 6, 30))
    assert tr.start == datetime.date(2025, 2, 28)
    assert tr.granularity == "month"


def test_last_month():
    tr, _ = detect_time_range("last month", TODAY)
    assert (tr.start, tr.end) == (datetime.date(2025, 5, 1), datetime.date(2025, 5, 31))


def test_last_week():
    # 2025-06-30 is a Monday
    tr, _ = detect_time_range("last week", TODAY)
    assert (tr.start, tr.end) == (datetime.date(2025, 6, 23), datetime.date(2025, 6, 29))


def test_ytd():
    tr, _ = detect_time_range("ytd", TODAY)
    assert (tr.start, tr.end) == (datetime.date(2025, 1, 1), TODAY)


def test_time_phrase_not_a_dimension():
    # "months" inside the time phrase must not become a month dimension
    parsed = parse("trend of shipments over the last 3 months", today=TODAY)
    assert parsed.intent == "trend"
    assert parsed.dimensions == []
    assert parsed.time_range.granularity == "month"


# ── Filters / limits / comparison ────────────────────────

def test_state_filter():
    parsed = parse("show cost by carrier in TX", today=TODAY)
    assert len(parsed.filters) == 1
    clause = parsed.filters[0]
    assert (clause.field, clause.operator, clause.value) == ("state", "eq", "TX")


def test_lowercase_words_not_state_codes():
    assert parse("cost in or out of network", today=TODAY).filters == []


def test_top_n():
    parsed = parse("top 5 carriers by cost", today=TODAY)
    assert parsed.limit == 5
    assert parsed.sort == "desc"


def test_bottom_n():
    parsed = parse("bottom 3 states by weight", today=TODAY)
    assert parsed.limit == 3
    assert parsed.sort == "asc"


def test_comparison_targets_from_terms():
    parsed = parse("compare drawers and cargoglides", today=TODAY)
    assert parsed.comparison_targets == ["Drawer", "CargoGlide"]


def test_geographic_flag():
    assert parse("cost by destination", today=TODAY).geographic == "state"
    assert parse("cost by carrier", today=TODAY).geographic is None


def test_quoted_terms_added():
    parsed = parse('average cost for "Roof Rack" by state', today=TODAY)
    assert parsed.terms == ["Roof Rack"]


# ── Multi-dimension ──────────────────────────────────────

def test_template_pair():
    md = parse("cost by carrier and mode", today=TODAY).multi_dimension
    assert (md.primary, md.secondary, md.metric, md.source) == ("carrier", "mode", "cost", "template")


def test_proximity_with_terms():
    md = parse("average cost for drawer systems and cargoglides by origin state", today=TODAY).multi_dimension
    assert md.primary == "product"
    assert md.secondary == "state"
    assert md.aggregation == "avg"
    assert md.source == "proximity"


def test_proximity_needs_metric_mention():
    assert parse("drawers by carrier", today=TODAY).multi_dimension is None


def test_conjunction():
    md = parse("by carrier and mode", today=TODAY).multi_dimension
    assert (md.primary, md.secondary, md.source) == ("carrier", "mode", "conjunction")


def test_same_dimension_twice_is_not_multi():
    assert parse("cost by state and origin", today=TODAY).multi_dimension is None


def test_unknown_dimension_is_not_multi():
    assert parse("cost by planet and moon", today=TODAY).multi_dimension is None


# ── Idempotence ──────────────────────────────────────────

@pytest.mark.parametrize("question", [
    "average cost for drawer system and cargoglide by state, last 30 days",
    "top 5 carriers by total cost in TX",
    "compare drawers vs tool boxes this year",
])
def test_parse_twice_is_identical(question):
    parser = IntentParser()
    first = parser.parse(question, today=TODAY)
    second = parser.parse(question, today=TODAY)
    assert first == second
    assert first.model_dump() == second.model_dump()
