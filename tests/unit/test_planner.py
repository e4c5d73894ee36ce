"""
Unit tests -- planner (heuristic mode and LLM overlay).
"""
import datetime
import json

import src.engine.llm_client as llm_client
from src.engine.models import MultiDimension
from src.engine.parser import parse
from src.engine.planner import LLMPlan, apply_llm_plan, build_llm_prompt, plan

TODAY = datetime.date(2025, 6, 30)


def _fake_llm(payload):
    def call(prompt, provider=None, system=None, json_mode=False):
        assert json_mode
        return payload if isinstance(payload, str) else json.dumps(payload)
    return call


def test_mock_mode_is_heuristic_parse():
    question = "average cost for drawers by carrier last 30 days"
    assert plan(question, today=TODAY) == parse(question, today=TODAY)


def test_prompt_lists_visible_columns_only(catalog):
    prompt = build_llm_prompt("q", catalog.visible_columns(False), catalog)
    assert "carrier_name" in prompt
    assert "margin_percent" not in prompt
    assert "Drawer System" in prompt


def test_llm_overlay_two_dimensions(monkeypatch):
    monkeypatch.setattr(llm_client, "call_llm", _fake_llm({
        "intent": "compare",
        "metric": "weight",
        "group_by": "carrier_name",
        "secondary_group_by": "mode",
        "aggregation": "sum",
        "terms": [],
    }))
    parsed = plan("weights for each hauler last month", mode="openai", today=TODAY)

    assert parsed.intent == "compare"
    assert parsed.metrics == ["weight"]
    assert parsed.aggregation == "sum"
    assert parsed.dimensions == ["carrier_name", "mode_name"]
    md = parsed.multi_dimension
    assert (md.primary, md.secondary, md.metric, md.source) == ("carrier_name", "mode_name", "weight", "llm")
    # dates still come from the heuristic parse
    assert parsed.time_range.label == "last month"


def test_llm_product_field_maps_to_product_dimension(monkeypatch):
    monkeypatch.setattr(llm_client, "call_llm", _fake_llm({"group_by": "item_description", "terms": ["Roof Rack"]}))
    parsed = plan("what do drawers cost", mode="anthropic", today=TODAY)
    assert parsed.dimensions == ["product"]
    assert parsed.terms == ["Roof Rack", "Drawer"]
    assert parsed.multi_dimension is None


def test_unusable_llm_answer_falls_back(monkeypatch):
    monkeypatch.setattr(llm_client, "call_llm", _fake_llm("I cannot help with that"))
    question = "average cost by carrier"
    assert plan(question, mode="openai", today=TODAY) == parse(question, today=TODAY)


def test_invalid_llm_values_fall_back(monkeypatch):
    monkeypatch.setattr(llm_client, "call_llm", _fake_llm({"aggregation": "median"}))
    question = "average cost by carrier"
    assert plan(question, mode="openai", today=TODAY) == parse(question, today=TODAY)


def test_apply_keeps_heuristic_multi_dimension(catalog):
    base = parse("average cost for drawers and cargoglides by state", today=TODAY)
    assert base.multi_dimension is not None
    updated = apply_llm_plan(base, LLMPlan(metric="weight"), catalog.visible_columns(False), catalog)
    assert updated.multi_dimension == MultiDimension(
        primary="product", secondary="state", metric="weight", aggregation="avg", source="proximity",
    )
