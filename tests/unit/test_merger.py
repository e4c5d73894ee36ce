"""
Unit tests -- re-aggregation and multi-dimension merging.
"""
import pytest

from src.engine.merger import PRIMARY_KEY, Accumulator, flatten, merge, merge_single, pivot
from src.engine.models import AggregationRow


def _row(group, value, count=1, secondary=None):
    return AggregationRow(group_value=group, secondary_group_value=secondary, value=value, support_count=count)


# ── Accumulator ──────────────────────────────────────────

def test_weighted_average():
    acc = Accumulator("avg")
    acc.add(10, 2)
    acc.add(20, 3)
    assert acc.result() == pytest.approx(16.0)
    assert acc.support == 5


def test_average_without_support_is_zero():
    acc = Accumulator("avg")
    acc.add(10, 0)
    acc.add(20, 0)
    assert acc.result() == 0.0


@pytest.mark.parametrize("aggregation,expected", [
    ("sum", 60.0),
    ("count", 12.0),
    ("min", 20.0),
    ("max", 20.0),
    ("median", 20.0),
])
def test_other_aggregations(aggregation, expected):
    acc = Accumulator(aggregation)
    for value in (10, 20, 30):
        acc.add(value, 4)
    assert acc.result() == expected


def test_count_sums_support_not_values():
    acc = Accumulator("count")
    acc.add(3, 5)
    acc.add(4, 6)
    assert acc.result() == 11.0


def test_empty_accumulator():
    acc = Accumulator("sum")
    assert acc.empty
    assert acc.result() is None


# ── Fan-out merge ────────────────────────────────────────

def test_merge_collapses_each_term_to_one_row():
    per_term = {
        "Drawer": [
            _row("Drawer System 48in", 10, 2, "TX"),
            _row("Steel Drawer Unit", 20, 3, "TX"),
            _row("Drawer System 48in", 7, 1, "CA"),
        ],
        "CargoGlide": [_row("CargoGlide 1000", 5, 1, "TX")],
    }
    result = merge(per_term, "avg")

    assert [r[PRIMARY_KEY] for r in result.rows] == ["Drawer", "CargoGlide"]
    assert result.rows[0] == {PRIMARY_KEY: "Drawer", "TX": 16.0, "CA": 7.0}
    assert result.secondary_groups == ["CA", "TX"]


def test_missing_pair_absent_not_zero():
    result = merge({"Drawer": [_row("d", 1, 1, "TX")], "CargoGlide": [_row("c", 2, 1, "CA")]}, "sum")
    assert "CA" not in result.rows[0]
    assert "TX" not in result.rows[1]


def test_missing_secondary_becomes_unknown():
    result = merge({"Drawer": [_row("d", 1)]}, "sum")
    assert result.rows == [{PRIMARY_KEY: "Drawer", "Unknown": 1.0}]


def test_empty_terms_left_out():
    result = merge({"Drawer": [], "CargoGlide": [_row("c", 2, 1, "TX")]}, "sum")
    assert [r[PRIMARY_KEY] for r in result.rows] == ["CargoGlide"]


def test_values_rounded():
    result = merge({"Drawer": [_row("d", 1, 1, "TX"), _row("d", 2, 2, "TX")]}, "avg")
    assert result.rows[0]["TX"] == 1.67


def test_to_dict():
    result = merge({"Drawer": [_row("d", 1, 1, "TX")]}, "sum")
    assert result.to_dict() == {"rows": [{PRIMARY_KEY: "Drawer", "TX": 1.0}], "secondary_groups": ["TX"]}
    assert not result.is_empty


# ── Consolidated pivot ───────────────────────────────────

def test_pivot_on_primary_group():
    rows = [_row("Saia", 10, 1, "LTL"), _row("Saia", 30, 1, "TL"), _row("Estes", 5, 1, "LTL")]
    result = pivot(rows, "sum")
    assert result.rows == [
        {PRIMARY_KEY: "Saia", "LTL": 10.0, "TL": 30.0},
        {PRIMARY_KEY: "Estes", "LTL": 5.0},
    ]
    assert result.secondary_groups == ["LTL", "TL"]


# ── Single-dimension series ──────────────────────────────

def test_merge_single_one_value_per_term():
    per_term = {
        "Drawer": [_row("Drawer System 48in", 10, 2), _row("Steel Drawer Unit", 20, 3)],
        "CargoGlide": [_row("CargoGlide 1000", 5, 1)],
    }
    assert merge_single(per_term, "avg") == [
        {"label": "Drawer", "value": 16.0},
        {"label": "CargoGlide", "value": 5.0},
    ]


def test_flatten_sorted_only_when_asked():
    rows = [_row("a", 1), _row("b", 3), _row("c", 2)]
    assert [r["label"] for r in flatten(rows, "sum")] == ["a", "b", "c"]
    assert [r["label"] for r in flatten(rows, "sum", "desc")] == ["b", "c", "a"]
    assert [r["label"] for r in flatten(rows, "sum", "asc")] == ["a", "c", "b"]
