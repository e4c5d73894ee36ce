"""
Explanation layer.

Generates human-readable text for:
  - why a request needs an explicit field selection
  - why no data came back (total failure vs zero matching records)
  - what a successful result shows (description + profile annotations)

Works in both ``mock`` mode (template-based, no API key needed) and
``llm`` mode (calls the configured LLM provider for richer output).
"""
from __future__ import annotations

from typing import Sequence

from src.core.logging import get_logger
from src.engine.models import DateRange
from src.engine.profiler import DataProfile

logger = get_logger(__name__)

_AGGREGATION_WORDS: dict[str, str] = {
    "avg": "average",
    "sum": "total",
    "count": "count of",
    "min": "minimum",
    "max": "maximum",
}

_UNRESOLVED_TEMPLATES: dict[str, str] = {
    "group_by": "Choose what to group the results by (e.g. product, origin state, carrier).",
    "secondary_group_by": "Choose a second grouping field, or drop the second dimension.",
    "metric": "Choose the value to aggregate (e.g. retail, weight, miles).",
    "filter": "A filter field in your question is not available; pick it from the column list.",
}


# ── Template-based messages ─────────────────────────────


def explain_selection_required(
    unresolved: Sequence[str],
    suggestions: dict[str, list[str]] | None = None,
) -> str:
    """Markdown explanation for hints that could not be bound to a column."""
    sections = ["**Some fields in your question need a manual selection.**\n"]
    for i, item in enumerate(unresolved, 1):
        kind, _, hint = item.partition(":")
        advice = _UNRESOLVED_TEMPLATES.get(kind, "Pick the field from the column list.")
        label = f"`{hint}`" if hint else "(not mentioned)"
        sections.append(f"{i}. **{kind.replace('_', ' ')}** {label}\n   → {advice}")
        alternatives = (suggestions or {}).get(hint)
        if alternatives:
            sections.append(f"   Did you mean: {', '.join(alternatives)}?")
    return "\n".join(sections)


def explain_no_data(failures: dict[str, str] | None = None) -> str:
    """Every backend request failed."""
    text = "No data found. The data source could not answer this request."
    if failures:
        text += " Failed: " + "; ".join(f"{term}: {err}" for term, err in failures.items())
    return text


def explain_no_results(date_range: DateRange | None, terms: Sequence[str] = ()) -> str:
    """Requests succeeded but matched nothing; suggest widening the window."""
    window = ""
    if date_range is not None:
        window = f" between {date_range.start.isoformat()} and {date_range.end.isoformat()}"
    subject = f" for {', '.join(terms)}" if terms else ""
    return (
        f"No matching records{subject}{window}. "
        "Try widening the date range or removing a filter."
    )


def describe(
    aggregation: str,
    metric_label: str,
    group_label: str | None = None,
    terms: Sequence[str] = (),
    secondary_label: str | None = None,
    profile: DataProfile | None = None,
    empty_terms: Sequence[str] = (),
) -> str:
    """One-paragraph description of a result set.

    e.g. ``Shows average retail for products matching: Drawer System,
    CargoGlide (2 categories) by Origin State.``
    """
    agg = _AGGREGATION_WORDS.get(aggregation, aggregation)
    text = f"Shows {agg} {metric_label.lower()}"
    if terms:
        noun = "category" if len(terms) == 1 else "categories"
        text += f" for products matching: {', '.join(terms)} ({len(terms)} {noun})"
    by = [label for label in (group_label, secondary_label) if label]
    if by:
        text += " by " + " and ".join(by)
    text += "."

    if profile is not None:
        if profile.has_trend:
            text += f" Trend: {profile.trend_direction}."
        if profile.has_outliers:
            text += " Some values are unusually far from the average."
    if empty_terms:
        text += f" No matching records for: {', '.join(empty_terms)}."
    return text


# ── LLM-backed explanation ──────────────────────────────


def explain_llm(question: str, fallback: str) -> str:
    """Ask the configured LLM to rephrase *fallback*; falls back on any failure."""
    from src.engine.llm_client import call_llm

    prompt = (
        "You are a helpful freight analytics assistant. A user asked:\n\n"
        f"**Question:** {question}\n\n"
        f"**System message:** {fallback}\n\n"
        "Rewrite the system message in 2-3 plain sentences for the user. "
        "Keep every concrete field name and date."
    )
    try:
        return call_llm(prompt)
    except Exception as exc:
        logger.warning("LLM explanation failed, falling back to template: %s", exc)
        return fallback


def explain(question: str, message: str, mode: str = "mock") -> str:
    """Public API: template text as-is in mock mode, LLM-rephrased otherwise."""
    if mode == "mock":
        return message
    return explain_llm(question, message)
