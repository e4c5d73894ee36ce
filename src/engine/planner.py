"""
Planner -- converts a free-text question into a ParsedQuery.

Two modes:
  mock               → deterministic heuristic parser (no API key needed)
  openai / anthropic → the LLM names the fields; the Column Resolver binds
                       them; everything else (dates, filters, limits) still
                       comes from the heuristic parse

If the LLM answer is not usable JSON the heuristic parse is returned as-is.
"""
from __future__ import annotations

import datetime
from typing import Any, Sequence

from pydantic import BaseModel, Field, ValidationError

from src.catalog.loader import Catalog, Column, load_catalog
from src.core.logging import get_logger
from src.engine.models import AggregationFn, Intent, MultiDimension, ParsedQuery
from src.engine.parser import IntentParser, default_parser
from src.engine.resolver import resolve

logger = get_logger(__name__)

PRODUCT_DIMENSION = "product"


class LLMPlan(BaseModel):
    """Shape the model is asked to return."""

    intent: Intent | None = None
    metric: str | None = None
    group_by: str | None = None
    secondary_group_by: str | None = None
    aggregation: AggregationFn | None = None
    terms: list[str] = Field(default_factory=list)


_LLM_PROMPT = """\
Map the freight analytics question below onto the available fields and reply \
with one JSON object with these exact keys:

  intent             : one of analyze, compare, trend, breakdown, find, summarize
  metric             : a metric name ({metrics}) or a numeric column id
  group_by           : a column id to group by
  secondary_group_by : a second column id, or null
  aggregation        : one of sum, avg, count, min, max
  terms              : list of product names mentioned (e.g. {terms})

Available column ids: {columns}

Question: {question}

JSON:"""


def build_llm_prompt(question: str, columns: Sequence[Column], catalog: Catalog) -> str:
    return _LLM_PROMPT.format(
        metrics=", ".join(catalog.metrics),
        terms=", ".join(t.label for t in catalog.terms) or "none",
        columns=", ".join(c.id for c in columns),
        question=question,
    )


def _dimension_hint(name: str, columns: Sequence[Column], catalog: Catalog) -> str:
    """Bound column id (``product`` for the term field) or the raw name."""
    col = resolve(name, columns)
    if col is None:
        return name
    return PRODUCT_DIMENSION if col.id == catalog.term_field else col.id


def apply_llm_plan(
    base: ParsedQuery, llm: LLMPlan, columns: Sequence[Column], catalog: Catalog,
) -> ParsedQuery:
    """Overlay the model's field choices on the heuristic parse."""
    update: dict[str, Any] = {}
    if llm.intent:
        update["intent"] = llm.intent
    if llm.aggregation:
        update["aggregation"] = llm.aggregation
    if llm.metric:
        update["metrics"] = [llm.metric]
    if llm.terms:
        terms = list(llm.terms)
        for term in base.terms:
            if term.lower() not in (t.lower() for t in terms):
                terms.append(term)
        update["terms"] = terms

    metric = update.get("metrics", base.metrics)[0]
    aggregation = update.get("aggregation", base.aggregation)
    if llm.group_by:
        primary = _dimension_hint(llm.group_by, columns, catalog)
        update["dimensions"] = [primary]
        update["multi_dimension"] = None
        if llm.secondary_group_by:
            secondary = _dimension_hint(llm.secondary_group_by, columns, catalog)
            update["dimensions"].append(secondary)
            update["multi_dimension"] = MultiDimension(
                primary=primary, secondary=secondary,
                metric=metric, aggregation=aggregation, source="llm",
            )
    elif base.multi_dimension is not None:
        update["multi_dimension"] = base.multi_dimension.model_copy(
            update={"metric": metric, "aggregation": aggregation}
        )
    return base.model_copy(update=update)


def _plan_llm(
    question: str, base: ParsedQuery, mode: str, columns: Sequence[Column], catalog: Catalog,
) -> ParsedQuery:
    from src.engine.llm_client import call_llm, extract_json

    response = call_llm(build_llm_prompt(question, columns, catalog), provider=mode, json_mode=True)
    try:
        llm = LLMPlan.model_validate(extract_json(response))
    except (ValueError, ValidationError) as exc:
        logger.warning("LLM returned unusable JSON, falling back to heuristic parse: %s", exc)
        return base
    return apply_llm_plan(base, llm, columns, catalog)


# ── Public API ───────────────────────────────────────────

def plan(
    question: str,
    mode: str = "mock",
    columns: Sequence[Column] | None = None,
    today: datetime.date | None = None,
    parser: IntentParser | None = None,
    catalog: Catalog | None = None,
) -> ParsedQuery:
    """Parse *question* into a ParsedQuery.

    Modes
    -----
    mock               : heuristic keyword / regex parsing
    openai / anthropic : LLM field selection on top of the heuristic parse
    """
    catalog = catalog or load_catalog()
    if columns is None:
        columns = catalog.visible_columns(is_admin=False)

    parsed = (parser or default_parser()).parse(question, today=today)
    if mode != "mock":
        parsed = _plan_llm(question, parsed, mode, columns, catalog)

    logger.info("Planner[%s] -> %s", mode, parsed.model_dump_json(exclude={"question"}))
    return parsed
