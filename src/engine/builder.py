"""
Aggregation request builder -- turns a ParsedQuery (or a manual selection)
into one or more AggregationRequests.

  - ≥ ``fan_out_threshold`` product terms → one request per term, grouped by
    the product field (plus an optional secondary dimension) with a single
    ``ilike`` clause each
  - otherwise one consolidated request; a single term becomes one ``ilike``
    clause, several terms with fan-out disabled become ``contains_any``
  - the table is item-level when any referenced field is item-level
  - every request carries the effective date range
"""
from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from pydantic import BaseModel, Field

from src.catalog.loader import Catalog, Column
from src.core.config import Settings, get_settings
from src.core.logging import get_logger
from src.engine.models import (
    AggregationFn,
    AggregationRequest,
    DateRange,
    FilterClause,
    ParsedQuery,
    SortDirection,
)
from src.engine.resolver import resolve, resolve_first

logger = get_logger(__name__)

_PRODUCT_DIMENSION = "product"


class ManualSelection(BaseModel):
    """Explicit field choices that bypass the intent parser."""

    group_by: str = Field(..., description="Primary group-by field or hint")
    secondary_group_by: str | None = None
    metric: str = Field(..., description="Metric id, column id or hint")
    aggregation: AggregationFn = "avg"
    terms: list[str] = Field(default_factory=list)
    filters: list[FilterClause] = Field(default_factory=list)
    limit: int | None = None
    sort: SortDirection | None = None


@dataclass(frozen=True)
class Binding:
    """Columns a request is built from."""
    group: Column
    metric: Column
    aggregation: str
    secondary: Column | None = None


@dataclass
class BuildPlan:
    """Output of the builder: the requests plus how they were derived."""
    requests: list[AggregationRequest] = field(default_factory=list)
    binding: Binding | None = None
    terms: list[str] = field(default_factory=list)
    date_range: DateRange | None = None
    fan_out: bool = False
    unresolved: list[str] = field(default_factory=list)
    # dimensions the fan-out layout had no room for
    dropped_dimensions: list[str] = field(default_factory=list)

    @property
    def needs_selection(self) -> bool:
        return bool(self.unresolved) or self.binding is None

    @property
    def is_multi_dimension(self) -> bool:
        return self.binding is not None and self.binding.secondary is not None


# ── Date range ───────────────────────────────────────────

def effective_date_range(
    parsed: ParsedQuery | None,
    override: DateRange | None = None,
    today: datetime.date | None = None,
    default_days: int | None = None,
) -> DateRange:
    """Caller override, else the parsed time range, else the last N days."""
    if override is not None:
        return DateRange(start=override.start, end=override.end)
    if parsed is not None and parsed.time_range is not None:
        return DateRange(start=parsed.time_range.start, end=parsed.time_range.end)
    today = today or datetime.date.today()
    days = default_days if default_days is not None else get_settings().default_date_range_days
    return DateRange(start=today - datetime.timedelta(days=days), end=today)


def date_filters(date_field: str, date_range: DateRange) -> list[FilterClause]:
    return [
        FilterClause(field=date_field, operator="gte", value=date_range.start.isoformat()),
        FilterClause(field=date_field, operator="lte", value=date_range.end.isoformat()),
    ]


# ── Table routing ────────────────────────────────────────

def route_table(fields: Iterable[str], catalog: Catalog) -> str:
    """Item-level table when any referenced field is item-level."""
    item_fields = catalog.item_level_fields()
    if any(f in item_fields for f in fields):
        return catalog.table_for("item")
    return catalog.table_for("shipment")


# ── Column binding ───────────────────────────────────────

def bind_metric(name: str, columns: Sequence[Column], catalog: Catalog) -> Column | None:
    """Canonical metric id → first visible candidate, else a direct resolve."""
    binding = catalog.metric_binding(name)
    if binding is not None:
        col = resolve_first(binding.candidates, columns)
        if col is not None:
            return col
    return resolve(name, columns)


def bind_dimension(name: str, columns: Sequence[Column], catalog: Catalog) -> Column | None:
    if name == _PRODUCT_DIMENSION:
        return catalog.column(catalog.term_field) if _visible(catalog.term_field, columns) else None
    return resolve(name, columns)


def _visible(column_id: str, columns: Sequence[Column]) -> bool:
    return any(c.id == column_id for c in columns)


def _dimension_hints(parsed: ParsedQuery, fan_out: bool) -> tuple[str | None, str | None, list[str]]:
    """(primary, secondary, dropped) dimension names for *parsed*."""
    md = parsed.multi_dimension
    if md is not None and not fan_out:
        return md.primary, md.secondary, []

    if fan_out:
        # fan-out always groups by product; at most one other dimension survives
        candidates = [md.primary, md.secondary] if md is not None else parsed.dimensions
        others = [d for d in candidates if d != _PRODUCT_DIMENSION]
        return _PRODUCT_DIMENSION, (others[0] if others else None), others[1:]

    if parsed.terms and set(parsed.dimensions) <= {_PRODUCT_DIMENSION}:
        return _PRODUCT_DIMENSION, None, []
    if parsed.dimensions:
        return parsed.dimensions[0], None, []
    if parsed.time_range is not None or parsed.intent == "trend":
        granularity = parsed.time_range.granularity if parsed.time_range else "month"
        return granularity, None, []
    return None, None, []


# ── Request assembly ─────────────────────────────────────

def _resolve_filters(
    filters: Sequence[FilterClause], columns: Sequence[Column], unresolved: list[str],
) -> list[FilterClause]:
    resolved: list[FilterClause] = []
    for clause in filters:
        col = resolve(clause.field, columns)
        if col is None:
            unresolved.append(f"filter:{clause.field}")
            continue
        resolved.append(FilterClause(field=col.backend_field, operator=clause.operator, value=clause.value))
    return resolved


def _assemble(
    binding: Binding,
    terms: list[str],
    filters: list[FilterClause],
    date_range: DateRange,
    catalog: Catalog,
    limit: int | None,
    sort: str | None,
    settings: Settings,
) -> tuple[list[AggregationRequest], bool]:
    base_filters = date_filters(catalog.date_field, date_range) + list(filters)
    term_field = catalog.column(catalog.term_field)
    term_backend = term_field.backend_field if term_field else "description"

    effective_limit = min(limit or settings.default_limit, settings.max_limit)
    order_dir = sort or "desc"
    secondary_fields = [binding.secondary.backend_field] if binding.secondary else []

    fan_out = len(terms) >= max(settings.fan_out_threshold, 2)

    if fan_out:
        group_by = [term_backend] + secondary_fields
        requests: list[AggregationRequest] = []
        for term in terms:
            term_filters = base_filters + [FilterClause(field=term_backend, operator="ilike", value=term)]
            requests.append(AggregationRequest(
                table=route_table(group_by + [f.field for f in term_filters], catalog),
                group_by_fields=group_by,
                metric_field=binding.metric.backend_field,
                aggregation_fn=binding.aggregation,
                filters=term_filters,
                limit=effective_limit,
                order_dir=order_dir,
                term=term,
            ))
        return requests, True

    consolidated = list(base_filters)
    if len(terms) == 1:
        consolidated.append(FilterClause(field=term_backend, operator="ilike", value=terms[0]))
    elif terms:
        consolidated.append(FilterClause(field=term_backend, operator="contains_any", value=",".join(terms)))

    group_by = [binding.group.backend_field] + secondary_fields
    request = AggregationRequest(
        table=route_table(group_by + [f.field for f in consolidated], catalog),
        group_by_fields=group_by,
        metric_field=binding.metric.backend_field,
        aggregation_fn=binding.aggregation,
        filters=consolidated,
        limit=effective_limit,
        order_dir=order_dir,
    )
    return [request], False


# ── Public API ───────────────────────────────────────────

def build_requests(
    parsed: ParsedQuery,
    columns: Sequence[Column],
    catalog: Catalog,
    date_range: DateRange | None = None,
    settings: Settings | None = None,
) -> BuildPlan:
    """Bind *parsed* onto *columns* and build the request batch.

    A hint that cannot be bound is recorded in ``BuildPlan.unresolved`` and
    no requests are produced.
    """
    settings = settings or get_settings()
    date_range = date_range or effective_date_range(parsed, default_days=settings.default_date_range_days)
    terms = list(parsed.terms)
    fan_out = len(terms) >= max(settings.fan_out_threshold, 2)
    plan = BuildPlan(terms=terms, date_range=date_range, fan_out=fan_out)

    primary_hint, secondary_hint, plan.dropped_dimensions = _dimension_hints(parsed, fan_out)
    if plan.dropped_dimensions:
        logger.info("Fan-out groups by product; dropping dimension(s) %s", plan.dropped_dimensions)
    metric_hint = parsed.multi_dimension.metric if parsed.multi_dimension else parsed.metrics[0]

    group = bind_dimension(primary_hint, columns, catalog) if primary_hint else None
    if group is None:
        plan.unresolved.append(f"group_by:{primary_hint or ''}")
    secondary = None
    if secondary_hint:
        secondary = bind_dimension(secondary_hint, columns, catalog)
        if secondary is None:
            plan.unresolved.append(f"secondary_group_by:{secondary_hint}")
    metric = bind_metric(metric_hint, columns, catalog)
    if metric is None:
        plan.unresolved.append(f"metric:{metric_hint}")

    filters = _resolve_filters(parsed.filters, columns, plan.unresolved)

    if plan.unresolved:
        logger.info("Selection required -- unresolved=%s", plan.unresolved)
        return plan

    plan.binding = Binding(group=group, metric=metric, aggregation=parsed.aggregation, secondary=secondary)
    plan.requests, plan.fan_out = _assemble(
        plan.binding, terms, filters, date_range, catalog, parsed.limit, parsed.sort, settings,
    )
    logger.info(
        "Built %d request(s) fan_out=%s group=%s secondary=%s metric=%s agg=%s",
        len(plan.requests), plan.fan_out, group.id,
        secondary.id if secondary else None, metric.id, parsed.aggregation,
    )
    return plan


def build_manual(
    selection: ManualSelection,
    columns: Sequence[Column],
    catalog: Catalog,
    date_range: DateRange,
    settings: Settings | None = None,
) -> BuildPlan:
    """Build requests from explicit field choices (no parsing)."""
    settings = settings or get_settings()
    terms = [t.strip() for t in selection.terms if t.strip()]
    plan = BuildPlan(terms=terms, date_range=date_range)

    group = bind_dimension(selection.group_by, columns, catalog)
    if group is None:
        plan.unresolved.append(f"group_by:{selection.group_by}")
    secondary = None
    if selection.secondary_group_by:
        secondary = bind_dimension(selection.secondary_group_by, columns, catalog)
        if secondary is None:
            plan.unresolved.append(f"secondary_group_by:{selection.secondary_group_by}")
    metric = bind_metric(selection.metric, columns, catalog)
    if metric is None:
        plan.unresolved.append(f"metric:{selection.metric}")
    filters = _resolve_filters(selection.filters, columns, plan.unresolved)

    if plan.unresolved:
        logger.info("Manual selection unresolved=%s", plan.unresolved)
        return plan

    plan.binding = Binding(group=group, metric=metric, aggregation=selection.aggregation, secondary=secondary)
    plan.requests, plan.fan_out = _assemble(
        plan.binding, terms, filters, date_range, catalog, selection.limit, selection.sort, settings,
    )
    if plan.fan_out and group.id != catalog.term_field:
        plan.dropped_dimensions.append(group.id)
        logger.info("Fan-out groups by product; group_by %r replaced", group.id)
    return plan
