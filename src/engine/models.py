"""
Typed intermediate representations between free text, the data backend and
chart-ready rows.
"""
from __future__ import annotations

import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

Intent = Literal["analyze", "compare", "trend", "breakdown", "find", "summarize"]
AggregationFn = Literal["sum", "avg", "count", "min", "max"]
Operator = Literal["eq", "gte", "lte", "ilike", "contains_any"]
Granularity = Literal["day", "week", "month"]
SortDirection = Literal["asc", "desc"]

AGGREGATIONS: tuple[str, ...] = ("sum", "avg", "count", "min", "max")


class FilterClause(BaseModel):
    """A single backend filter. Multiple clauses are AND-ed."""

    model_config = ConfigDict(frozen=True)

    field: str
    operator: Operator = "eq"
    value: str

    def to_backend(self) -> dict[str, str]:
        return {"field": self.field, "operator": self.operator, "value": self.value}


class DateRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: datetime.date
    end: datetime.date


class TimeRange(DateRange):
    granularity: Granularity = "day"
    label: str | None = None


class MultiDimension(BaseModel):
    """Two grouping dimensions detected in one request."""

    model_config = ConfigDict(frozen=True)

    primary: str
    secondary: str
    metric: str
    aggregation: AggregationFn = "avg"
    source: str = Field("template", description="template | proximity | conjunction | llm | manual")


class ParsedQuery(BaseModel):
    """Best-effort interpretation of a free-text analytical request."""

    model_config = ConfigDict(frozen=True)

    question: str = ""
    intent: Intent = "analyze"
    metrics: list[str] = Field(default_factory=list, description="Canonical metric ids or field hints")
    dimensions: list[str] = Field(default_factory=list, description="Candidate group-by dimensions")
    filters: list[FilterClause] = Field(default_factory=list)
    time_range: TimeRange | None = None
    geographic: str | None = None
    comparison_targets: list[str] = Field(default_factory=list)
    terms: list[str] = Field(default_factory=list, description="Product terms found in the text")
    aggregation: AggregationFn = "avg"
    multi_dimension: MultiDimension | None = None
    limit: int | None = None
    sort: SortDirection | None = None


class Scope(BaseModel):
    """Opaque caller scope, forwarded verbatim to the backend."""

    model_config = ConfigDict(frozen=True)

    customer_id: int | None = None
    is_admin: bool = False


class AggregationRequest(BaseModel):
    """One structured aggregation against the data backend."""

    model_config = ConfigDict(frozen=True)

    table: str
    group_by_fields: list[str]
    metric_field: str
    aggregation_fn: AggregationFn = "avg"
    filters: list[FilterClause] = Field(default_factory=list)
    limit: int = 100
    order_dir: SortDirection = "desc"
    term: str | None = Field(None, description="Product term this request was fanned out for")

    @field_validator("group_by_fields")
    @classmethod
    def _one_or_two_fields(cls, value: list[str]) -> list[str]:
        if not 1 <= len(value) <= 2:
            raise ValueError("group_by_fields must hold 1 or 2 fields")
        return value

    @property
    def group_by(self) -> str:
        return ",".join(self.group_by_fields)

    @property
    def is_multi_dimension(self) -> bool:
        return len(self.group_by_fields) == 2


class AggregationRow(BaseModel):
    """One normalised unit of a backend response."""

    model_config = ConfigDict(frozen=True)

    group_value: str
    secondary_group_value: str | None = None
    value: float
    support_count: int = 1
