"""
GET /catalog, GET /catalog/suggest, GET /catalog/terms -- metadata endpoints.
"""
from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from src.catalog.loader import load_catalog
from src.catalog.suggestions import suggest_columns

router = APIRouter()


class ColumnItem(BaseModel):
    id: str
    label: str
    category: str
    data_type: str
    restricted: bool
    description: str = ""


class MetricItem(BaseModel):
    name: str
    candidates: list[str]
    aggregation: str | None = None


class CatalogResponse(BaseModel):
    columns: list[ColumnItem]
    metrics: list[MetricItem]
    terms: list[str]
    tables: dict[str, str]


class SuggestionItem(BaseModel):
    id: str
    label: str
    category: str
    score: float


class SuggestResponse(BaseModel):
    query: str
    suggestions: list[SuggestionItem]


@router.get("/catalog", response_model=CatalogResponse)
def full_catalog(is_admin: bool = False) -> CatalogResponse:
    """Columns visible to the caller, metric bindings and known product terms."""
    catalog = load_catalog()
    return CatalogResponse(
        columns=[ColumnItem(**c) for c in catalog.get_columns_list(is_admin)],
        metrics=[
            MetricItem(name=m.name, candidates=list(m.candidates), aggregation=m.aggregation)
            for m in catalog.metrics.values()
        ],
        terms=[t.label for t in catalog.terms],
        tables=dict(catalog.tables),
    )


@router.get("/catalog/suggest", response_model=SuggestResponse)
def suggest_endpoint(q: str = "", is_admin: bool = False) -> SuggestResponse:
    """Ranked column suggestions for a partial field name."""
    columns = load_catalog().visible_columns(is_admin)
    results = suggest_columns(q, columns) if q.strip() else []
    return SuggestResponse(
        query=q,
        suggestions=[SuggestionItem(**s.to_dict()) for s in results],
    )
