"""POST /ask, /ask/parse, /ask/manual -- query endpoints, plus cache admin."""
from __future__ import annotations

import datetime
from dataclasses import asdict
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from src.core.logging import get_logger
from src.engine.builder import ManualSelection, build_requests, effective_date_range
from src.engine.cache import get_cache
from src.engine.models import AggregationRequest, DateRange, ParsedQuery, Scope
from src.engine.service import EngineResult, QueryEngine, get_query_engine

logger = get_logger(__name__)
router = APIRouter()

PlannerMode = Literal["mock", "openai", "anthropic"]


class ScopeFields(BaseModel):
    customer_id: int | None = Field(None, description="Customer the caller acts for")
    is_admin: bool = Field(False, description="Caller may see restricted columns")
    start_date: datetime.date | None = Field(None, description="Overrides the date range start")
    end_date: datetime.date | None = Field(None, description="Overrides the date range end")

    def scope(self) -> Scope:
        return Scope(customer_id=self.customer_id, is_admin=self.is_admin)

    def date_range(self) -> DateRange | None:
        if self.start_date is None or self.end_date is None:
            return None
        return DateRange(start=self.start_date, end=self.end_date)


class AskRequest(ScopeFields):
    question: str = Field(..., min_length=3, max_length=500, description="Free-text analytical request")
    mode: PlannerMode = Field("mock", description="mock | openai | anthropic")


class ManualRequest(ScopeFields):
    selection: ManualSelection


class ChartResponse(BaseModel):
    chart_type: str
    score: int
    reasoning: str
    config: dict[str, Any] = Field(default_factory=dict)


class AskResponse(BaseModel):
    question: str
    batch_id: str
    status: str
    success: bool
    parsed: ParsedQuery | None
    requests: list[AggregationRequest]
    rows: list[dict[str, Any]]
    secondary_groups: list[str]
    is_multi_dimension: bool
    date_range: DateRange | None
    unresolved: list[str]
    suggestions: dict[str, list[str]]
    validation_errors: list[str]
    failures: dict[str, str]
    empty_terms: list[str]
    profile: dict[str, Any] | None
    chart: ChartResponse | None
    alternatives: list[ChartResponse]
    description: str
    explanation: str
    latency_ms: int
    cached: bool


class ParseResponse(BaseModel):
    question: str
    parsed: ParsedQuery
    requests: list[AggregationRequest]
    unresolved: list[str]
    needs_selection: bool


class CacheStatsResponse(BaseModel):
    size: int
    max_size: int
    ttl_seconds: float
    hits: int
    misses: int
    hit_rate: float


def _to_response(result: EngineResult) -> AskResponse:
    chart = None
    alternatives: list[ChartResponse] = []
    if result.visualization is not None:
        chart = ChartResponse(**result.visualization.primary.to_dict())
        alternatives = [ChartResponse(**a.to_dict()) for a in result.visualization.alternatives]

    profile = asdict(result.profile) if result.profile is not None else None

    return AskResponse(
        question=result.question,
        batch_id=result.batch_id,
        status=result.status,
        success=result.success,
        parsed=result.parsed,
        requests=result.requests,
        rows=result.rows,
        secondary_groups=result.secondary_groups,
        is_multi_dimension=result.is_multi_dimension,
        date_range=result.date_range,
        unresolved=result.unresolved,
        suggestions=result.suggestions,
        validation_errors=result.validation_errors,
        failures=result.failures,
        empty_terms=result.empty_terms,
        profile=profile,
        chart=chart,
        alternatives=alternatives,
        description=result.description,
        explanation=result.explanation,
        latency_ms=result.latency_ms,
        cached=result.cached,
    )


@router.post("", response_model=AskResponse)
async def ask_endpoint(req: AskRequest, engine: QueryEngine = Depends(get_query_engine)):
    """Full pipeline: question -> requests -> backend -> merged rows."""
    try:
        result = await engine.ask(
            req.question, scope=req.scope(), mode=req.mode, date_range=req.date_range(),
        )
    except Exception as exc:
        logger.exception("Engine.ask failed")
        raise HTTPException(status_code=500, detail=str(exc))
    return _to_response(result)


@router.post("/parse", response_model=ParseResponse)
def parse_endpoint(req: AskRequest, engine: QueryEngine = Depends(get_query_engine)):
    """Dry-run: question -> ParsedQuery -> requests (no backend call)."""
    try:
        scope = req.scope()
        parsed = engine.parse(req.question, scope=scope, mode=req.mode)
        date_range = effective_date_range(
            parsed, override=req.date_range(),
            default_days=engine.settings.default_date_range_days,
        )
        build = build_requests(parsed, engine.columns_for(scope), engine.catalog, date_range, engine.settings)
    except Exception as exc:
        logger.exception("Engine.parse failed")
        raise HTTPException(status_code=500, detail=str(exc))

    return ParseResponse(
        question=req.question,
        parsed=parsed,
        requests=build.requests,
        unresolved=build.unresolved,
        needs_selection=build.needs_selection,
    )


@router.post("/manual", response_model=AskResponse)
async def manual_endpoint(req: ManualRequest, engine: QueryEngine = Depends(get_query_engine)):
    """Explicit field selection, bypassing the parser."""
    try:
        result = await engine.ask_manual(req.selection, scope=req.scope(), date_range=req.date_range())
    except Exception as exc:
        logger.exception("Engine.ask_manual failed")
        raise HTTPException(status_code=500, detail=str(exc))
    return _to_response(result)


@router.get("/cache/stats", response_model=CacheStatsResponse)
def cache_stats_endpoint():
    """Return result cache statistics."""
    return CacheStatsResponse(**get_cache().stats())


@router.post("/cache/clear")
def cache_clear_endpoint():
    """Flush the result cache."""
    return {"cleared": get_cache().invalidate()}
