"""
Query engine service -- orchestrates plan -> bind -> build -> validate ->
execute -> merge -> profile -> recommend.

Statuses of an ``EngineResult``:
  ok                  rows were produced
  selection_required  a field could not be bound to a visible column
  invalid             a built request failed validation
  no_data             every backend request failed
  no_results          requests succeeded but matched nothing

Every call gets a ``batch_id``; callers that fire overlapping requests keep
the latest id and drop results carrying an older one.
"""
from __future__ import annotations

import dataclasses
import datetime
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

from src.backend.base import AggregationBackend
from src.catalog.loader import Catalog, Column, load_catalog
from src.catalog.suggestions import suggest_columns
from src.catalog.validator import validate_request
from src.core.config import Settings, get_settings
from src.core.logging import get_logger
from src.core.utils import timer
from src.engine import explainer
from src.engine.builder import BuildPlan, ManualSelection, build_manual, build_requests, effective_date_range
from src.engine.cache import ResultCache, get_cache, make_key
from src.engine.executor import AggregationExecutor, BatchResult, new_batch_id
from src.engine.merger import flatten, merge, merge_single, pivot
from src.engine.models import AggregationRequest, DateRange, MultiDimension, ParsedQuery, Scope
from src.engine.planner import plan
from src.engine.profiler import DataProfile, profile
from src.engine.visualization import VisualizationPlan, recommend

logger = get_logger(__name__)

STATUS_OK = "ok"
STATUS_SELECTION_REQUIRED = "selection_required"
STATUS_INVALID = "invalid"
STATUS_NO_DATA = "no_data"
STATUS_NO_RESULTS = "no_results"


@dataclass
class EngineResult:
    question: str
    batch_id: str
    status: str
    parsed: ParsedQuery | None = None
    requests: list[AggregationRequest] = field(default_factory=list)
    rows: list[dict[str, Any]] = field(default_factory=list)
    secondary_groups: list[str] = field(default_factory=list)
    is_multi_dimension: bool = False
    date_range: DateRange | None = None
    unresolved: list[str] = field(default_factory=list)
    suggestions: dict[str, list[str]] = field(default_factory=dict)
    validation_errors: list[str] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)
    empty_terms: list[str] = field(default_factory=list)
    profile: DataProfile | None = None
    visualization: VisualizationPlan | None = None
    description: str = ""
    explanation: str = ""
    latency_ms: int = 0
    cached: bool = False

    @property
    def success(self) -> bool:
        return self.status == STATUS_OK


def selection_to_query(selection: ManualSelection) -> ParsedQuery:
    """ParsedQuery equivalent of a manual selection (for titles and scoring)."""
    dimensions = [selection.group_by] + ([selection.secondary_group_by] if selection.secondary_group_by else [])
    multi = None
    if selection.secondary_group_by:
        multi = MultiDimension(
            primary=selection.group_by, secondary=selection.secondary_group_by,
            metric=selection.metric, aggregation=selection.aggregation, source="manual",
        )
    return ParsedQuery(
        metrics=[selection.metric],
        dimensions=dimensions,
        terms=list(selection.terms),
        aggregation=selection.aggregation,
        multi_dimension=multi,
        limit=selection.limit,
        sort=selection.sort,
    )


class QueryEngine:
    """One instance per process; backend and cache are injected."""

    def __init__(
        self,
        backend: AggregationBackend,
        cache: ResultCache | None = None,
        catalog: Catalog | None = None,
        settings: Settings | None = None,
    ):
        self.backend = backend
        self.cache = cache if cache is not None else get_cache()
        self.catalog = catalog or load_catalog()
        self.settings = settings or get_settings()

    # ── Public API ──────────────────────────────────────

    def columns_for(self, scope: Scope) -> list[Column]:
        return self.catalog.visible_columns(scope.is_admin)

    def parse(
        self, question: str, scope: Scope | None = None, mode: str = "mock",
        today: datetime.date | None = None,
    ) -> ParsedQuery:
        scope = scope or Scope()
        return plan(question, mode=mode, columns=self.columns_for(scope), today=today, catalog=self.catalog)

    async def ask(
        self,
        question: str,
        scope: Scope | None = None,
        mode: str = "mock",
        date_range: DateRange | None = None,
        today: datetime.date | None = None,
        use_cache: bool = True,
    ) -> EngineResult:
        """End-to-end: question -> merged, chart-ready rows.

        Parameters
        ----------
        question : str
            Free-text analytical request.
        scope : Scope
            Opaque caller scope; decides column visibility and is forwarded
            to the backend.
        mode : str
            Planner mode -- "mock" (heuristic), "openai", or "anthropic".
        date_range : DateRange, optional
            Overrides any time range in the question.
        """
        scope = scope or Scope()
        batch_id = new_batch_id()
        today = today or datetime.date.today()
        logger.info("Engine.ask | batch=%s | question=%s | mode=%s | admin=%s",
                    batch_id, question, mode, scope.is_admin)

        key = make_key(
            question, mode, scope.customer_id, scope.is_admin, today.isoformat(),
            date_range.model_dump_json() if date_range else "",
        )
        if use_cache:
            hit = self.cache.get(key)
            if hit is not None:
                logger.info("Cache HIT for question=%s", question[:60])
                return dataclasses.replace(hit, batch_id=batch_id, cached=True, latency_ms=0)

        with timer() as t:
            parsed = self.parse(question, scope=scope, mode=mode, today=today)
            effective = effective_date_range(
                parsed, override=date_range, today=today,
                default_days=self.settings.default_date_range_days,
            )
            build = build_requests(parsed, self.columns_for(scope), self.catalog, effective, self.settings)
            result = await self._run(question, parsed, build, scope, batch_id, mode)
        result.latency_ms = t["elapsed_ms"]

        if use_cache and result.success:
            self.cache.put(key, result, ttl=self.settings.cache_ttl_seconds)
        return result

    async def ask_manual(
        self,
        selection: ManualSelection,
        scope: Scope | None = None,
        date_range: DateRange | None = None,
        today: datetime.date | None = None,
    ) -> EngineResult:
        """Explicit field selection, no parsing and no caching."""
        scope = scope or Scope()
        batch_id = new_batch_id()
        parsed = selection_to_query(selection)
        effective = effective_date_range(
            None, override=date_range, today=today,
            default_days=self.settings.default_date_range_days,
        )
        with timer() as t:
            build = build_manual(selection, self.columns_for(scope), self.catalog, effective, self.settings)
            result = await self._run("", parsed, build, scope, batch_id, "mock")
        result.latency_ms = t["elapsed_ms"]
        return result

    # ── Internals ───────────────────────────────────────

    async def _run(
        self,
        question: str,
        parsed: ParsedQuery,
        build: BuildPlan,
        scope: Scope,
        batch_id: str,
        mode: str,
    ) -> EngineResult:
        result = EngineResult(
            question=question, batch_id=batch_id, status=STATUS_OK, parsed=parsed,
            requests=build.requests, date_range=build.date_range,
            is_multi_dimension=build.is_multi_dimension,
        )
        columns = self.columns_for(scope)

        # 1. Unbound fields block execution
        if build.needs_selection:
            result.status = STATUS_SELECTION_REQUIRED
            result.unresolved = build.unresolved
            for item in build.unresolved:
                hint = item.partition(":")[2]
                if hint:
                    result.suggestions[hint] = [s.id for s in suggest_columns(hint, columns)]
            result.explanation = explainer.explain(
                question, explainer.explain_selection_required(build.unresolved, result.suggestions), mode,
            )
            return result

        # 2. Validate every request before touching the backend
        errors: list[str] = []
        for request in build.requests:
            for err in validate_request(request, columns, self.settings.max_limit, self.catalog.date_field):
                if err not in errors:
                    errors.append(err)
        if errors:
            result.status = STATUS_INVALID
            result.validation_errors = errors
            result.explanation = explainer.explain(question, " ".join(errors), mode)
            return result

        # 3. Execute
        executor = AggregationExecutor(self.backend, scope, concurrency=self.settings.max_concurrency)
        batch = await executor.run_batch(build.requests, batch_id=batch_id)
        result.failures = batch.failures
        result.empty_terms = batch.empty_terms if build.fan_out else []

        if batch.all_failed:
            result.status = STATUS_NO_DATA
            result.explanation = explainer.explain(question, explainer.explain_no_data(batch.failures), mode)
            return result
        if not batch.has_rows:
            result.status = STATUS_NO_RESULTS
            result.explanation = explainer.explain(
                question, explainer.explain_no_results(build.date_range, build.terms), mode,
            )
            return result

        # 4. Merge, profile, recommend
        self._merge(result, build, batch, parsed)
        result.profile = profile(result.rows)
        result.visualization = recommend(parsed, result.profile, multi_dimension=result.is_multi_dimension)
        result.description = self._describe(build, result)
        return result

    @staticmethod
    def _merge(result: EngineResult, build: BuildPlan, batch: BatchResult, parsed: ParsedQuery) -> None:
        aggregation = build.binding.aggregation
        if build.fan_out:
            if build.is_multi_dimension:
                merged = merge(batch.per_term, aggregation)
                result.rows, result.secondary_groups = merged.rows, merged.secondary_groups
            else:
                result.rows = merge_single(batch.per_term, aggregation, parsed.sort)
            return

        rows = [row for outcome in batch.outcomes for row in outcome.rows]
        if build.is_multi_dimension:
            merged = pivot(rows, aggregation)
            result.rows, result.secondary_groups = merged.rows, merged.secondary_groups
        else:
            result.rows = flatten(rows, aggregation, parsed.sort)

    def _describe(self, build: BuildPlan, result: EngineResult) -> str:
        binding = build.binding
        by_product = binding.group.id == self.catalog.term_field
        return explainer.describe(
            aggregation=binding.aggregation,
            metric_label=binding.metric.id,
            group_label=None if by_product else binding.group.label,
            terms=build.terms,
            secondary_label=binding.secondary.label if binding.secondary else None,
            profile=result.profile,
            empty_terms=result.empty_terms,
        )


@lru_cache
def get_query_engine() -> QueryEngine:
    """Process-wide engine wired to the configured backend and cache."""
    from src.backend.factory import create_backend

    return QueryEngine(backend=create_backend(), cache=get_cache())
