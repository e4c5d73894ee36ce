"""
Postgres backend -- calls the ``mcp_aggregate`` SQL function directly.

Single shared SQLAlchemy engine with connection pooling.  Every call runs
in a READ ONLY transaction with a per-statement timeout.  SQLAlchemy is
synchronous, so the call is pushed to a worker thread to keep the event
loop free.
"""
from __future__ import annotations

import asyncio
import json
from contextlib import contextmanager
from typing import Any, Generator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from src.backend.base import AggregationBackend, AggregationError, rpc_params
from src.core.config import get_settings
from src.core.logging import get_logger
from src.engine.models import AggregationRequest, Scope

logger = get_logger(__name__)

_QUERY_TIMEOUT_MS = 10_000

_AGGREGATE_SQL = text(
    "SELECT mcp_aggregate("
    "p_table_name => :p_table_name, "
    "p_customer_id => :p_customer_id, "
    "p_is_admin => :p_is_admin, "
    "p_group_by => :p_group_by, "
    "p_metric => :p_metric, "
    "p_aggregation => :p_aggregation, "
    "p_filters => CAST(:p_filters AS jsonb), "
    "p_limit => :p_limit"
    ") AS result"
)

_engine: Engine | None = None


def get_engine() -> Engine:
    """Return the shared SQLAlchemy engine (lazy-created, cached)."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine(
            settings.database_url,
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=10,
            echo=False,
        )
        logger.info("DB engine created  host=%s  db=%s", settings.postgres_host, settings.postgres_db)
    return _engine


@contextmanager
def readonly_connection(engine: Engine | None = None) -> Generator[Connection, None, None]:
    """Yield a connection inside a READ ONLY transaction."""
    conn = (engine or get_engine()).connect()
    try:
        conn.execute(text("SET TRANSACTION READ ONLY"))
        yield conn
    finally:
        conn.close()


def call_aggregate(
    params: dict[str, Any],
    engine: Engine | None = None,
    timeout_ms: int = _QUERY_TIMEOUT_MS,
) -> Any:
    """Run ``mcp_aggregate`` synchronously and return its raw result."""
    bound = dict(params, p_filters=json.dumps(params["p_filters"]))
    with readonly_connection(engine) as conn:
        conn.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))
        return conn.execute(_AGGREGATE_SQL, bound).scalar()


class PostgresBackend(AggregationBackend):
    name = "postgres"

    def __init__(self, engine: Engine | None = None, timeout_ms: int = _QUERY_TIMEOUT_MS):
        self._engine = engine
        self._timeout_ms = timeout_ms

    async def aggregate(self, request: AggregationRequest, scope: Scope) -> Any:
        params = rpc_params(request, scope)
        try:
            return await asyncio.to_thread(call_aggregate, params, self._engine, self._timeout_ms)
        except SQLAlchemyError as exc:
            raise AggregationError(f"mcp_aggregate failed: {exc}") from exc
