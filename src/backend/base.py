"""
Data backend contract.

A backend accepts one AggregationRequest plus the caller's opaque scope and
returns the raw payload of the ``mcp_aggregate`` call, in whatever shape the
transport produces.  Normalisation happens in the executor.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from src.engine.models import AggregationRequest, Scope


class AggregationError(RuntimeError):
    """A backend call failed or returned a malformed / error payload."""


def rpc_params(request: AggregationRequest, scope: Scope) -> dict[str, Any]:
    """Named parameters of the ``mcp_aggregate`` remote procedure."""
    return {
        "p_table_name": request.table,
        "p_customer_id": scope.customer_id or 0,
        "p_is_admin": scope.is_admin,
        "p_group_by": request.group_by,
        "p_metric": request.metric_field,
        "p_aggregation": request.aggregation_fn,
        "p_filters": [f.to_backend() for f in request.filters],
        "p_limit": request.limit,
    }


class AggregationBackend(ABC):
    """Executes ``mcp_aggregate`` somewhere."""

    name: str = "base"

    @abstractmethod
    async def aggregate(self, request: AggregationRequest, scope: Scope) -> Any:
        """Run *request*; raise ``AggregationError`` on transport failures."""

    async def aclose(self) -> None:
        return None
