"""
HTTP RPC backend -- calls ``mcp_aggregate`` through a PostgREST-style
``/rest/v1/rpc/<function>`` endpoint with ``httpx.AsyncClient``.
"""
from __future__ import annotations

from typing import Any

import httpx

from src.backend.base import AggregationBackend, AggregationError, rpc_params
from src.core.logging import get_logger
from src.engine.models import AggregationRequest, Scope

logger = get_logger(__name__)

_RPC_PATH = "/rest/v1/rpc/mcp_aggregate"


class HttpBackend(AggregationBackend):
    """Remote ``mcp_aggregate`` over HTTP.

    Parameters
    ----------
    base_url : str
        Service root, e.g. ``https://project.supabase.co``.
    api_key : str
        Sent as both ``apikey`` and bearer token.
    timeout_s : float
        Per-request timeout.
    transport : httpx.AsyncBaseTransport, optional
        Injected transport (``httpx.MockTransport`` in tests).
    """

    name = "http"

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout_s: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not base_url:
            raise ValueError("backend_url is not set.  Set BACKEND_URL in your .env file or environment.")
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout_s,
            transport=transport,
        )

    async def aggregate(self, request: AggregationRequest, scope: Scope) -> Any:
        try:
            response = await self._client.post(_RPC_PATH, json=rpc_params(request, scope))
        except httpx.HTTPError as exc:
            raise AggregationError(f"RPC transport error: {exc}") from exc

        if response.status_code >= 400:
            raise AggregationError(
                f"RPC returned HTTP {response.status_code}: {response.text[:200]}"
            )
        logger.debug("RPC %s -> %d bytes", _RPC_PATH, len(response.content))
        return response.text

    async def aclose(self) -> None:
        await self._client.aclose()
