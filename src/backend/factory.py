"""
Backend selection from settings.
"""
from __future__ import annotations

from pathlib import Path

from src.backend.base import AggregationBackend
from src.core.config import Settings, get_settings
from src.core.logging import get_logger

logger = get_logger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parents[2]


def create_backend(settings: Settings | None = None) -> AggregationBackend:
    """Instantiate the backend named by ``settings.backend``."""
    settings = settings or get_settings()
    kind = settings.backend.lower()

    if kind == "memory":
        from src.backend.memory import MemoryBackend

        path = Path(settings.sample_data_path)
        if not path.is_absolute():
            path = _PROJECT_ROOT / path
        backend: AggregationBackend = MemoryBackend.from_file(path)
    elif kind == "http":
        from src.backend.http_rpc import HttpBackend

        backend = HttpBackend(
            settings.backend_url,
            api_key=settings.backend_api_key,
            timeout_s=settings.backend_timeout_s,
        )
    elif kind == "postgres":
        from src.backend.postgres import PostgresBackend

        backend = PostgresBackend()
    else:
        raise NotImplementedError(
            f"Backend '{kind}' is not supported.  Choose from: memory, http, postgres"
        )

    logger.info("Data backend: %s", backend.name)
    return backend
