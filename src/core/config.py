"""
Centralised application settings loaded from environment / .env file.
"""
from __future__ import annotations

from pathlib import Path
from functools import lru_cache

from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load .env from project root (two levels up from this file)
_ENV_PATH = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseSettings):
    # ── Data backend ─────────────────────────────────────
    backend: str = "memory"  # memory | http | postgres
    backend_url: str = ""
    backend_api_key: str = ""
    backend_timeout_s: float = 15.0
    sample_data_path: str = "data/sample_shipments.json"

    # ── Postgres ─────────────────────────────────────────
    postgres_user: str = "freight"
    postgres_password: str = "freight_pw"
    postgres_db: str = "freight"
    postgres_host: str = "localhost"
    postgres_port: int = 5432

    # ── LLM ──────────────────────────────────────────────
    llm_provider: str = "mock"  # mock | openai | anthropic
    openai_api_key: str = ""
    anthropic_api_key: str = ""

    # ── Engine ───────────────────────────────────────────
    default_date_range_days: int = 30
    default_limit: int = 100
    max_limit: int = 200
    fan_out_threshold: int = 2
    max_concurrency: int = 1
    fallback_metric: str = "cost"
    cache_ttl_seconds: float = 300.0
    cache_max_size: int = 256

    # ── App ──────────────────────────────────────────────
    api_port: int = 8000
    log_level: str = "INFO"

    @property
    def database_url(self) -> str:
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
