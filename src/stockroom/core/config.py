from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    environment: str = "dev"
    base_url: str = "http://localhost:8000"
    secret_key: str = "change-me"

    database_url: str = "sqlite:///./stockroom.db"
    redis_url: str = "redis://localhost:6379/0"

    storage_backend: Literal["local", "s3"] = "local"
    local_storage_path: Path = Path(".local_storage")

    s3_endpoint_url: str | None = None
    s3_region: str | None = None
    s3_bucket: str = "stockroom-imports"
    s3_access_key_id: str | None = None
    s3_secret_access_key: str | None = None

    access_token_exp_minutes: int = 60 * 24

    # Upload receiver
    upload_max_bytes: int = 10 * 1024 * 1024
    upload_allowed_mime_types: tuple[str, ...] = (
        "application/pdf",
        "image/jpeg",
        "image/png",
        "image/webp",
    )
    # Ship the document bytes inside the job so workers need no shared storage.
    queue_inline_payload: bool = False

    # Worker pool
    worker_concurrency: int = 5
    job_max_attempts: int = 3
    job_backoff_base_seconds: float = 2.0
    processing_stale_minutes: int = 30
    # Workers stage downloaded documents here; None uses the system temp dir.
    scratch_dir: Path | None = None

    # Extraction provider
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.5-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_timeout_seconds: float = 60.0
    provider_rate_limit_calls: int = 10
    provider_rate_limit_window_seconds: float = 60.0
    provider_rate_limit_max_wait_seconds: float = 30.0
    # Backend for the provider rate limiter and the aggregate cache. Unset means
    # memory in dev/test and Redis elsewhere, so every worker process shares one limit.
    coordination_backend: Literal["memory", "redis"] | None = None

    tesseract_lang: str = "eng+por"

    # Deterministic fallback label synonyms, matched case- and accent-insensitively.
    fallback_sales_gross_labels: tuple[str, ...] = (
        "Total Bruto",
        "Total Geral",
        "Grande Total",
        "Importe",
    )
    fallback_sales_net_labels: tuple[str, ...] = ("Total Liquido", "Base Imponivel")
    fallback_invoice_gross_labels: tuple[str, ...] = (
        "Total c/ IVA",
        "Total com IVA",
        "Total Geral",
        "Total a Pagar",
    )
    fallback_invoice_net_labels: tuple[str, ...] = ("Total s/ IVA", "Total sem IVA", "Subtotal")
    fallback_invoice_tax_labels: tuple[str, ...] = ("Total IVA",)

    # Matcher
    match_distance_threshold: float = 0.4
    match_suggestion_limit: int = 10
    auto_match_confidence: int = 85
    high_confidence_floor: int = 80

    aggregate_cache_ttl_seconds: int = 300

    @property
    def coordination(self) -> str:
        if self.coordination_backend:
            return self.coordination_backend
        return "memory" if self.environment in {"dev", "test"} else "redis"


settings = Settings()
