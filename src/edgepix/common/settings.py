"""Application configuration models shared by services."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


DEFAULT_ALLOWED_REFERERS = [
    "bibica.net",
    "static.bibica.net",
    "comment.bibica.net",
    "jetpack-cf-r2-cache-v2.pages.dev",
]


def env_field(default, env_name: str):
    return Field(default, validation_alias=env_name)


class ImageProxySettings(BaseSettings):
    """Configuration for the image proxy service."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", populate_by_name=True)
    allowed_referers: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_REFERERS),
        validation_alias="EDGEPIX_ALLOWED_REFERERS",
    )
    debug_bypass_enabled: bool = env_field(True, "EDGEPIX_DEBUG_BYPASS_ENABLED")
    origin_scheme: str = env_field("https", "EDGEPIX_ORIGIN_SCHEME")
    origin_timeout_seconds: float = env_field(30.0, "EDGEPIX_ORIGIN_TIMEOUT")
    storage_path: Path = env_field(Path("./image-store"), "EDGEPIX_STORAGE_PATH")
    s3_endpoint_url: Optional[str] = env_field(None, "EDGEPIX_S3_ENDPOINT")
    s3_bucket: Optional[str] = env_field(None, "EDGEPIX_S3_BUCKET")
    s3_region: Optional[str] = env_field(None, "EDGEPIX_S3_REGION")
    s3_max_retries: int = env_field(3, "EDGEPIX_S3_MAX_RETRIES")
    s3_retry_base_seconds: float = env_field(0.2, "EDGEPIX_S3_RETRY_BASE")
    s3_retry_max_seconds: float = env_field(2.0, "EDGEPIX_S3_RETRY_MAX")
    s3_circuit_breaker_failures: int = env_field(5, "EDGEPIX_S3_CIRCUIT_FAILURES")
    s3_circuit_breaker_reset_seconds: float = env_field(30.0, "EDGEPIX_S3_CIRCUIT_RESET")
    redis_url: Optional[str] = env_field(None, "EDGEPIX_REDIS_URL")
    edge_cache_ttl_seconds: int = env_field(3600, "EDGEPIX_EDGE_CACHE_TTL")
    edge_cache_max_entries: int = env_field(1024, "EDGEPIX_EDGE_CACHE_MAX_ENTRIES")
    platform_label: str = env_field("EdgePix", "EDGEPIX_PLATFORM_LABEL")
    store_label: str = env_field("Object Store", "EDGEPIX_STORE_LABEL")
    edge_label: str = env_field("Edge Cache", "EDGEPIX_EDGE_LABEL")
    backfill_drain_seconds: float = env_field(10.0, "EDGEPIX_BACKFILL_DRAIN_SECONDS")
    log_level: str = env_field("INFO", "EDGEPIX_LOG_LEVEL")
    log_format: str = env_field("json", "EDGEPIX_LOG_FORMAT")
    otel_exporter_endpoint: Optional[str] = env_field(None, "EDGEPIX_OTEL_EXPORTER_ENDPOINT")
    otel_exporter_headers: Optional[str] = env_field(None, "EDGEPIX_OTEL_EXPORTER_HEADERS")
    otel_sampler_ratio: float = env_field(0.1, "EDGEPIX_OTEL_SAMPLER_RATIO")

    @field_validator("allowed_referers", mode="before")
    @classmethod
    def _split_allowed_referers(cls, value):
        if isinstance(value, str):
            value = value.split(",")
        return [item.strip().lower() for item in value if item.strip()]

    @field_validator("origin_scheme")
    @classmethod
    def _validate_origin_scheme(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"http", "https"}:
            raise ValueError("origin scheme must be http or https")
        return normalized
