"""Configuration for the Catalog Adapter."""

from __future__ import annotations

from functools import lru_cache
from typing import Dict, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)

    service_name: str = Field(default="catalog-adapter")

    adapter_transport: str = Field(default="stdio")
    adapter_host: str = Field(default="0.0.0.0")
    adapter_port: int = Field(default=8000)
    adapter_auth_token: Optional[str] = Field(default=None)

    adapter_spec_dir: str = Field(default="specs")
    adapter_tool_prefix: str = Field(default="api")

    upstream_base_url: str = Field(default="http://localhost:8080")
    upstream_auth_type: str = Field(default="bearer")
    upstream_auth_header: str = Field(default="Authorization")
    upstream_token: Optional[str] = Field(default=None)
    upstream_verify_ssl: bool = Field(default=True)

    adapter_max_retries: int = Field(default=3, ge=0, le=10)
    adapter_retry_delay_ms: int = Field(default=1000, ge=100, le=10000)
    adapter_request_timeout_ms: int = Field(default=30000, ge=1000, le=300000)

    adapter_rate_limit_max_tokens: int = Field(default=20, ge=1)
    adapter_rate_limit_refill_rate: float = Field(default=2.0, gt=0)

    adapter_strict_response_validation: bool = Field(default=False)
    adapter_max_concurrency: int = Field(default=20, ge=1)
    adapter_default_headers: Optional[str] = Field(default=None)

    adapter_log_level: str = Field(default="INFO")

    def default_headers(self) -> Dict[str, Dict[str, str]]:
        """Parse ``product:Header=value`` pairs into ``{product: {header: value}}``."""
        if not self.adapter_default_headers:
            return {}
        headers: Dict[str, Dict[str, str]] = {}
        for item in self.adapter_default_headers.split(","):
            product, _, assignment = item.strip().partition(":")
            name, _, value = assignment.partition("=")
            if product and name.strip():
                headers.setdefault(product.strip(), {})[name.strip()] = value.strip()
        return headers


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
