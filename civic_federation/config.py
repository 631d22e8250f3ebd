"""
Civic Federation Configuration Management

Centralized configuration using Pydantic Settings for type-safe environment
variable loading with validation.
"""

import json
from functools import lru_cache
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONSENSUS_THRESHOLD = 2 / 3


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ═══════════════════════════════════════════════════════════════
    # APPLICATION
    # ═══════════════════════════════════════════════════════════════
    app_name: str = Field(default="civic-federation", description="Application name")
    app_env: Literal["development", "staging", "production", "testing"] = Field(
        default="development", description="Environment"
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_json: bool = Field(default=False, description="Render logs as JSON")

    # API Server
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, ge=1, le=65535, description="API port")

    # ═══════════════════════════════════════════════════════════════
    # VERIFIER REGISTRY SYNC
    # ═══════════════════════════════════════════════════════════════
    consensus_threshold: float = Field(
        default=DEFAULT_CONSENSUS_THRESHOLD,
        gt=0.0,
        le=1.0,
        description="Fraction of valid verifiers required for consensus",
    )
    max_validation_concurrency: int = Field(
        default=16, ge=1, description="Verifiers validated concurrently"
    )
    check_timeout_seconds: float = Field(
        default=5.0, gt=0, description="Deadline for a single proof check"
    )
    simulate_check_latency: bool = Field(
        default=True, description="Sleep for simulated per-check latency"
    )
    registry_fetch_timeout_seconds: float = Field(
        default=10.0, gt=0, description="Deadline for fetching a registry snapshot"
    )
    registry_directory: str | None = Field(
        default=None, description="Directory holding <ref>.json registry snapshots"
    )
    registry_gateway_url: str | None = Field(
        default=None, description="Content-addressed gateway base URL"
    )

    # ═══════════════════════════════════════════════════════════════
    # FEDERATION
    # ═══════════════════════════════════════════════════════════════
    max_node_concurrency: int = Field(
        default=8, ge=1, description="Federation nodes pushed concurrently"
    )
    node_push_timeout_seconds: float = Field(
        default=5.0, gt=0, description="Deadline for a single node push"
    )
    node_endpoints: dict[str, str] = Field(
        default_factory=dict, description="Federation node id -> base URL"
    )
    default_electorate_size: int = Field(
        default=100, ge=1, description="Electorate used for participation when unset"
    )
    auto_sync_on_submit: bool = Field(
        default=False, description="Propagate proposals to their nodes on submit"
    )
    proposal_store_path: str | None = Field(
        default=None, description="JSON file backing the proposal repository"
    )

    @field_validator("node_endpoints", mode="before")
    @classmethod
    def parse_node_endpoints(cls, v: Any) -> Any:
        """Accept node endpoints as a JSON object string."""
        if isinstance(v, str):
            if not v.strip():
                return {}
            try:
                return json.loads(v)
            except json.JSONDecodeError as e:
                raise ValueError(f"node_endpoints must be a JSON object: {e}")
        return v

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (testing only)."""
    get_settings.cache_clear()
