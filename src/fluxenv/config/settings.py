"""
Application settings using Pydantic.

Provides environment-based configuration loading with FLUXENV_ prefix.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="FLUXENV_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Readiness polling
    poll_interval: float = 2.0
    readiness_timeout: float | None = None

    # Gitea
    gitea_image: str = "gitea/gitea:1.21.7"
    gitea_startup_timeout: float = 60.0

    # Flux
    bootstrap_marker: str = "reconciled sync configuration"
    bootstrap_namespace: str = "flux-system"
    bootstrap_name: str = "flux-system"

    # Kubernetes
    kubeconfig: str | None = None
    kube_context: str | None = None

    # HTTP client settings
    http_timeout: float = 30.0

    # Logging
    log_level: str = "INFO"
    log_json: bool = False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
