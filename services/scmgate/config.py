"""
Configuration management for the scmgate service.

Non-secret configuration loaded from YAML file, secrets from environment variables.
"""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_PATH = "/etc/scmgate/config.yaml"


def yaml_config_settings_source() -> dict[str, Any]:
    """Load configuration from YAML file."""
    config_path = Path(os.environ.get("SCMGATE_CONFIG_FILE", DEFAULT_CONFIG_PATH))
    if config_path.exists():
        with open(config_path) as f:
            return yaml.safe_load(f) or {}
    return {}


# --- HTTP Configuration ---


class HTTPConfig(BaseModel):
    """Outbound HTTP client configuration shared by all providers."""

    timeout_seconds: float = Field(default=30.0, description="Per-request timeout")
    user_agent: str = Field(default="scmgate/0.1.0")
    archive_chunk_size: int = Field(
        default=64 * 1024,
        description="Chunk size in bytes used when streaming repository archives",
    )


# --- Provider Configuration ---


class GitHubProviderConfig(BaseModel):
    """GitHub REST API configuration."""

    enabled: bool = Field(default=True)
    api_url: str = Field(default="https://api.github.com")
    api_version: str = Field(default="2022-11-28", description="X-GitHub-Api-Version header")


class GitLabProviderConfig(BaseModel):
    """GitLab REST API configuration (gitlab.com or self-hosted)."""

    enabled: bool = Field(default=True)
    url: str = Field(default="https://gitlab.com", description="Instance base URL, /api/v4 is appended")


class ProvidersConfig(BaseModel):
    """Per-provider configuration."""

    github: GitHubProviderConfig = Field(default_factory=GitHubProviderConfig)
    gitlab: GitLabProviderConfig = Field(default_factory=GitLabProviderConfig)


# --- Retry Configuration ---


class RetryConfig(BaseModel):
    """Retry and timeout policy advertised to callers.

    Declared only. Enforcement belongs to whatever wraps the operation call,
    and only idempotent operations may be retried.
    """

    max_attempts: int = Field(default=3)
    initial_interval_ms: int = Field(default=500)
    multiplier: float = Field(default=2.0)
    max_interval_ms: int = Field(default=2000)
    timeout_ms: int = Field(default=5000)
    grace_period_ms: int = Field(default=1000)


# --- Repository Configuration ---


class RepositoryConfig(BaseModel):
    """A repository served by the configuration-backed resolver."""

    id: str = Field(description="Repository identifier used by callers")
    provider: str = Field(default="github", description="Provider type, e.g. github or gitlab")
    path: str = Field(description="Repository path on the provider, e.g. owner/name")
    default_branch: str = Field(default="")
    api_url: str = Field(default="", description="Override the provider API URL for this repository")
    token: str = Field(default="", description="Inline access token (prefer token_env)")
    token_env: str = Field(default="", description="Environment variable holding the access token")
    owner: str = Field(default="", description="Restrict visibility to this caller identity")


# --- Main Settings ---


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="SCMGATE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="scmgate")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=True, description="JSON logging in production")

    http: HTTPConfig = Field(default_factory=HTTPConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    repositories: list[RepositoryConfig] = Field(default_factory=list)

    # API
    api_prefix: str = Field(default="/api/v1")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: Any,
        env_settings: Any,
        dotenv_settings: Any,
        file_secret_settings: Any,
    ) -> tuple[Any, ...]:
        """Customize settings sources: env vars override YAML config."""
        return (
            init_settings,
            env_settings,
            yaml_config_settings_source,
            dotenv_settings,
            file_secret_settings,
        )


# Global settings instance
settings = Settings()
