"""
Provider registry.

An explicit map from ProviderType to a constructed provider, built once at
startup. Selection is a dictionary lookup with no network activity.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum

from scmgate.config import Settings
from scmgate.logging_config import get_logger
from scmgate.scm.protocol import ProviderNotFoundError, ScmProvider

logger = get_logger(__name__)


class ProviderType(StrEnum):
    """Supported hosting backends, keyed by a repository's declared type."""

    GITHUB = "github"
    GITLAB = "gitlab"


class ProviderRegistry:
    """Read-only dispatch table shared by all concurrent operations."""

    def __init__(self, providers: Mapping[ProviderType, ScmProvider]) -> None:
        self._providers = dict(providers)

    @property
    def types(self) -> list[ProviderType]:
        return sorted(self._providers)

    def select(self, provider_type: str | ProviderType) -> ScmProvider:
        """Return the provider for a declared type.

        Raises:
            ProviderNotFoundError: For unknown types and known but disabled ones.
        """
        try:
            key = ProviderType(str(provider_type).strip().lower())
        except ValueError as e:
            raise ProviderNotFoundError(str(provider_type)) from e

        provider = self._providers.get(key)
        if provider is None:
            raise ProviderNotFoundError(str(provider_type))
        return provider

    async def close(self) -> None:
        for provider_type, provider in self._providers.items():
            await provider.close()
            logger.debug("Provider closed", provider=str(provider_type))


def build_registry(cfg: Settings) -> ProviderRegistry:
    """Construct every enabled provider from configuration."""
    providers: dict[ProviderType, ScmProvider] = {}

    for provider_type in ProviderType:
        match provider_type:
            case ProviderType.GITHUB if cfg.providers.github.enabled:
                from scmgate.scm.github import GitHubProvider

                providers[provider_type] = GitHubProvider(
                    api_url=cfg.providers.github.api_url,
                    api_version=cfg.providers.github.api_version,
                    archive_chunk_size=cfg.http.archive_chunk_size,
                )
                logger.info(
                    "Provider registered", provider="github", api_url=cfg.providers.github.api_url
                )

            case ProviderType.GITLAB if cfg.providers.gitlab.enabled:
                from scmgate.scm.gitlab import GitLabProvider

                providers[provider_type] = GitLabProvider(
                    url=cfg.providers.gitlab.url,
                    archive_chunk_size=cfg.http.archive_chunk_size,
                )
                logger.info("Provider registered", provider="gitlab", url=cfg.providers.gitlab.url)

    return ProviderRegistry(providers)
