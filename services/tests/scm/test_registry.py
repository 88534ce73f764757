"""
Tests for provider registration and selection.
"""

from unittest.mock import AsyncMock

import pytest

from scmgate.config import GitHubProviderConfig, GitLabProviderConfig, ProvidersConfig, Settings
from scmgate.scm.github import GitHubProvider
from scmgate.scm.gitlab import GitLabProvider
from scmgate.scm.protocol import ProviderNotFoundError, ScmProvider
from scmgate.scm.registry import ProviderRegistry, ProviderType, build_registry


class TestProviderRegistry:
    def test_select_is_case_insensitive(self) -> None:
        provider = AsyncMock()
        registry = ProviderRegistry({ProviderType.GITHUB: provider})

        assert registry.select("github") is provider
        assert registry.select(" GitHub ") is provider
        assert registry.select(ProviderType.GITHUB) is provider

    def test_unknown_type(self) -> None:
        registry = ProviderRegistry({ProviderType.GITHUB: AsyncMock()})

        with pytest.raises(ProviderNotFoundError) as exc_info:
            registry.select("bitbucket")

        assert exc_info.value.provider_type == "bitbucket"

    def test_known_but_unregistered_type(self) -> None:
        registry = ProviderRegistry({ProviderType.GITHUB: AsyncMock()})

        with pytest.raises(ProviderNotFoundError):
            registry.select("gitlab")

    async def test_close_closes_every_provider(self) -> None:
        github, gitlab = AsyncMock(), AsyncMock()
        registry = ProviderRegistry({ProviderType.GITHUB: github, ProviderType.GITLAB: gitlab})

        await registry.close()

        github.close.assert_awaited_once()
        gitlab.close.assert_awaited_once()


class TestBuildRegistry:
    async def test_defaults_register_both(self) -> None:
        registry = build_registry(Settings())

        assert registry.types == [ProviderType.GITHUB, ProviderType.GITLAB]
        assert isinstance(registry.select("github"), GitHubProvider)
        assert isinstance(registry.select("gitlab"), GitLabProvider)
        assert isinstance(registry.select("github"), ScmProvider)
        await registry.close()

    async def test_disabled_provider_is_absent(self) -> None:
        cfg = Settings(
            providers=ProvidersConfig(
                github=GitHubProviderConfig(enabled=True),
                gitlab=GitLabProviderConfig(enabled=False),
            )
        )
        registry = build_registry(cfg)

        assert registry.types == [ProviderType.GITHUB]
        with pytest.raises(ProviderNotFoundError):
            registry.select("gitlab")
        await registry.close()
