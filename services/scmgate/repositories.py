"""
Repository metadata lookup.

The orchestrator only needs a repository's provider type, provider-side
path, credentials and default branch. Where those live is somebody else's
concern: anything satisfying RepositoryResolver can supply them. The
configuration-backed resolver below serves repositories declared in the
service config so scmgate can run on its own.
"""

from __future__ import annotations

import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Protocol

from scmgate.config import RepositoryConfig
from scmgate.logging_config import get_logger
from scmgate.scm.protocol import RepositoryNotFoundError

logger = get_logger(__name__)


@dataclass(frozen=True)
class RepositoryDescriptor:
    """Stored metadata for one repository, opaque to the providers."""

    id: str
    provider: str
    path: str
    token: str = field(default="", repr=False)
    default_branch: str | None = None
    api_url: str | None = None
    owner: str | None = None


class RepositoryResolver(Protocol):
    async def get_repository(
        self, repository_id: str, caller: str | None = None
    ) -> RepositoryDescriptor:
        """Return the descriptor visible to `caller`.

        Raises:
            RepositoryNotFoundError: If the id is unknown or not visible to the caller.
        """
        ...


def descriptor_from_config(cfg: RepositoryConfig) -> RepositoryDescriptor:
    token = cfg.token
    if cfg.token_env:
        token = os.environ.get(cfg.token_env, "")
        if not token:
            logger.warning(
                "Repository token variable is empty", repository_id=cfg.id, token_env=cfg.token_env
            )
    return RepositoryDescriptor(
        id=cfg.id,
        provider=cfg.provider,
        path=cfg.path.strip("/"),
        token=token,
        default_branch=cfg.default_branch or None,
        api_url=cfg.api_url or None,
        owner=cfg.owner or None,
    )


class ConfiguredRepositoryResolver:
    """Serves descriptors declared under ``repositories`` in the settings."""

    def __init__(self, repositories: Iterable[RepositoryConfig]) -> None:
        self._descriptors: dict[str, RepositoryDescriptor] = {}
        for cfg in repositories:
            if cfg.id in self._descriptors:
                logger.warning("Duplicate repository id in config, keeping last", repository_id=cfg.id)
            self._descriptors[cfg.id] = descriptor_from_config(cfg)

    def __len__(self) -> int:
        return len(self._descriptors)

    async def get_repository(
        self, repository_id: str, caller: str | None = None
    ) -> RepositoryDescriptor:
        descriptor = self._descriptors.get(repository_id)
        if descriptor is None:
            raise RepositoryNotFoundError(repository_id)
        # Restricted repositories are invisible to other callers
        if descriptor.owner and caller and caller != descriptor.owner:
            raise RepositoryNotFoundError(repository_id)
        return descriptor
