"""
SCM provider layer for scmgate.

Provides init_registry() / close_registry() for app lifespan and
get_registry() as a FastAPI dependency.
"""

from __future__ import annotations

from scmgate.config import settings
from scmgate.logging_config import get_logger
from scmgate.scm.registry import ProviderRegistry, build_registry

logger = get_logger(__name__)

# Module-level registry instance
_registry: ProviderRegistry | None = None


async def init_registry() -> None:
    """Build the provider registry from configuration.

    Called during app startup (lifespan).
    """
    global _registry  # noqa: PLW0603
    _registry = build_registry(settings)
    logger.info("Provider registry initialized", providers=[str(t) for t in _registry.types])


async def close_registry() -> None:
    """Close every provider's HTTP client.

    Called during app shutdown (lifespan).
    """
    global _registry  # noqa: PLW0603
    if _registry is not None:
        await _registry.close()
        _registry = None
        logger.info("Provider registry closed")


def get_registry() -> ProviderRegistry:
    """FastAPI dependency that returns the provider registry.

    Raises RuntimeError if the registry has not been initialized.
    """
    if _registry is None:
        raise RuntimeError("Provider registry not initialized, call init_registry() first")
    return _registry


def get_registry_or_none() -> ProviderRegistry | None:
    """Return the provider registry if initialized, otherwise None."""
    return _registry
